"""
Derivación de señales a partir de una partición del historial.

Funciones puras sobre listas de SwipeEntry. Los rangos piden al
menos 2 muestras; con menos se consideran ausentes (None, no cero).
"""

from collections import Counter
from typing import Iterable, Optional

from homeswipe.config import BOOLEAN_TAG_KEYS
from homeswipe.models import RangeStats, SwipeEntry

# Un valor es "afín" si aparece en al menos este % de la partición
AFFINITY_THRESHOLD = 0.4

# Muestras mínimas de la partición para calcular afinidades
MIN_AFFINITY_SAMPLES = 2


def derive_price_range(
    entries: list[SwipeEntry], price_type: Optional[str] = None
) -> Optional[RangeStats]:
    """Rango de precios (opcionalmente de un solo tipo de operación)."""
    samples = [
        e.price
        for e in entries
        if e.price and (price_type is None or e.price_type == price_type)
    ]
    return RangeStats.from_samples(samples)


def derive_commute_range(entries: list[SwipeEntry]) -> Optional[RangeStats]:
    """Rango del promedio de viaje de los listings swipeados."""
    return RangeStats.from_samples(e.commute_minutes for e in entries if e.commute_minutes)


def _affine(counts: Counter, n: int, order: Iterable[str]) -> list[str]:
    if n < MIN_AFFINITY_SAMPLES:
        return []
    # Con pocos dislikes alcanza una aparición
    threshold = max(1.0, n * AFFINITY_THRESHOLD)
    rank = {key: i for i, key in enumerate(order)}
    selected = [key for key, count in counts.items() if count >= threshold]
    return sorted(selected, key=lambda k: (-counts[k], rank.get(k, len(rank)), k))


def derive_feature_affinity(entries: list[SwipeEntry]) -> list[str]:
    """Amenities presentes en >= 40% de la partición, más frecuentes primero."""
    counts: Counter = Counter()
    for entry in entries:
        counts.update(entry.tags.active_features())
    return _affine(counts, len(entries), BOOLEAN_TAG_KEYS)


def derive_subway_affinity(entries: list[SwipeEntry]) -> list[str]:
    """Líneas de subte presentes en >= 40% de la partición."""
    counts: Counter = Counter()
    for entry in entries:
        counts.update(set(entry.tags.near_subway_lines))
    return _affine(counts, len(entries), sorted(counts))


def derive_context_affinity(entries: list[SwipeEntry]) -> list[str]:
    """Tipo de edificio / nivel de ruido conocidos en >= 40% de la partición."""
    counts: Counter = Counter()
    for entry in entries:
        counts.update(entry.tags.context_keys())
    return _affine(counts, len(entries), sorted(counts))
