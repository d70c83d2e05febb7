"""
Ratios de proximidad usados por el motor de scoring.

Todos devuelven valores en [0, 1]. Precio y viaje comparan contra
rangos aprendidos usando el range-distance-ratio: 0 dentro del rango
expandido, y fuera de él la distancia normalizada por el promedio.
Así una sola muestra rara no premia ni castiga de más, pero un
desvío consistente sí se nota.
"""

from typing import Iterable, Optional

from homeswipe.models import RangeStats

NEUTRAL = 0.5

# Expansión del rango de referencia (±5%)
RANGE_PADDING = 0.05

# Precio dentro del rango: piso de la banda "match"
PRICE_MATCH_FLOOR = 0.78

# (ratio de distancia máximo, valor) fuera del rango de precios
PRICE_FALLOFF = [(0.10, 0.62), (0.25, 0.42), (0.50, 0.22)]
PRICE_LOWEST_BAND = 0.05

# (desvío relativo máximo sobre el promedio liked, valor)
COMMUTE_DEVIATION_TIERS = [(0.15, 1.0), (0.30, 0.75), (0.45, 0.5)]
COMMUTE_LOWEST_BAND = 0.25

# Sin historial de viajes: (minutos máximos, valor)
COMMUTE_ABSOLUTE_TIERS = [(20, 1.0), (30, 0.8), (45, 0.55), (60, 0.35)]
COMMUTE_ABSOLUTE_FLOOR = 0.2


def padded_bounds(stats: RangeStats, padding: float = RANGE_PADDING) -> tuple[float, float]:
    return stats.min * (1 - padding), stats.max * (1 + padding)


def range_distance_ratio(
    value: float, stats: RangeStats, padding: float = RANGE_PADDING
) -> float:
    """
    Distancia de value al rango expandido, normalizada por el promedio.

    0.0 si value cae dentro de [min - 5%, max + 5%].
    """
    low, high = padded_bounds(stats, padding)
    if low <= value <= high:
        return 0.0
    distance = low - value if value < low else value - high
    return distance / max(1.0, stats.avg)


def price_proximity(price: Optional[float], liked: Optional[RangeStats]) -> float:
    """
    Qué tan cerca está el precio del rango que le gustó al usuario.

    Dentro del rango: entre 0.78 y 1.0 según la distancia al centro.
    Fuera: bandas decrecientes hasta 0.05.
    """
    if liked is None or not price:
        return NEUTRAL

    distance = range_distance_ratio(price, liked)
    if distance == 0:
        low, high = padded_bounds(liked)
        midpoint = (liked.min + liked.max) / 2
        half_width = max(1.0, (high - low) / 2)
        closeness = 1 - min(1.0, abs(price - midpoint) / half_width)
        return PRICE_MATCH_FLOOR + (1 - PRICE_MATCH_FLOOR) * closeness

    for max_distance, value in PRICE_FALLOFF:
        if distance <= max_distance:
            return value
    return PRICE_LOWEST_BAND


def commute_proximity(avg_commute: Optional[float], liked: Optional[RangeStats]) -> float:
    """
    Qué tan cerca está el viaje del promedio liked.

    Viajes más cortos que el promedio nunca penalizan. Sin historial
    de viajes se usan tiers absolutos en minutos.
    """
    if avg_commute is None:
        return NEUTRAL

    if liked is None:
        for max_minutes, value in COMMUTE_ABSOLUTE_TIERS:
            if avg_commute <= max_minutes:
                return value
        return COMMUTE_ABSOLUTE_FLOOR

    deviation = max(0.0, avg_commute - liked.avg) / max(1.0, liked.avg)
    for max_deviation, value in COMMUTE_DEVIATION_TIERS:
        if deviation <= max_deviation:
            return value
    return COMMUTE_LOWEST_BAND


def range_penalty(
    value: Optional[float],
    disliked: Optional[RangeStats],
    liked: Optional[RangeStats] = None,
) -> float:
    """
    Penalización [0, 1] por caer en el rango de los dislikes.

    Si el valor también cae dentro del rango liked, no se penaliza.
    """
    if not value or disliked is None:
        return 0.0
    if liked is not None and range_distance_ratio(value, liked) == 0:
        return 0.0

    distance = range_distance_ratio(value, disliked)
    if distance == 0:
        return 1.0
    if distance <= 0.10:
        return 0.5
    return 0.0


def overlap_ratio(present: Iterable[str], wanted: list[str]) -> float:
    """Fracción de wanted que está en present (0 si wanted está vacío)."""
    if not wanted:
        return 0.0
    present_set = set(present)
    return sum(1 for item in wanted if item in present_set) / len(wanted)
