"""
Normalización del historial de swipes persistido.

El formato viejo guardaba solo los tags de cada listing:

    {"liked": [{"elevator": true, ...}], "disliked": [...]}

El formato actual guarda cada swipe con su contexto:

    {"version": 2, "liked": [{"tags": {...}, "price": 2400,
     "priceType": "rent", "commuteMinutes": 25}], "disliked": [...]}
"""

import json
import math
from typing import Any, Optional

from homeswipe.models import ListingTags, SwipeEntry, SwipeHistory
from homeswipe.models.swipe import SWIPE_HISTORY_VERSION

_PARTITIONS = ("liked", "disliked")


def positive_or_none(value: Any) -> Optional[float]:
    """Número finito y > 0, o None."""
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or number <= 0:
        return None
    return number


def _normalize_entry(item: Any) -> Optional[SwipeEntry]:
    if not isinstance(item, dict):
        return None

    if isinstance(item.get("tags"), dict):
        price_type = item.get("priceType", item.get("price_type"))
        return SwipeEntry(
            tags=ListingTags.coerce(item["tags"]),
            price=positive_or_none(item.get("price")),
            price_type=price_type if price_type in ("rent", "buy") else None,
            commute_minutes=positive_or_none(
                item.get("commuteMinutes", item.get("commute_minutes"))
            ),
        )

    # Formato viejo: el item es directamente el objeto de tags
    return SwipeEntry(tags=ListingTags.coerce(item))


def normalize_swipe_history(raw: Any) -> SwipeHistory:
    """
    Convierte cualquier historial guardado al formato actual.

    Función pura e idempotente: acepta el JSON (string o ya parseado)
    en formato viejo o nuevo y nunca falla. Lo irreconocible se
    descarta; los campos faltantes quedan en None (neutros).
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            return SwipeHistory()

    if not isinstance(raw, dict):
        return SwipeHistory()

    partitions: dict[str, list[SwipeEntry]] = {}
    for name in _PARTITIONS:
        items = raw.get(name)
        if not isinstance(items, list):
            items = []
        partitions[name] = [e for e in (_normalize_entry(i) for i in items) if e is not None]

    return SwipeHistory(
        version=SWIPE_HISTORY_VERSION,
        liked=partitions["liked"],
        disliked=partitions["disliked"],
    )


def needs_upgrade(raw: Any) -> bool:
    """True si el JSON guardado no está en el formato actual."""
    return isinstance(raw, dict) and raw.get("version") != SWIPE_HISTORY_VERSION
