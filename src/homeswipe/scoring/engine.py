"""
Motor de scoring entre el usuario y las propiedades.

Implementa:
- Cold start: score por atributos intrínsecos (amenities, subte, edificio, ruido)
- Warm: similitud contra lo aprendido del historial, menos penalizaciones
  por parecerse a los dislikes, más un empujón chico del quiz
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

import structlog

from homeswipe.config import BOOLEAN_TAG_KEYS
from homeswipe.models import CommuteTime, ListingTags, PreferenceSignals, QuizAnswers
from homeswipe.scoring.ratios import (
    NEUTRAL,
    commute_proximity,
    overlap_ratio,
    price_proximity,
    range_penalty,
)
from homeswipe.signals import WARM_START_SWIPES

logger = structlog.get_logger()

COLD_MIN_SCORE = 58
COLD_MAX_SCORE = 92
WARM_MIN_SCORE = 55
WARM_MAX_SCORE = 98

COLD_WEIGHTS = {
    "amenities": 0.5,
    "subway": 0.2,
    "building": 0.15,
    "noise": 0.15,
}

# Cantidad de líneas cercanas -> valor
SUBWAY_TIERS = [(3, 1.0), (2, 0.8), (1, 0.6)]
SUBWAY_NONE = 0.35

BUILDING_SCORES = {"elevator": 1.0, "walkup": 0.65, "unknown": 0.4}
NOISE_SCORES = {"quiet": 1.0, "average": 0.6, "unknown": 0.4}

WARM_WEIGHTS = {
    "features": 0.30,
    "subway": 0.14,
    "price": 0.18,
    "context": 0.13,
    "commute": 0.25,
}

PENALTY_WEIGHTS = {
    "features": 0.18,
    "subway": 0.06,
    "price": 0.08,
    "context": 0.05,
    "commute": 0.12,
}


@dataclass
class ScoreBreakdown:
    """Detalle del cálculo de un score."""

    mode: str  # "cold" o "warm"
    score: int
    raw: float
    ratios: dict[str, float] = field(default_factory=dict)
    penalties: dict[str, float] = field(default_factory=dict)
    nudges: dict[str, float] = field(default_factory=dict)


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def average_commute(commute_times: Optional[Iterable[Any]]) -> Optional[float]:
    """
    Promedio de minutos de viaje.

    Acepta CommuteTime, dicts con 'minutes' o números sueltos;
    lo que no se puede leer se ignora.
    """
    minutes = []
    for item in commute_times or []:
        if isinstance(item, CommuteTime):
            value: Any = item.minutes
        elif isinstance(item, dict):
            value = item.get("minutes")
        else:
            value = item
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            continue
        minutes.append(float(value))
    if not minutes:
        return None
    return sum(minutes) / len(minutes)


def _subway_tier(lines: list[str]) -> float:
    for min_lines, value in SUBWAY_TIERS:
        if len(lines) >= min_lines:
            return value
    return SUBWAY_NONE


def cold_start_score(tags: Union[ListingTags, dict, None]) -> ScoreBreakdown:
    """
    Score sin historial: calidad intrínseca de la propiedad.

    Queda en [58, 92]; nunca es el mismo número para todas.
    """
    tags = ListingTags.coerce(tags)

    ratios = {
        "amenities": len(tags.active_features()) / len(BOOLEAN_TAG_KEYS),
        "subway": _subway_tier(tags.near_subway_lines),
        "building": BUILDING_SCORES[tags.building_type],
        "noise": NOISE_SCORES[tags.noise_level],
    }
    raw = sum(COLD_WEIGHTS[key] * value for key, value in ratios.items())
    score = _clamp(
        round(COLD_MIN_SCORE + raw * (COLD_MAX_SCORE - COLD_MIN_SCORE)),
        COLD_MIN_SCORE,
        COLD_MAX_SCORE,
    )
    return ScoreBreakdown(mode="cold", score=score, raw=raw, ratios=ratios)


def _affinity_ratio(present: list[str], liked: list[str]) -> float:
    if not liked:
        return NEUTRAL
    return overlap_ratio(present, liked)


def _subway_ratio(lines: list[str], liked: list[str]) -> float:
    # Estar cerca de dos líneas que le gustan ya es match completo
    if not liked:
        return NEUTRAL
    matches = sum(1 for line in lines if line in liked)
    return min(1.0, matches / min(2, len(liked)))


def _exclusive(disliked: list[str], liked: list[str]) -> list[str]:
    return [item for item in disliked if item not in liked]


def quiz_nudges(
    quiz: Optional[QuizAnswers],
    tags: ListingTags,
    price: Optional[float],
    liked_price: Any,
    avg_commute: Optional[float],
) -> dict[str, float]:
    """Ajustes chicos (±0.02 a ±0.08) según las respuestas del quiz."""
    if quiz is None:
        return {}

    nudges: dict[str, float] = {}

    if avg_commute is not None:
        if quiz.commute == "short":
            if avg_commute <= 25:
                nudges["commute"] = 0.05
            elif avg_commute > 45:
                nudges["commute"] = -0.06
        elif quiz.commute == "balanced" and avg_commute > 60:
            nudges["commute"] = -0.03

    if price and liked_price is not None:
        if quiz.budget == "save":
            if price < liked_price.avg:
                nudges["budget"] = 0.04
            elif price > liked_price.max:
                nudges["budget"] = -0.06
        elif quiz.budget == "splurge" and price > liked_price.avg:
            nudges["budget"] = 0.02

    if quiz.style == "modern":
        modern = tags.building_type == "elevator" or tags.renovated
        nudges["style"] = 0.05 if modern else -0.02
    elif quiz.style == "quiet":
        if tags.noise_level == "quiet":
            nudges["style"] = 0.06
        elif tags.noise_level == "average":
            nudges["style"] = -0.02
    elif quiz.style == "classic" and tags.building_type == "walkup":
        nudges["style"] = 0.04

    return nudges


def warm_score(
    tags: Union[ListingTags, dict, None],
    price: Optional[float],
    price_type: Optional[str],
    commute_times: Optional[Iterable[Any]],
    signals: PreferenceSignals,
    quiz: Optional[QuizAnswers] = None,
) -> ScoreBreakdown:
    """
    Score aprendido: similitud con los likes menos parecido a los dislikes.

    Queda en [55, 98].
    """
    tags = ListingTags.coerce(tags)
    features = tags.active_features()
    lines = tags.near_subway_lines
    context = tags.context_keys()
    avg_commute = average_commute(commute_times)
    liked_price = signals.liked_price.get(price_type) if price_type else None
    disliked_price = signals.disliked_price.get(price_type) if price_type else None

    ratios = {
        "features": _affinity_ratio(features, signals.liked_features),
        "subway": _subway_ratio(lines, signals.liked_subway),
        "price": price_proximity(price, liked_price),
        "context": _affinity_ratio(context, signals.liked_context),
        "commute": commute_proximity(avg_commute, signals.liked_commute),
    }
    weighted = sum(WARM_WEIGHTS[key] * value for key, value in ratios.items())

    penalties = {
        "features": overlap_ratio(
            features, _exclusive(signals.disliked_features, signals.liked_features)
        ),
        "subway": overlap_ratio(lines, _exclusive(signals.disliked_subway, signals.liked_subway)),
        "price": range_penalty(price, disliked_price, liked_price),
        "context": overlap_ratio(
            context, _exclusive(signals.disliked_context, signals.liked_context)
        ),
        "commute": range_penalty(avg_commute, signals.disliked_commute, signals.liked_commute),
    }
    penalty = sum(PENALTY_WEIGHTS[key] * value for key, value in penalties.items())

    nudges = quiz_nudges(quiz, tags, price, liked_price, avg_commute)

    raw = max(0.0, weighted - penalty + sum(nudges.values()))
    score = _clamp(
        round(WARM_MIN_SCORE + raw * (WARM_MAX_SCORE - WARM_MIN_SCORE)),
        WARM_MIN_SCORE,
        WARM_MAX_SCORE,
    )
    return ScoreBreakdown(
        mode="warm",
        score=score,
        raw=raw,
        ratios=ratios,
        penalties=penalties,
        nudges=nudges,
    )


def score_listing(
    tags: Union[ListingTags, dict, None],
    price: Optional[float],
    price_type: Optional[str],
    commute_times: Optional[Iterable[Any]],
    signals: PreferenceSignals,
    quiz: Optional[QuizAnswers] = None,
) -> ScoreBreakdown:
    """Elige cold start o warm según la cantidad de swipes."""
    if signals.total_swipes < WARM_START_SWIPES:
        return cold_start_score(tags)
    return warm_score(tags, price, price_type, commute_times, signals, quiz)


def compute_score(
    tags: Union[ListingTags, dict, None],
    price: Optional[float],
    price_type: Optional[str],
    commute_times: Optional[Iterable[Any]],
    signals: PreferenceSignals,
    quiz: Optional[QuizAnswers] = None,
) -> int:
    """
    Score entero de una propiedad para el usuario.

    Función pura: mismas señales y mismo listing dan el mismo score.
    Tags incompletos o inválidos cuentan como neutrales.
    """
    return score_listing(tags, price, price_type, commute_times, signals, quiz).score


class ScoringEngine:
    """
    Motor de scoring atado a un SignalStore.

    Flujo:
    1. Toma una foto de las señales del store (cacheada por cantidad de swipes)
    2. Calcula el score puro con esa foto y el quiz
    """

    def __init__(self, signal_store):
        self.signal_store = signal_store
        self._cached_signals: Optional[PreferenceSignals] = None
        self._cached_total = -1

    def signals(self) -> PreferenceSignals:
        # El historial es append-only: mismo total = mismas señales
        total = self.signal_store.get_total_swipes()
        if self._cached_signals is None or total != self._cached_total:
            self._cached_signals = self.signal_store.snapshot()
            self._cached_total = total
        return self._cached_signals

    def breakdown(
        self,
        tags: Union[ListingTags, dict, None],
        price: Optional[float],
        price_type: Optional[str],
        commute_times: Optional[Iterable[Any]] = None,
    ) -> ScoreBreakdown:
        return score_listing(
            tags,
            price,
            price_type,
            commute_times,
            self.signals(),
            self.signal_store.quiz_answers,
        )

    def compute_score(
        self,
        tags: Union[ListingTags, dict, None],
        price: Optional[float],
        price_type: Optional[str],
        commute_times: Optional[Iterable[Any]] = None,
    ) -> int:
        """
        Score de una propiedad con las señales actuales del usuario.

        Args:
            tags: Tags inferidos (None o parciales cuentan como neutrales)
            price: Precio del listing
            price_type: 'rent' o 'buy'
            commute_times: Tiempos de viaje a los lugares guardados

        Returns:
            Score entero (cold start en [58, 92], warm en [55, 98])
        """
        return self.breakdown(tags, price, price_type, commute_times).score

    def provisional_score(self, price: Optional[float], price_type: Optional[str]) -> int:
        """Score inicial de un listing sin enriquecer (tags neutrales, sin viajes)."""
        return self.compute_score(ListingTags(), price, price_type, [])
