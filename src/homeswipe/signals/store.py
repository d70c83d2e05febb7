"""
Signal Store: historial de swipes y señales de preferencia derivadas.

Registra cada swipe (append-only), reconstruye el historial desde el
store persistente migrando el formato viejo, y expone las señales que
consume el motor de scoring.
"""

from typing import Any, Optional, Union

import structlog

from homeswipe.config import PRICE_TYPES
from homeswipe.models import (
    ListingTags,
    PreferenceSignals,
    QuizAnswers,
    RangeStats,
    SwipeDirection,
    SwipeEntry,
    SwipeHistory,
)
from homeswipe.signals.derive import (
    derive_commute_range,
    derive_context_affinity,
    derive_feature_affinity,
    derive_price_range,
    derive_subway_affinity,
)
from homeswipe.signals.history import needs_upgrade, normalize_swipe_history, positive_or_none
from homeswipe.storage import SwipeHistoryRepository, UserPreferencesRepository

logger = structlog.get_logger()

# Swipes necesarios para pasar de cold start a scoring aprendido
WARM_START_SWIPES = 3


class SignalStore:
    """
    Historial de feedback del usuario y señales derivadas.

    El historial vive en memoria y se escribe al store en cada swipe;
    si la escritura falla se loguea y se sigue (perder una entrada no
    puede romper los swipes siguientes).
    """

    def __init__(
        self,
        history_repo: Optional[SwipeHistoryRepository] = None,
        preferences_repo: Optional[UserPreferencesRepository] = None,
    ):
        self.history_repo = history_repo or SwipeHistoryRepository()
        self.preferences_repo = preferences_repo or UserPreferencesRepository(
            self.history_repo.store
        )
        self._history = SwipeHistory()
        self._quiz: Optional[QuizAnswers] = None
        self._loaded = False

    @property
    def history(self) -> SwipeHistory:
        return self._history

    @property
    def quiz_answers(self) -> Optional[QuizAnswers]:
        return self._quiz

    async def load(self) -> SwipeHistory:
        """
        Carga el historial persistido (una vez por instancia).

        Si está en el formato viejo lo migra y lo reescribe; la
        migración es idempotente.
        """
        if self._loaded:
            return self._history

        raw: Any = None
        try:
            raw = await self.history_repo.get_raw()
        except Exception as e:
            logger.warning("No se pudo leer el historial de swipes", error=str(e))

        self._history = normalize_swipe_history(raw)
        self._loaded = True

        if needs_upgrade(raw):
            logger.info(
                "Migrando historial de swipes al formato actual",
                liked=len(self._history.liked),
                disliked=len(self._history.disliked),
            )
            await self._persist()

        try:
            self._quiz = await self.preferences_repo.get_quiz_answers()
        except Exception as e:
            logger.warning("No se pudo leer el quiz", error=str(e))

        return self._history

    async def _persist(self) -> None:
        try:
            await self.history_repo.save(self._history)
        except Exception as e:
            logger.warning("No se pudo guardar el historial de swipes", error=str(e))

    async def record_swipe(
        self,
        tags: Union[ListingTags, dict, None],
        direction: Union[SwipeDirection, str],
        price: Optional[float] = None,
        price_type: Optional[str] = None,
        commute_minutes: Optional[float] = None,
    ) -> SwipeEntry:
        """
        Agrega un swipe al historial. Nunca falla.

        Args:
            tags: Tags del listing swipeado
            direction: 'right' (like) o 'left' (dislike)
            price: Precio del listing
            price_type: 'rent' o 'buy'
            commute_minutes: Promedio de viaje del listing

        Returns:
            La entrada registrada
        """
        if not self._loaded:
            await self.load()

        entry = SwipeEntry(
            tags=ListingTags.coerce(tags),
            price=positive_or_none(price),
            price_type=price_type if price_type in PRICE_TYPES else None,
            commute_minutes=positive_or_none(commute_minutes),
        )

        liked = SwipeDirection(direction) == SwipeDirection.LIKE
        partition = self._history.liked if liked else self._history.disliked
        partition.append(entry)

        logger.info(
            "Swipe registrado",
            direction="LIKE" if liked else "DISLIKE",
            liked=len(self._history.liked),
            disliked=len(self._history.disliked),
        )

        await self._persist()
        return entry

    async def set_quiz_answers(self, answers: QuizAnswers) -> bool:
        """Guarda el quiz (solo la primera vez)."""
        try:
            stored = await self.preferences_repo.set_quiz_answers(answers)
        except Exception as e:
            logger.warning("No se pudo guardar el quiz", error=str(e))
            return False
        if stored:
            self._quiz = answers
        return stored

    def get_total_swipes(self) -> int:
        return self._history.total

    def is_warm(self) -> bool:
        return self.get_total_swipes() >= WARM_START_SWIPES

    # Señales derivadas

    def derive_price_range(
        self, partition: str, price_type: Optional[str] = None
    ) -> Optional[RangeStats]:
        return derive_price_range(self._history.partition(partition), price_type)

    def derive_commute_range(self, partition: str) -> Optional[RangeStats]:
        return derive_commute_range(self._history.partition(partition))

    def derive_feature_affinity(self, partition: str) -> list[str]:
        return derive_feature_affinity(self._history.partition(partition))

    def derive_subway_affinity(self, partition: str) -> list[str]:
        return derive_subway_affinity(self._history.partition(partition))

    def derive_context_affinity(self, partition: str) -> list[str]:
        return derive_context_affinity(self._history.partition(partition))

    def snapshot(self) -> PreferenceSignals:
        """Foto inmutable de las señales actuales para el motor de scoring."""
        liked_price = {}
        disliked_price = {}
        for price_type in PRICE_TYPES:
            liked_range = self.derive_price_range("liked", price_type)
            if liked_range:
                liked_price[price_type] = liked_range
            disliked_range = self.derive_price_range("disliked", price_type)
            if disliked_range:
                disliked_price[price_type] = disliked_range

        return PreferenceSignals(
            total_swipes=self.get_total_swipes(),
            liked_features=self.derive_feature_affinity("liked"),
            disliked_features=self.derive_feature_affinity("disliked"),
            liked_subway=self.derive_subway_affinity("liked"),
            disliked_subway=self.derive_subway_affinity("disliked"),
            liked_context=self.derive_context_affinity("liked"),
            disliked_context=self.derive_context_affinity("disliked"),
            liked_price=liked_price,
            disliked_price=disliked_price,
            liked_commute=self.derive_commute_range("liked"),
            disliked_commute=self.derive_commute_range("disliked"),
        )

    def learned_pattern_summary(self) -> str:
        """Resumen legible de lo aprendido, para mostrar en la UI."""
        return summarize_signals(self.snapshot())


def _humanize(key: str) -> str:
    return key.split(":", 1)[-1].replace("_", " ")


def summarize_signals(signals: PreferenceSignals) -> str:
    """Arma el texto 'You like ... · near the A, C lines · ...'."""
    if signals.total_swipes < WARM_START_SWIPES:
        remaining = WARM_START_SWIPES - signals.total_swipes
        return f"Swipe {remaining} more home{'s' if remaining != 1 else ''} so I can learn your taste."

    parts = []
    if signals.liked_features:
        parts.append("You like " + ", ".join(_humanize(f) for f in signals.liked_features[:4]))
    if signals.liked_subway:
        lines = ", ".join(signals.liked_subway[:4])
        parts.append(f"near the {lines} line{'s' if len(signals.liked_subway) > 1 else ''}")
    if signals.liked_context:
        parts.append(" + ".join(_humanize(c) for c in signals.liked_context))
    for price_type, stats in signals.liked_price.items():
        suffix = "/mo" if price_type == "rent" else ""
        parts.append(f"${stats.min:,.0f}–${stats.max:,.0f}{suffix}")
    if signals.liked_commute:
        parts.append(f"~{round(signals.liked_commute.avg)} min commutes")

    avoided = [f for f in signals.disliked_features if f not in signals.liked_features]
    if avoided:
        parts.append("You pass on " + ", ".join(_humanize(f) for f in avoided[:3]))

    if not parts:
        return "No clear pattern yet, keep swiping."
    return " · ".join(parts)
