"""
Modelos de feedback del usuario.

Define el historial de swipes (append-only), las respuestas del quiz
y los lugares guardados contra los que se calculan los viajes.
"""

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from homeswipe.models.listing import ListingTags

SWIPE_HISTORY_VERSION = 2


class SwipeDirection(str, Enum):
    """Dirección del swipe: derecha = me gusta, izquierda = no."""

    LIKE = "right"
    DISLIKE = "left"


class SwipeEntry(BaseModel):
    """
    Un swipe registrado, con el contexto de precio y viaje del listing.

    Inmutable: el historial solo crece agregando entradas nuevas.
    Los campos de contexto son None cuando no se conocían (por ejemplo
    entradas migradas del formato viejo, que solo guardaba tags).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    tags: ListingTags = Field(default_factory=ListingTags)
    price: Optional[float] = Field(None, description="Precio del listing swipeado")
    price_type: Optional[Literal["rent", "buy"]] = Field(None, alias="priceType")
    commute_minutes: Optional[float] = Field(
        None, alias="commuteMinutes", description="Promedio de viaje del listing"
    )


class SwipeHistory(BaseModel):
    """Historial de swipes particionado en liked / disliked."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = SWIPE_HISTORY_VERSION
    liked: list[SwipeEntry] = Field(default_factory=list)
    disliked: list[SwipeEntry] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.liked) + len(self.disliked)

    def partition(self, name: str) -> list[SwipeEntry]:
        """Devuelve 'liked' o 'disliked'."""
        if name == "liked":
            return self.liked
        if name == "disliked":
            return self.disliked
        raise ValueError(f"Partición desconocida: {name}. Usar 'liked' o 'disliked'")

    def to_storage(self) -> dict:
        """Serializa con las claves camelCase del formato persistido."""
        return self.model_dump(mode="json", by_alias=True)


class QuizAnswers(BaseModel):
    """
    Respuestas explícitas del quiz (se cargan una sola vez).

    El motor de scoring las usa como un empujón chico, nunca como filtro.
    """

    commute: Literal["short", "balanced", "flexible"] = "balanced"
    budget: Literal["save", "balanced", "splurge"] = "balanced"
    style: Literal["modern", "quiet", "classic"] = "modern"


class SavedPlace(BaseModel):
    """Lugar al que el usuario viaja seguido (trabajo, facultad, gym)."""

    id: str
    label: str
    address: str
    importance: Literal["low", "medium", "high"] = "medium"
