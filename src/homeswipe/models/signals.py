"""
Señales de preferencia derivadas del historial de swipes.

No se persisten: se recalculan desde el historial cada vez.
"""

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

MIN_RANGE_SAMPLES = 2


class RangeStats(BaseModel):
    """Rango {min, max, avg} de una serie de muestras."""

    model_config = ConfigDict(frozen=True)

    min: float
    max: float
    avg: float

    @classmethod
    def from_samples(cls, samples: Iterable[float]) -> Optional["RangeStats"]:
        """Rango de las muestras, o None si hay menos de 2."""
        values = [float(v) for v in samples]
        if len(values) < MIN_RANGE_SAMPLES:
            return None
        return cls(min=min(values), max=max(values), avg=sum(values) / len(values))


class PreferenceSignals(BaseModel):
    """
    Foto inmutable de todo lo aprendido hasta el momento.

    Es lo único que lee el motor de scoring, así el cálculo queda puro:
    mismas señales + mismo listing = mismo score.
    """

    model_config = ConfigDict(frozen=True)

    total_swipes: int = 0

    liked_features: list[str] = Field(default_factory=list)
    disliked_features: list[str] = Field(default_factory=list)
    liked_subway: list[str] = Field(default_factory=list)
    disliked_subway: list[str] = Field(default_factory=list)
    liked_context: list[str] = Field(default_factory=list)
    disliked_context: list[str] = Field(default_factory=list)

    # Rangos de precio por tipo de operación ('rent' / 'buy')
    liked_price: dict[str, RangeStats] = Field(default_factory=dict)
    disliked_price: dict[str, RangeStats] = Field(default_factory=dict)

    liked_commute: Optional[RangeStats] = None
    disliked_commute: Optional[RangeStats] = None
