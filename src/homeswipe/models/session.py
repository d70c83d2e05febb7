"""
Estado de una sesión de feed: filtros activos, progreso del
enriquecimiento y la foto que se cachea para retomar la sesión.
"""

import time
from typing import Literal, Optional

from pydantic import BaseModel, Field

from homeswipe.models.listing import Listing


class ListingFilters(BaseModel):
    """Filtros activos del feed."""

    price_type: Literal["rent", "buy", "both"] = "rent"
    bedrooms: Optional[int] = Field(None, ge=0)
    bathrooms: Optional[int] = Field(None, ge=0)

    @property
    def cache_key(self) -> str:
        """Tupla de filtros como string: 'rent_2_any'."""
        beds = "any" if self.bedrooms is None else self.bedrooms
        baths = "any" if self.bathrooms is None else self.bathrooms
        return f"{self.price_type}_{beds}_{baths}"

    @property
    def price_types(self) -> list[str]:
        if self.price_type == "both":
            return ["rent", "buy"]
        return [self.price_type]


class EnrichmentStatus(BaseModel):
    """Progreso del pipeline de enriquecimiento para la UI."""

    enriched_count: int = 0
    total: int = 0
    current_item: str = ""
    done: bool = False


class SessionSnapshot(BaseModel):
    """Listings + progreso guardados por tupla de filtros."""

    listings: list[Listing] = Field(default_factory=list)
    enrichment_status: EnrichmentStatus = Field(default_factory=EnrichmentStatus)
    updated_at: float = Field(default_factory=time.time)
