"""
Capa Bronze: RawListing

Modelo para el estado original de los anuncios tal como los devuelve
el proveedor de listings, antes de cualquier enriquecimiento.
"""

import hashlib
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


class RawListing(BaseModel):
    """
    Capa Bronze: anuncio crudo directamente del proveedor.

    Preserva los campos originales para poder re-procesar el anuncio
    (tags, score, explicación) sin volver a consultar la fuente.
    """

    model_config = ConfigDict(extra="ignore")

    # Identificación
    id: str = Field(..., min_length=1, description="ID único del proveedor")
    price_type: Literal["rent", "buy"] = Field(..., description="rent o buy")

    # Dirección
    formatted_address: str = Field(..., min_length=1, description="Dirección completa")
    city: str = Field(default="", description="Ciudad")
    state: str = Field(default="", description="Estado")
    zip_code: str = Field(default="", description="Código postal")
    latitude: Optional[float] = Field(None, description="Latitud")
    longitude: Optional[float] = Field(None, description="Longitud")

    # Características físicas
    property_type: str = Field(default="", description="Apartment, Condo, ...")
    bedrooms: float = Field(default=0, description="Dormitorios")
    bathrooms: float = Field(default=0, description="Baños")
    square_footage: float = Field(default=0, description="Superficie en sqft")

    # Precio
    price: float = Field(default=0, description="Alquiler mensual o precio de venta (USD)")

    # Metadatos
    days_on_market: int = Field(default=0, description="Días publicado")
    fetched_at: str = Field(
        default_factory=lambda: datetime.utcnow().isoformat(),
        description="Timestamp de la consulta ISO",
    )

    @computed_field
    @property
    def hash_id(self) -> str:
        """
        Hash para detectar cambios de un mismo anuncio entre consultas.
        Basado en: id + precio + dirección
        """
        content = f"{self.id}|{self.price}|{self.formatted_address}"
        return hashlib.sha256(content.encode()).hexdigest()[:16]

    @property
    def neighborhood(self) -> str:
        """Etiqueta corta de zona: 'New York 10001'."""
        if self.zip_code:
            return f"{self.city} {self.zip_code}".strip()
        return self.city
