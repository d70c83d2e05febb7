"""
Capa Gold: Listing

Modelo del anuncio tal como lo ve la UI: datos normalizados del
proveedor más tags inferidos, tiempos de viaje, score y explicación.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from homeswipe.config import BOOLEAN_TAG_KEYS

NoiseLevel = Literal["quiet", "average", "unknown"]
BuildingType = Literal["walkup", "elevator", "unknown"]

_NOISE_LEVELS = ("quiet", "average", "unknown")
_BUILDING_TYPES = ("walkup", "elevator", "unknown")


class ListingTags(BaseModel):
    """
    Atributos binarios y categóricos de la propiedad.

    Es el esquema estricto que devuelve el extractor de tags.
    Los valores por defecto son los "neutrales": todo en False y
    los enums en 'unknown'.
    """

    model_config = ConfigDict(extra="ignore")

    natural_light: bool = False
    elevator: bool = False
    laundry_in_building: bool = False
    laundry_in_unit: bool = False
    doorman: bool = False
    pet_friendly: bool = False
    dishwasher: bool = False
    renovated: bool = False
    near_subway_lines: list[str] = Field(default_factory=list)
    noise_level: NoiseLevel = "unknown"
    building_type: BuildingType = "unknown"

    @classmethod
    def coerce(cls, raw: Any) -> "ListingTags":
        """
        Construye tags a partir de input no confiable sin fallar nunca.

        Claves booleanas faltantes o no booleanas cuentan como False,
        enums desconocidos como 'unknown' y las líneas de subte se
        normalizan a mayúsculas sin duplicados.
        """
        if isinstance(raw, ListingTags):
            return raw.model_copy(deep=True)
        if not isinstance(raw, dict):
            return cls()

        data: dict[str, Any] = {key: raw.get(key) is True for key in BOOLEAN_TAG_KEYS}

        lines: list[str] = []
        raw_lines = raw.get("near_subway_lines")
        if isinstance(raw_lines, (list, tuple)):
            for line in raw_lines:
                if not isinstance(line, (str, int)):
                    continue
                name = str(line).strip().upper()
                if name and name not in lines:
                    lines.append(name)
        data["near_subway_lines"] = lines

        noise = raw.get("noise_level")
        data["noise_level"] = noise if noise in _NOISE_LEVELS else "unknown"
        building = raw.get("building_type")
        data["building_type"] = building if building in _BUILDING_TYPES else "unknown"

        return cls(**data)

    def active_features(self) -> list[str]:
        """Amenities en True, en el orden canónico."""
        return [key for key in BOOLEAN_TAG_KEYS if getattr(self, key)]

    def context_keys(self) -> list[str]:
        """Contexto edificio/ruido conocido como claves 'building:x' / 'noise:y'."""
        keys = []
        if self.building_type != "unknown":
            keys.append(f"building:{self.building_type}")
        if self.noise_level != "unknown":
            keys.append(f"noise:{self.noise_level}")
        return keys


class CommuteTime(BaseModel):
    """Tiempo de viaje desde el listing a un lugar guardado."""

    place_id: str
    label: str
    minutes: int = Field(..., ge=0)


class Listing(BaseModel):
    """
    Capa Gold: propiedad lista para mostrarse y rankearse.

    Se crea con un score provisional (solo atributos estáticos) y se
    reemplaza por una copia enriquecida cuando termina el pipeline.
    """

    model_config = ConfigDict(extra="ignore")

    # Identificadores
    id: str = Field(..., min_length=1, description="ID del proveedor")

    # Datos económicos
    price: float = Field(..., ge=0, description="Precio en USD")
    price_type: Literal["rent", "buy"] = Field(..., description="rent o buy")

    # Características físicas
    beds: float = Field(default=0, description="Dormitorios")
    baths: float = Field(default=0, description="Baños")
    sqft: float = Field(default=0, description="Superficie en sqft")

    # Ubicación
    address: str = Field(..., min_length=1, description="Dirección completa")
    neighborhood: str = Field(default="", description="Zona corta para la card")
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Enriquecimiento
    commute_times: list[CommuteTime] = Field(default_factory=list)
    tags: Optional[ListingTags] = Field(None, description="Tags inferidos (None = sin enriquecer)")
    match_score: int = Field(..., description="Score 0-100")
    match_explanation: str = Field(default="", description="Explicación corta del score")
    tradeoff: str = Field(default="", description="Trade-off principal (viaje/precio)")
    feature_description: Optional[str] = Field(None, description="Features reales desde la web")
    external_listing_url: Optional[str] = Field(None, description="Link al anuncio externo")
    enriched: bool = Field(default=False, description="True cuando terminó el enriquecimiento")

    @property
    def average_commute(self) -> Optional[float]:
        """Promedio de minutos de viaje, None si no hay datos."""
        if not self.commute_times:
            return None
        return sum(c.minutes for c in self.commute_times) / len(self.commute_times)

    def format_price(self) -> str:
        """Precio legible: '$2,400/mo' o '$850,000'."""
        suffix = "/mo" if self.price_type == "rent" else ""
        return f"${self.price:,.0f}{suffix}"

    def format_rooms(self) -> str:
        """'2bd/1ba' sin decimales innecesarios."""
        return f"{_fmt_number(self.beds)}bd/{_fmt_number(self.baths)}ba"


def _fmt_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
