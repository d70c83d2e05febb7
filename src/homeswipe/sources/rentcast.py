"""
Fuente de listings de RentCast.

API: https://api.rentcast.io/v1
- /listings/rental/long-term  -> alquileres
- /listings/sale              -> ventas
"""

import re
from typing import Any, Optional

import aiohttp
import structlog
from pydantic import ValidationError

from homeswipe.exceptions import ListingSourceError
from homeswipe.models import RawListing
from homeswipe.sources.base import BaseListingSource

logger = structlog.get_logger()

API_BASE = "https://api.rentcast.io/v1"

ENDPOINTS = {
    "rent": "/listings/rental/long-term",
    "buy": "/listings/sale",
}

STREETEASY_BASE = "https://streeteasy.com/building"

_UNIT_PREFIX = re.compile(r"^(apt|#|unit)\s*", flags=re.IGNORECASE)


def build_streeteasy_url(address: str) -> str:
    """
    Arma el link de StreetEasy a partir de la dirección.

    "15 Hudson Yards, # 35F, New York, NY 10001"
        -> "https://streeteasy.com/building/15-hudson-yards/35f"
    """
    parts = [p.strip() for p in (address or "").split(",")]
    building = re.sub(r"[^a-z0-9\s]", "", parts[0].lower())
    building = re.sub(r"\s+", "-", building.strip())

    unit = ""
    for part in parts[1:]:
        if re.match(r"^(apt|#|unit)\s", part, flags=re.IGNORECASE):
            unit = _UNIT_PREFIX.sub("", part).lower()
            unit = re.sub(r"\s+", "", unit)
            break

    if unit:
        return f"{STREETEASY_BASE}/{building}/{unit}"
    return f"{STREETEASY_BASE}/{building}"


def parse_rentcast_item(item: dict[str, Any], price_type: str) -> Optional[RawListing]:
    """Convierte una fila de RentCast a RawListing (None si es inválida)."""
    try:
        return RawListing(
            id=str(item.get("id") or ""),
            price_type=price_type,
            formatted_address=item.get("formattedAddress") or "",
            city=item.get("city") or "",
            state=item.get("state") or "",
            zip_code=item.get("zipCode") or "",
            latitude=item.get("latitude"),
            longitude=item.get("longitude"),
            property_type=item.get("propertyType") or "",
            bedrooms=item.get("bedrooms") or 0,
            bathrooms=item.get("bathrooms") or 0,
            square_footage=item.get("squareFootage") or 0,
            price=item.get("price") or 0,
            days_on_market=item.get("daysOnMarket") or 0,
        )
    except ValidationError as e:
        logger.warning(
            "Listing de RentCast descartado",
            listing_id=item.get("id"),
            error=str(e),
        )
        return None


class RentCastSource(BaseListingSource):
    """
    Fuente de listings activos de RentCast.

    Requiere RENTCAST_API_KEY; sin key la consulta falla con
    ListingSourceError (es el único error que ve el usuario).
    """

    SOURCE_NAME = "rentcast"

    def __init__(self, api_key: Optional[str] = None, session: Optional[aiohttp.ClientSession] = None):
        super().__init__(session=session)
        self.api_key = api_key or self.settings.rentcast_api_key

    def listing_url(self, raw: RawListing) -> Optional[str]:
        return build_streeteasy_url(raw.formatted_address)

    async def search(
        self,
        city: str,
        state: str,
        price_type: str,
        bedrooms: Optional[int] = None,
        bathrooms: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[RawListing]:
        if price_type not in ENDPOINTS:
            raise ValueError(f"price_type no soportado: {price_type}. Usar 'rent' o 'buy'")
        if not self.api_key:
            raise ListingSourceError("RENTCAST_API_KEY no configurada")

        params = {
            "city": city,
            "state": state,
            "status": "Active",
            "limit": limit,
            "offset": offset,
            "bedrooms": bedrooms or None,
            "bathrooms": bathrooms or None,
        }

        try:
            data = await self._get_json(
                f"{API_BASE}{ENDPOINTS[price_type]}",
                params=params,
                headers={"X-Api-Key": self.api_key},
            )
        except aiohttp.ClientResponseError as e:
            logger.error(
                "Error HTTP de RentCast",
                status=e.status,
                city=city,
                price_type=price_type,
            )
            raise ListingSourceError(f"RentCast respondió {e.status}: {e.message}") from e
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error("Error de red con RentCast", city=city, error=str(e))
            raise ListingSourceError(f"No se pudo consultar RentCast: {e}") from e

        if not isinstance(data, list):
            raise ListingSourceError("Respuesta inesperada de RentCast")

        listings = [
            listing
            for listing in (parse_rentcast_item(item, price_type) for item in data if isinstance(item, dict))
            if listing is not None
        ]
        logger.info(
            "Listings de RentCast",
            city=city,
            price_type=price_type,
            received=len(data),
            valid=len(listings),
        )
        return listings
