"""
Fuentes externas base.

Define la sesión HTTP compartida (aiohttp) y la interfaz común de las
fuentes de listings, incluido el barrido por sub-regiones.
"""

from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import aiohttp
import structlog

from homeswipe.config import get_settings
from homeswipe.models import Listing, ListingFilters, RawListing

logger = structlog.get_logger()


class HTTPClient:
    """
    Cliente HTTP base sobre aiohttp.

    Se puede usar con 'async with' o dejar que cree la sesión al
    primer request y cerrarla con close().
    """

    SOURCE_NAME: str = "http"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self.settings = get_settings()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Context manager entry: abre la sesión."""
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit: cierra la sesión."""
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.http_timeout),
                headers={"Accept": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def close(self):
        """Cierra la sesión si la creamos nosotros."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
            logger.debug("Sesión HTTP cerrada", source=self.SOURCE_NAME)
        self._session = None

    async def _get_json(
        self,
        url: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        """
        GET y parseo de JSON.

        Raises:
            aiohttp.ClientResponseError: Si la respuesta no es 2xx
            aiohttp.ClientError: Errores de red
        """
        clean_params = {k: str(v) for k, v in (params or {}).items() if v not in (None, "")}
        session = self._get_session()
        async with session.get(url, params=clean_params, headers=headers) as response:
            response.raise_for_status()
            return await response.json(content_type=None)


def interleave_unique(groups: Iterable[list[RawListing]]) -> list[RawListing]:
    """
    Mezcla round-robin de varias listas, sin ids repetidos.

    [[a1, a2], [b1, b2, b3]] -> [a1, b1, a2, b2, b3]
    """
    lists = [list(group) for group in groups]
    seen: set[str] = set()
    merged: list[RawListing] = []
    longest = max((len(group) for group in lists), default=0)
    for i in range(longest):
        for group in lists:
            if i < len(group) and group[i].id not in seen:
                seen.add(group[i].id)
                merged.append(group[i])
    return merged


class BaseListingSource(HTTPClient, ABC):
    """
    Clase base abstracta para fuentes de listings.

    Las subclases implementan search() para una sola zona y un solo
    tipo de operación; fetch_listings() arma la consulta completa.
    """

    SOURCE_NAME: str = "base"

    @abstractmethod
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
        """
        Consulta una zona.

        Args:
            city: Ciudad o sub-región
            state: Estado
            price_type: 'rent' o 'buy'
            bedrooms: Dormitorios exactos (opcional)
            bathrooms: Baños exactos (opcional)
            limit: Máximo de resultados
            offset: Desplazamiento para paginar

        Returns:
            Lista de RawListing

        Raises:
            ListingSourceError: Si la consulta falla
        """
        pass

    def listing_url(self, raw: RawListing) -> Optional[str]:
        """URL del anuncio externo (override en subclases)."""
        return None

    def to_listing(self, raw: RawListing, match_score: int) -> Listing:
        """Convierte el anuncio crudo al Listing que ve la UI."""
        return Listing(
            id=raw.id,
            price=raw.price,
            price_type=raw.price_type,
            beds=raw.bedrooms,
            baths=raw.bathrooms,
            sqft=raw.square_footage,
            address=raw.formatted_address,
            neighborhood=raw.neighborhood,
            latitude=raw.latitude,
            longitude=raw.longitude,
            match_score=match_score,
            external_listing_url=self.listing_url(raw),
        )

    async def fetch_listings(
        self,
        filters: ListingFilters,
        limit: Optional[int] = None,
        offset: int = 0,
        subregions: Optional[list[str]] = None,
    ) -> list[RawListing]:
        """
        Consulta completa según los filtros.

        Con sub-regiones se hace una consulta por zona y se mezclan
        round-robin para no sesgar el feed hacia la primera.
        'both' consulta alquileres y ventas y concatena.

        Raises:
            ListingSourceError: Si alguna consulta falla
        """
        limit = limit or self.settings.listing_limit
        scopes = subregions if subregions is not None else self.settings.subregions
        scopes = scopes or [self.settings.city]

        results: list[RawListing] = []
        for price_type in filters.price_types:
            groups = []
            for scope in scopes:
                logger.info(
                    "Consultando listings",
                    source=self.SOURCE_NAME,
                    scope=scope,
                    price_type=price_type,
                    limit=limit,
                    offset=offset,
                )
                groups.append(
                    await self.search(
                        city=scope,
                        state=self.settings.state,
                        price_type=price_type,
                        bedrooms=filters.bedrooms,
                        bathrooms=filters.bathrooms,
                        limit=limit,
                        offset=offset,
                    )
                )
            results.extend(interleave_unique(groups))

        # 'both' puede repetir ids entre alquiler y venta
        unique = interleave_unique([results])
        logger.info("Listings obtenidos", source=self.SOURCE_NAME, count=len(unique))
        return unique
