"""
Geocoding y tiempos de viaje.

- Geocoding: Mapbox Geocoding v5
- Auto / bici / a pie: Mapbox Directions (driving, cycling, walking)
- Transporte público: HERE Transit Routing v8

Sin reintentos: ante cualquier error se loguea y se devuelve None,
y el listing simplemente queda sin ese tiempo de viaje.
"""

from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import quote

import aiohttp
import structlog

from homeswipe.config import COMMUTE_MODES
from homeswipe.models import CommuteTime, SavedPlace
from homeswipe.sources.base import HTTPClient
from homeswipe.storage import GeocodeCache, UserPreferencesRepository

logger = structlog.get_logger()

MAPBOX_GEOCODING_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json"
MAPBOX_DIRECTIONS_URL = "https://api.mapbox.com/directions/v5/mapbox/{profile}/{coordinates}"
HERE_TRANSIT_URL = "https://transit.router.hereapi.com/v8/routes"

MODE_TO_PROFILE = {
    "drive": "driving",
    "bike": "cycling",
    "walk": "walking",
}

# (lng, lat)
Coordinates = tuple[float, float]

_REQUEST_ERRORS = (aiohttp.ClientError, TimeoutError, ValueError, KeyError, TypeError)


def build_tradeoff(
    commute_times: Iterable[CommuteTime], price: float, price_type: str
) -> str:
    """
    Trade-off principal para la card.

    'Short 15min avg commute' o '32min avg commute, $2,400/mo';
    vacío si no hay tiempos de viaje.
    """
    minutes = [c.minutes for c in commute_times]
    if not minutes:
        return ""
    avg = round(sum(minutes) / len(minutes))
    if avg < 20:
        return f"Short {avg}min avg commute"
    suffix = "/mo" if price_type == "rent" else ""
    return f"{avg}min avg commute, ${price:,.0f}{suffix}"


class CommuteService(HTTPClient):
    """
    Tiempos de viaje desde un listing a los lugares guardados del usuario.

    Los lugares se geocodifican una vez y quedan en memoria hasta
    reset_places_cache() (por ejemplo cuando el usuario los edita).
    """

    SOURCE_NAME = "commute"

    def __init__(
        self,
        mapbox_token: Optional[str] = None,
        here_api_key: Optional[str] = None,
        preferences_repo: Optional[UserPreferencesRepository] = None,
        geocode_cache: Optional[GeocodeCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(session=session)
        self.mapbox_token = mapbox_token or self.settings.mapbox_token
        self.here_api_key = here_api_key or self.settings.here_api_key
        self.preferences_repo = preferences_repo or UserPreferencesRepository()
        self.geocode_cache = geocode_cache or GeocodeCache(self.preferences_repo.store)
        self._durations: dict[str, int] = {}
        self._places: Optional[list[tuple[SavedPlace, Coordinates]]] = None

    def reset_places_cache(self) -> None:
        """Olvida los lugares geocodificados (se recalculan al próximo uso)."""
        self._places = None

    async def geocode(self, address: str) -> Optional[Coordinates]:
        """Coordenadas (lng, lat) de una dirección, cacheadas por dirección."""
        if not address or not address.strip():
            return None

        cached = await self.geocode_cache.get(address)
        if cached is not None:
            return cached

        if not self.mapbox_token:
            logger.warning("Sin token de Mapbox, no se puede geocodificar")
            return None

        try:
            data = await self._get_json(
                MAPBOX_GEOCODING_URL.format(query=quote(address)),
                params={"access_token": self.mapbox_token, "limit": 1},
            )
            center = (data.get("features") or [{}])[0].get("center")
            if not center or len(center) != 2:
                logger.info("Dirección sin resultados de geocoding", address=address)
                return None
            coords = (float(center[0]), float(center[1]))
        except _REQUEST_ERRORS as e:
            logger.warning("Error de geocoding", address=address, error=str(e))
            return None

        await self.geocode_cache.set(address, coords)
        return coords

    async def _mapbox_duration(
        self, origin: Coordinates, destination: Coordinates, profile: str
    ) -> Optional[int]:
        if not self.mapbox_token:
            logger.warning("Sin token de Mapbox, no se pueden calcular viajes", profile=profile)
            return None

        coordinates = f"{origin[0]},{origin[1]};{destination[0]},{destination[1]}"
        try:
            data = await self._get_json(
                MAPBOX_DIRECTIONS_URL.format(profile=profile, coordinates=coordinates),
                params={"access_token": self.mapbox_token},
            )
            routes = data.get("routes") or []
            if not routes:
                return None
            return round(float(routes[0]["duration"]) / 60)
        except _REQUEST_ERRORS as e:
            logger.warning("Error de Mapbox Directions", profile=profile, error=str(e))
            return None

    async def _transit_duration(
        self, origin: Coordinates, destination: Coordinates
    ) -> Optional[int]:
        if not self.here_api_key:
            logger.warning("Sin API key de HERE, no se pueden calcular viajes en transporte")
            return None

        try:
            data = await self._get_json(
                HERE_TRANSIT_URL,
                params={
                    "apiKey": self.here_api_key,
                    "origin": f"{origin[1]},{origin[0]}",
                    "destination": f"{destination[1]},{destination[0]}",
                },
            )
            routes = data.get("routes") or []
            sections = routes[0].get("sections") if routes else None
            if not sections:
                return None

            # Desde la primera salida hasta la última llegada
            departure = datetime.fromisoformat(sections[0]["departure"]["time"])
            arrival = datetime.fromisoformat(sections[-1]["arrival"]["time"])
            minutes = round((arrival - departure).total_seconds() / 60)

            segments = []
            for section in sections:
                if section.get("type") == "transit":
                    transport = section.get("transport") or {}
                    segments.append(transport.get("shortName") or transport.get("name") or "transit")
                else:
                    segments.append("walk")
            logger.debug("Ruta de transporte", minutes=minutes, via=" -> ".join(segments))
            return minutes
        except _REQUEST_ERRORS as e:
            logger.warning("Error de HERE Transit", error=str(e))
            return None

    async def duration(
        self, origin: Coordinates, destination: Coordinates, mode: str = "transit"
    ) -> Optional[int]:
        """
        Minutos de viaje entre dos puntos (lng, lat).

        Args:
            origin: Coordenadas de salida
            destination: Coordenadas de llegada
            mode: transit, drive, bike o walk

        Returns:
            Minutos, o None si no se pudo calcular
        """
        if mode not in COMMUTE_MODES:
            mode = "transit"

        key = f"{origin[1]:.4f},{origin[0]:.4f}->{destination[1]:.4f},{destination[0]:.4f}:{mode}"
        if key in self._durations:
            return self._durations[key]

        if mode == "transit":
            minutes = await self._transit_duration(origin, destination)
        else:
            minutes = await self._mapbox_duration(origin, destination, MODE_TO_PROFILE[mode])

        if minutes is not None:
            self._durations[key] = minutes
        return minutes

    async def get_geocoded_places(self) -> list[tuple[SavedPlace, Coordinates]]:
        """Lugares guardados con coordenadas (los que no geocodifican se omiten)."""
        if self._places is not None:
            return self._places

        try:
            places = await self.preferences_repo.get_saved_places()
        except Exception as e:
            logger.warning("No se pudieron leer los lugares guardados", error=str(e))
            return []

        results = []
        for place in places:
            if not place.address.strip():
                continue
            coords = await self.geocode(place.address)
            if coords:
                results.append((place, coords))

        self._places = results
        logger.info("Lugares guardados geocodificados", count=len(results))
        return results

    async def _preferred_mode(self) -> str:
        try:
            return await self.preferences_repo.get_commute_mode()
        except Exception as e:
            logger.warning("No se pudo leer el modo de viaje", error=str(e))
            return "transit"

    async def calculate_commute_times(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        mode: Optional[str] = None,
    ) -> list[CommuteTime]:
        """
        Tiempos de viaje desde el listing a cada lugar guardado.

        Returns:
            Lista de CommuteTime (vacía si no hay lugares, coordenadas o keys)
        """
        if latitude is None or longitude is None:
            return []

        places = await self.get_geocoded_places()
        if not places:
            return []

        mode = mode or await self._preferred_mode()
        origin = (longitude, latitude)

        results = []
        for place, coords in places:
            minutes = await self.duration(origin, coords, mode)
            if minutes is None:
                continue
            results.append(CommuteTime(place_id=place.id, label=place.label, minutes=max(0, minutes)))
            logger.debug("Viaje calculado", place=place.label, minutes=minutes, mode=mode)

        return results
