"""
Repositorios sobre el store key-value.

Cada repositorio maneja un namespace de claves. Los caches derivados
(tags, features, subte, geocoding, URL) son read-through/write-through
con una capa en memoria; una entrada corrupta se descarta y cuenta
como miss.
"""

import json
import re
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from homeswipe.config import COMMUTE_MODES
from homeswipe.models import (
    EnrichmentStatus,
    Listing,
    ListingFilters,
    ListingTags,
    QuizAnswers,
    SavedPlace,
    SessionSnapshot,
    SwipeHistory,
)
from homeswipe.storage.kv_store import BaseKeyValueStore

logger = structlog.get_logger()

_NOT_CACHED = object()


def normalize_address(address: str) -> str:
    """Clave estable para una dirección: minúsculas y espacios colapsados."""
    return re.sub(r"\s+", " ", (address or "").strip().lower())


class BaseRepository:
    """Clase base para repositorios."""

    def __init__(self, store: Optional[BaseKeyValueStore] = None):
        if store is None:
            from homeswipe.storage import get_kv_store

            store = get_kv_store()
        self._store = store

    @property
    def store(self) -> BaseKeyValueStore:
        return self._store

    async def _read_json(self, key: str) -> Any:
        """Lee y parsea JSON; si está corrupto lo borra y devuelve None."""
        raw = await self.store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Entrada corrupta descartada", key=key)
            await self.store.remove(key)
            return None

    async def _write_json(self, key: str, value: Any) -> None:
        await self.store.set(key, json.dumps(value, ensure_ascii=False))


class CacheRepository(BaseRepository):
    """Cache namespaced con capa en memoria delante del store."""

    NAMESPACE = "cache"

    def __init__(self, store: Optional[BaseKeyValueStore] = None):
        super().__init__(store)
        self._memory: dict[str, Any] = {}

    def key_for(self, ident: str) -> str:
        return f"{self.NAMESPACE}:{ident}"

    def _decode(self, data: Any) -> Any:
        """Valida el JSON guardado; levantar ValueError lo marca como corrupto."""
        return data

    def _encode(self, value: Any) -> Any:
        return value

    async def get(self, ident: str) -> Any:
        key = self.key_for(ident)
        cached = self._memory.get(key, _NOT_CACHED)
        if cached is not _NOT_CACHED:
            logger.debug("Cache HIT (memoria)", key=key)
            return cached

        data = await self._read_json(key)
        if data is None:
            logger.debug("Cache MISS", key=key)
            return None
        try:
            value = self._decode(data)
        except (ValueError, TypeError, ValidationError):
            logger.warning("Entrada de cache inválida descartada", key=key)
            await self.store.remove(key)
            return None

        self._memory[key] = value
        logger.debug("Cache HIT (store)", key=key)
        return value

    async def set(self, ident: str, value: Any) -> None:
        key = self.key_for(ident)
        self._memory[key] = value
        await self._write_json(key, self._encode(value))

    def remember(self, ident: str, value: Any) -> None:
        """Guarda solo en memoria (valores que no conviene persistir)."""
        self._memory[self.key_for(ident)] = value

    async def remove(self, ident: str) -> None:
        key = self.key_for(ident)
        self._memory.pop(key, None)
        await self.store.remove(key)


class TagsCache(CacheRepository):
    """Tags extraídos por listing id."""

    NAMESPACE = "tags"

    def _decode(self, data: Any) -> ListingTags:
        if not isinstance(data, dict):
            raise ValueError("tags debe ser un objeto")
        return ListingTags.coerce(data)

    def _encode(self, value: ListingTags) -> dict:
        return value.model_dump(mode="json")


class FeatureDescriptionCache(CacheRepository):
    """Descripción de features desde la web, por dirección normalizada."""

    NAMESPACE = "features"

    def key_for(self, ident: str) -> str:
        return super().key_for(normalize_address(ident))

    def _decode(self, data: Any) -> str:
        if not isinstance(data, str) or not data.strip():
            raise ValueError("features debe ser un string no vacío")
        return data


class SubwayLinesCache(CacheRepository):
    """Líneas de subte cercanas, por dirección normalizada."""

    NAMESPACE = "subway"

    def key_for(self, ident: str) -> str:
        return super().key_for(normalize_address(ident))

    def _decode(self, data: Any) -> list[str]:
        if not isinstance(data, list):
            raise ValueError("subway debe ser una lista")
        return [str(line).upper() for line in data if str(line).strip()]


class GeocodeCache(CacheRepository):
    """Coordenadas (lng, lat) por dirección normalizada."""

    NAMESPACE = "geo"

    def key_for(self, ident: str) -> str:
        return super().key_for(normalize_address(ident))

    def _decode(self, data: Any) -> tuple[float, float]:
        if not isinstance(data, list) or len(data) != 2:
            raise ValueError("geo debe ser [lng, lat]")
        return float(data[0]), float(data[1])

    def _encode(self, value: tuple[float, float]) -> list[float]:
        return [value[0], value[1]]


class ListingUrlCache(CacheRepository):
    """URL del anuncio externo por listing id."""

    NAMESPACE = "url"

    def _decode(self, data: Any) -> str:
        if not isinstance(data, str) or not data.startswith("http"):
            raise ValueError("url inválida")
        return data


class SessionSnapshotRepository(BaseRepository):
    """Snapshots de sesión (listings + progreso) por tupla de filtros."""

    NAMESPACE = "session"

    def key_for(self, filters: ListingFilters) -> str:
        return f"{self.NAMESPACE}:{filters.cache_key}"

    async def get(self, filters: ListingFilters) -> Optional[SessionSnapshot]:
        """
        Restaura el snapshot de estos filtros.

        Los listings inválidos se filtran uno por uno; si no queda
        ninguno el snapshot se borra y se devuelve None.
        """
        key = self.key_for(filters)
        data = await self._read_json(key)
        if not isinstance(data, dict):
            return None

        listings: list[Listing] = []
        for entry in data.get("listings") or []:
            try:
                listings.append(Listing.model_validate(entry))
            except ValidationError:
                continue

        if not listings:
            await self.store.remove(key)
            return None

        try:
            status = EnrichmentStatus.model_validate(data.get("enrichment_status") or {})
        except ValidationError:
            status = EnrichmentStatus(
                enriched_count=len(listings), total=len(listings), done=True
            )

        return SessionSnapshot(
            listings=listings,
            enrichment_status=status,
            updated_at=float(data.get("updated_at") or 0),
        )

    async def save(
        self,
        filters: ListingFilters,
        listings: list[Listing],
        status: EnrichmentStatus,
    ) -> None:
        if not listings:
            return
        snapshot = SessionSnapshot(listings=listings, enrichment_status=status)
        await self._write_json(self.key_for(filters), snapshot.model_dump(mode="json"))

    async def clear(self, filters: ListingFilters) -> None:
        await self.store.remove(self.key_for(filters))


class SwipeHistoryRepository(BaseRepository):
    """Historial de swipes persistido (una sola clave)."""

    KEY = "swipeHistory"

    async def get_raw(self) -> Any:
        """JSON crudo tal como está guardado (formato viejo o nuevo)."""
        return await self._read_json(self.KEY)

    async def save(self, history: SwipeHistory) -> None:
        await self._write_json(self.KEY, history.to_storage())


class SavedListingsRepository(BaseRepository):
    """Listings guardados con swipe a la derecha."""

    KEY = "savedListings"

    async def get_all(self) -> list[Listing]:
        data = await self._read_json(self.KEY)
        if not isinstance(data, list):
            return []
        saved = []
        for entry in data:
            try:
                saved.append(Listing.model_validate(entry))
            except ValidationError:
                continue
        return saved

    async def add(self, listing: Listing) -> list[Listing]:
        saved = [s for s in await self.get_all() if s.id != listing.id]
        saved.append(listing)
        await self._write_json(self.KEY, [s.model_dump(mode="json") for s in saved])
        return saved


class UserPreferencesRepository(BaseRepository):
    """Estado durable del usuario: quiz, lugares guardados y modo de viaje."""

    QUIZ_KEY = "quizAnswers"
    PLACES_KEY = "savedPlaces"
    COMMUTE_MODE_KEY = "commuteMode"

    async def get_quiz_answers(self) -> Optional[QuizAnswers]:
        data = await self._read_json(self.QUIZ_KEY)
        if not isinstance(data, dict):
            return None
        try:
            return QuizAnswers.model_validate(data)
        except ValidationError:
            return None

    async def set_quiz_answers(self, answers: QuizAnswers) -> bool:
        """Guarda el quiz solo si no había respuestas previas."""
        if await self.get_quiz_answers() is not None:
            logger.info("Quiz ya respondido, se ignora")
            return False
        await self._write_json(self.QUIZ_KEY, answers.model_dump(mode="json"))
        return True

    async def get_saved_places(self) -> list[SavedPlace]:
        data = await self._read_json(self.PLACES_KEY)
        if not isinstance(data, list):
            return []
        places = []
        for entry in data:
            try:
                places.append(SavedPlace.model_validate(entry))
            except ValidationError:
                continue
        return places

    async def set_saved_places(self, places: list[SavedPlace]) -> None:
        await self._write_json(self.PLACES_KEY, [p.model_dump(mode="json") for p in places])

    async def get_commute_mode(self) -> str:
        mode = await self.store.get(self.COMMUTE_MODE_KEY)
        if mode in COMMUTE_MODES:
            return mode
        return "transit"

    async def set_commute_mode(self, mode: str) -> None:
        if mode not in COMMUTE_MODES:
            raise ValueError(f"Modo de viaje no soportado: {mode}. Usar {', '.join(COMMUTE_MODES)}")
        await self.store.set(self.COMMUTE_MODE_KEY, mode)
