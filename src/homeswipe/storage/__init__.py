"""
Módulo de almacenamiento.

Provee el store key-value (memoria, archivo JSON o Supabase) y los
repositorios namespaced que lo usan.
"""

from functools import lru_cache

from homeswipe.config import get_settings
from homeswipe.storage.kv_store import (
    BaseKeyValueStore,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
)
from homeswipe.storage.repositories import (
    FeatureDescriptionCache,
    GeocodeCache,
    ListingUrlCache,
    SavedListingsRepository,
    SessionSnapshotRepository,
    SubwayLinesCache,
    SwipeHistoryRepository,
    TagsCache,
    UserPreferencesRepository,
    normalize_address,
)


@lru_cache
def get_kv_store() -> BaseKeyValueStore:
    """
    Obtiene el store configurado (singleton cacheado).

    Raises:
        ValueError: Si storage_backend no es soportado
    """
    settings = get_settings()
    backend = settings.storage_backend.lower()

    if backend == "memory":
        return InMemoryKeyValueStore()
    if backend == "file":
        return JsonFileKeyValueStore(settings.storage_path)
    if backend == "supabase":
        from homeswipe.storage.supabase_client import SupabaseKeyValueStore

        return SupabaseKeyValueStore()
    raise ValueError(
        f"storage_backend no soportado: {settings.storage_backend}. "
        "Usar 'memory', 'file' o 'supabase'"
    )


__all__ = [
    "get_kv_store",
    "BaseKeyValueStore",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "TagsCache",
    "FeatureDescriptionCache",
    "SubwayLinesCache",
    "GeocodeCache",
    "ListingUrlCache",
    "SessionSnapshotRepository",
    "SwipeHistoryRepository",
    "SavedListingsRepository",
    "UserPreferencesRepository",
    "normalize_address",
]
