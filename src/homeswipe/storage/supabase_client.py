"""
Cliente de Supabase.

Cliente async compartido para conexión a la base de datos y backend
key-value sobre la tabla 'kv_store' (key text primary key, value text).
"""

from typing import Optional

import structlog
from supabase import AsyncClient, acreate_client

from homeswipe.config import get_settings
from homeswipe.storage.kv_store import BaseKeyValueStore

logger = structlog.get_logger()


class SupabaseClient:
    """Wrapper del cliente async de Supabase con métodos de utilidad."""

    def __init__(self, client: AsyncClient):
        self._client = client

    @property
    def client(self) -> AsyncClient:
        """Acceso directo al cliente de Supabase."""
        return self._client

    def table(self, name: str):
        """Acceso a una tabla específica."""
        return self._client.table(name)


class SupabaseKeyValueStore(BaseKeyValueStore):
    """
    Store key-value persistido en Supabase.

    Permite que el historial de swipes y los caches sobrevivan entre
    dispositivos. Cada clave es una fila de la tabla. Todas las consultas
    se hacen con el cliente async, sin bloquear el loop.
    """

    backend_name = "supabase"
    TABLE = "kv_store"

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client

    async def _get_client(self) -> SupabaseClient:
        if self._client is None:
            self._client = await get_supabase_client()
        return self._client

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_client()
        response = await (
            client.table(self.TABLE)
            .select("value")
            .eq("key", key)
            .limit(1)
            .execute()
        )
        return response.data[0]["value"] if response.data else None

    async def set(self, key: str, value: str) -> None:
        client = await self._get_client()
        await client.table(self.TABLE).upsert(
            {"key": key, "value": value}, on_conflict="key"
        ).execute()

    async def remove(self, key: str) -> None:
        client = await self._get_client()
        await client.table(self.TABLE).delete().eq("key", key).execute()


_client: Optional[SupabaseClient] = None


async def get_supabase_client() -> SupabaseClient:
    """
    Obtiene el cliente de Supabase (singleton por proceso).

    Returns:
        SupabaseClient configurado

    Raises:
        ValueError: Si las credenciales no están configuradas
    """
    global _client

    if _client is not None:
        return _client

    settings = get_settings()

    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError(
            "SUPABASE_URL y SUPABASE_KEY son requeridos para storage_backend=supabase. "
            "Configura las variables de entorno."
        )

    # Usar service key si está disponible para operaciones admin
    key = settings.supabase_service_key or settings.supabase_key

    client = await acreate_client(settings.supabase_url, key)
    logger.info("Cliente de Supabase inicializado", url=settings.supabase_url)

    _client = SupabaseClient(client)
    return _client
