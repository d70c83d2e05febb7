"""
Abstracción de almacenamiento key-value.

Todo el estado persistente (historial de swipes, caches derivados,
snapshots de sesión) pasa por esta interfaz, así el motor recibe el
store como dependencia y los tests usan la versión en memoria.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import structlog

logger = structlog.get_logger()


class BaseKeyValueStore(ABC):
    """Interfaz mínima: get/set/remove sobre claves y valores string."""

    backend_name: str = "base"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Devuelve el valor guardado o None si no existe."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Guarda (o pisa) el valor de una clave."""
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Borra una clave; no falla si no existe."""
        pass


class InMemoryKeyValueStore(BaseKeyValueStore):
    """Store en memoria del proceso. Se pierde al reiniciar."""

    backend_name = "memory"

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore(BaseKeyValueStore):
    """
    Store persistido en un único archivo JSON.

    Pensado para el CLI: el documento se carga una vez y se reescribe
    completo en un thread aparte, sin bloquear el loop. Las escrituras
    encoladas se agrupan: si otra ya persistió la última versión, no se
    vuelve a escribir.
    """

    backend_name = "file"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: Optional[dict[str, str]] = None
        self._version = 0
        self._written_version = 0
        self._flush_lock = asyncio.Lock()
        self.writes = 0

    def _load(self) -> dict[str, str]:
        if self._data is not None:
            return self._data
        self._data = {}
        if self.path.exists():
            try:
                loaded = json.loads(self.path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    self._data = {str(k): str(v) for k, v in loaded.items()}
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Store JSON ilegible, se empieza vacío", path=str(self.path), error=str(e))
        return self._data

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.path)

    async def _flush(self) -> None:
        self._version += 1
        version = self._version
        async with self._flush_lock:
            if self._written_version >= version:
                return
            latest = self._version
            payload = json.dumps(self._load(), ensure_ascii=False)
            await asyncio.to_thread(self._write, payload)
            self._written_version = latest
            self.writes += 1

    async def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    async def set(self, key: str, value: str) -> None:
        self._load()[key] = value
        await self._flush()

    async def remove(self, key: str) -> None:
        if self._load().pop(key, None) is not None:
            await self._flush()
