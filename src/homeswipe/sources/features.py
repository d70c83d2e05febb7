"""
Búsqueda de features reales de una dirección en la web.

Usa SerpApi (engine google_ai_mode) y aplana los bloques de texto de
la respuesta en una sola descripción que después se usa como verdad
para extraer los tags.
"""

from typing import Any, Optional

import aiohttp
import structlog

from homeswipe.sources.base import HTTPClient
from homeswipe.storage import FeatureDescriptionCache

logger = structlog.get_logger()

SERPAPI_URL = "https://serpapi.com/search.json"


def flatten_text_blocks(blocks: Any) -> str:
    """
    Aplana los text_blocks de SerpApi.

    paragraph -> snippet, heading -> '\\n<snippet>:', list -> '- <item>'.
    """
    parts: list[str] = []
    for block in blocks if isinstance(blocks, list) else []:
        if not isinstance(block, dict):
            continue
        block_type = block.get("type")
        if block_type == "paragraph" and block.get("snippet"):
            parts.append(block["snippet"])
        elif block_type == "heading" and block.get("snippet"):
            parts.append(f"\n{block['snippet']}:")
        elif block_type == "list":
            for item in block.get("list") or []:
                if isinstance(item, dict) and item.get("snippet"):
                    parts.append(f"- {item['snippet']}")
    return "\n".join(parts).strip()


class FeatureLookup(HTTPClient):
    """Descripción de amenities de una dirección, cacheada por dirección."""

    SOURCE_NAME = "serpapi"

    def __init__(
        self,
        api_key: Optional[str] = None,
        cache: Optional[FeatureDescriptionCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__(session=session)
        self.api_key = api_key or self.settings.serpapi_key
        self.cache = cache or FeatureDescriptionCache()

    async def fetch_features(self, address: str) -> Optional[str]:
        """
        Busca las features de la dirección.

        Returns:
            Texto plano con las features, o None si no hay key,
            no hubo resultados o la consulta falló
        """
        if not address:
            return None

        cached = await self.cache.get(address)
        if cached is not None:
            return cached

        if not self.api_key:
            logger.debug("Sin API key de SerpApi, se omite la búsqueda de features")
            return None

        try:
            data = await self._get_json(
                SERPAPI_URL,
                params={
                    "engine": "google_ai_mode",
                    "q": f"{address} apartment features amenities",
                    "hl": "en",
                    "gl": "us",
                    "api_key": self.api_key,
                },
            )
        except aiohttp.ClientResponseError as e:
            logger.warning("Error HTTP de SerpApi", status=e.status, address=address)
            return None
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning("Error consultando SerpApi", address=address, error=str(e))
            return None

        description = flatten_text_blocks(data.get("text_blocks") if isinstance(data, dict) else None)
        if not description:
            logger.info("Sin features en la web", address=address)
            return None

        logger.info("Features encontradas", address=address, chars=len(description))
        await self.cache.set(address, description)
        return description
