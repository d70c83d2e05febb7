"""
Extractor de tags de listings con LLM.

Convierte los datos de un listing (y, si existe, la descripción real
de features encontrada en la web) en ListingTags con el esquema
estricto de amenities, líneas de subte, ruido y tipo de edificio.

Soporta múltiples proveedores: Gemini, Groq (Llama)
"""

import json
import re
from typing import Optional

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from homeswipe.analysis.keyword_tags import KeywordTagDetector
from homeswipe.analysis.llm_providers import BaseLLMProvider, try_get_llm_provider
from homeswipe.config import get_settings
from homeswipe.exceptions import LLMTransientError
from homeswipe.models import Listing, ListingTags
from homeswipe.storage import SubwayLinesCache, TagsCache

logger = structlog.get_logger()

TAGS_SCHEMA = """{
  "natural_light": boolean,
  "elevator": boolean,
  "laundry_in_building": boolean,
  "laundry_in_unit": boolean,
  "doorman": boolean,
  "pet_friendly": boolean,
  "dishwasher": boolean,
  "renovated": boolean,
  "near_subway_lines": string[],
  "noise_level": "quiet" | "average" | "unknown",
  "building_type": "walkup" | "elevator" | "unknown"
}"""

GROUNDED_INSTRUCTION = " Use the REAL feature data provided. Do NOT guess."
INFERRED_INSTRUCTION = (
    " Infer from the address, neighborhood, price point, and size."
    ' If unknown, set false or "unknown".'
)

TAGS_SYSTEM_PROMPT_TEMPLATE = """Extract housing features as JSON matching this schema exactly.{instruction} No extra keys.

Schema:
{schema}

Respond with ONLY valid JSON. No markdown, no explanation."""


class TagExtractor:
    """
    Extractor de tags por listing, cacheado por id.

    Orden de resolución:
    1. Cache (memoria + store)
    2. LLM con la descripción de features (o con los datos del listing)
    3. Sin LLM: detector por keywords sobre la descripción de features
    4. Sin nada: tags neutrales
    """

    def __init__(
        self,
        provider: Optional[BaseLLMProvider] = None,
        tags_cache: Optional[TagsCache] = None,
        subway_cache: Optional[SubwayLinesCache] = None,
        keyword_detector: Optional[KeywordTagDetector] = None,
        use_default_provider: bool = True,
    ):
        """
        Inicializa el extractor.

        Args:
            provider: Proveedor LLM (default: el configurado, si tiene key)
            tags_cache: Cache de tags por listing id
            subway_cache: Cache de líneas de subte por dirección
            keyword_detector: Detector de fallback sin LLM
            use_default_provider: Si False y no se pasa provider, no usa LLM
        """
        self._settings = get_settings()
        if provider is None and use_default_provider:
            provider = try_get_llm_provider()
        self._provider = provider
        self.tags_cache = tags_cache or TagsCache()
        self.subway_cache = subway_cache or SubwayLinesCache(self.tags_cache.store)
        self.keyword_detector = keyword_detector or KeywordTagDetector()

        # Reintentos solo ante errores transitorios (429 / 5xx / red)
        self._generate = retry(
            retry=retry_if_exception_type(LLMTransientError),
            stop=stop_after_attempt(self._settings.llm_max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=self._settings.llm_backoff_max),
            reraise=True,
        )(self._generate_once)

    @property
    def has_llm(self) -> bool:
        return self._provider is not None

    def _build_prompt(self, listing: Listing, feature_description: Optional[str]) -> str:
        """Construye el prompt de usuario con los datos del listing."""
        if feature_description:
            return f"Address: {listing.address}\nReal features from web:\n{feature_description}"

        price_suffix = "/month" if listing.price_type == "rent" else ""
        return f"""Address: {listing.address}
Neighborhood: {listing.neighborhood}
Price: ${listing.price:,.0f}{price_suffix}
Bedrooms: {listing.beds:g}, Bathrooms: {listing.baths:g}
Square footage: {listing.sqft:g}"""

    def _fix_json(self, text: str) -> str:
        """
        Arregla JSON malformado que Llama a veces genera.

        Problemas comunes:
        - Comentarios // dentro del JSON
        - Comas faltantes entre propiedades
        """
        lines = text.split('\n')
        cleaned_lines = []

        for line in lines:
            # 1. Eliminar comentarios //
            if '//' in line:
                pos = line.find('//')
                before = line[:pos]
                quote_count = before.count('"') - before.count('\\"')
                if quote_count % 2 == 0:
                    line = before.rstrip()
            cleaned_lines.append(line)

        text = '\n'.join(cleaned_lines)

        # 2. Agregar comas faltantes entre propiedades
        text = re.sub(r'(true|false|null|"|\]|\})\s*\n(\s*")', r'\1,\n\2', text)

        # 3. Quitar comas colgantes antes de un cierre
        text = re.sub(r',\s*([\]}])', r'\1', text)

        return text

    def _clean_response(self, raw_text: str) -> str:
        """Limpia la respuesta del LLM para extraer el objeto JSON."""
        text = raw_text.strip()

        # Remover markdown code blocks
        text = re.sub(r"```(?:json)?\s*", "", text).replace("```", "").strip()

        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]

        return self._fix_json(text)

    async def _generate_once(self, system_prompt: str, user_prompt: str) -> str:
        response = await self._provider.generate(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=0.0,
            max_tokens=512,
        )
        return response.text

    def parse_tags(self, raw_text: str) -> ListingTags:
        """
        Parsea la respuesta del LLM.

        Raises:
            ValueError: Si no es un objeto JSON
        """
        data = json.loads(self._clean_response(raw_text))
        if not isinstance(data, dict):
            raise ValueError("La respuesta no es un objeto JSON")
        return ListingTags.coerce(data)

    async def _merge_subway_lines(self, listing: Listing, tags: ListingTags) -> ListingTags:
        """Completa/propaga líneas de subte conocidas para la misma dirección."""
        try:
            known = await self.subway_cache.get(listing.address)
            if tags.near_subway_lines:
                merged = list(tags.near_subway_lines)
                for line in known or []:
                    if line not in merged:
                        merged.append(line)
                if merged != (known or []):
                    await self.subway_cache.set(listing.address, merged)
                return tags.model_copy(update={"near_subway_lines": merged})
            if known:
                return tags.model_copy(update={"near_subway_lines": list(known)})
        except Exception as e:
            logger.warning("Error en cache de líneas de subte", address=listing.address, error=str(e))
        return tags

    async def extract(
        self, listing: Listing, feature_description: Optional[str] = None
    ) -> ListingTags:
        """
        Obtiene los tags de un listing (cacheados por id).

        Args:
            listing: Listing a etiquetar
            feature_description: Features reales desde la web (opcional)

        Returns:
            ListingTags (neutrales si no se pudo extraer nada)
        """
        cached = await self.tags_cache.get(listing.id)
        if cached is not None:
            logger.debug("Tags desde cache", listing_id=listing.id)
            return cached

        logger.info("Extrayendo tags", listing_id=listing.id, address=listing.address)

        if not self.has_llm:
            if feature_description:
                tags = self.keyword_detector.detect_tags(feature_description)
                tags = await self._merge_subway_lines(listing, tags)
                await self.tags_cache.set(listing.id, tags)
                logger.info(
                    "Tags detectados por keywords",
                    listing_id=listing.id,
                    features=tags.active_features(),
                )
                return tags
            logger.info("Sin LLM ni features: tags neutrales", listing_id=listing.id)
            return ListingTags()

        system_prompt = TAGS_SYSTEM_PROMPT_TEMPLATE.format(
            instruction=GROUNDED_INSTRUCTION if feature_description else INFERRED_INSTRUCTION,
            schema=TAGS_SCHEMA,
        )
        user_prompt = self._build_prompt(listing, feature_description)

        raw_text = ""
        try:
            raw_text = await self._generate(system_prompt, user_prompt)
            tags = self.parse_tags(raw_text)
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(
                "Error parseando respuesta de LLM",
                listing_id=listing.id,
                error=str(e),
                response=raw_text[:300],
            )
            # Neutrales solo en memoria: se reintenta en la próxima sesión
            defaults = ListingTags()
            self.tags_cache.remember(listing.id, defaults)
            return defaults
        except Exception as e:
            logger.error("Error en extracción de tags", listing_id=listing.id, error=str(e))
            defaults = ListingTags()
            self.tags_cache.remember(listing.id, defaults)
            return defaults

        tags = await self._merge_subway_lines(listing, tags)
        await self.tags_cache.set(listing.id, tags)

        logger.info(
            "Tags extraídos",
            listing_id=listing.id,
            features=tags.active_features(),
            subway=tags.near_subway_lines,
            building=tags.building_type,
            noise=tags.noise_level,
        )
        return tags
