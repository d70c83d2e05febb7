"""
Generador de la explicación corta del match (una línea en la card).

Con pocos swipes no hay nada aprendido que explicar: se arma una línea
con los tags. Con historial se le pide al LLM una frase que nombre
las features que coinciden con lo que le gusta al usuario.
"""

from typing import Optional

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from homeswipe.analysis.llm_providers import BaseLLMProvider, try_get_llm_provider
from homeswipe.config import get_settings
from homeswipe.exceptions import LLMTransientError
from homeswipe.models import Listing, ListingTags, PreferenceSignals
from homeswipe.signals import WARM_START_SWIPES

logger = structlog.get_logger()


EXPLANATION_SYSTEM_PROMPT = (
    "Write ONE punchy sentence (max 12 words). Mention specific matching features by name. "
    "No filler words. Example: 'Doorman elevator building with dishwasher, 15min to work.'"
)

EXPLANATION_USER_PROMPT_TEMPLATE = """This listing HAS these features: {features}
User WANTS: {wanted}
Matching features: {matching}
Commute: {commute}
Listing: {rooms} at {price}"""

MAX_EXPLANATION_CHARS = 140


def _humanize(key: str) -> str:
    return key.replace("_", " ")


def describe_tags(tags: ListingTags) -> list[str]:
    """Highlights legibles: amenities, subte, edificio y ruido."""
    highlights = [_humanize(f) for f in tags.active_features()]
    if tags.near_subway_lines:
        highlights.append("near " + ", ".join(tags.near_subway_lines))
    if tags.building_type != "unknown":
        highlights.append(tags.building_type)
    if tags.noise_level != "unknown":
        highlights.append(f"{tags.noise_level} area")
    return highlights


def tag_based_explanation(listing: Listing, tags: Optional[ListingTags]) -> str:
    """'2bd/1ba · elevator, doorman, near A, C' o '2bd/1ba in <zona>'."""
    highlights = describe_tags(tags or ListingTags())[:3]
    if highlights:
        return f"{listing.format_rooms()} · {', '.join(highlights)}"
    return f"{listing.format_rooms()} in {listing.neighborhood or listing.address}"


def fallback_explanation(
    listing: Listing, tags: ListingTags, signals: PreferenceSignals
) -> str:
    """Explicación sin LLM con las features que coinciden y el trade-off."""
    matching = [_humanize(f) for f in tags.active_features() if f in signals.liked_features]
    highlights = matching[:2]
    if tags.near_subway_lines:
        highlights.append("near " + ", ".join(tags.near_subway_lines))
    if highlights:
        text = ", ".join(highlights)
        return f"{text} · {listing.tradeoff}" if listing.tradeoff else text
    base = f"{listing.format_rooms()} in {listing.neighborhood or listing.address}"
    return f"{base}. {listing.tradeoff}" if listing.tradeoff else base


class MatchExplainer:
    """Explica en una línea por qué un listing le puede gustar al usuario."""

    def __init__(
        self,
        provider: Optional[BaseLLMProvider] = None,
        use_default_provider: bool = True,
    ):
        self._settings = get_settings()
        if provider is None and use_default_provider:
            provider = try_get_llm_provider()
        self._provider = provider

        self._generate = retry(
            retry=retry_if_exception_type(LLMTransientError),
            stop=stop_after_attempt(self._settings.llm_max_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=self._settings.llm_backoff_max),
            reraise=True,
        )(self._generate_once)

    async def _generate_once(self, user_prompt: str) -> str:
        response = await self._provider.generate(
            system_prompt=EXPLANATION_SYSTEM_PROMPT,
            user_prompt=user_prompt,
            temperature=0.0,
            max_tokens=60,
        )
        return response.text

    def _build_prompt(
        self, listing: Listing, tags: ListingTags, signals: PreferenceSignals
    ) -> str:
        highlights = describe_tags(tags)
        matching = [_humanize(f) for f in tags.active_features() if f in signals.liked_features]
        commute = ", ".join(f"{c.label}: {c.minutes}min" for c in listing.commute_times)
        return EXPLANATION_USER_PROMPT_TEMPLATE.format(
            features=", ".join(highlights) or "none",
            wanted=", ".join(_humanize(f) for f in signals.liked_features) or "not clear yet",
            matching=", ".join(matching) if matching else "none yet",
            commute=commute or "unknown",
            rooms=listing.format_rooms(),
            price=listing.format_price(),
        )

    async def explain(
        self,
        listing: Listing,
        tags: Optional[ListingTags],
        signals: PreferenceSignals,
    ) -> str:
        """
        Genera la explicación del match.

        Args:
            listing: Listing ya enriquecido (viajes y trade-off calculados)
            tags: Tags del listing
            signals: Señales actuales del usuario

        Returns:
            Una línea corta; nunca falla
        """
        tags = tags or ListingTags()

        if signals.total_swipes < WARM_START_SWIPES:
            logger.debug(
                "Pocos swipes, explicación por tags",
                listing_id=listing.id,
                swipes=signals.total_swipes,
            )
            return tag_based_explanation(listing, tags)

        if self._provider is None:
            return fallback_explanation(listing, tags, signals)

        try:
            text = (await self._generate(self._build_prompt(listing, tags, signals))).strip()
            text = text.strip('"').strip("'").strip()
            if not text:
                return fallback_explanation(listing, tags, signals)
            logger.debug("Explicación generada", listing_id=listing.id, text=text)
            return text[:MAX_EXPLANATION_CHARS]
        except Exception as e:
            logger.warning("Error generando explicación", listing_id=listing.id, error=str(e))
            return fallback_explanation(listing, tags, signals)
