"""
Enriquecimiento de un listing.

Para un listing crudo calcula, en orden: tiempos de viaje reales,
features desde la web, tags, score, trade-off y explicación. Un error
en cualquier paso devuelve el listing tal como estaba.
"""

from typing import Optional

import structlog

from homeswipe.analysis import MatchExplainer, TagExtractor
from homeswipe.exceptions import OperationCancelled
from homeswipe.models import Listing, ListingTags, PreferenceSignals
from homeswipe.pipeline.worker_pool import CancellationToken
from homeswipe.scoring import ScoringEngine, score_listing
from homeswipe.sources import CommuteService, FeatureLookup, build_tradeoff
from homeswipe.storage import ListingUrlCache

logger = structlog.get_logger()


def _check(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()


class ListingEnricher:
    """
    Enriquece listings de a uno.

    Flujo:
    1. Viajes a los lugares guardados (Mapbox / HERE)
    2. Features reales de la dirección (SerpApi, cacheadas)
    3. Tags (cache -> LLM -> keywords -> neutrales)
    4. Score con las señales actuales
    5. Trade-off y explicación
    """

    def __init__(
        self,
        engine: ScoringEngine,
        tag_extractor: Optional[TagExtractor] = None,
        explainer: Optional[MatchExplainer] = None,
        commute_service: Optional[CommuteService] = None,
        feature_lookup: Optional[FeatureLookup] = None,
        url_cache: Optional[ListingUrlCache] = None,
    ):
        self.engine = engine
        self.tag_extractor = tag_extractor or TagExtractor()
        self.explainer = explainer or MatchExplainer()
        self.commute_service = commute_service or CommuteService()
        self.feature_lookup = feature_lookup or FeatureLookup()
        self.url_cache = url_cache or ListingUrlCache(self.tag_extractor.tags_cache.store)

    async def _external_url(self, listing: Listing) -> Optional[str]:
        cached = await self.url_cache.get(listing.id)
        if cached:
            return cached
        if listing.external_listing_url:
            await self.url_cache.set(listing.id, listing.external_listing_url)
        return listing.external_listing_url

    async def enrich(
        self, listing: Listing, token: Optional[CancellationToken] = None
    ) -> Listing:
        """
        Enriquece un listing.

        Args:
            listing: Listing crudo (o parcialmente enriquecido)
            token: Token de la corrida; se revisa después de cada await

        Returns:
            Copia enriquecida, o el mismo listing si algo falló

        Raises:
            OperationCancelled: Si la corrida se canceló en el medio
        """
        try:
            commute_times = await self.commute_service.calculate_commute_times(
                listing.latitude, listing.longitude
            )
            _check(token)

            feature_description = await self.feature_lookup.fetch_features(listing.address)
            _check(token)

            tags = await self.tag_extractor.extract(listing, feature_description)
            _check(token)

            score = self.engine.compute_score(
                tags, listing.price, listing.price_type, commute_times
            )
            draft = listing.model_copy(
                update={
                    "commute_times": commute_times,
                    "tags": tags,
                    "match_score": score,
                    "tradeoff": build_tradeoff(commute_times, listing.price, listing.price_type),
                    "feature_description": feature_description or listing.feature_description,
                }
            )

            explanation = await self.explainer.explain(draft, tags, self.engine.signals())
            _check(token)

            external_url = await self._external_url(listing)
            _check(token)

            enriched = draft.model_copy(
                update={
                    "match_explanation": explanation,
                    "external_listing_url": external_url,
                    "enriched": True,
                }
            )
            logger.info(
                "Listing enriquecido",
                listing_id=listing.id,
                score=score,
                commutes=len(commute_times),
                features=tags.active_features(),
            )
            return enriched

        except OperationCancelled:
            raise
        except Exception as e:
            logger.error(
                "Error enriqueciendo listing, se deja sin enriquecer",
                listing_id=listing.id,
                address=listing.address,
                error=str(e),
            )
            return listing

    async def cached_tags(self, listing: Listing) -> ListingTags:
        """Tags sin red: cache local, o los del propio listing, o neutrales."""
        try:
            cached = await self.tag_extractor.tags_cache.get(listing.id)
        except Exception as e:
            logger.warning("Error leyendo tags cacheados", listing_id=listing.id, error=str(e))
            cached = None
        return cached or listing.tags or ListingTags()

    async def rescore(self, listing: Listing, signals: PreferenceSignals) -> int:
        """Score de un listing con las señales dadas, solo con datos cacheados."""
        tags = await self.cached_tags(listing)
        return score_listing(
            tags,
            listing.price,
            listing.price_type,
            listing.commute_times,
            signals,
            self.engine.signal_store.quiz_answers,
        ).score
