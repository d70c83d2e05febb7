"""
Feed de swipes: lo que consume la UI.

Junta el pipeline de enriquecimiento, el Signal Store y el top-up:
expone los listings, el cursor, el progreso, swipe(), los mensajes de
búsqueda por patrón y el resumen de lo aprendido.
"""

import asyncio
from typing import Optional, Union

import structlog

from homeswipe.analysis import MatchExplainer, TagExtractor
from homeswipe.config import get_settings
from homeswipe.models import EnrichmentStatus, Listing, ListingFilters, SwipeDirection
from homeswipe.pipeline.enricher import ListingEnricher
from homeswipe.pipeline.enrichment import EnrichmentPipeline, PipelineState, ProgressCallback
from homeswipe.pipeline.topup import PatternTopUpController, merge_into_tail
from homeswipe.scoring import ScoringEngine
from homeswipe.signals import SignalStore
from homeswipe.sources import BaseListingSource, CommuteService, FeatureLookup, RentCastSource
from homeswipe.storage import (
    BaseKeyValueStore,
    FeatureDescriptionCache,
    GeocodeCache,
    ListingUrlCache,
    SavedListingsRepository,
    SessionSnapshotRepository,
    SubwayLinesCache,
    SwipeHistoryRepository,
    TagsCache,
    UserPreferencesRepository,
    get_kv_store,
)

logger = structlog.get_logger()


class SwipeFeed:
    """
    Sesión de swipes para un usuario.

    Flujo de un swipe:
    1. Se registra en el Signal Store (y se guarda si es like)
    2. Avanza el cursor
    3. Se re-rankea la cola no vista con las señales nuevas
    4. Cada N swipes (o al agotarse la cola) se dispara un top-up en segundo plano
    """

    def __init__(
        self,
        signal_store: SignalStore,
        pipeline: EnrichmentPipeline,
        topup: PatternTopUpController,
        saved_repo: Optional[SavedListingsRepository] = None,
    ):
        self.settings = get_settings()
        self.signal_store = signal_store
        self.pipeline = pipeline
        self.topup = topup
        self.saved_repo = saved_repo or SavedListingsRepository(
            signal_store.history_repo.store
        )
        self.cursor = 0
        self._exhaustion_retries = 0
        self._topup_task: Optional[asyncio.Task] = None
        self._retired_tasks: set[asyncio.Task] = set()

    # Estado visible

    @property
    def listings(self) -> list[Listing]:
        return self.pipeline.listings

    @property
    def enrichment_status(self) -> EnrichmentStatus:
        return self.pipeline.status

    @property
    def current(self) -> Optional[Listing]:
        if self.cursor < len(self.listings):
            return self.listings[self.cursor]
        return None

    @property
    def remaining(self) -> list[Listing]:
        return self.listings[self.cursor:]

    @property
    def is_done(self) -> bool:
        return not self.pipeline.is_loading and not self.remaining

    @property
    def error(self) -> Optional[Exception]:
        return self.pipeline.error if self.pipeline.state == PipelineState.FAILED else None

    @property
    def status_message(self) -> str:
        return self.topup.status_message

    @property
    def learned_pattern(self) -> str:
        return self.signal_store.learned_pattern_summary()

    # Ciclo de vida

    async def open(self, filters: ListingFilters) -> list[Listing]:
        """Abre (o retoma) el feed para estos filtros."""
        await self.signal_store.load()
        self.cursor = 0
        self._exhaustion_retries = 0
        self._retire_topup()
        self.topup.reset()
        logger.info("Abriendo feed", filters=filters.cache_key)
        return await self.pipeline.start(filters)

    async def change_filters(self, filters: ListingFilters) -> list[Listing]:
        """Cancela la corrida actual y arranca con filtros nuevos."""
        return await self.open(filters)

    async def retry(self) -> list[Listing]:
        """Reintenta la consulta cruda después de un error."""
        self.cursor = 0
        return await self.pipeline.retry()

    # Swipes

    async def swipe(self, direction: Union[SwipeDirection, str]) -> Optional[Listing]:
        """
        Registra el swipe del listing actual y avanza.

        Returns:
            El listing swipeado, o None si no quedaban listings
        """
        listing = self.current
        if listing is None:
            return None

        direction = SwipeDirection(direction)
        await self.signal_store.record_swipe(
            listing.tags,
            direction,
            price=listing.price,
            price_type=listing.price_type,
            commute_minutes=listing.average_commute,
        )

        if direction == SwipeDirection.LIKE:
            try:
                await self.saved_repo.add(listing)
            except Exception as e:
                logger.warning("No se pudo guardar el listing", listing_id=listing.id, error=str(e))

        self.cursor += 1
        await self.topup.rescore_remaining(self.listings, self.cursor)
        await self.pipeline.save_snapshot()

        total = self.signal_store.get_total_swipes()
        if self.topup.should_trigger(total):
            self._schedule_topup(reason="pattern")
        elif not self.remaining:
            if self._exhaustion_retries < self.settings.pattern_max_exhaustion_retries:
                self._exhaustion_retries += 1
                self._schedule_topup(reason="exhausted")

        return listing

    def _schedule_topup(self, reason: str) -> None:
        if self.pipeline.filters is None:
            return
        if self._topup_task is not None and not self._topup_task.done():
            return
        logger.info("Disparando top-up por patrón", reason=reason)
        self._topup_task = asyncio.create_task(self._run_topup())

    async def _run_topup(self) -> None:
        token = self.pipeline.token
        filters = self.pipeline.filters
        exclude_ids = {listing.id for listing in self.listings}

        matches = await self.topup.fetch_pattern_matches(filters, exclude_ids, token=token)
        if not matches or token is None or token.cancelled:
            return

        before = len(self.listings)
        self.listings[:] = merge_into_tail(self.listings, self.cursor, matches)
        self.pipeline.note_added(len(self.listings) - before)
        await self.pipeline.save_snapshot(token)

    async def wait_idle(self) -> None:
        """Espera enriquecimiento en segundo plano y top-ups pendientes."""
        await self.pipeline.wait_background()
        while self._topup_task is not None and not self._topup_task.done():
            await self._topup_task

    def _retire_topup(self) -> None:
        # Un top-up de filtros viejos no mergea (su token está cancelado),
        # pero se conserva la referencia hasta que termine
        task = self._topup_task
        if task is not None and not task.done():
            self._retired_tasks.add(task)
            task.add_done_callback(self._retired_tasks.discard)
        self._topup_task = None

    async def close(self) -> None:
        """Cancela todo, espera las tareas pendientes y cierra las sesiones HTTP."""
        self._retire_topup()
        tasks = list(self._retired_tasks)
        for task in tasks:
            task.cancel()
        await self.pipeline.shutdown()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        enricher = self.pipeline.enricher
        for client in (self.pipeline.source, enricher.commute_service, enricher.feature_lookup):
            try:
                await client.close()
            except Exception as e:
                logger.warning("Error cerrando cliente HTTP", error=str(e))


def build_feed(
    source: Optional[BaseListingSource] = None,
    store: Optional[BaseKeyValueStore] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> SwipeFeed:
    """
    Arma un SwipeFeed con todas sus dependencias sobre un mismo store.

    Args:
        source: Fuente de listings (default: RentCast)
        store: Store key-value (default: el configurado)
        on_progress: Callback de progreso del enriquecimiento
    """
    store = store or get_kv_store()

    signal_store = SignalStore(SwipeHistoryRepository(store), UserPreferencesRepository(store))
    engine = ScoringEngine(signal_store)
    enricher = ListingEnricher(
        engine,
        tag_extractor=TagExtractor(tags_cache=TagsCache(store), subway_cache=SubwayLinesCache(store)),
        explainer=MatchExplainer(),
        commute_service=CommuteService(
            preferences_repo=signal_store.preferences_repo,
            geocode_cache=GeocodeCache(store),
        ),
        feature_lookup=FeatureLookup(cache=FeatureDescriptionCache(store)),
        url_cache=ListingUrlCache(store),
    )
    source = source or RentCastSource()
    pipeline = EnrichmentPipeline(
        source,
        enricher,
        snapshot_repo=SessionSnapshotRepository(store),
        on_progress=on_progress,
    )
    topup = PatternTopUpController(source, enricher, signal_store)
    return SwipeFeed(signal_store, pipeline, topup, SavedListingsRepository(store))
