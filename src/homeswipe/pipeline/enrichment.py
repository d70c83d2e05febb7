"""
Pipeline de enriquecimiento progresivo.

Estados por conjunto de filtros:

    IDLE -> RAW_FETCHING -> INITIAL_ENRICHING -> BACKGROUND_ENRICHING -> DONE
                 |
                 v
               FAILED  (retry() vuelve a empezar)

1. RAW_FETCHING: trae los listings crudos con un score provisional.
2. INITIAL_ENRICHING: enriquece los primeros N de a uno y los muestra.
3. BACKGROUND_ENRICHING: el resto se enriquece en segundo plano,
   reemplazando cada listing en su lugar (por id) sin reordenar.

Antes de empezar se busca un snapshot de sesión para estos filtros;
si existe se restaura tal cual en lugar de volver a consultar.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional

import structlog

from homeswipe.config import get_settings
from homeswipe.exceptions import OperationCancelled
from homeswipe.models import EnrichmentStatus, Listing, ListingFilters
from homeswipe.pipeline.enricher import ListingEnricher
from homeswipe.pipeline.worker_pool import BoundedWorkerPool, CancellationToken
from homeswipe.sources import BaseListingSource
from homeswipe.storage import SessionSnapshotRepository

logger = structlog.get_logger()


class PipelineState(str, Enum):
    IDLE = "idle"
    RAW_FETCHING = "raw_fetching"
    INITIAL_ENRICHING = "initial_enriching"
    BACKGROUND_ENRICHING = "background_enriching"
    DONE = "done"
    FAILED = "failed"


ProgressCallback = Callable[[EnrichmentStatus], None]


class EnrichmentPipeline:
    """
    Orquestador fetch -> enriquecer cabeza -> mostrar -> enriquecer resto.

    Una sola corrida activa por vez: start() con filtros nuevos cancela
    la anterior, y teardown() cancela la actual. Una corrida cancelada
    no vuelve a tocar listings, estado ni snapshot.
    """

    def __init__(
        self,
        source: BaseListingSource,
        enricher: ListingEnricher,
        snapshot_repo: Optional[SessionSnapshotRepository] = None,
        initial_batch_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        settings = get_settings()
        self.source = source
        self.enricher = enricher
        self.engine = enricher.engine
        self.snapshot_repo = snapshot_repo or SessionSnapshotRepository(
            enricher.tag_extractor.tags_cache.store
        )
        self.initial_batch_size = (
            settings.initial_batch_size if initial_batch_size is None else initial_batch_size
        )
        self.pool = BoundedWorkerPool(concurrency or settings.enrichment_concurrency)
        self.on_progress = on_progress

        self.filters: Optional[ListingFilters] = None
        self.listings: list[Listing] = []
        self.status = EnrichmentStatus()
        self.state = PipelineState.IDLE
        self.error: Optional[Exception] = None

        self._token: Optional[CancellationToken] = None
        self._background_task: Optional[asyncio.Task] = None
        # Tareas de corridas canceladas, referenciadas hasta que terminan
        self._retired_tasks: set[asyncio.Task] = set()

    @property
    def is_loading(self) -> bool:
        return self.state in (PipelineState.RAW_FETCHING, PipelineState.INITIAL_ENRICHING)

    @property
    def token(self) -> Optional[CancellationToken]:
        return self._token

    def _set_state(self, state: PipelineState, token: CancellationToken) -> None:
        if token.cancelled:
            return
        logger.info("Pipeline: cambio de estado", previous=self.state.value, state=state.value)
        self.state = state

    def _set_status(self, token: CancellationToken, **changes) -> None:
        if token.cancelled:
            return
        self.status = self.status.model_copy(update=changes)
        if self.on_progress:
            try:
                self.on_progress(self.status)
            except Exception as e:
                logger.warning("Error en callback de progreso", error=str(e))

    def note_added(self, count: int) -> None:
        """Registra listings ya enriquecidos sumados por fuera (top-up)."""
        if self._token is None or count <= 0:
            return
        self._set_status(
            self._token,
            total=self.status.total + count,
            enriched_count=self.status.enriched_count + count,
        )

    def replace_listing(self, listing: Listing) -> bool:
        """Reemplaza en su lugar el listing con el mismo id."""
        for index, current in enumerate(self.listings):
            if current.id == listing.id:
                self.listings[index] = listing
                return True
        return False

    async def save_snapshot(self, token: Optional[CancellationToken] = None) -> None:
        """Guarda listings + progreso para retomar la sesión."""
        token = token or self._token
        if self.filters is None or token is None or token.cancelled:
            return
        try:
            await self.snapshot_repo.save(self.filters, list(self.listings), self.status)
        except Exception as e:
            logger.warning("No se pudo guardar el snapshot de sesión", error=str(e))

    async def _restore(self, filters: ListingFilters, token: CancellationToken) -> bool:
        try:
            snapshot = await self.snapshot_repo.get(filters)
        except Exception as e:
            logger.warning("No se pudo leer el snapshot de sesión", error=str(e))
            return False
        if token.cancelled or snapshot is None or not snapshot.listings:
            return False

        self.listings = list(snapshot.listings)
        self.status = snapshot.enrichment_status
        logger.info(
            "Sesión restaurada desde snapshot",
            key=filters.cache_key,
            listings=len(self.listings),
            done=self.status.done,
        )

        pending = [listing for listing in self.listings if not listing.enriched]
        if self.status.done or not pending:
            self._set_status(token, done=True, current_item="")
            self._set_state(PipelineState.DONE, token)
        else:
            self._set_state(PipelineState.BACKGROUND_ENRICHING, token)
            self._background_task = asyncio.create_task(self._enrich_background(pending, token))
        return True

    async def start(self, filters: ListingFilters) -> list[Listing]:
        """
        Arranca (o retoma) el feed para estos filtros.

        Vuelve cuando la cabeza está enriquecida y el usuario ya puede
        swipear; el resto sigue en segundo plano.

        Returns:
            Listings visibles (vacío si falló la consulta cruda)
        """
        self.teardown()
        token = CancellationToken()
        self._token = token
        self.filters = filters
        self.listings = []
        self.error = None
        self.status = EnrichmentStatus()
        self.state = PipelineState.IDLE

        if await self._restore(filters, token):
            return self.listings
        if token.cancelled:
            return []

        # Fase 1: listings crudos
        self._set_state(PipelineState.RAW_FETCHING, token)
        try:
            raw = await self.source.fetch_listings(filters)
        except Exception as e:
            if token.cancelled:
                return []
            logger.error("Falló la consulta de listings", error=str(e))
            self.error = e
            self._set_state(PipelineState.FAILED, token)
            return []
        if token.cancelled:
            return []

        self.listings = [
            self.source.to_listing(r, self.engine.provisional_score(r.price, r.price_type))
            for r in raw
        ]
        self._set_status(token, enriched_count=0, total=len(self.listings), current_item="", done=False)
        logger.info("Listings crudos listos", count=len(self.listings))

        # Fase 2: cabeza enriquecida en orden
        self._set_state(PipelineState.INITIAL_ENRICHING, token)
        head = list(self.listings[: self.initial_batch_size])
        await self.pool.run(head, lambda i, listing: self._enrich_one(listing, token), token)
        if token.cancelled:
            return []

        head_ids = {listing.id for listing in head}
        remaining = [listing for listing in self.listings if listing.id not in head_ids]
        self._set_status(token, current_item="", done=not remaining)
        await self.save_snapshot(token)
        logger.info(
            "Feed interactivo",
            enriched=self.status.enriched_count,
            pending=len(remaining),
        )

        # Fase 3: el resto en segundo plano
        if remaining:
            self._set_state(PipelineState.BACKGROUND_ENRICHING, token)
            self._background_task = asyncio.create_task(self._enrich_background(remaining, token))
        else:
            self._set_state(PipelineState.DONE, token)

        return self.listings

    async def _enrich_one(self, listing: Listing, token: CancellationToken) -> Optional[Listing]:
        self._set_status(token, current_item=listing.address)
        try:
            result = await self.enricher.enrich(listing, token)
        except OperationCancelled:
            return None
        if token.cancelled:
            return None

        self.replace_listing(result)
        self._set_status(
            token, enriched_count=min(self.status.total, self.status.enriched_count + 1)
        )
        return result

    async def _enrich_background(self, pending: list[Listing], token: CancellationToken) -> None:
        logger.info("Enriquecimiento en segundo plano", pending=len(pending))

        async def handle(index: int, listing: Listing) -> Optional[Listing]:
            result = await self._enrich_one(listing, token)
            if result is not None:
                await self.save_snapshot(token)
            return result

        await self.pool.run(pending, handle, token)
        if token.cancelled:
            return

        self._set_status(token, current_item="", done=True)
        self._set_state(PipelineState.DONE, token)
        await self.save_snapshot(token)
        logger.info("Enriquecimiento completo", total=len(self.listings))

    async def retry(self) -> list[Listing]:
        """Reintenta después de una falla de la consulta cruda."""
        if self.filters is None:
            return []
        return await self.start(self.filters)

    async def wait_background(self) -> None:
        """Espera a que termine el enriquecimiento en segundo plano."""
        task = self._background_task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def teardown(self) -> None:
        """Cancela la corrida activa (cambio de filtros o fin de sesión)."""
        if self._token is not None:
            self._token.cancel()
        task = self._background_task
        if task is not None and not task.done():
            self._retired_tasks.add(task)
            task.add_done_callback(self._retired_tasks.discard)
        self._background_task = None

    async def shutdown(self) -> None:
        """Cancela la corrida y espera a que terminen sus tareas."""
        self.teardown()
        tasks = list(self._retired_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug("Pipeline cerrado", cancelled_tasks=len(tasks))

    async def clear_session(self) -> None:
        """Borra el snapshot de los filtros actuales y cancela la corrida."""
        self.teardown()
        if self.filters is not None:
            await self.snapshot_repo.clear(self.filters)
