"""
Pattern top-up y re-ranking de la cola no vista.

Cuando ya hay suficientes swipes se buscan candidatos nuevos sesgados
hacia lo aprendido y se suman al final de la cola (nunca antes del
cursor). Después de cada swipe la cola no vista se vuelve a puntuar
solo con tags cacheados y se reordena.
"""

from typing import Optional

import structlog

from homeswipe.config import get_settings
from homeswipe.exceptions import OperationCancelled
from homeswipe.models import Listing, ListingFilters, PreferenceSignals, RawListing
from homeswipe.pipeline.enricher import ListingEnricher
from homeswipe.scoring import range_distance_ratio
from homeswipe.signals import SignalStore
from homeswipe.sources import BaseListingSource

logger = structlog.get_logger()

# Puntos de score que resta cada unidad de distancia al rango de precios
PRICE_DISTANCE_PENALTY = 20

STATUS_SEARCHING = "Looking for more homes that match your pattern..."
STATUS_NOTHING_NEW = "No new matches for your pattern right now."


def merge_into_tail(
    listings: list[Listing], cursor: int, new_listings: list[Listing]
) -> list[Listing]:
    """
    Suma listings nuevos a la cola no vista y la reordena por score.

    Los listings antes del cursor (ya vistos) quedan exactamente
    igual. Los ids ya presentes no se repiten.

    Args:
        listings: Feed completo
        cursor: Índice del próximo listing a mostrar
        new_listings: Candidatos a sumar

    Returns:
        Nuevo feed (la lista original no se modifica)
    """
    cursor = max(0, min(cursor, len(listings)))
    seen = listings[:cursor]
    present = {listing.id for listing in listings}

    tail = list(listings[cursor:])
    for listing in new_listings:
        if listing.id not in present:
            present.add(listing.id)
            tail.append(listing)

    # sorted() es estable: a igual score se respeta el orden previo
    tail = sorted(tail, key=lambda listing: listing.match_score, reverse=True)
    return seen + tail


class PatternTopUpController:
    """
    Top-up de candidatos y re-ranking de la cola no vista.

    Estado compartido:
    - _in_flight: un solo top-up a la vez; llamadas concurrentes no hacen nada
    - _rescore_run_id: id creciente; un rescore viejo nunca pisa uno más nuevo
    """

    def __init__(
        self,
        source: BaseListingSource,
        enricher: ListingEnricher,
        signal_store: SignalStore,
    ):
        self.settings = get_settings()
        self.source = source
        self.enricher = enricher
        self.engine = enricher.engine
        self.signal_store = signal_store

        self.status_message = ""
        self._in_flight = False
        self._rescore_run_id = 0
        self._offset = self.settings.listing_limit

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def latest_rescore_run(self) -> int:
        return self._rescore_run_id

    def reset(self) -> None:
        """Vuelve a paginar desde el principio (filtros nuevos)."""
        self._offset = self.settings.listing_limit
        self.status_message = ""

    def should_trigger(self, total_swipes: int) -> bool:
        """Top-up cada N swipes a partir del N-ésimo."""
        every = self.settings.pattern_trigger_swipes
        return total_swipes >= every and total_swipes % every == 0

    def pre_rank_score(self, raw: RawListing, signals: PreferenceSignals) -> float:
        """
        Heurística barata antes de enriquecer.

        Score provisional menos una penalización por distancia al rango
        de precios que le gusta al usuario.
        """
        score = float(self.engine.provisional_score(raw.price, raw.price_type))
        liked_price = signals.liked_price.get(raw.price_type)
        if liked_price is not None and raw.price:
            score -= PRICE_DISTANCE_PENALTY * range_distance_ratio(raw.price, liked_price)
        return score

    async def fetch_pattern_matches(
        self,
        filters: ListingFilters,
        exclude_ids: set[str],
        target_count: Optional[int] = None,
        token=None,
    ) -> list[Listing]:
        """
        Busca candidatos nuevos que encajen con el patrón aprendido.

        Args:
            filters: Filtros activos del feed
            exclude_ids: Ids ya presentes en el feed
            target_count: Cuántos devolver (default: settings)
            token: Token de la corrida del feed

        Returns:
            Hasta target_count listings enriquecidos, mejores primero,
            sin ids de exclude_ids ni repetidos. [] si ya había uno en curso.
        """
        if self._in_flight:
            logger.debug("Top-up en curso, se ignora la llamada")
            return []

        target = target_count or self.settings.pattern_target_count
        pool_size = target * self.settings.pattern_pool_multiplier
        seed_size = target * self.settings.pattern_seed_multiplier

        self._in_flight = True
        self.status_message = STATUS_SEARCHING
        try:
            offset = self._offset
            self._offset += pool_size
            logger.info(
                "Buscando candidatos por patrón",
                pool_size=pool_size,
                offset=offset,
                excluded=len(exclude_ids),
            )
            try:
                raw_pool = await self.source.fetch_listings(filters, limit=pool_size, offset=offset)
            except Exception as e:
                logger.warning("Falló la búsqueda de candidatos por patrón", error=str(e))
                self.status_message = STATUS_NOTHING_NEW
                return []
            if token is not None and token.cancelled:
                return []

            candidates: list[RawListing] = []
            seen_ids = set(exclude_ids)
            for raw in raw_pool:
                if raw.id in seen_ids:
                    continue
                seen_ids.add(raw.id)
                candidates.append(raw)

            if not candidates:
                logger.info("Sin candidatos nuevos", pool=len(raw_pool))
                self.status_message = STATUS_NOTHING_NEW
                return []

            signals = self.engine.signals()
            candidates.sort(key=lambda raw: self.pre_rank_score(raw, signals), reverse=True)
            seeds = candidates[:seed_size]

            enriched: list[Listing] = []
            for raw in seeds:
                listing = self.source.to_listing(
                    raw, self.engine.provisional_score(raw.price, raw.price_type)
                )
                try:
                    enriched.append(await self.enricher.enrich(listing, token))
                except OperationCancelled:
                    return []

            enriched.sort(key=lambda listing: listing.match_score, reverse=True)
            matches = enriched[:target]

            if matches:
                self.status_message = (
                    f"Added {len(matches)} new home{'s' if len(matches) != 1 else ''} "
                    "that match your pattern."
                )
            else:
                self.status_message = STATUS_NOTHING_NEW
            logger.info(
                "Top-up por patrón",
                pool=len(raw_pool),
                candidates=len(candidates),
                seeds=len(seeds),
                added=len(matches),
            )
            return matches
        finally:
            self._in_flight = False

    async def rescore_remaining(self, listings: list[Listing], from_index: int) -> bool:
        """
        Vuelve a puntuar y reordena los listings desde from_index.

        Usa solo tags cacheados (sin red) y las señales del momento en
        que se pidió. Si mientras tanto se pidió otro rescore, el
        resultado de este se descarta.

        Args:
            listings: Feed (se modifica en el lugar, solo desde from_index)
            from_index: Primer índice no visto

        Returns:
            True si se aplicó, False si quedó viejo
        """
        self._rescore_run_id += 1
        run_id = self._rescore_run_id
        signals = self.engine.signals()

        snapshot = list(listings[from_index:])
        scores: dict[str, int] = {}
        for listing in snapshot:
            scores[listing.id] = await self.enricher.rescore(listing, signals)
            if run_id != self._rescore_run_id:
                logger.debug("Rescore descartado por uno más nuevo", run_id=run_id)
                return False

        if run_id != self._rescore_run_id:
            return False

        # El feed pudo cambiar durante los awaits: se aplica por id sobre la cola actual
        from_index = max(0, min(from_index, len(listings)))
        tail = []
        for listing in listings[from_index:]:
            score = scores.get(listing.id)
            if score is not None and score != listing.match_score:
                listing = listing.model_copy(update={"match_score": score})
            tail.append(listing)
        tail.sort(key=lambda listing: listing.match_score, reverse=True)
        listings[from_index:] = tail

        logger.debug("Cola re-rankeada", run_id=run_id, from_index=from_index, count=len(tail))
        return True
