"""
Script para recorrer el feed de listings desde la terminal.

Trae listings de NYC, enriquece los primeros y deja swipear con y/n;
el resto se enriquece en segundo plano y cada pocos swipes se suman
candidatos que encajan con lo aprendido.

Uso:
    python -m homeswipe.scripts.run_feed --price-type rent --beds 2
    python -m homeswipe.scripts.run_feed --place "Work=350 5th Ave, New York, NY" --mode transit
    python -m homeswipe.scripts.run_feed --auto
"""

import argparse
import asyncio
import logging
import sys
import warnings
from typing import Optional

import structlog

# Suprimir warnings de cleanup de aiohttp al cerrar el loop
warnings.filterwarnings("ignore", category=ResourceWarning, message=".*unclosed.*")

from homeswipe.config import COMMUTE_MODES, NYC_BOROUGHS, get_settings
from homeswipe.exceptions import HomeSwipeError
from homeswipe.models import EnrichmentStatus, Listing, ListingFilters, SavedPlace, SwipeDirection
from homeswipe.pipeline import SwipeFeed, build_feed

# Configurar logging
settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(message)s",
    force=True,
)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def _print_card(listing: Listing, position: int, total: int) -> None:
    print(f"\n[{position}/{total}] {listing.match_score}% match  {listing.format_price()}")
    print(f"  {listing.address}  ({listing.format_rooms()})")
    if listing.match_explanation:
        print(f"  {listing.match_explanation}")
    if listing.tradeoff:
        print(f"  {listing.tradeoff}")
    if listing.external_listing_url:
        print(f"  {listing.external_listing_url}")
    if not listing.enriched:
        print("  (still enriching...)")


def _print_progress(status: EnrichmentStatus) -> None:
    logger.debug(
        "Progreso de enriquecimiento",
        enriched=status.enriched_count,
        total=status.total,
        current=status.current_item,
    )


def _parse_place(raw: str, index: int) -> SavedPlace:
    label, sep, address = raw.partition("=")
    if not sep or not address.strip():
        raise ValueError(f"Lugar inválido: '{raw}'. Formato: Label=Dirección")
    return SavedPlace(id=f"place-{index}", label=label.strip(), address=address.strip())


async def _ask(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    return (await loop.run_in_executor(None, input, prompt)).strip().lower()


async def _auto_run(feed: SwipeFeed) -> None:
    """Muestra el ranking completo sin swipear."""
    await feed.wait_idle()
    for position, listing in enumerate(feed.listings, start=1):
        _print_card(listing, position, len(feed.listings))


async def _interactive_run(feed: SwipeFeed) -> None:
    while True:
        listing = feed.current
        if listing is None:
            await feed.wait_idle()
            listing = feed.current
            if listing is None:
                print("\nNo more homes for these filters.")
                return

        _print_card(listing, feed.cursor + 1, len(feed.listings))
        answer = await _ask("Like? [y/n/q] ")
        if answer == "q":
            return
        if answer not in ("y", "n"):
            continue

        await feed.swipe(SwipeDirection.LIKE if answer == "y" else SwipeDirection.DISLIKE)
        print(f"  Learned: {feed.learned_pattern}")
        if feed.status_message:
            print(f"  {feed.status_message}")


async def run_feed(
    filters: ListingFilters,
    places: Optional[list[SavedPlace]] = None,
    mode: Optional[str] = None,
    auto: bool = False,
) -> int:
    """
    Abre el feed para los filtros dados y lo recorre.

    Args:
        filters: Filtros del feed
        places: Lugares guardados (reemplazan los persistidos)
        mode: Modo de viaje preferido
        auto: Imprimir el ranking en lugar de swipear

    Returns:
        Código de salida
    """
    feed = build_feed(on_progress=_print_progress)
    try:
        preferences = feed.signal_store.preferences_repo
        if places:
            await preferences.set_saved_places(places)
        if mode:
            await preferences.set_commute_mode(mode)

        listings = await feed.open(filters)
        if feed.error is not None:
            logger.error("No se pudieron traer listings", error=str(feed.error))
            return 1

        logger.info(
            "Feed listo",
            filters=filters.cache_key,
            listings=len(listings),
            enriched=feed.enrichment_status.enriched_count,
        )

        if auto:
            await _auto_run(feed)
        else:
            await _interactive_run(feed)
        return 0
    finally:
        await feed.close()


def main():
    """Entry point del script."""
    parser = argparse.ArgumentParser(description="Feed de departamentos en NYC")
    parser.add_argument(
        "--price-type",
        type=str,
        default="rent",
        choices=["rent", "buy", "both"],
        help="Alquiler, venta o ambos",
    )
    parser.add_argument("--beds", type=int, default=None, help="Dormitorios (default: cualquiera)")
    parser.add_argument("--baths", type=int, default=None, help="Baños (default: cualquiera)")
    parser.add_argument(
        "--place",
        action="append",
        default=[],
        help="Lugar guardado como Label=Dirección (se puede repetir)",
    )
    parser.add_argument(
        "--mode",
        type=str,
        default=None,
        choices=COMMUTE_MODES,
        help="Modo de viaje preferido",
    )
    parser.add_argument(
        "--boroughs",
        action="store_true",
        help="Consultar cada borough por separado",
    )
    parser.add_argument(
        "--auto",
        action="store_true",
        help="Imprimir el ranking sin swipear",
    )

    args = parser.parse_args()

    try:
        places = [_parse_place(raw, i) for i, raw in enumerate(args.place, start=1)]
    except ValueError as e:
        parser.error(str(e))

    if args.boroughs:
        settings.subregions = list(NYC_BOROUGHS)

    filters = ListingFilters(price_type=args.price_type, bedrooms=args.beds, bathrooms=args.baths)
    logger.info("Iniciando feed", filters=filters.cache_key, auto=args.auto)

    try:
        sys.exit(asyncio.run(run_feed(filters, places=places, mode=args.mode, auto=args.auto)))
    except KeyboardInterrupt:
        logger.info("Feed interrumpido por usuario")
        sys.exit(130)
    except HomeSwipeError as e:
        logger.error("Error en el feed", error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
