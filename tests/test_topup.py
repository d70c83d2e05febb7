import asyncio

from homeswipe.config import get_settings
from homeswipe.models import ListingTags
from homeswipe.pipeline import PatternTopUpController, merge_into_tail
from homeswipe.scoring import ScoringEngine
from homeswipe.storage import InMemoryKeyValueStore

from fakes import RENT, FakeSource, make_enricher, make_listing, make_raw, make_signal_store


class DuplicatingSource(FakeSource):
    """Devuelve el pool con ids repetidos, como una API paginada inestable."""

    async def fetch_listings(self, filters, limit=None, offset=0, subregions=None):
        self.calls.append({"limit": limit, "offset": offset})
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.listings + self.listings[:2]


class GatedEnricher:
    """Enricher mínimo para rescore: puede quedar bloqueado hasta abrir el gate."""

    def __init__(self, engine):
        self.engine = engine
        self.gate = asyncio.Event()
        self.block = False
        self.scores: dict[str, int] = {}

    async def rescore(self, listing, signals):
        if self.block:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        return self.scores.get(listing.id, listing.match_score)


def _controller(source, store=None):
    store = store or InMemoryKeyValueStore()
    signal_store = make_signal_store(store)
    enricher = make_enricher(store, signal_store=signal_store)
    return PatternTopUpController(source, enricher, signal_store), signal_store


def _gated_controller():
    signal_store = make_signal_store(InMemoryKeyValueStore())
    enricher = GatedEnricher(ScoringEngine(signal_store))
    return PatternTopUpController(FakeSource(), enricher, signal_store), enricher


def test_merge_into_tail_keeps_seen_prefix():
    feed = [make_listing("a", 90), make_listing("b", 50), make_listing("c", 70), make_listing("d", 60)]
    new = [make_listing("e", 80), make_listing("a", 99), make_listing("c", 99), make_listing("f", 55)]

    merged = merge_into_tail(feed, 2, new)

    assert merged[:2] == feed[:2]
    assert merged[0] is feed[0]
    assert [listing.id for listing in merged] == ["a", "b", "e", "c", "d", "f"]
    assert [listing.id for listing in feed] == ["a", "b", "c", "d"]


def test_merge_into_tail_clamps_cursor():
    feed = [make_listing("a", 60)]
    assert [l.id for l in merge_into_tail(feed, 10, [make_listing("z", 99)])] == ["a", "z"]
    assert [l.id for l in merge_into_tail(feed, -3, [make_listing("z", 99)])] == ["z", "a"]


def test_should_trigger_every_n_swipes():
    controller, _ = _controller(FakeSource())
    every = get_settings().pattern_trigger_swipes
    assert not controller.should_trigger(0)
    assert not controller.should_trigger(every - 1)
    assert controller.should_trigger(every)
    assert not controller.should_trigger(every + 1)
    assert controller.should_trigger(every * 2)


def test_pattern_matches_exclude_known_and_duplicate_ids():
    pool = [make_raw(f"n{i}", price=2000 + 100 * i) for i in range(8)]
    source = DuplicatingSource(pool)
    controller, _ = _controller(source)

    matches = asyncio.run(
        controller.fetch_pattern_matches(RENT, exclude_ids={"n0", "n3"}, target_count=4)
    )

    ids = [listing.id for listing in matches]
    assert len(ids) == 4
    assert len(set(ids)) == len(ids)
    assert not {"n0", "n3"} & set(ids)
    assert all(listing.enriched for listing in matches)
    assert [l.match_score for l in matches] == sorted((l.match_score for l in matches), reverse=True)
    assert controller.status_message == "Added 4 new homes that match your pattern."


def test_pattern_pagination_advances_offset():
    settings = get_settings()
    source = FakeSource([make_raw(f"n{i}") for i in range(200)])
    controller, _ = _controller(source)

    async def scenario():
        await controller.fetch_pattern_matches(RENT, set(), target_count=2)
        await controller.fetch_pattern_matches(RENT, set(), target_count=2)

    asyncio.run(scenario())
    pool_size = 2 * settings.pattern_pool_multiplier
    assert [c["offset"] for c in source.calls] == [
        settings.listing_limit,
        settings.listing_limit + pool_size,
    ]
    assert all(c["limit"] == pool_size for c in source.calls)

    controller.reset()
    asyncio.run(controller.fetch_pattern_matches(RENT, set(), target_count=2))
    assert source.calls[-1]["offset"] == settings.listing_limit


def test_concurrent_top_up_is_a_no_op():
    source = DuplicatingSource([make_raw(f"n{i}") for i in range(5)], delay=0.01)
    controller, _ = _controller(source)

    async def scenario():
        return await asyncio.gather(
            controller.fetch_pattern_matches(RENT, set(), target_count=2),
            controller.fetch_pattern_matches(RENT, set(), target_count=2),
        )

    first, second = asyncio.run(scenario())
    assert len(first) == 2
    assert second == []
    assert len(source.calls) == 1
    assert controller.in_flight is False


def test_nothing_new_message():
    source = DuplicatingSource([make_raw("n0")])
    controller, _ = _controller(source)
    matches = asyncio.run(controller.fetch_pattern_matches(RENT, {"n0"}))
    assert matches == []
    assert controller.status_message == "No new matches for your pattern right now."


def test_pre_rank_prefers_liked_price_range():
    async def scenario():
        controller, signal_store = _controller(FakeSource())
        for price in (2000, 2400, 2200):
            await signal_store.record_swipe(ListingTags(), "right", price=price, price_type="rent")
        signals = controller.engine.signals()
        near = controller.pre_rank_score(make_raw("near", price=2300), signals)
        far = controller.pre_rank_score(make_raw("far", price=6000), signals)
        return near, far

    near, far = asyncio.run(scenario())
    assert near > far


def test_rescore_only_touches_unseen_tail():
    controller, enricher = _gated_controller()
    listings = [make_listing(f"l{i}", 60) for i in range(5)]
    before = list(listings)
    enricher.scores = {"l0": 99, "l1": 99, "l2": 61, "l3": 90, "l4": 75}

    applied = asyncio.run(controller.rescore_remaining(listings, 2))

    assert applied is True
    assert listings[:2] == before[:2]
    assert listings[0] is before[0] and listings[1] is before[1]
    assert [l.id for l in listings[2:]] == ["l3", "l4", "l2"]
    assert [l.match_score for l in listings[2:]] == [90, 75, 61]


def test_stale_rescore_is_discarded():
    controller, enricher = _gated_controller()
    listings = [make_listing(f"l{i}", 60) for i in range(4)]

    async def scenario():
        # A: queda bloqueado con scores que pondrían l1 primero
        enricher.block = True
        enricher.scores = {"l1": 95, "l2": 10, "l3": 20}
        task_a = asyncio.create_task(controller.rescore_remaining(listings, 1))
        await asyncio.sleep(0)

        # B: se pide después y termina primero
        enricher.block = False
        enricher.scores = {"l1": 10, "l2": 30, "l3": 95}
        result_b = await controller.rescore_remaining(listings, 1)
        order_after_b = [l.id for l in listings]

        enricher.scores = {"l1": 95, "l2": 10, "l3": 20}
        enricher.gate.set()
        result_a = await task_a
        return result_a, result_b, order_after_b

    result_a, result_b, order_after_b = asyncio.run(scenario())
    assert result_b is True
    assert result_a is False
    assert order_after_b == ["l0", "l3", "l2", "l1"]
    assert [l.id for l in listings] == ["l0", "l3", "l2", "l1"]
    assert controller.latest_rescore_run == 2
