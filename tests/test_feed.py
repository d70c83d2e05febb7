import asyncio
import json

from homeswipe.config import get_settings
from homeswipe.models import ListingFilters, SwipeDirection
from homeswipe.storage import InMemoryKeyValueStore

from fakes import RENT, FakeFeatureLookup, FakeSource, make_feed, make_raw

ELEVATOR_TEXT = "Elevator building with doorman."
WALKUP_TEXT = "Fifth-floor walk-up."


def _source(count: int = 40):
    return FakeSource([make_raw(f"r{i}", price=2000 + 10 * i) for i in range(count)])


def _features(count: int = 40):
    # Pares con ascensor, impares walk-up
    return FakeFeatureLookup(
        {
            f"r{i} Main St, New York, NY 10001": ELEVATOR_TEXT if i % 2 == 0 else WALKUP_TEXT
            for i in range(count)
        }
    )


def test_swipe_records_feedback_and_advances():
    async def scenario():
        store = InMemoryKeyValueStore()
        feed = make_feed(_source(6), store, features=_features(6))
        await feed.open(RENT)
        first = feed.current
        swiped = await feed.swipe(SwipeDirection.LIKE)
        second = await feed.swipe("left")
        saved = json.loads(await store.get("savedListings"))
        history = json.loads(await store.get("swipeHistory"))
        await feed.close()
        return feed, first, swiped, second, saved, history

    feed, first, swiped, second, saved, history = asyncio.run(scenario())
    assert swiped is first
    assert feed.cursor == 2
    assert [entry["id"] for entry in saved] == [first.id]
    assert len(history["liked"]) == 1
    assert len(history["disliked"]) == 1
    assert history["liked"][0]["price"] == first.price
    assert history["liked"][0]["priceType"] == "rent"
    assert history["liked"][0]["tags"]["doorman"] is True
    assert feed.learned_pattern == "Swipe 1 more home so I can learn your taste."


def test_swipe_without_listings_returns_none():
    async def scenario():
        feed = make_feed(FakeSource([]))
        await feed.open(RENT)
        return await feed.swipe(SwipeDirection.LIKE), feed.is_done

    assert asyncio.run(scenario()) == (None, True)


def test_rescore_after_swipes_keeps_seen_listings():
    async def scenario():
        feed = make_feed(_source(10), features=_features(10), initial_batch_size=10)
        await feed.open(RENT)
        seen = []
        for _ in range(3):
            seen.append(feed.current)
            await feed.swipe(SwipeDirection.LIKE if feed.current.tags.elevator else SwipeDirection.DISLIKE)
        return feed, seen

    feed, seen = asyncio.run(scenario())
    assert feed.listings[:3] == seen
    tail = feed.listings[3:]
    assert [l.match_score for l in tail] == sorted((l.match_score for l in tail), reverse=True)
    # Con likes de edificios con ascensor, los walk-ups quedan al final
    assert tail[0].tags.elevator is True
    assert tail[-1].tags.building_type == "walkup"


def test_top_up_after_trigger_swipes():
    settings = get_settings()

    async def scenario():
        source = _source(settings.listing_limit + 30)
        feed = make_feed(source, features=_features(settings.listing_limit + 30))
        await feed.open(RENT)
        for _ in range(settings.pattern_trigger_swipes):
            await feed.swipe(SwipeDirection.LIKE)
        seen = feed.listings[: feed.cursor]
        await feed.wait_idle()
        return feed, seen, source

    feed, seen, source = asyncio.run(scenario())
    ids = [listing.id for listing in feed.listings]
    assert feed.listings[: feed.cursor] == seen
    assert len(ids) == settings.listing_limit + settings.pattern_target_count
    assert len(set(ids)) == len(ids)
    assert source.calls[-1]["offset"] == settings.listing_limit
    assert feed.status_message.startswith("Added ")
    assert feed.enrichment_status.total == len(ids)
    assert feed.enrichment_status.enriched_count == len(ids)


def test_exhausted_tail_triggers_limited_top_ups():
    async def scenario():
        source = _source(2)
        feed = make_feed(source, features=_features(2))
        await feed.open(RENT)
        await feed.swipe(SwipeDirection.DISLIKE)
        await feed.swipe(SwipeDirection.DISLIKE)
        await feed.wait_idle()
        return feed, source

    feed, source = asyncio.run(scenario())
    top_up_calls = [c for c in source.calls if c["offset"] > 0]
    assert len(top_up_calls) == 1
    assert feed.current is None
    assert feed.status_message == "No new matches for your pattern right now."


def test_changing_filters_resets_cursor():
    async def scenario():
        source = FakeSource(
            [make_raw(f"r{i}") for i in range(3)]
            + [make_raw(f"b{i}", price=900000, price_type="buy") for i in range(3)]
        )
        feed = make_feed(source)
        await feed.open(RENT)
        await feed.swipe(SwipeDirection.LIKE)
        await feed.change_filters(ListingFilters(price_type="buy"))
        return feed

    feed = asyncio.run(scenario())
    assert feed.cursor == 0
    assert feed.current.id == "b0"
    assert feed.signal_store.get_total_swipes() == 1


def test_close_waits_for_pending_tasks():
    settings = get_settings()

    async def scenario():
        source = FakeSource(
            [make_raw(f"r{i}", price=2000 + 10 * i) for i in range(settings.listing_limit + 30)],
            delay=0.01,
        )
        feed = make_feed(source, features=_features(settings.listing_limit + 30))
        await feed.open(RENT)
        for _ in range(settings.pattern_trigger_swipes):
            await feed.swipe(SwipeDirection.LIKE)
        tasks = [feed._topup_task, feed.pipeline._background_task]
        await feed.close()
        return feed, tasks

    feed, tasks = asyncio.run(scenario())
    assert all(task is not None and task.done() for task in tasks)
    assert feed._retired_tasks == set()
    assert len(feed.listings) == settings.listing_limit
    assert feed.topup.in_flight is False
