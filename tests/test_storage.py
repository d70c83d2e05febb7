import asyncio
import json

from homeswipe.models import EnrichmentStatus, ListingFilters, ListingTags, QuizAnswers
from homeswipe.storage import (
    GeocodeCache,
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    SavedListingsRepository,
    SessionSnapshotRepository,
    SubwayLinesCache,
    TagsCache,
    UserPreferencesRepository,
)

from homeswipe.storage.supabase_client import SupabaseClient, SupabaseKeyValueStore

from fakes import FakeSupabaseClient, make_listing


def test_tags_cache_roundtrip_and_memory_layer():
    async def scenario():
        store = InMemoryKeyValueStore()
        cache = TagsCache(store)
        await cache.set("abc", ListingTags(doorman=True))

        stored = json.loads(await store.get("tags:abc"))
        await store.remove("tags:abc")
        # La capa en memoria sigue respondiendo
        return stored, await cache.get("abc")

    stored, cached = asyncio.run(scenario())
    assert stored["doorman"] is True
    assert cached.doorman is True


def test_corrupt_cache_entry_is_discarded():
    async def scenario():
        store = InMemoryKeyValueStore({"tags:abc": "{not json", "tags:def": "[1, 2]"})
        cache = TagsCache(store)
        return (
            await cache.get("abc"),
            await cache.get("def"),
            await store.get("tags:abc"),
            await store.get("tags:def"),
        )

    assert asyncio.run(scenario()) == (None, None, None, None)


def test_address_caches_normalize_keys():
    async def scenario():
        store = InMemoryKeyValueStore()
        await SubwayLinesCache(store).set("  15 Hudson Yards,   New York ", ["A", "C"])
        await GeocodeCache(store).set("15 Hudson Yards, New York", (-74.0, 40.75))

        fresh_subway = SubwayLinesCache(store)
        fresh_geo = GeocodeCache(store)
        return (
            await fresh_subway.get("15 hudson yards, new york"),
            await fresh_geo.get("15 HUDSON YARDS, NEW YORK"),
            sorted(store.keys()),
        )

    lines, coords, keys = asyncio.run(scenario())
    assert lines == ["A", "C"]
    assert coords == (-74.0, 40.75)
    assert keys == ["geo:15 hudson yards, new york", "subway:15 hudson yards, new york"]


def test_session_snapshot_roundtrip_and_invalid_listings():
    async def scenario():
        store = InMemoryKeyValueStore()
        repo = SessionSnapshotRepository(store)
        filters = ListingFilters(price_type="rent", bedrooms=2)
        status = EnrichmentStatus(enriched_count=1, total=2)
        await repo.save(filters, [make_listing("a"), make_listing("b")], status)

        key = "session:rent_2_any"
        data = json.loads(await store.get(key))
        data["listings"].append({"id": "broken"})
        await store.set(key, json.dumps(data))

        snapshot = await repo.get(filters)
        await store.set(key, json.dumps({"listings": [{"id": "broken"}]}))
        emptied = await repo.get(filters)
        return snapshot, emptied, await store.get(key)

    snapshot, emptied, remaining = asyncio.run(scenario())
    assert [listing.id for listing in snapshot.listings] == ["a", "b"]
    assert snapshot.enrichment_status.enriched_count == 1
    assert emptied is None
    assert remaining is None


def test_saved_listings_replace_by_id():
    async def scenario():
        repo = SavedListingsRepository(InMemoryKeyValueStore())
        await repo.add(make_listing("a", score=60))
        await repo.add(make_listing("b"))
        await repo.add(make_listing("a", score=80))
        return await repo.get_all()

    saved = asyncio.run(scenario())
    assert [listing.id for listing in saved] == ["b", "a"]
    assert saved[-1].match_score == 80


def test_quiz_answers_are_stored_once():
    async def scenario():
        repo = UserPreferencesRepository(InMemoryKeyValueStore())
        first = await repo.set_quiz_answers(QuizAnswers(style="quiet"))
        second = await repo.set_quiz_answers(QuizAnswers(style="classic"))
        return first, second, await repo.get_quiz_answers()

    first, second, quiz = asyncio.run(scenario())
    assert (first, second) == (True, False)
    assert quiz.style == "quiet"


def test_commute_mode_defaults_to_transit():
    async def scenario():
        repo = UserPreferencesRepository(InMemoryKeyValueStore())
        default = await repo.get_commute_mode()
        await repo.set_commute_mode("bike")
        return default, await repo.get_commute_mode()

    assert asyncio.run(scenario()) == ("transit", "bike")


def test_json_file_store_persists(tmp_path):
    path = tmp_path / "store.json"

    async def scenario():
        store = JsonFileKeyValueStore(path)
        await store.set("commuteMode", "walk")
        await store.set("other", "x")
        await store.remove("other")
        return await JsonFileKeyValueStore(path).get("commuteMode"), await JsonFileKeyValueStore(path).get("other")

    assert asyncio.run(scenario()) == ("walk", None)


def test_json_file_store_groups_queued_writes(tmp_path):
    path = tmp_path / "store.json"
    store = JsonFileKeyValueStore(path)

    async def scenario():
        await asyncio.gather(*(store.set(f"k{i}", str(i)) for i in range(5)))

    asyncio.run(scenario())
    assert json.loads(path.read_text(encoding="utf-8")) == {f"k{i}": str(i) for i in range(5)}
    # La primera escritura sale sola; las encoladas detrás se agrupan en una
    assert store.writes == 2


def test_json_file_store_starts_empty_when_unreadable(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{broken", encoding="utf-8")
    assert asyncio.run(JsonFileKeyValueStore(path).get("anything")) is None


def test_supabase_store_awaits_the_async_client():
    fake = FakeSupabaseClient()

    async def scenario():
        store = SupabaseKeyValueStore(SupabaseClient(fake))
        ticks = []

        async def ticker():
            for i in range(3):
                ticks.append(i)
                await asyncio.sleep(0)

        # Otra tarea avanza mientras se escribe: el store no bloquea el loop
        task = asyncio.create_task(ticker())
        await store.set("swipeHistory", '{"liked": []}')
        progressed = len(ticks)
        await task

        value = await store.get("swipeHistory")
        await store.remove("swipeHistory")
        return progressed, value, await store.get("swipeHistory")

    progressed, value, removed = asyncio.run(scenario())
    assert progressed >= 1
    assert value == '{"liked": []}'
    assert removed is None
    assert [action for _, action in fake.calls] == ["upsert", "select", "delete", "select"]
    assert {table for table, _ in fake.calls} == {"kv_store"}
