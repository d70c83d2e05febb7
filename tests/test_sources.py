import asyncio

import pytest

from homeswipe.exceptions import ListingSourceError
from homeswipe.models import CommuteTime, ListingFilters, SavedPlace
from homeswipe.sources import (
    CommuteService,
    FeatureLookup,
    RentCastSource,
    build_streeteasy_url,
    build_tradeoff,
    flatten_text_blocks,
    interleave_unique,
)
from homeswipe.sources.rentcast import parse_rentcast_item
from homeswipe.storage import (
    FeatureDescriptionCache,
    GeocodeCache,
    InMemoryKeyValueStore,
    UserPreferencesRepository,
)

from fakes import FakeSource, make_raw


def test_streeteasy_url_from_address():
    assert (
        build_streeteasy_url("15 Hudson Yards, # 35F, New York, NY 10001")
        == "https://streeteasy.com/building/15-hudson-yards/35f"
    )
    assert (
        build_streeteasy_url("123 W. 45th St, Apt 4B, New York, NY")
        == "https://streeteasy.com/building/123-w-45th-st/4b"
    )
    assert build_streeteasy_url("8 Spruce St, New York, NY") == "https://streeteasy.com/building/8-spruce-st"


def test_parse_rentcast_item():
    raw = parse_rentcast_item(
        {
            "id": "15-Hudson-Yards,-Apt-35F",
            "formattedAddress": "15 Hudson Yards, Apt 35F, New York, NY 10001",
            "city": "New York",
            "state": "NY",
            "zipCode": "10001",
            "latitude": 40.7536,
            "longitude": -74.0006,
            "bedrooms": 2,
            "bathrooms": None,
            "price": 7450,
        },
        "rent",
    )
    assert raw.price == 7450
    assert raw.bathrooms == 0
    assert raw.neighborhood == "New York 10001"
    assert parse_rentcast_item({"price": 100}, "rent") is None


def test_to_listing_uses_streeteasy_link():
    source = RentCastSource(api_key="test")
    listing = source.to_listing(make_raw("r1", formatted_address="8 Spruce St, Apt 2, New York"), 64)
    assert listing.external_listing_url == "https://streeteasy.com/building/8-spruce-st/2"
    assert listing.match_score == 64
    assert listing.enriched is False
    assert listing.tags is None


def test_rentcast_without_key_fails():
    source = RentCastSource()
    source.api_key = None
    with pytest.raises(ListingSourceError):
        asyncio.run(source.search("New York", "NY", "rent"))


def test_interleave_unique_round_robin():
    a1, a2, b1, b2, b3 = (make_raw(i) for i in ("a1", "a2", "b1", "b2", "b3"))
    merged = interleave_unique([[a1, a2], [b1, a1, b3], []])
    assert [r.id for r in merged] == ["a1", "b1", "a2", "b3"]
    assert [r.id for r in interleave_unique([[a1, b2]])] == ["a1", "b2"]


def test_fetch_listings_both_price_types_and_subregions():
    source = FakeSource(
        [make_raw("r1"), make_raw("r2"), make_raw("s1", price=900000, price_type="buy")]
    )
    listings = asyncio.run(
        source.fetch_listings(
            ListingFilters(price_type="both"), limit=5, subregions=["Manhattan", "Brooklyn"]
        )
    )
    # Las dos sub-regiones devuelven lo mismo: se deduplica por id
    assert [r.id for r in listings] == ["r1", "r2", "s1"]
    assert [(c["price_type"], c["city"]) for c in source.calls] == [
        ("rent", "Manhattan"),
        ("rent", "Brooklyn"),
        ("buy", "Manhattan"),
        ("buy", "Brooklyn"),
    ]


def test_build_tradeoff():
    short = [CommuteTime(place_id="w", label="Work", minutes=12), CommuteTime(place_id="g", label="Gym", minutes=20)]
    long = [CommuteTime(place_id="w", label="Work", minutes=42)]
    assert build_tradeoff(short, 2400, "rent") == "Short 16min avg commute"
    assert build_tradeoff(long, 2400, "rent") == "42min avg commute, $2,400/mo"
    assert build_tradeoff(long, 850000, "buy") == "42min avg commute, $850,000"
    assert build_tradeoff([], 2400, "rent") == ""


def test_flatten_text_blocks():
    blocks = [
        {"type": "paragraph", "snippet": "Full-service building."},
        {"type": "heading", "snippet": "Amenities"},
        {"type": "list", "list": [{"snippet": "Doorman"}, {"snippet": "Gym"}, {"nope": 1}]},
        "garbage",
    ]
    assert flatten_text_blocks(blocks) == "Full-service building.\n\nAmenities:\n- Doorman\n- Gym"
    assert flatten_text_blocks(None) == ""


def test_feature_lookup_uses_cache_before_network():
    async def scenario():
        store = InMemoryKeyValueStore()
        cache = FeatureDescriptionCache(store)
        await cache.set("8 Spruce St, New York", "Doorman, gym")
        lookup = FeatureLookup(api_key="test", cache=cache)

        async def no_network(*args, **kwargs):
            raise AssertionError("no debería consultar la red")

        lookup._get_json = no_network
        return await lookup.fetch_features("8  spruce st, new york")

    assert asyncio.run(scenario()) == "Doorman, gym"


def _commute_service(store, responses):
    prefs = UserPreferencesRepository(store)
    service = CommuteService(
        mapbox_token="mapbox-test",
        here_api_key="here-test",
        preferences_repo=prefs,
        geocode_cache=GeocodeCache(store),
    )
    calls = []

    async def fake_get_json(url, params=None, headers=None):
        calls.append(url)
        for fragment, payload in responses.items():
            if fragment in url:
                return payload
        raise ValueError(f"URL inesperada: {url}")

    service._get_json = fake_get_json
    return service, prefs, calls


def test_commute_times_transit_and_memoization():
    responses = {
        "geocoding": {"features": [{"center": [-73.9857, 40.7484]}]},
        "transit.router": {
            "routes": [
                {
                    "sections": [
                        {
                            "type": "pedestrian",
                            "departure": {"time": "2025-01-06T08:00:00-05:00"},
                            "arrival": {"time": "2025-01-06T08:06:00-05:00"},
                        },
                        {
                            "type": "transit",
                            "transport": {"shortName": "Q"},
                            "departure": {"time": "2025-01-06T08:08:00-05:00"},
                            "arrival": {"time": "2025-01-06T08:31:00-05:00"},
                        },
                    ]
                }
            ]
        },
    }

    async def scenario():
        store = InMemoryKeyValueStore()
        service, prefs, calls = _commute_service(store, responses)
        await prefs.set_saved_places(
            [SavedPlace(id="work", label="Work", address="350 5th Ave, New York, NY")]
        )
        first = await service.calculate_commute_times(40.70, -73.95)
        second = await service.calculate_commute_times(40.70, -73.95)
        return first, second, calls

    first, second, calls = asyncio.run(scenario())
    assert first == [CommuteTime(place_id="work", label="Work", minutes=31)]
    assert second == first
    assert sum("geocoding" in url for url in calls) == 1
    assert sum("transit.router" in url for url in calls) == 1


def test_commute_times_with_mapbox_profile():
    responses = {
        "geocoding": {"features": [{"center": [-73.9857, 40.7484]}]},
        "directions/v5/mapbox/cycling": {"routes": [{"duration": 1290.0}]},
    }

    async def scenario():
        store = InMemoryKeyValueStore()
        service, prefs, _ = _commute_service(store, responses)
        await prefs.set_saved_places([SavedPlace(id="gym", label="Gym", address="1 Gym Way")])
        await prefs.set_commute_mode("bike")
        return await service.calculate_commute_times(40.70, -73.95)

    assert asyncio.run(scenario()) == [CommuteTime(place_id="gym", label="Gym", minutes=22)]


def test_commute_times_degrade_to_empty():
    async def scenario():
        store = InMemoryKeyValueStore()
        service, prefs, calls = _commute_service(store, {"geocoding": {"features": []}})
        no_coords = await service.calculate_commute_times(None, -73.95)
        no_places = await service.calculate_commute_times(40.7, -73.95)
        service.reset_places_cache()
        await prefs.set_saved_places([SavedPlace(id="x", label="X", address="Nowhere")])
        not_geocoded = await service.calculate_commute_times(40.7, -73.95)
        return no_coords, no_places, not_geocoded

    assert asyncio.run(scenario()) == ([], [], [])
