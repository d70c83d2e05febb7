import asyncio
import json

from homeswipe.analysis import KeywordTagDetector, MatchExplainer, TagExtractor, tag_based_explanation
from homeswipe.exceptions import LLMTransientError
from homeswipe.models import CommuteTime, ListingTags, PreferenceSignals
from homeswipe.storage import InMemoryKeyValueStore, SubwayLinesCache, TagsCache

from fakes import FakeProvider, make_listing

FEATURES_TEXT = (
    "Elevator building with a full-time doorman and in-unit washer/dryer. "
    "Pets allowed. Steps from the A, C and E trains. Quiet tree-lined block."
)

LLM_TAGS = {
    "natural_light": True,
    "elevator": True,
    "laundry_in_building": False,
    "laundry_in_unit": False,
    "doorman": False,
    "pet_friendly": True,
    "dishwasher": True,
    "renovated": False,
    "near_subway_lines": ["q", "B"],
    "noise_level": "average",
    "building_type": "elevator",
}


def _extractor(store, provider=None):
    return TagExtractor(
        provider=provider,
        tags_cache=TagsCache(store),
        subway_cache=SubwayLinesCache(store),
        use_default_provider=False,
    )


class TestKeywordTagDetector:
    def test_detects_features_lines_and_context(self):
        tags = KeywordTagDetector().detect_tags(FEATURES_TEXT)
        assert tags.elevator is True
        assert tags.doorman is True
        assert tags.laundry_in_unit is True
        assert tags.pet_friendly is True
        assert tags.dishwasher is False
        assert tags.near_subway_lines == ["A", "C", "E"]
        assert tags.noise_level == "quiet"
        assert tags.building_type == "elevator"

    def test_walkup_overrides_elevator(self):
        tags = KeywordTagDetector().detect_tags("Fourth-floor walk-up, no elevator. Dishwasher included.")
        assert tags.building_type == "walkup"
        assert tags.elevator is False
        assert tags.dishwasher is True

    def test_negations_and_exclusions(self):
        detector = KeywordTagDetector()
        features = detector.detect_features("No dishwasher. Laundromat nearby. Pets not allowed.")
        assert features["dishwasher"] is False
        assert features["laundry_in_building"] is False
        assert features["pet_friendly"] is False

    def test_subway_lines_need_uppercase_line_names(self):
        detector = KeywordTagDetector()
        assert detector.detect_subway_lines("A short walk to the park.") == []
        assert detector.detect_subway_lines("Near the Q/R line and the 2 & 3 subway") == ["Q", "R", "2", "3"]


class TestTagExtractor:
    def test_llm_tags_are_parsed_cached_and_reused(self):
        async def scenario():
            store = InMemoryKeyValueStore()
            provider = FakeProvider(["```json\n" + json.dumps(LLM_TAGS) + "\n```"])
            extractor = _extractor(store, provider)
            listing = make_listing("l1")
            first = await extractor.extract(listing, "Dishwasher, bright corner unit")
            second = await extractor.extract(listing)
            return first, second, provider.calls, await store.get("tags:l1")

        first, second, calls, stored = asyncio.run(scenario())
        assert len(calls) == 1
        assert "Real features from web" in calls[0][1]
        assert "REAL feature data" in calls[0][0]
        assert first == second
        assert first.near_subway_lines == ["Q", "B"]
        assert first.noise_level == "average"
        assert json.loads(stored)["dishwasher"] is True

    def test_llama_style_json_is_repaired(self):
        raw = """Here you go:
{
  "elevator": true // visible in photos
  "doorman": true,
  "near_subway_lines": ["L"],
}"""
        tags = _extractor(InMemoryKeyValueStore()).parse_tags(raw)
        assert tags.elevator is True
        assert tags.doorman is True
        assert tags.near_subway_lines == ["L"]

    def test_parse_failure_gives_neutral_tags_not_persisted(self):
        async def scenario():
            store = InMemoryKeyValueStore()
            extractor = _extractor(store, FakeProvider(["I cannot help with that."]))
            tags = await extractor.extract(make_listing("l2"))
            return tags, await store.get("tags:l2")

        tags, stored = asyncio.run(scenario())
        assert tags == ListingTags()
        assert stored is None

    def test_transient_errors_are_retried(self):
        async def scenario():
            provider = FakeProvider([LLMTransientError("429"), json.dumps(LLM_TAGS)])
            tags = await _extractor(InMemoryKeyValueStore(), provider).extract(make_listing("l3"))
            return tags, provider.calls

        tags, calls = asyncio.run(scenario())
        assert len(calls) == 2
        assert tags.dishwasher is True

    def test_without_llm_uses_keywords_on_feature_text(self):
        async def scenario():
            store = InMemoryKeyValueStore()
            extractor = _extractor(store)
            with_text = await extractor.extract(make_listing("l4"), FEATURES_TEXT)
            without_text = await extractor.extract(make_listing("l5"))
            return with_text, without_text, await store.get("tags:l5")

        with_text, without_text, stored_neutral = asyncio.run(scenario())
        assert with_text.doorman is True
        assert with_text.near_subway_lines == ["A", "C", "E"]
        assert without_text == ListingTags()
        assert stored_neutral is None

    def test_subway_lines_shared_by_address(self):
        async def scenario():
            store = InMemoryKeyValueStore()
            responses = [
                json.dumps({**LLM_TAGS, "near_subway_lines": ["F"]}),
                json.dumps({**LLM_TAGS, "near_subway_lines": []}),
            ]
            extractor = _extractor(store, FakeProvider(responses))
            address = "10 Orchard St, New York, NY 10002"
            first = await extractor.extract(make_listing("u1", address=address))
            second = await extractor.extract(make_listing("u2", address=address))
            return first, second

        first, second = asyncio.run(scenario())
        assert first.near_subway_lines == ["F"]
        assert second.near_subway_lines == ["F"]


class TestMatchExplainer:
    def test_tag_based_line_before_warm_start(self):
        async def scenario():
            provider = FakeProvider(["should not be used"])
            explainer = MatchExplainer(provider=provider)
            tags = ListingTags(elevator=True, doorman=True, near_subway_lines=["A", "C"])
            text = await explainer.explain(make_listing("e1"), tags, PreferenceSignals(total_swipes=1))
            return text, provider.calls

        text, calls = asyncio.run(scenario())
        assert text == "2bd/1ba · elevator, doorman, near A, C"
        assert calls == []

    def test_tag_based_line_without_highlights(self):
        assert tag_based_explanation(make_listing("e2"), None) == "2bd/1ba in New York 10001"

    def test_warm_explanation_from_llm(self):
        async def scenario():
            provider = FakeProvider(['"Doorman elevator building, 15min to work."'])
            explainer = MatchExplainer(provider=provider)
            listing = make_listing(
                "e3", commute_times=[CommuteTime(place_id="w", label="Work", minutes=15)]
            )
            signals = PreferenceSignals(total_swipes=4, liked_features=["doorman"])
            text = await explainer.explain(listing, ListingTags(doorman=True), signals)
            return text, provider.calls

        text, calls = asyncio.run(scenario())
        assert text == "Doorman elevator building, 15min to work."
        assert "Matching features: doorman" in calls[0][1]
        assert "Work: 15min" in calls[0][1]

    def test_warm_explanation_falls_back_on_error(self):
        async def scenario():
            explainer = MatchExplainer(provider=FakeProvider([RuntimeError("boom")]))
            listing = make_listing("e4", tradeoff="Short 12min avg commute")
            signals = PreferenceSignals(total_swipes=4, liked_features=["doorman"])
            return await explainer.explain(listing, ListingTags(doorman=True), signals)

        assert asyncio.run(scenario()) == "doorman · Short 12min avg commute"
