import asyncio
import itertools

from homeswipe.models import CommuteTime, ListingTags, PreferenceSignals, QuizAnswers, RangeStats
from homeswipe.scoring import ScoringEngine, cold_start_score, compute_score, range_distance_ratio
from homeswipe.scoring.engine import warm_score
from homeswipe.scoring.ratios import (
    PRICE_LOWEST_BAND,
    PRICE_MATCH_FLOOR,
    commute_proximity,
    price_proximity,
    range_penalty,
)
from homeswipe.storage import InMemoryKeyValueStore

from fakes import make_signal_store

LIKED_RENT = RangeStats(min=2000, max=2400, avg=2200)


def _tag_variants():
    for light, elevator, lines, noise, building in itertools.product(
        (True, False),
        (True, False),
        ([], ["A"], ["A", "C"], ["A", "C", "E"]),
        ("quiet", "average", "unknown"),
        ("walkup", "elevator", "unknown"),
    ):
        yield ListingTags(
            natural_light=light,
            elevator=elevator,
            near_subway_lines=lines,
            noise_level=noise,
            building_type=building,
        )


def test_cold_start_neutral_listing_scores_64():
    breakdown = cold_start_score(ListingTags())
    assert breakdown.mode == "cold"
    assert round(breakdown.raw, 4) == 0.19
    assert breakdown.score == 64


def test_cold_start_best_listing_hits_the_top_of_the_band():
    tags = ListingTags(
        natural_light=True,
        elevator=True,
        laundry_in_building=True,
        laundry_in_unit=True,
        doorman=True,
        pet_friendly=True,
        dishwasher=True,
        renovated=True,
        near_subway_lines=["A", "C", "E"],
        noise_level="quiet",
        building_type="elevator",
    )
    assert cold_start_score(tags).score == 92


def test_cold_start_scores_stay_in_band():
    scores = {cold_start_score(tags).score for tags in _tag_variants()}
    assert min(scores) >= 58
    assert max(scores) <= 92
    assert len(scores) > 1


def test_invalid_tags_count_as_neutral():
    assert cold_start_score({"elevator": "yes", "noise_level": "loud"}).score == 64
    assert cold_start_score(None).score == 64
    assert cold_start_score("garbage").score == 64


def test_warm_scores_stay_in_band():
    signals_variants = [
        PreferenceSignals(total_swipes=5),
        PreferenceSignals(
            total_swipes=8,
            liked_features=["elevator", "doorman"],
            disliked_features=["renovated", "natural_light"],
            liked_subway=["A", "C"],
            disliked_subway=["G"],
            liked_context=["building:elevator"],
            disliked_context=["building:walkup", "noise:average"],
            liked_price={"rent": LIKED_RENT},
            disliked_price={"rent": RangeStats(min=3800, max=4200, avg=4000)},
            liked_commute=RangeStats(min=15, max=25, avg=20),
            disliked_commute=RangeStats(min=50, max=70, avg=60),
        ),
    ]
    quizzes = [None, QuizAnswers(commute="short", budget="save", style="quiet")]
    prices = [None, 1500, 2300, 4000, 9000]
    commutes = [[]] + [[CommuteTime(place_id="w", label="Work", minutes=m)] for m in (10, 65)]

    for signals, quiz, price, commute in itertools.product(signals_variants, quizzes, prices, commutes):
        for tags in _tag_variants():
            score = warm_score(tags, price, "rent", commute, signals, quiz).score
            assert 55 <= score <= 98


def test_price_inside_liked_range_is_in_match_band():
    assert range_distance_ratio(2300, LIKED_RENT) == 0
    ratio = price_proximity(2300, LIKED_RENT)
    assert PRICE_MATCH_FLOOR <= ratio <= 1.0


def test_price_far_above_liked_range_is_in_lowest_band():
    assert range_distance_ratio(4000, LIKED_RENT) > 0.5
    assert price_proximity(4000, LIKED_RENT) == PRICE_LOWEST_BAND


def test_price_without_history_is_neutral():
    assert price_proximity(2300, None) == 0.5
    assert price_proximity(None, LIKED_RENT) == 0.5


def test_shorter_commute_never_penalized():
    liked = RangeStats(min=20, max=40, avg=30)
    assert commute_proximity(5, liked) == 1.0
    assert commute_proximity(80, liked) < commute_proximity(35, liked)


def test_range_penalty_skips_values_inside_liked_range():
    disliked = RangeStats(min=2200, max=2600, avg=2400)
    assert range_penalty(2300, disliked, LIKED_RENT) == 0.0
    assert range_penalty(2550, disliked, LIKED_RENT) == 1.0


def test_disliked_feature_lowers_warm_score():
    signals = PreferenceSignals(total_swipes=4, disliked_features=["doorman"])
    with_doorman = warm_score(ListingTags(doorman=True), 2400, "rent", [], signals).score
    without = warm_score(ListingTags(), 2400, "rent", [], signals).score
    assert with_doorman < without


def test_quiz_nudges_quiet_style():
    signals = PreferenceSignals(total_swipes=4)
    quiz = QuizAnswers(style="quiet")
    quiet = warm_score(ListingTags(noise_level="quiet"), 2400, "rent", [], signals, quiz)
    assert quiet.nudges["style"] > 0
    plain = warm_score(ListingTags(noise_level="quiet"), 2400, "rent", [], signals)
    assert quiet.score >= plain.score


def test_compute_score_is_pure():
    signals = PreferenceSignals(
        total_swipes=6, liked_features=["elevator"], liked_price={"rent": LIKED_RENT}
    )
    tags = ListingTags(elevator=True, near_subway_lines=["Q"])
    first = compute_score(tags, 2300, "rent", [], signals)
    second = compute_score(tags, 2300, "rent", [], signals)
    assert first == second


def test_likes_with_elevator_rank_elevator_listing_higher():
    async def scenario():
        signal_store = make_signal_store(InMemoryKeyValueStore())
        for _ in range(5):
            await signal_store.record_swipe(ListingTags(elevator=True), "right")
        engine = ScoringEngine(signal_store)

        with_elevator = engine.compute_score(ListingTags(elevator=True), 2400, "rent")
        without = engine.compute_score(ListingTags(elevator=False), 2400, "rent")
        repeated = engine.compute_score(ListingTags(elevator=True), 2400, "rent")
        return with_elevator, without, repeated

    with_elevator, without, repeated = asyncio.run(scenario())
    assert with_elevator > without
    assert with_elevator == repeated


def test_engine_switches_to_warm_after_three_swipes():
    async def scenario():
        signal_store = make_signal_store(InMemoryKeyValueStore())
        engine = ScoringEngine(signal_store)
        modes = [engine.breakdown(ListingTags(), 2400, "rent").mode]
        for _ in range(3):
            await signal_store.record_swipe(ListingTags(), "left")
            modes.append(engine.breakdown(ListingTags(), 2400, "rent").mode)
        return modes

    assert asyncio.run(scenario()) == ["cold", "cold", "cold", "warm"]


def test_single_dislike_does_not_penalize_its_features():
    async def scenario():
        signal_store = make_signal_store(InMemoryKeyValueStore())
        await signal_store.record_swipe(ListingTags(), "right")
        await signal_store.record_swipe(ListingTags(), "right")
        await signal_store.record_swipe(ListingTags(doorman=True), "left")
        engine = ScoringEngine(signal_store)
        return (
            engine.compute_score(ListingTags(doorman=True), 2400, "rent"),
            engine.compute_score(ListingTags(), 2400, "rent"),
        )

    with_doorman, without = asyncio.run(scenario())
    assert with_doorman == without
