from datetime import datetime

from discovery.recommendations.models import (
    Coordinates,
    ParsedQuery,
    Place,
    PlaceList,
    ResolvedLocation,
    ScoredCandidate,
    SortMode,
    UserContext,
    UserProfile,
)
from discovery.recommendations.query import parse
from discovery.recommendations.ranking import (
    NAME_MATCH,
    TAG_FILTER_MATCH,
    TEXT_MATCH,
    popularity_of,
    rank,
    reason_for,
    score_candidate,
    to_results,
)

ORIGIN = ResolvedLocation(lat=37.7749, lng=-122.4194)

BLUE_BOTTLE = Place(id="p-1", name="Blue Bottle Coffee", tags={"coffee"}, popularity=100)
PHILZ = Place(id="p-2", name="Philz Coffee", tags={"coffee"}, popularity=500)


def _names(scored):
    return [sc.item.name for sc in scored]


def _at(name, lat, lng, popularity=0):
    return Place(name=name, coordinates=Coordinates(lat=lat, lng=lng), popularity=popularity)


def test_name_match_beats_no_match():
    scored = rank([PHILZ, BLUE_BOTTLE], parse("blue bottle"))
    assert _names(scored) == ["Blue Bottle Coffee", "Philz Coffee"]
    assert scored[0].score == NAME_MATCH
    assert scored[1].score == 0.0


def test_score_components_add_up():
    place = Place(
        name="Coffee Corner",
        description="Great coffee all day",
        tags={"coffee", "cafe"},
    )
    # name 4 + description 2 + tag text 3 + tag filter 5
    assert score_candidate(place, parse("coffee", ["cafe"])) == 14.0


def test_address_counts_as_text_for_places():
    place = Place(name="Somewhere", address="12 Valencia St")
    assert score_candidate(place, parse("valencia")) == 2.0


def test_query_must_match_within_one_field():
    place = Place(name="Workshop", description="Coffee bar in a converted garage", address="66 Mint St")
    assert score_candidate(place, parse("garage 66")) == 0.0
    assert score_candidate(place, parse("converted garage")) == TEXT_MATCH


def test_users_are_scored_on_name_bio_and_tags():
    bob = UserProfile(id="u-2", name="Bob Ramirez", username="tacobob", bio="Taco crawls every Saturday",
                      tags={"tacos"}, influences=85)
    assert score_candidate(bob, parse("tacobob")) == NAME_MATCH
    assert score_candidate(bob, parse("saturday")) == TEXT_MATCH
    # username 4 + bio 2 + tag text 3
    assert score_candidate(bob, parse("taco")) == 9.0
    assert score_candidate(bob, parse("", ["tacos"])) == TAG_FILTER_MATCH


def test_user_influences_count_as_popularity():
    alice = UserProfile(id="u-1", name="Alice", influences=120)
    assert popularity_of(alice) == 120
    scored = rank([BLUE_BOTTLE, alice], parse(""), sort_mode=SortMode.popular)
    assert _names(scored) == ["Alice", "Blue Bottle Coffee"]


def test_tag_filter_matches_exact_tags_only():
    place = Place(name="x", tags={"coffee_shop"})
    assert score_candidate(place, parse("", ["coffee"])) == 0.0
    assert score_candidate(Place(name="x", tags={"coffee"}), parse("", ["coffee"])) == TAG_FILTER_MATCH


def test_lists_are_scored_on_their_text():
    lst = PlaceList(id="l-1", name="Best Coffee in SF", owner_id="u1", like_count=10)
    assert score_candidate(lst, parse("coffee")) == NAME_MATCH


def test_relevance_ties_break_on_popularity():
    scored = rank([BLUE_BOTTLE, PHILZ], parse("coffee"))
    assert _names(scored) == ["Philz Coffee", "Blue Bottle Coffee"]


def test_full_ties_keep_input_order():
    a = Place(name="A", popularity=1)
    b = Place(name="B", popularity=1)
    assert _names(rank([a, b], parse(""))) == ["A", "B"]
    assert _names(rank([b, a], parse(""))) == ["B", "A"]


def test_rank_is_deterministic():
    candidates = [BLUE_BOTTLE, PHILZ, Place(name="Coffee Bar", popularity=100)]
    first = rank(candidates, parse("coffee"))
    second = rank(candidates, parse("coffee"))
    assert [(sc.item.model_dump_json(), sc.score) for sc in first] == [
        (sc.item.model_dump_json(), sc.score) for sc in second
    ]


def test_popular_sort_uses_like_count_for_lists():
    lst = PlaceList(id="l-1", name="List", owner_id="u1", like_count=300)
    scored = rank([BLUE_BOTTLE, lst, PHILZ], parse("", sort_mode="popular"))
    assert _names(scored) == ["Philz Coffee", "List", "Blue Bottle Coffee"]


def test_nearby_sort_orders_by_distance():
    context = UserContext(user_id="u1", resolved_location=ORIGIN)
    far = _at("Oakland", 37.8044, -122.2711)
    near = _at("Mission", 37.7599, -122.4148)
    nowhere = Place(name="No coords")
    scored = rank([nowhere, far, near], parse("", sort_mode="nearby"), context)
    assert _names(scored) == ["Mission", "Oakland", "No coords"]
    assert scored[0].distance_km < scored[1].distance_km
    assert scored[2].distance_km is None


def test_nearby_without_location_keeps_input_order():
    context = UserContext(user_id="u1")
    candidates = [_at("Far", 37.8044, -122.2711), _at("Near", 37.7750, -122.4195)]
    scored = rank(candidates, parse("", sort_mode="nearby"), context)
    assert _names(scored) == ["Far", "Near"]
    assert all(sc.distance_km is None for sc in scored)


def test_recent_sort_prefers_recency_map_then_created_at():
    old = Place(id="old", name="Old", created_at=datetime(2023, 1, 1))
    new = Place(id="new", name="New", created_at=datetime(2024, 1, 1))
    unknown = Place(id="unknown", name="Unknown")
    scored = rank([unknown, old, new], parse("", sort_mode="recent"))
    assert _names(scored) == ["New", "Old", "Unknown"]

    bumped = rank(
        [unknown, old, new],
        parse("", sort_mode="recent"),
        recency={"old": datetime(2025, 1, 1).timestamp()},
    )
    assert _names(bumped) == ["Old", "New", "Unknown"]


def test_sort_mode_argument_overrides_parsed_query():
    scored = rank([BLUE_BOTTLE, PHILZ], parse("blue"), sort_mode=SortMode.popular)
    assert _names(scored) == ["Philz Coffee", "Blue Bottle Coffee"]


# ── Reasons ──────────────────────────────────────────────────────────────


def test_reason_names_two_matching_affinities():
    context = UserContext(user_id="u1", tag_affinities=["coffee", "late_night", "tacos"])
    place = Place(name="x", tags={"coffee", "late_night"})
    assert reason_for(ScoredCandidate(item=place), context) == "Because you like #Coffee • #Late Night"


def test_reason_names_single_affinity():
    context = UserContext(user_id="u1", tag_affinities=["tacos"])
    place = Place(name="x", tags={"tacos", "food"})
    assert reason_for(ScoredCandidate(item=place), context) == "Because you like #Tacos"


def test_reason_falls_back_to_nearby():
    context = UserContext(user_id="u1", tag_affinities=["museum"])
    close = ScoredCandidate(item=Place(name="x"), distance_km=1.5)
    far = ScoredCandidate(item=Place(name="y"), distance_km=5.0)
    assert reason_for(close, context) == "Nearby"
    assert reason_for(far, context) is None


def test_to_results_rounds_and_explains():
    context = UserContext(user_id="u1", tag_affinities=["coffee"])
    results = to_results([ScoredCandidate(item=BLUE_BOTTLE, score=4.123456, distance_km=1.23456)], context)
    assert results[0].score == 4.1235
    assert results[0].distance_km == 1.235
    assert results[0].reason == "Because you like #Coffee"
    assert results[0].item.name == "Blue Bottle Coffee"


def test_discovery_query_scores_affinity_tags():
    parsed = ParsedQuery(tag_filters={"coffee"})
    scored = rank([Place(name="Park", tags={"park"}), BLUE_BOTTLE], parsed)
    assert _names(scored) == ["Blue Bottle Coffee", "Park"]
