"""Unit tests for regatta_recon.distance_suggester."""

from __future__ import annotations

import pytest

from regatta_recon.distance_suggester import (
    detect_distance_from_definition,
    score_label_against_distance,
    suggest_distance,
    unit_patterns,
)
from regatta_recon.match_policy import acceptance_state, load_default_policy
from regatta_recon.models import InternalDistance


@pytest.fixture
def policy():
    return load_default_policy("distance")


# ---------------------------------------------------------------------------
# score_label_against_distance
# ---------------------------------------------------------------------------

class TestScoreLabel:
    def test_meters_label_numeric_and_unit(self, policy):
        cand = score_label_against_distance("2000m Senior Homme", InternalDistance("d1", meters=2000), policy)
        assert cand.criteria_breakdown == {"numeric_overlap": 50.0, "unit_pattern": 40.0}
        assert cand.score == 90
        assert acceptance_state(policy, [cand]) == "auto_accept"

    def test_labelled_distance_clamps_to_100(self, policy):
        d = InternalDistance("d1", label="2000m", meters=2000)
        cand = score_label_against_distance("2000m Senior Homme", d, policy)
        assert cand.criteria_breakdown["keyword"] == 20.0
        assert cand.criteria_breakdown["containment"] == 30.0
        assert cand.score == 100

    def test_tolerance_boundary_inside(self, policy):
        cand = score_label_against_distance("2001m", InternalDistance("d1", meters=2000), policy)
        assert cand.criteria_breakdown["numeric_overlap"] == 50.0
        assert cand.criteria_breakdown["unit_pattern"] == 0.0

    def test_tolerance_boundary_outside(self, policy):
        cand = score_label_against_distance("2002m", InternalDistance("d1", meters=2000), policy)
        assert cand.criteria_breakdown["numeric_overlap"] == 0.0
        assert cand.score == 0

    def test_relay(self, policy):
        d = InternalDistance("d1", label="Relais", meters=250, is_relay=True, relay_count=4)
        cand = score_label_against_distance("Relais 4x250", d, policy)
        assert cand.score == 100

    def test_keyword_points_per_token(self, policy):
        d = InternalDistance("d1", label="Sprint Senior Homme")
        cand = score_label_against_distance("Senior Homme Elite", d, policy)
        assert cand.criteria_breakdown["keyword"] == 40.0

    def test_short_tokens_are_not_keywords(self, policy):
        d = InternalDistance("d1", label="de la mer")
        cand = score_label_against_distance("de la course", d, policy)
        assert cand.criteria_breakdown["keyword"] == 0.0

    def test_kilometre_patterns(self, policy):
        cand = score_label_against_distance("Tour 6 km", InternalDistance("d1", meters=6000), policy)
        assert cand.criteria_breakdown["unit_pattern"] == 40.0
        assert cand.criteria_breakdown["numeric_overlap"] == 0.0

    def test_fractional_kilometres(self, policy):
        cand = score_label_against_distance("Course 1.5km", InternalDistance("d1", meters=1500), policy)
        assert cand.criteria_breakdown["unit_pattern"] == 40.0
        assert acceptance_state(policy, [cand]) == "review"

    def test_time_based_duration_overlap(self, policy):
        d = InternalDistance("d1", label="Endurance", duration_seconds=1200, is_time_based=True)
        cand = score_label_against_distance("Endurance 1200", d, policy)
        assert cand.criteria_breakdown["numeric_overlap"] == 50.0
        assert "unit_pattern" not in cand.criteria_breakdown

    def test_no_comparable_data_skips_everything(self, policy):
        cand = score_label_against_distance("", InternalDistance("d1", label="x", meters=500), policy)
        assert cand.criteria_breakdown == {}
        assert cand.score == 0

    def test_unit_patterns(self):
        assert unit_patterns(2000) == ["2000", "2000m", "2000 m", "2km", "2 km"]
        assert unit_patterns(500)[-2:] == ["0.5km", "0.5 km"]


# ---------------------------------------------------------------------------
# suggest_distance
# ---------------------------------------------------------------------------

class TestSuggestDistance:
    def test_best_first(self, policy):
        distances = [
            InternalDistance("d500", meters=500),
            InternalDistance("d2000", meters=2000),
        ]
        ranked = suggest_distance("Finale 2000m", distances, policy)
        assert ranked[0].target_id == "d2000"

    def test_ties_keep_distance_order(self, policy):
        distances = [
            InternalDistance("first", meters=1000),
            InternalDistance("second", meters=1000),
        ]
        ranked = suggest_distance("1000m", distances, policy)
        assert [c.target_id for c in ranked] == ["first", "second"]
        assert ranked[0].score == ranked[1].score

    def test_weak_label_is_not_suggested(self, policy):
        ranked = suggest_distance("Senior", [InternalDistance("d1", meters=2000)], policy)
        assert acceptance_state(policy, ranked) == "none"

    def test_scores_in_range(self, policy):
        distances = [
            InternalDistance("a", label="2000m Senior Homme Relais", meters=2000, relay_count=2, is_relay=True),
            InternalDistance("b", label="", duration_seconds=2000),
            InternalDistance("c"),
        ]
        for label in ["2000m Senior Homme Relais 2x2000", "", "x", "2 km 2000 2000m"]:
            for cand in suggest_distance(label, distances, policy):
                assert 0 <= cand.score <= 100


# ---------------------------------------------------------------------------
# detect_distance_from_definition
# ---------------------------------------------------------------------------

DISTANCES = [
    InternalDistance("d1000", meters=1000),
    InternalDistance("d2000", meters=2000),
    InternalDistance("t20", duration_seconds=1200, is_time_based=True),
]


class TestDetectDistanceFromDefinition:
    def test_meters(self):
        cand = detect_distance_from_definition(2000, "meters", DISTANCES)
        assert cand.target_id == "d2000"
        assert cand.score == 100

    def test_distance_alias(self):
        assert detect_distance_from_definition(1000, "distance", DISTANCES).target_id == "d1000"

    def test_time(self):
        assert detect_distance_from_definition(1200, "time", DISTANCES).target_id == "t20"

    def test_time_does_not_match_meters(self):
        assert detect_distance_from_definition(2000, "time", DISTANCES) is None

    def test_missing_duration(self):
        assert detect_distance_from_definition(None, "meters", DISTANCES) is None
        assert detect_distance_from_definition(2000, None, DISTANCES) is None
