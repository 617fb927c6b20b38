"""regatta_recon.crew_matcher

Scores one imported boat against every internal crew.

Criteria (points come from the crew MatchPolicy):
  name:           best parsed-name comparison between any boat name
                  (boat label or participant) and any seat
  affiliation:    boat affiliation vs. crew club code (skipped if absent)
  category:       boat class label vs. crew category (skipped if absent)
  roster_size:    per-position name agreement when head counts match;
                  a head-count mismatch caps the total instead
                  (skipped if the boat lists no participants)
  agreement_bonus: when two or more criteria contributed

Skipped criteria never appear in criteria_breakdown.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from regatta_recon.match_policy import MatchPolicy
from regatta_recon.models import (
    ExternalBoatRecord,
    InternalCategory,
    InternalCrew,
    InternalParticipant,
    MatchCandidate,
)
from regatta_recon.normalize import PersonName, normalize_text, parse_person_name
from regatta_recon.similarity import clamp_score, containment, exact_match, rank_candidates

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Name comparison
# ---------------------------------------------------------------------------

def _seat_name(person: InternalParticipant) -> PersonName:
    return PersonName(normalize_text(person.last_name), normalize_text(person.first_name))


def _is_reversed(ext: PersonName, seat: PersonName) -> bool:
    return bool(ext.first_name) and ext.last_name == seat.first_name and ext.first_name == seat.last_name


def name_points(ext: PersonName, seat: PersonName, policy: MatchPolicy) -> float:
    """Points of the name criterion for one (external name, seat) pair."""
    if not ext.last_name:
        return 0.0
    if ext.last_name == seat.last_name and ext.first_name == seat.first_name:
        return policy.weight("name_exact")
    if policy.rule_enabled("reversed_name") and _is_reversed(ext, seat):
        return policy.weight("name_reversed")
    if ext.last_name == seat.last_name:
        return policy.weight("name_last_only")
    if containment(ext.last_name, seat.last_name):
        return policy.weight("name_partial")
    return 0.0


def roster_pair_score(ext: PersonName, seat: PersonName, policy: MatchPolicy) -> int:
    """0–100 agreement between one external participant and one seat."""
    if not ext.last_name:
        return 0
    if ext.last_name == seat.last_name:
        if ext.first_name == seat.first_name:
            return 100
        if ext.first_name and seat.first_name and (
            seat.first_name.startswith(ext.first_name) or ext.first_name.startswith(seat.first_name)
        ):
            return 80
        return 50
    if policy.rule_enabled("reversed_name") and _is_reversed(ext, seat):
        return 90
    if containment(ext.last_name, seat.last_name):
        return 30
    return 0


def _boat_names(boat: ExternalBoatRecord) -> list[PersonName]:
    raw = [boat.display_name] + [p.display_name for p in boat.participants]
    return [n for n in (parse_person_name(r) for r in raw) if n.last_name]


def _full_roster_match(boat: ExternalBoatRecord, crew: InternalCrew) -> bool:
    """Every participant equals a seat rendered "Last, First", counts equal."""
    if not boat.participants or len(boat.participants) != len(crew.seats):
        return False
    seat_names = {
        normalize_text(f"{s.participant.last_name}, {s.participant.first_name}") for s in crew.seats
    }
    return all(normalize_text(p.display_name) in seat_names for p in boat.participants)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def score_boat_against_crew(
    boat: ExternalBoatRecord,
    crew: InternalCrew,
    policy: MatchPolicy,
) -> MatchCandidate:
    """Score one boat against one crew; see module docstring for criteria."""
    if policy.rule_enabled("full_roster_shortcut") and _full_roster_match(boat, crew):
        return MatchCandidate(target_id=crew.id, score=100, criteria_breakdown={"full_roster": 100.0})

    breakdown: dict[str, float] = {}
    applicable = 0
    matched = 0
    seats = [_seat_name(s.participant) for s in crew.seats]

    names = _boat_names(boat)
    if names:
        applicable += 1
        best = max((name_points(n, s, policy) for n in names for s in seats), default=0.0)
        breakdown["name"] = best
        matched += best > 0

    if boat.affiliation_code:
        applicable += 1
        if exact_match(boat.affiliation_code, crew.club_code):
            pts = policy.weight("affiliation_exact")
        elif containment(boat.affiliation_code, crew.club_code) or containment(
            boat.affiliation_code, crew.club_name
        ):
            pts = policy.weight("affiliation_partial")
        else:
            pts = 0.0
        breakdown["affiliation"] = pts
        matched += pts > 0

    if boat.category_label:
        applicable += 1
        pts = policy.weight("category") if _category_agrees(boat.category_label, crew.category) else 0.0
        breakdown["category"] = pts
        matched += pts > 0

    roster_mismatch = False
    if boat.participants:
        applicable += 1
        if len(boat.participants) == len(seats):
            per_position = []
            for p in boat.participants:
                ext = parse_person_name(p.display_name)
                per_position.append(max((roster_pair_score(ext, s, policy) for s in seats), default=0))
            average = sum(per_position) / len(per_position)
            pts = average * policy.roster_weight
        else:
            roster_mismatch = True
            pts = 0.0
        breakdown["roster_size"] = pts
        matched += pts > 0

    if matched >= 2:
        if matched == applicable:
            breakdown["agreement_bonus"] = policy.weight("full_agreement_bonus")
        else:
            breakdown["agreement_bonus"] = policy.weight("agreement_bonus")

    raw = sum(breakdown.values())
    cap = policy.cap("roster_mismatch")
    if roster_mismatch and cap is not None and raw > cap:
        breakdown["roster_size_cap"] = cap - raw
        raw = cap

    return MatchCandidate(target_id=crew.id, score=clamp_score(raw), criteria_breakdown=breakdown)


def _category_agrees(label: str, category: InternalCategory | None) -> bool:
    if category is None:
        return False
    return any(
        exact_match(label, value) or containment(label, value)
        for value in (category.label, category.code)
    )


def rank_crews(
    boat: ExternalBoatRecord,
    crews: Sequence[InternalCrew],
    policy: MatchPolicy,
) -> list[MatchCandidate]:
    """Score a boat against every crew and rank, first-seen order on ties."""
    ranked = rank_candidates([score_boat_against_crew(boat, c, policy) for c in crews])
    if ranked:
        log.debug(
            "lane %s (%s): best crew=%s score=%s of %d",
            boat.lane_number, boat.display_name, ranked[0].target_id, ranked[0].score, len(ranked),
        )
    return ranked


# ---------------------------------------------------------------------------
# Race-file helpers
# ---------------------------------------------------------------------------

def detect_category(
    boats: Sequence[ExternalBoatRecord],
    categories: Sequence[InternalCategory],
) -> InternalCategory | None:
    """Category whose label or code equals the first boat's class label."""
    if not boats or not boats[0].category_label:
        return None
    wanted = normalize_text(boats[0].category_label)
    for category in categories:
        if wanted in (normalize_text(category.label), normalize_text(category.code)):
            return category
    return None


def lane_count_for(boats: Sequence[ExternalBoatRecord], mapped_count: int) -> int:
    """Lanes needed for a race built from an import: highest lane or mapped boats."""
    return max([b.lane_number for b in boats] + [mapped_count])
