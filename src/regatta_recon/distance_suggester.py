"""regatta_recon.distance_suggester

Scores the free-text label of an unassigned category or race against
every defined distance.

Criteria (points come from the distance MatchPolicy):
  numeric_overlap: a number in the label is within tolerance of the
                   distance's meters, duration or relay count
  keyword:         per label token (len > 2) found in the distance label
  containment:     label and distance label contain one another
  unit_pattern:    label carries the distance's meters in a canonical
                   unit form ("2000", "2000m", "2 km", ...)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from regatta_recon.match_policy import MatchPolicy
from regatta_recon.models import InternalDistance, MatchCandidate
from regatta_recon.normalize import normalize_text, tokens
from regatta_recon.similarity import (
    clamp_score,
    containment,
    extract_numbers,
    numeric_overlap,
    rank_candidates,
)

log = logging.getLogger(__name__)

_MIN_KEYWORD_LEN = 3
_METER_TYPES = frozenset({"meters", "distance"})
_TIME_TYPES = frozenset({"time"})


def _km_text(meters: int) -> str:
    if meters % 1000 == 0:
        return str(meters // 1000)
    return f"{meters / 1000:g}"


def unit_patterns(meters: int) -> list[str]:
    """Canonical renderings of a distance in meters, as found in labels."""
    km = _km_text(meters)
    return [f"{meters}", f"{meters}m", f"{meters} m", f"{km}km", f"{km} km"]


def score_label_against_distance(
    label: str,
    distance: InternalDistance,
    policy: MatchPolicy,
) -> MatchCandidate:
    norm_label = normalize_text(label)
    norm_target = normalize_text(distance.label)
    breakdown: dict[str, float] = {}

    numbers = extract_numbers(norm_label)
    targets = [distance.meters, distance.duration_seconds, distance.relay_count]
    if numbers and any(t is not None for t in targets):
        hit = numeric_overlap(numbers, targets, tolerance=policy.numeric_tolerance)
        breakdown["numeric_overlap"] = policy.weight("numeric_overlap") if hit else 0.0

    keywords = [t for t in tokens(norm_label) if len(t) >= _MIN_KEYWORD_LEN]
    if keywords and norm_target:
        target_tokens = set(tokens(norm_target))
        shared = sum(1 for t in keywords if t in target_tokens)
        breakdown["keyword"] = policy.weight("keyword") * shared

    if norm_label and norm_target:
        breakdown["containment"] = (
            policy.weight("containment") if containment(norm_label, norm_target) else 0.0
        )

    if norm_label and distance.meters is not None:
        hit = any(p in norm_label for p in unit_patterns(distance.meters))
        breakdown["unit_pattern"] = policy.weight("unit_pattern") if hit else 0.0

    return MatchCandidate(
        target_id=distance.id,
        score=clamp_score(sum(breakdown.values())),
        criteria_breakdown=breakdown,
    )


def suggest_distance(
    label: str,
    distances: Sequence[InternalDistance],
    policy: MatchPolicy,
) -> list[MatchCandidate]:
    """Rank every distance for a label; ties keep the distances' order."""
    ranked = rank_candidates([score_label_against_distance(label, d, policy) for d in distances])
    if ranked:
        log.debug(
            "label %r: best distance=%s score=%s of %d",
            label, ranked[0].target_id, ranked[0].score, len(ranked),
        )
    return ranked


def detect_distance_from_definition(
    duration: int | None,
    duration_type: str | None,
    distances: Sequence[InternalDistance],
) -> MatchCandidate | None:
    """Exact distance named by a race file's duration, if one exists.

    duration_type "meters"/"distance" matches on meters; "time" matches a
    time-based distance on duration_seconds.  Returns None otherwise.
    """
    if duration is None or not duration_type:
        return None
    kind = duration_type.strip().lower()
    for d in distances:
        if kind in _METER_TYPES and not d.is_time_based and d.meters == duration:
            return MatchCandidate(target_id=d.id, score=100, criteria_breakdown={"definition": 100.0})
        if kind in _TIME_TYPES and d.is_time_based and d.duration_seconds == duration:
            return MatchCandidate(target_id=d.id, score=100, criteria_breakdown={"definition": 100.0})
    return None
