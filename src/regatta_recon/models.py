"""regatta_recon.models

Fixed internal shapes for reconciliation.  Every payload (imported race
file or backend response) is decoded into these types exactly once, in
regatta_recon.decode, before any matching logic runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

VALID_SOURCE_TYPES = ("category", "race", "boat")


# ---------------------------------------------------------------------------
# External (imported) records: immutable, one import per session
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExternalParticipantRecord:
    display_name: str


@dataclass(frozen=True)
class ExternalBoatRecord:
    lane_number: int
    display_name: str
    affiliation_code: str | None = None
    category_label: str | None = None
    participants: tuple[ExternalParticipantRecord, ...] = ()


@dataclass(frozen=True)
class RaceDefinition:
    """Decoded race file: the boats plus the optional distance hint."""

    boats: tuple[ExternalBoatRecord, ...]
    name: str | None = None
    duration: int | None = None
    duration_type: str | None = None


# ---------------------------------------------------------------------------
# Internal (backend) records: read-only snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InternalParticipant:
    first_name: str
    last_name: str
    id: str | None = None


@dataclass(frozen=True)
class InternalSeat:
    seat_position: int
    participant: InternalParticipant
    is_coxswain: bool = False


@dataclass(frozen=True)
class InternalCategory:
    id: str
    code: str
    label: str
    distance_id: str | None = None


@dataclass(frozen=True)
class InternalCrew:
    id: str
    club_name: str = ""
    club_code: str = ""
    category: InternalCategory | None = None
    seats: tuple[InternalSeat, ...] = ()

    @property
    def display_name(self) -> str:
        """Seats by position as "Last, First", then category and club."""
        ordered = sorted(self.seats, key=lambda s: s.seat_position)
        names = " • ".join(
            f"{s.participant.last_name}, {s.participant.first_name}" for s in ordered
        )
        category = f" ({self.category.label})" if self.category else ""
        club = f" - {self.club_name}" if self.club_name else ""
        return f"{names}{category}{club}"


@dataclass(frozen=True)
class InternalDistance:
    id: str
    label: str = ""
    meters: int | None = None
    duration_seconds: int | None = None
    is_relay: bool = False
    relay_count: int | None = None
    is_time_based: bool = False

    @property
    def display_label(self) -> str:
        base = self.label or (f"{self.meters}m" if self.meters is not None else self.id)
        if self.is_relay and self.relay_count and self.meters is not None:
            return f"{base} (Relais {self.relay_count}x{self.meters}m)"
        return base


@dataclass(frozen=True)
class InternalRace:
    id: str
    name: str
    distance_id: str | None = None


# ---------------------------------------------------------------------------
# Scoring output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchCandidate:
    """Score of one source record against one candidate target.

    criteria_breakdown holds only the criteria that were applicable;
    skipped criteria are absent rather than zero.
    """

    target_id: str
    score: int
    criteria_breakdown: dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0 <= self.score <= 100:
            raise ValueError(f"score {self.score} outside [0, 100] for target {self.target_id}")


@dataclass
class ReassignmentSuggestion:
    """Reviewable proposal to point one source item at one target."""

    source_id: str
    source_type: str
    suggested_target_id: str
    suggested_target_label: str
    confidence: int | None
    accepted: bool = False
    source_label: str = ""
    candidates: list[MatchCandidate] = field(default_factory=list, repr=False)

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_type, self.source_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "source_label": self.source_label,
            "suggested_target_id": self.suggested_target_id,
            "suggested_target_label": self.suggested_target_label,
            "confidence": self.confidence,
            "accepted": self.accepted,
        }


def confidence_band(score: int | None) -> str:
    """Display band for a confidence score: high | medium | low | none."""
    if score is None:
        return "none"
    if score >= 70:
        return "high"
    if score >= 50:
        return "medium"
    if score >= 30:
        return "low"
    return "none"
