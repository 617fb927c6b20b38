"""regatta_recon.decode

Canonicalization boundary.  Decodes imported race files and backend
responses into the fixed shapes of regatta_recon.models, exactly once,
before any matching logic runs.

Key-casing variants seen across payloads (snake_case from the backend,
camelCase from some clients, CrewParticipants from older endpoints) are
resolved here and nowhere else.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from regatta_recon.models import (
    ExternalBoatRecord,
    ExternalParticipantRecord,
    InternalCategory,
    InternalCrew,
    InternalDistance,
    InternalParticipant,
    InternalRace,
    InternalSeat,
    RaceDefinition,
)
from regatta_recon.normalize import normalize_space, trim

_ROSTER_KEYS = ("crew_participants", "CrewParticipants", "crewParticipants")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PayloadError(ValueError):
    """Raised when a payload cannot be decoded into an internal shape."""


class ImportPayloadError(PayloadError):
    """Raised when an imported race file is structurally invalid."""


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _first(d: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return None


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return normalize_space(str(value))


def _opt_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return None


def _required_id(d: dict[str, Any], kind: str) -> str:
    raw = d.get("id")
    if raw is None or not str(raw).strip():
        raise PayloadError(f"{kind} record has no id: {d!r}")
    return str(raw).strip()


def _unwrap(body: Any) -> Any:
    """Backend envelopes wrap records in {"data": ...}."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


# ---------------------------------------------------------------------------
# Imported race file
# ---------------------------------------------------------------------------

def _decode_participant(raw: Any) -> ExternalParticipantRecord | None:
    if isinstance(raw, str):
        name = normalize_space(raw)
    elif isinstance(raw, dict):
        name = _opt_str(_first(raw, "name", "display_name", "displayName"))
    else:
        raise ImportPayloadError(f"participant entry must be an object, got {type(raw).__name__}")
    return ExternalParticipantRecord(display_name=name) if name else None


def _decode_boat(raw: Any, idx: int) -> ExternalBoatRecord:
    if not isinstance(raw, dict):
        raise ImportPayloadError(f"boat {idx}: must be an object, got {type(raw).__name__}")
    lane = _opt_int(_first(raw, "lane_number", "laneNumber", "lane"))
    if lane is None:
        raise ImportPayloadError(f"boat {idx}: missing or non-numeric lane_number")
    name = _opt_str(_first(raw, "name", "display_name", "displayName"))
    if not name:
        raise ImportPayloadError(f"boat {idx}: missing name")

    raw_participants = _first(raw, "participants") or []
    if not isinstance(raw_participants, list):
        raise ImportPayloadError(f"boat {idx}: participants must be a list")
    participants = tuple(
        p for p in (_decode_participant(rp) for rp in raw_participants) if p is not None
    )

    return ExternalBoatRecord(
        lane_number=lane,
        display_name=name,
        affiliation_code=_opt_str(_first(raw, "affiliation", "affiliation_code", "affiliationCode")),
        category_label=_opt_str(_first(raw, "class_name", "category_label", "categoryLabel")),
        participants=participants,
    )


def decode_import_payload(data: Any) -> RaceDefinition:
    """Decode an imported race file into a RaceDefinition.

    Accepts either {"boats": [...]} or the race-file shape
    {"race_definition": {"boats": [...], "duration": ..., ...}}.

    Raises:
        ImportPayloadError: If the boats list is missing, a boat is malformed,
            or two boats share a lane_number.
    """
    if not isinstance(data, dict):
        raise ImportPayloadError("import payload root must be an object")
    body = data.get("race_definition", data)
    if not isinstance(body, dict):
        raise ImportPayloadError("race_definition must be an object")

    raw_boats = body.get("boats")
    if not isinstance(raw_boats, list):
        raise ImportPayloadError("import payload has no boats list")

    boats = tuple(_decode_boat(b, i) for i, b in enumerate(raw_boats))
    seen: set[int] = set()
    for boat in boats:
        if boat.lane_number in seen:
            raise ImportPayloadError(f"duplicate lane_number {boat.lane_number}")
        seen.add(boat.lane_number)
    return RaceDefinition(
        boats=boats,
        name=_opt_str(_first(body, "name_long", "name_short", "name")),
        duration=_opt_int(body.get("duration")),
        duration_type=trim(str(body["duration_type"])) if body.get("duration_type") else None,
    )


def load_import_file(path: Path | str) -> RaceDefinition:
    """Read a decoded race file (JSON) from disk.

    Raises:
        ImportPayloadError: If the file is not valid JSON or not a valid payload.
        FileNotFoundError: If the file does not exist.
    """
    p = Path(path)
    raw = p.read_text(encoding="utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ImportPayloadError(f"invalid JSON in {p}: {exc}") from exc
    return decode_import_payload(data)


# ---------------------------------------------------------------------------
# Backend records
# ---------------------------------------------------------------------------

def decode_category(raw: dict[str, Any]) -> InternalCategory:
    distance = raw.get("distance")
    distance_id = _first(raw, "distance_id", "distanceId")
    if distance_id is None and isinstance(distance, dict):
        distance_id = distance.get("id")
    return InternalCategory(
        id=_required_id(raw, "category"),
        code=_opt_str(raw.get("code")) or "",
        label=_opt_str(raw.get("label")) or "",
        distance_id=str(distance_id) if distance_id is not None else None,
    )


def decode_distance(raw: dict[str, Any]) -> InternalDistance:
    return InternalDistance(
        id=_required_id(raw, "distance"),
        label=_opt_str(raw.get("label")) or "",
        meters=_opt_int(raw.get("meters")),
        duration_seconds=_opt_int(_first(raw, "duration_seconds", "durationSeconds")),
        is_relay=bool(_first(raw, "is_relay", "isRelay")),
        relay_count=_opt_int(_first(raw, "relay_count", "relayCount")),
        is_time_based=bool(_first(raw, "is_time_based", "isTimeBased")),
    )


def decode_race(raw: dict[str, Any]) -> InternalRace:
    distance = raw.get("distance")
    distance_id = _first(raw, "distance_id", "distanceId")
    if distance_id is None and isinstance(distance, dict):
        distance_id = distance.get("id")
    return InternalRace(
        id=_required_id(raw, "race"),
        name=_opt_str(raw.get("name")) or "",
        distance_id=str(distance_id) if distance_id is not None else None,
    )


def _decode_seat(raw: dict[str, Any], idx: int) -> InternalSeat:
    person = raw.get("participant") or {}
    person_id = person.get("id")
    return InternalSeat(
        seat_position=_opt_int(_first(raw, "seat_position", "seatPosition")) or idx + 1,
        is_coxswain=bool(_first(raw, "is_coxswain", "isCoxswain")),
        participant=InternalParticipant(
            first_name=_opt_str(_first(person, "first_name", "firstName")) or "",
            last_name=_opt_str(_first(person, "last_name", "lastName")) or "",
            id=str(person_id) if person_id is not None else None,
        ),
    )


def roster_of(raw: dict[str, Any]) -> list[dict[str, Any]] | None:
    """Return the roster list under whichever key the payload used, else None."""
    for key in _ROSTER_KEYS:
        value = raw.get(key)
        if isinstance(value, list):
            return value
    return None


def decode_crew(raw: dict[str, Any], detail: dict[str, Any] | None = None) -> InternalCrew:
    """Decode a crew listing row, preferring the roster from its detail payload."""
    roster = None
    body = _unwrap(detail) if detail is not None else None
    if isinstance(body, dict):
        roster = roster_of(body)
    if roster is None:
        roster = roster_of(raw) or []

    raw_category = raw.get("category")
    category = None
    if isinstance(raw_category, dict) and raw_category.get("id") is not None:
        category = decode_category(raw_category)

    return InternalCrew(
        id=_required_id(raw, "crew"),
        club_name=_opt_str(_first(raw, "club_name", "clubName")) or "",
        club_code=_opt_str(_first(raw, "club_code", "clubCode")) or "",
        category=category,
        seats=tuple(_decode_seat(s, i) for i, s in enumerate(roster) if isinstance(s, dict)),
    )


def decode_list(body: Any, kind: str) -> list[dict[str, Any]]:
    """Return the list of records from a backend list response."""
    rows = _unwrap(body)
    if rows is None:
        return []
    if not isinstance(rows, list):
        raise PayloadError(f"{kind} list response is not a list")
    return [r for r in rows if isinstance(r, dict)]
