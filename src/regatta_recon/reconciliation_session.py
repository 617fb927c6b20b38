"""regatta_recon.reconciliation_session

Batch reconciliation run with a reviewable suggestion state.

Lifecycle:
    idle ──start()──▶ scoring ──▶ reviewing ──apply()──▶ applying ──▶ done
                        │               │
                        ▼               ▼
                      failed        abandoned  (cancel())

start() fetches the event snapshot once and scores every source item:
  - without a race definition: every category and race with no distance
    is scored against the event's distances;
  - with a race definition: every imported boat is scored against the
    event's crews.

One ReassignmentSuggestion is kept per source item whose best candidate
clears the domain's suggest threshold; it starts accepted when the policy
auto-accepts it.  Nothing is written before apply().  apply() issues one
independent write per accepted suggestion; a failed write is recorded on
its ApplyOutcome and never stops the others.
"""

from __future__ import annotations

import csv
import json
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from regatta_recon.crew_matcher import detect_category, lane_count_for, rank_crews
from regatta_recon.distance_suggester import detect_distance_from_definition, suggest_distance
from regatta_recon.match_policy import (
    MatchPolicy,
    acceptance_state,
    clears_suggest_threshold,
    load_default_policy,
)
from regatta_recon.models import (
    VALID_SOURCE_TYPES,
    InternalCategory,
    MatchCandidate,
    RaceDefinition,
    ReassignmentSuggestion,
    confidence_band,
)
from regatta_recon.persistence import PersistenceClient, PersistenceError, Snapshot, fetch_snapshot

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

IDLE = "idle"
SCORING = "scoring"
REVIEWING = "reviewing"
APPLYING = "applying"
DONE = "done"
FAILED = "failed"
ABANDONED = "abandoned"

_VALID_ACTIONS = frozenset({"accept", "reject", "remove", "override"})
_REQUIRED_COLS = frozenset({"source_type", "source_id", "action"})

_WRITE_RESOURCE = {
    "category": "categories",
    "race":     "races",
    "boat":     "race-crews",
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SessionStateError(RuntimeError):
    """Raised when an operation is not allowed in the session's current state."""


# ---------------------------------------------------------------------------
# Outcomes + counters
# ---------------------------------------------------------------------------

@dataclass
class ApplyOutcome:
    source_type: str
    source_id: str
    target_id: str
    ok: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_type": self.source_type,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "ok": self.ok,
            "error": self.error,
        }


@dataclass
class ApplyCounters:
    sources_scored: int = 0
    suggestions_total: int = 0
    suggestions_accepted: int = 0
    decisions_read: int = 0
    decisions_applied: int = 0
    decisions_invalid: int = 0
    duplicate_targets: int = 0
    writes_attempted: int = 0
    writes_succeeded: int = 0
    writes_failed: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sources_scored": self.sources_scored,
            "suggestions_total": self.suggestions_total,
            "suggestions_accepted": self.suggestions_accepted,
            "decisions_read": self.decisions_read,
            "decisions_applied": self.decisions_applied,
            "decisions_invalid": self.decisions_invalid,
            "duplicate_targets": self.duplicate_targets,
            "writes_attempted": self.writes_attempted,
            "writes_succeeded": self.writes_succeeded,
            "writes_failed": self.writes_failed,
            "warnings": self.warnings[:50],
        }


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class ReconciliationSession:
    """Transient reviewer state for one reconciliation run.

    Args:
        client: Persistence collaborator (see regatta_recon.persistence).
        event_id: Event whose records are reconciled.
        crew_policy: Policy for boat → crew matching (default: shipped crew.yml).
        distance_policy: Policy for label → distance scoring (default: distance.yml).
        max_workers: Thread pool size for snapshot reads and apply writes.
    """

    def __init__(
        self,
        client: PersistenceClient,
        event_id: str,
        crew_policy: MatchPolicy | None = None,
        distance_policy: MatchPolicy | None = None,
        max_workers: int = 8,
    ) -> None:
        self.client = client
        self.event_id = event_id
        self.crew_policy = crew_policy or load_default_policy("crew")
        self.distance_policy = distance_policy or load_default_policy("distance")
        self.max_workers = max_workers

        self.state = IDLE
        self.snapshot: Snapshot | None = None
        self.race_definition: RaceDefinition | None = None
        self.distance_hint: MatchCandidate | None = None
        self.detected_category: InternalCategory | None = None
        self.suggestions: list[ReassignmentSuggestion] = []
        self.outcomes: list[ApplyOutcome] = []
        self.counters = ApplyCounters()
        self._sources: dict[tuple[str, str], str] = {}

    # -- state helpers ------------------------------------------------------

    def _require(self, *states: str, action: str) -> None:
        if self.state not in states:
            raise SessionStateError(
                f"cannot {action} while session is {self.state!r} (expected {', '.join(states)})"
            )

    def _transition(self, new_state: str) -> None:
        log.info("session %s: %s -> %s", self.event_id, self.state, new_state)
        self.state = new_state

    # -- scoring ------------------------------------------------------------

    def start(self, race_definition: RaceDefinition | None = None) -> list[ReassignmentSuggestion]:
        """Fetch the snapshot and score every source item.

        Raises:
            PersistenceError: If the snapshot cannot be fetched (state -> failed).
            SessionStateError: If the session was already started.
        """
        self._require(IDLE, action="start")
        self._transition(SCORING)
        try:
            self.snapshot = fetch_snapshot(self.client, self.event_id, max_workers=self.max_workers)
        except PersistenceError:
            self._transition(FAILED)
            raise

        self.race_definition = race_definition
        if race_definition is None:
            self._score_distances()
        else:
            self._score_boats(race_definition)

        self.counters.suggestions_total = len(self.suggestions)
        self.counters.suggestions_accepted = len(self.accepted_suggestions())
        self._transition(REVIEWING)
        return self.suggestions

    def _add(
        self,
        source_type: str,
        source_id: str,
        source_label: str,
        ranked: list[MatchCandidate],
        policy: MatchPolicy,
        target_label: Callable[[str], str],
    ) -> None:
        self._sources[(source_type, source_id)] = source_label
        self.counters.sources_scored += 1
        if not clears_suggest_threshold(policy, ranked):
            return
        best = ranked[0]
        self.suggestions.append(ReassignmentSuggestion(
            source_id=source_id,
            source_type=source_type,
            suggested_target_id=best.target_id,
            suggested_target_label=target_label(best.target_id),
            confidence=best.score,
            accepted=acceptance_state(policy, ranked) == "auto_accept",
            source_label=source_label,
            candidates=ranked,
        ))

    def distance_label(self, distance_id: str) -> str:
        d = self.snapshot.distance(distance_id) if self.snapshot else None
        return d.display_label if d else distance_id

    def crew_label(self, crew_id: str) -> str:
        c = self.snapshot.crew(crew_id) if self.snapshot else None
        return c.display_name if c else crew_id

    def _score_distances(self) -> None:
        snap = self.snapshot
        for category in snap.categories:
            if category.distance_id is not None:
                continue
            label = category.label or category.code
            ranked = suggest_distance(label, snap.distances, self.distance_policy)
            self._add("category", category.id, label, ranked, self.distance_policy, self.distance_label)
        for race in snap.races:
            if race.distance_id is not None:
                continue
            ranked = suggest_distance(race.name, snap.distances, self.distance_policy)
            self._add("race", race.id, race.name, ranked, self.distance_policy, self.distance_label)

    def _score_boats(self, definition: RaceDefinition) -> None:
        snap = self.snapshot
        self.distance_hint = detect_distance_from_definition(
            definition.duration, definition.duration_type, snap.distances
        )
        self.detected_category = detect_category(definition.boats, snap.categories)
        for boat in definition.boats:
            ranked = rank_crews(boat, snap.crews, self.crew_policy)
            label = f"lane {boat.lane_number}: {boat.display_name}"
            self._add("boat", str(boat.lane_number), label, ranked, self.crew_policy, self.crew_label)

    # -- review -------------------------------------------------------------

    def suggestion(self, source_type: str, source_id: str) -> ReassignmentSuggestion | None:
        return next((s for s in self.suggestions if s.key == (source_type, source_id)), None)

    def _existing(self, source_type: str, source_id: str) -> ReassignmentSuggestion:
        s = self.suggestion(source_type, source_id)
        if s is None:
            raise KeyError(f"no suggestion for {source_type} {source_id}")
        return s

    def accepted_suggestions(self) -> list[ReassignmentSuggestion]:
        return [s for s in self.suggestions if s.accepted]

    def unmatched_sources(self) -> list[tuple[str, str, str]]:
        """(source_type, source_id, label) of scored items with no suggestion."""
        suggested = {s.key for s in self.suggestions}
        return [(t, i, label) for (t, i), label in self._sources.items() if (t, i) not in suggested]

    def set_accepted(self, source_type: str, source_id: str, accepted: bool) -> None:
        self._require(REVIEWING, action="change acceptance")
        self._existing(source_type, source_id).accepted = accepted

    def toggle(self, source_type: str, source_id: str) -> bool:
        self._require(REVIEWING, action="toggle acceptance")
        s = self._existing(source_type, source_id)
        s.accepted = not s.accepted
        return s.accepted

    def remove(self, source_type: str, source_id: str) -> None:
        """Drop a source item from the batch entirely."""
        self._require(REVIEWING, action="remove")
        key = (source_type, source_id)
        if key not in self._sources:
            raise KeyError(f"unknown source {source_type} {source_id}")
        del self._sources[key]
        self.suggestions = [s for s in self.suggestions if s.key != key]

    def override(self, source_type: str, source_id: str, target_id: str) -> ReassignmentSuggestion:
        """Point a source item at a manually chosen target.

        A manual pick has no computed score, so confidence is cleared.
        Allowed for items that received no suggestion.

        Raises:
            KeyError: If the source item is not part of the batch.
            ValueError: If the target does not exist in the snapshot.
        """
        self._require(REVIEWING, action="override")
        key = (source_type, source_id)
        if key not in self._sources:
            raise KeyError(f"unknown source {source_type} {source_id}")

        if source_type == "boat":
            if self.snapshot.crew(target_id) is None:
                raise ValueError(f"unknown crew {target_id}")
            label = self.crew_label(target_id)
        else:
            if self.snapshot.distance(target_id) is None:
                raise ValueError(f"unknown distance {target_id}")
            label = self.distance_label(target_id)

        s = self.suggestion(source_type, source_id)
        if s is None:
            s = ReassignmentSuggestion(
                source_id=source_id,
                source_type=source_type,
                suggested_target_id=target_id,
                suggested_target_label=label,
                confidence=None,
                source_label=self._sources[key],
            )
            self.suggestions.append(s)
        s.suggested_target_id = target_id
        s.suggested_target_label = label
        s.confidence = None
        s.accepted = True
        return s

    def candidates(self, source_type: str, source_id: str) -> list[MatchCandidate]:
        s = self.suggestion(source_type, source_id)
        return list(s.candidates) if s else []

    def duplicate_targets(self) -> dict[str, list[str]]:
        """Accepted boats that point at the same crew: crew id -> lanes."""
        by_target: dict[str, list[str]] = {}
        for s in self.accepted_suggestions():
            if s.source_type == "boat":
                by_target.setdefault(s.suggested_target_id, []).append(s.source_id)
        return {t: ids for t, ids in by_target.items() if len(ids) > 1}

    def lane_count(self) -> int:
        boats = self.race_definition.boats if self.race_definition else ()
        mapped = sum(1 for s in self.accepted_suggestions() if s.source_type == "boat")
        return lane_count_for(boats, mapped)

    # -- decisions CSV ------------------------------------------------------

    def apply_decisions_csv(self, decisions_path: Path | str) -> ApplyCounters:
        """Apply reviewer decisions from a CSV file to the pending suggestions.

        Columns: source_type,source_id,action[,target_id]
        Actions: accept | reject | remove | override (override needs target_id)

        Invalid rows are counted and reported as warnings, never raised.

        Raises:
            ValueError: If the CSV has no header or misses required columns.
        """
        self._require(REVIEWING, action="apply decisions")
        ctrs = self.counters
        path = Path(decisions_path)
        with path.open(newline="", encoding="utf-8") as fh:
            reader = csv.DictReader(fh)
            if reader.fieldnames is None:
                raise ValueError(f"decisions CSV is empty or has no header: {path}")
            missing = _REQUIRED_COLS - set(reader.fieldnames)
            if missing:
                raise ValueError(f"decisions CSV missing required columns: {sorted(missing)}")

            for idx, raw_row in enumerate(reader):
                ctrs.decisions_read += 1
                source_type = (raw_row.get("source_type") or "").strip().lower()
                source_id = (raw_row.get("source_id") or "").strip()
                action = (raw_row.get("action") or "").strip().lower()
                target_id = (raw_row.get("target_id") or "").strip()

                if not source_type or not source_id or not action:
                    ctrs.decisions_invalid += 1
                    ctrs.warnings.append(
                        f"row {idx}: missing required field(s) "
                        f"(source_type={source_type!r}, source_id={source_id!r}, action={action!r})"
                    )
                    continue
                if source_type not in VALID_SOURCE_TYPES:
                    ctrs.decisions_invalid += 1
                    ctrs.warnings.append(f"row {idx}: unknown source_type={source_type!r}")
                    continue
                if action not in _VALID_ACTIONS:
                    ctrs.decisions_invalid += 1
                    ctrs.warnings.append(f"row {idx}: unknown action={action!r}")
                    continue
                if action == "override" and not target_id:
                    ctrs.decisions_invalid += 1
                    ctrs.warnings.append(f"row {idx}: override without target_id")
                    continue

                try:
                    if action == "accept":
                        self.set_accepted(source_type, source_id, True)
                    elif action == "reject":
                        self.set_accepted(source_type, source_id, False)
                    elif action == "remove":
                        self.remove(source_type, source_id)
                    else:
                        self.override(source_type, source_id, target_id)
                except (KeyError, ValueError) as exc:
                    ctrs.decisions_invalid += 1
                    ctrs.warnings.append(f"row {idx}: {action} {source_type} {source_id}: {exc}")
                    continue
                ctrs.decisions_applied += 1

        ctrs.suggestions_accepted = len(self.accepted_suggestions())
        return ctrs

    # -- apply --------------------------------------------------------------

    def _write(self, s: ReassignmentSuggestion, race_id: str | None) -> ApplyOutcome:
        resource = _WRITE_RESOURCE[s.source_type]
        try:
            if s.source_type == "boat":
                self.client.create(resource, {
                    "race_id": race_id,
                    "crew_id": s.suggested_target_id,
                    "lane": int(s.source_id),
                })
            else:
                self.client.update(resource, s.source_id, {"distance_id": s.suggested_target_id})
        except Exception as exc:
            log.error("write %s %s -> %s failed: %s", s.source_type, s.source_id,
                      s.suggested_target_id, exc)
            return ApplyOutcome(s.source_type, s.source_id, s.suggested_target_id, ok=False, error=str(exc))
        return ApplyOutcome(s.source_type, s.source_id, s.suggested_target_id, ok=True)

    def apply(self, race_id: str | None = None) -> list[ApplyOutcome]:
        """Write every accepted suggestion; outcomes are in suggestion order.

        Raises:
            SessionStateError: If the session is not reviewing.
            ValueError: If boat suggestions are accepted and race_id is missing.
        """
        self._require(REVIEWING, action="apply")
        accepted = self.accepted_suggestions()
        if race_id is None and any(s.source_type == "boat" for s in accepted):
            raise ValueError("race_id is required to apply boat suggestions")

        ctrs = self.counters
        duplicates = self.duplicate_targets()
        ctrs.duplicate_targets = len(duplicates)
        for target, lanes in duplicates.items():
            msg = f"crew {target} accepted for lanes {', '.join(lanes)}"
            log.warning("Duplicate target: %s", msg)
            ctrs.warnings.append(f"duplicate target: {msg}")

        self._transition(APPLYING)
        ctrs.suggestions_accepted = len(accepted)
        ctrs.writes_attempted = len(accepted)
        if accepted:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [pool.submit(self._write, s, race_id) for s in accepted]
                self.outcomes = [f.result() for f in futures]
        else:
            self.outcomes = []

        for outcome in self.outcomes:
            if outcome.ok:
                ctrs.writes_succeeded += 1
            else:
                ctrs.writes_failed += 1
                ctrs.warnings.append(
                    f"write {outcome.source_type} {outcome.source_id} -> {outcome.target_id}: "
                    f"{outcome.error}"
                )
        self._transition(DONE)
        return self.outcomes

    def cancel(self) -> None:
        """Discard the session without writing anything."""
        if self.state in (APPLYING, DONE):
            raise SessionStateError(f"cannot cancel while session is {self.state!r}")
        self.suggestions = []
        self._sources = {}
        self._transition(ABANDONED)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def build_apply_report(
    session: ReconciliationSession,
    mode: str,
    dry_run: bool = False,
) -> str:
    ctrs = session.counters
    lines = [
        "=" * 60,
        "Reconciliation Report",
        f"  mode: {mode}",
        f"  event: {session.event_id}",
        f"  dry_run: {dry_run}",
        "=" * 60,
        f"  sources scored:                 {ctrs.sources_scored}",
        f"  suggestions:                    {ctrs.suggestions_total}",
        f"  accepted:                       {ctrs.suggestions_accepted}",
        f"  decisions applied:              {ctrs.decisions_applied}",
        f"  decisions invalid:              {ctrs.decisions_invalid}",
        f"  duplicate targets:              {ctrs.duplicate_targets}",
        f"  writes attempted:               {ctrs.writes_attempted}",
        f"  writes succeeded:               {ctrs.writes_succeeded}",
        f"  writes failed:                  {ctrs.writes_failed}",
    ]
    if session.detected_category is not None:
        lines.append(f"  detected category:              {session.detected_category.label}")
    if session.distance_hint is not None:
        lines.append(
            f"  distance from race file:        "
            f"{session.distance_label(session.distance_hint.target_id)}"
        )

    if session.suggestions:
        lines.append("\nSuggestions:")
        for s in session.suggestions:
            confidence = "manual" if s.confidence is None else f"{s.confidence} ({confidence_band(s.confidence)})"
            mark = "x" if s.accepted else " "
            lines.append(
                f"  [{mark}] {s.source_type} {s.source_label} -> {s.suggested_target_label}  {confidence}"
            )
    unmatched = session.unmatched_sources()
    if unmatched:
        lines.append(f"\nNo suggestion ({len(unmatched)}):")
        for source_type, _, label in unmatched[:20]:
            lines.append(f"  {source_type} {label}")
        if len(unmatched) > 20:
            lines.append(f"  ... and {len(unmatched) - 20} more")

    if ctrs.warnings:
        lines.append(f"\nWarnings ({len(ctrs.warnings)}):")
        for w in ctrs.warnings[:20]:
            lines.append(f"  {w}")
        if len(ctrs.warnings) > 20:
            lines.append(f"  ... and {len(ctrs.warnings) - 20} more")
    lines.append("=" * 60)
    return "\n".join(lines)


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    session: ReconciliationSession,
    source_paths: dict[str, str] | None = None,
    reports_dir: Path | str = "./artifacts/reports",
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "event_id": session.event_id,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        "state": session.state,
        "crew_policy": {"version": session.crew_policy.version, "hash": session.crew_policy.yaml_hash},
        "distance_policy": {
            "version": session.distance_policy.version,
            "hash": session.distance_policy.yaml_hash,
        },
        **(source_paths or {}),
        "counters": session.counters.to_dict(),
        "suggestions": [s.to_dict() for s in session.suggestions],
        "outcomes": [o.to_dict() for o in session.outcomes],
    }
    report_path = Path(reports_dir) / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
