"""regatta_recon.cli

Command-line entry point (regatta-recon).

Modes:
  distance_suggest — suggest a distance for every category/race that has none
  crew_match       — match the boats of an imported race file to event crews

Both modes fetch the event snapshot, score, optionally apply a reviewer
decisions CSV, print a report, and (unless --dry-run) write every accepted
suggestion back through the API.  A JSON run report is always written to
./artifacts/reports/{run_id}.json.
"""

from __future__ import annotations

import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import click

from regatta_recon.decode import ImportPayloadError, load_import_file
from regatta_recon.match_policy import MatchPolicy, PolicyValidationError, load_policy
from regatta_recon.persistence import PersistenceError, RestPersistenceClient
from regatta_recon.reconciliation_session import (
    ReconciliationSession,
    build_apply_report,
    write_run_report,
)

_MODE_DOMAIN = {
    "distance_suggest": "distance",
    "crew_match": "crew",
}


def _fatal(run_id: str, message: str) -> None:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _validate_crew_match_flags(
    import_path: str | None,
    race_id: str | None,
    dry_run: bool,
    run_id: str,
) -> None:
    if not import_path:
        _fatal(run_id, "crew_match mode requires: --import-path")
    if not Path(import_path).exists():
        _fatal(run_id, f"--import-path not found: {import_path}")
    if not dry_run and not race_id:
        _fatal(run_id, "crew_match mode requires --race-id unless --dry-run is set")


def _load_policy_override(policy_file: str | None, mode: str, run_id: str) -> MatchPolicy | None:
    if not policy_file:
        return None
    try:
        policy = load_policy(policy_file)
    except (PolicyValidationError, FileNotFoundError) as exc:
        _fatal(run_id, f"invalid --policy-file {policy_file}: {exc}")
    if policy.domain != _MODE_DOMAIN[mode]:
        _fatal(
            run_id,
            f"--policy-file domain '{policy.domain}' does not match mode {mode} "
            f"(expected '{_MODE_DOMAIN[mode]}')",
        )
    click.echo(f"[{run_id}] Policy {policy_file} version={policy.version} hash={policy.yaml_hash[:12]}")
    return policy


@click.command()
@click.option(
    "--mode",
    required=True,
    type=click.Choice(["distance_suggest", "crew_match"]),
    help="Reconciliation mode",
)
@click.option("--api-url", required=True, help="Backend API root URL")
@click.option("--event-id", required=True, help="Event whose records are reconciled")
@click.option(
    "--token-env",
    default="REGATTA_API_TOKEN",
    show_default=True,
    help="Env var name holding the API bearer token",
)
@click.option("--import-path", default=None, type=click.Path(), help="[crew_match] Decoded race file (JSON)")
@click.option("--race-id", default=None, help="[crew_match] Race receiving the matched crews")
@click.option("--policy-file", default=None, type=click.Path(), help="YAML match policy overriding the shipped one")
@click.option("--decisions-path", default=None, type=click.Path(), help="CSV of reviewer decisions applied before writing")
@click.option("--dry-run", is_flag=True, default=False, help="Score and report only; no writes")
@click.option("--max-workers", default=8, type=int, show_default=True, help="Concurrent API requests")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    show_default=True,
)
def main(
    mode: str,
    api_url: str,
    event_id: str,
    token_env: str,
    import_path: str | None,
    race_id: str | None,
    policy_file: str | None,
    decisions_path: str | None,
    dry_run: bool,
    max_workers: int,
    run_id: str | None,
    log_level: str,
) -> None:
    """Suggest distances or match imported boats to crews for one event."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    click.echo(f"[{run_id}] Starting {mode} run for event {event_id} (dry_run={dry_run})")

    if mode == "crew_match":
        _validate_crew_match_flags(import_path, race_id, dry_run, run_id)
    if decisions_path and not Path(decisions_path).exists():
        _fatal(run_id, f"--decisions-path not found: {decisions_path}")

    policy = _load_policy_override(policy_file, mode, run_id)

    race_definition = None
    if mode == "crew_match":
        try:
            race_definition = load_import_file(import_path)
        except ImportPayloadError as exc:
            _fatal(run_id, f"invalid import file {import_path}: {exc}")
        click.echo(f"[{run_id}] crew_match import_path={import_path} boats={len(race_definition.boats)}")

    token = os.environ.get(token_env)
    if not token:
        click.echo(f"[{run_id}] env var {token_env} not set; calling API without a token")

    client = RestPersistenceClient(api_url, token=token)
    session = ReconciliationSession(
        client,
        event_id,
        crew_policy=policy if mode == "crew_match" else None,
        distance_policy=policy if mode == "distance_suggest" else None,
        max_workers=max_workers,
    )

    try:
        session.start(race_definition)
    except PersistenceError as exc:
        _fatal(run_id, f"snapshot fetch failed: {exc}")

    if decisions_path:
        try:
            ctrs = session.apply_decisions_csv(decisions_path)
        except ValueError as exc:
            _fatal(run_id, str(exc))
        click.echo(
            f"[{run_id}] decisions_path={decisions_path} applied={ctrs.decisions_applied} "
            f"invalid={ctrs.decisions_invalid}"
        )

    if not dry_run:
        session.apply(race_id=race_id)
        if mode == "crew_match":
            click.echo(f"[{run_id}] race {race_id} lane_count={session.lane_count()}")

    click.echo(build_apply_report(session, mode, dry_run=dry_run))
    report_path = write_run_report(
        run_id, started_at, mode, dry_run, session,
        {"import_path": import_path, "decisions_path": decisions_path, "policy_file": policy_file},
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if dry_run:
        click.echo(f"[{run_id}] DRY RUN — nothing written.")
        return
    if session.counters.writes_failed > 0:
        click.echo(f"[{run_id}] {session.counters.writes_failed} writes failed — exiting non-zero", err=True)
        sys.exit(1)
    click.echo(f"[{run_id}] Done.")
