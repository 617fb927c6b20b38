"""regatta_recon.match_policy

YAML-based match policy for the reconciliation matchers.

One policy per domain (crew, distance) names every tunable of the
matching flow in one place: criterion weights, the suggestion and
auto-accept thresholds, the tie-break, the optional margin rule, and
named toggles such as the reversed-name heuristic.

Usage:
    from regatta_recon.match_policy import load_default_policy, acceptance_state

    policy = load_default_policy("crew")
    state = acceptance_state(policy, ranked_candidates)
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from regatta_recon.models import MatchCandidate

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

VALID_DOMAINS = frozenset({"crew", "distance"})

REQUIRED_YAML_KEYS = frozenset({
    "domain",
    "version",
    "thresholds",
    "margin_rule",
    "tie_break",
    "weights",
})

REQUIRED_THRESHOLD_KEYS = frozenset({"suggest", "auto_accept"})

REQUIRED_WEIGHTS: dict[str, frozenset[str]] = {
    "crew": frozenset({
        "name_exact",
        "name_reversed",
        "name_last_only",
        "name_partial",
        "affiliation_exact",
        "affiliation_partial",
        "category",
        "agreement_bonus",
        "full_agreement_bonus",
    }),
    "distance": frozenset({
        "numeric_overlap",
        "keyword",
        "containment",
        "unit_pattern",
    }),
}

VALID_TIE_BREAKS = frozenset({"first_seen"})

VALID_ACCEPTANCE_STATES = ("auto_accept", "review", "none")

_POLICY_DIR = Path(__file__).parent / "policies"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PolicyValidationError(ValueError):
    """Raised when a YAML policy file fails schema validation."""


# ---------------------------------------------------------------------------
# Policy dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MarginRule:
    """Accept below auto_accept when the leader is far enough ahead."""

    enabled: bool = False
    floor: float = 30.0
    lead: float = 20.0


@dataclass
class MatchPolicy:
    """Parsed, validated match policy loaded from a YAML file."""

    domain: str
    version: str
    yaml_hash: str
    thresholds: dict[str, float]
    weights: dict[str, float]
    margin_rule: MarginRule = field(default_factory=MarginRule)
    tie_break: str = "first_seen"
    rules: dict[str, bool] = field(default_factory=dict)
    caps: dict[str, float] = field(default_factory=dict)
    roster_weight: float = 0.5
    numeric_tolerance: int = 1
    raw_yaml: str = field(repr=False, default="")

    @property
    def suggest_threshold(self) -> float:
        return float(self.thresholds["suggest"])

    @property
    def auto_accept_threshold(self) -> float:
        return float(self.thresholds["auto_accept"])

    def weight(self, name: str) -> float:
        return float(self.weights.get(name, 0.0))

    def rule_enabled(self, name: str, default: bool = True) -> bool:
        return bool(self.rules.get(name, default))

    def cap(self, name: str) -> float | None:
        value = self.caps.get(name)
        return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_policy(yaml_path: Path | str) -> MatchPolicy:
    """Load, validate, and return a MatchPolicy from a YAML file.

    Raises:
        PolicyValidationError: If the file is not valid YAML, or any required
            field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = Path(yaml_path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise PolicyValidationError(f"Invalid YAML in {yaml_path}: {exc}") from exc
    return policy_from_dict(data, raw_yaml=raw)


def load_default_policy(domain: str) -> MatchPolicy:
    """Load the policy shipped with the package for a domain."""
    if domain not in VALID_DOMAINS:
        raise PolicyValidationError(
            f"Invalid domain '{domain}'. Must be one of {sorted(VALID_DOMAINS)}."
        )
    return load_policy(_POLICY_DIR / f"{domain}.yml")


def policy_from_dict(data: Any, raw_yaml: str = "") -> MatchPolicy:
    """Validate a parsed YAML mapping and build a MatchPolicy from it."""
    validate_policy(data)
    margin = data.get("margin_rule") or {}
    return MatchPolicy(
        domain=data["domain"],
        version=str(data["version"]),
        yaml_hash=hashlib.sha256(raw_yaml.encode("utf-8")).hexdigest(),
        thresholds={k: float(v) for k, v in data["thresholds"].items()},
        weights={k: float(v) for k, v in data["weights"].items()},
        margin_rule=MarginRule(
            enabled=bool(margin.get("enabled", False)),
            floor=float(margin.get("floor", 30)),
            lead=float(margin.get("lead", 20)),
        ),
        tie_break=str(data["tie_break"]),
        rules={k: bool(v) for k, v in (data.get("rules") or {}).items()},
        caps={k: float(v) for k, v in (data.get("caps") or {}).items()},
        roster_weight=float(data.get("roster_weight", 0.5)),
        numeric_tolerance=int(data.get("numeric_tolerance", 1)),
        raw_yaml=raw_yaml,
    )


def _as_float(value: Any, label: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise PolicyValidationError(f"{label} value '{value}' is not numeric.")


def validate_policy(data: Any) -> None:
    """Raise PolicyValidationError if data does not match the required schema.

    Validates:
      - Required top-level keys present
      - domain is one of the allowed values
      - thresholds in [0, 100] with suggest <= auto_accept
      - every weight the domain needs is present and >= 0
      - margin_rule floor/lead and roster_weight ranges
      - tie_break is a supported strategy
    """
    if not isinstance(data, dict):
        raise PolicyValidationError("YAML root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise PolicyValidationError(f"Missing required YAML keys: {sorted(missing_keys)}")

    domain = data.get("domain")
    if domain not in VALID_DOMAINS:
        raise PolicyValidationError(
            f"Invalid domain '{domain}'. Must be one of {sorted(VALID_DOMAINS)}."
        )

    thresholds = data.get("thresholds") or {}
    missing_thresh = REQUIRED_THRESHOLD_KEYS - set(thresholds.keys())
    if missing_thresh:
        raise PolicyValidationError(f"Missing threshold keys: {sorted(missing_thresh)}")
    for key, val in thresholds.items():
        fval = _as_float(val, f"Threshold '{key}'")
        if not (0.0 <= fval <= 100.0):
            raise PolicyValidationError(f"Threshold '{key}' value {fval} must be in [0, 100].")
    suggest = float(thresholds["suggest"])
    auto_accept = float(thresholds["auto_accept"])
    if suggest > auto_accept:
        raise PolicyValidationError(
            f"'suggest' threshold ({suggest}) must be <= 'auto_accept' ({auto_accept})."
        )

    weights = data.get("weights") or {}
    missing_weights = REQUIRED_WEIGHTS[domain] - set(weights.keys())
    if missing_weights:
        raise PolicyValidationError(f"Missing weights for {domain}: {sorted(missing_weights)}")
    for name, weight in weights.items():
        fw = _as_float(weight, f"weight '{name}'")
        if fw < 0:
            raise PolicyValidationError(f"weight '{name}' value {fw} must be >= 0.")

    margin = data.get("margin_rule")
    if not isinstance(margin, dict):
        raise PolicyValidationError("'margin_rule' must be a mapping.")
    for key in ("floor", "lead"):
        if key in margin and _as_float(margin[key], f"margin_rule '{key}'") < 0:
            raise PolicyValidationError(f"margin_rule '{key}' must be >= 0.")

    if data.get("tie_break") not in VALID_TIE_BREAKS:
        raise PolicyValidationError(
            f"Invalid tie_break '{data.get('tie_break')}'. Must be one of {sorted(VALID_TIE_BREAKS)}."
        )

    if "roster_weight" in data:
        rw = _as_float(data["roster_weight"], "roster_weight")
        if not (0.0 <= rw <= 1.0):
            raise PolicyValidationError(f"roster_weight {rw} must be in [0.0, 1.0].")

    for key, val in (data.get("caps") or {}).items():
        cap = _as_float(val, f"cap '{key}'")
        if not (0.0 <= cap <= 100.0):
            raise PolicyValidationError(f"cap '{key}' value {cap} must be in [0, 100].")


# ---------------------------------------------------------------------------
# Acceptance routing
# ---------------------------------------------------------------------------

def clears_suggest_threshold(policy: MatchPolicy, ranked: Sequence[MatchCandidate]) -> bool:
    """True iff the top candidate is good enough to be proposed at all."""
    return bool(ranked) and ranked[0].score >= policy.suggest_threshold


def acceptance_state(policy: MatchPolicy, ranked: Sequence[MatchCandidate]) -> str:
    """Route a ranked candidate list to auto_accept | review | none.

    ranked must already be sorted (see similarity.rank_candidates); ties
    are not re-examined, the first-seen leader wins.
    """
    if not clears_suggest_threshold(policy, ranked):
        return "none"
    best = ranked[0].score
    if best >= policy.auto_accept_threshold:
        return "auto_accept"
    rule = policy.margin_rule
    if rule.enabled and best >= rule.floor:
        runner_up = ranked[1].score if len(ranked) > 1 else 0
        if best - runner_up >= rule.lead:
            return "auto_accept"
    return "review"
