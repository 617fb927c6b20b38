"""regatta_recon.normalize

Normalization functions for reconciliation matching.

All text helpers accept str | None.  Free-text comparison always goes
through normalize_text() so that both sides of a comparison are
canonicalized the same way.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass

_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return _WHITESPACE_RE.sub(" ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_text  (comparison key for every matcher)
# ---------------------------------------------------------------------------

def normalize_text(value: str | None) -> str:
    """Lowercase, strip diacritics, collapse whitespace, trim.

    Idempotent: normalize_text(normalize_text(x)) == normalize_text(x).
    Returns "" for None or blank input.
    """
    if not value:
        return ""
    v = value.lower()
    # Decompose unicode (e.g. accented chars) then drop combining marks
    v = unicodedata.normalize("NFD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    return _WHITESPACE_RE.sub(" ", v).strip()


def tokens(value: str | None) -> list[str]:
    """Split normalized text on spaces."""
    v = normalize_text(value)
    return v.split(" ") if v else []


# ---------------------------------------------------------------------------
# Helper: parse_person_name
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PersonName:
    last_name: str
    first_name: str


def parse_person_name(full_name: str | None) -> PersonName:
    """Split a free-text person name into normalized (last, first).

    Supports:
    - "Last, First Middle" → ("last", "first middle")
    - "First Middle Last"  → ("last", "first middle")
    - Single token         → (token, "")
    """
    v = normalize_text(full_name)
    if not v:
        return PersonName("", "")
    if "," in v:
        last, first = v.split(",", 1)
        return PersonName(last.strip(), normalize_text(first))
    parts = v.split(" ")
    if len(parts) == 1:
        return PersonName(parts[0], "")
    return PersonName(parts[-1], " ".join(parts[:-1]))
