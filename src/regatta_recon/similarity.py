"""regatta_recon.similarity

Scoring primitives shared by the crew matcher and the distance suggester.

Every string comparison normalizes both sides first.  An empty side never
matches: a blank club code or label is "no comparable data", not a
substring of everything.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from regatta_recon.models import MatchCandidate
from regatta_recon.normalize import normalize_text

_DIGIT_RUN_RE = re.compile(r"\d+")


def exact_match(a: str | None, b: str | None) -> bool:
    """True iff both normalized strings are non-empty and identical."""
    na, nb = normalize_text(a), normalize_text(b)
    return bool(na) and na == nb


def containment(a: str | None, b: str | None) -> bool:
    """True iff either normalized string contains the other."""
    na, nb = normalize_text(a), normalize_text(b)
    if not na or not nb:
        return False
    return na in nb or nb in na


def extract_numbers(text: str | None) -> list[int]:
    """Return every digit run in text as an int, in appearance order."""
    if not text:
        return []
    return [int(m) for m in _DIGIT_RUN_RE.findall(text)]


def numeric_overlap(
    nums_a: Iterable[int | None],
    nums_b: Iterable[int | None],
    tolerance: int = 1,
) -> bool:
    """True iff some pair (x, y) satisfies |x - y| <= tolerance.

    None entries (absent optional fields) are ignored.
    """
    left = [x for x in nums_a if x is not None]
    right = [y for y in nums_b if y is not None]
    return any(abs(x - y) <= tolerance for x in left for y in right)


def clamp_score(raw: float) -> int:
    """Round and clamp a raw point total into [0, 100]."""
    return max(0, min(100, int(round(raw))))


def rank_candidates(candidates: Sequence[MatchCandidate]) -> list[MatchCandidate]:
    """Sort descending by score; equal scores keep enumeration order.

    list.sort is stable, so a single keyed sort never reorders ties.
    """
    ranked = list(candidates)
    ranked.sort(key=lambda c: c.score, reverse=True)
    return ranked
