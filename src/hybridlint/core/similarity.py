"""
Name similarity for typo detection.

Edit distance plus a handful of naming-convention boosts
(case/underscore variants, plurals, prefixes, suffixes).
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from ..store.models import SimilarName

LENGTH_REJECT_THRESHOLD = 2

NORMALIZED_MATCH_FLOOR = 0.9
PLURAL_FLOOR = 0.85
PREFIX_FLOOR = 0.8
SUFFIX_FLOOR = 0.7


def levenshtein(a: str, b: str) -> int:
    """Edit distance with unit insert/delete/substitute costs."""
    m, n = len(a), len(b)
    dp = [[0] * (n + 1) for _ in range(m + 1)]
    for i in range(m + 1):
        dp[i][0] = i
    for j in range(n + 1):
        dp[0][j] = j

    for i in range(1, m + 1):
        for j in range(1, n + 1):
            if a[i - 1] == b[j - 1]:
                dp[i][j] = dp[i - 1][j - 1]
            else:
                dp[i][j] = 1 + min(
                    dp[i - 1][j],      # deletion
                    dp[i][j - 1],      # insertion
                    dp[i - 1][j - 1],  # substitution
                )
    return dp[m][n]


def normalize(name: str) -> str:
    return name.lower().replace("_", "")


def similarity(a: str, b: str, length_threshold: int = LENGTH_REJECT_THRESHOLD) -> float:
    """Similarity in [0, 1].

    Exact match is 1.0 and a length gap above the threshold is 0.0.
    Otherwise the distance-based score, raised to a floor for each
    naming relationship that holds. Floors never lower the score.
    """
    if a == b:
        return 1.0
    if abs(len(a) - len(b)) > length_threshold:
        return 0.0

    score = 1 - levenshtein(a, b) / max(len(a), len(b))

    na, nb = normalize(a), normalize(b)
    if na == nb:
        score = max(score, NORMALIZED_MATCH_FLOOR)
    if na + "s" == nb or nb + "s" == na:
        score = max(score, PLURAL_FLOOR)
    if na.startswith(nb) or nb.startswith(na):
        score = max(score, PREFIX_FLOOR)
    if na.endswith(nb) or nb.endswith(na):
        score = max(score, SUFFIX_FLOOR)

    return min(1.0, max(0.0, score))


def find_similar(
    name: str,
    candidates: Iterable[str],
    threshold: float = 0.7,
    limit: int = 5,
    reference_counts: Optional[Mapping[str, int]] = None,
) -> list[SimilarName]:
    """Rank candidate names by similarity to `name`.

    Skips `name` itself and single-character candidates. Ties are broken
    by name so results do not depend on candidate order.
    """
    if not name:
        return []

    matches = []
    for other in candidates:
        if other == name or len(other) <= 1:
            continue
        score = similarity(name, other)
        if score < threshold:
            continue
        matches.append(SimilarName(
            name=other,
            similarity=score,
            distance=levenshtein(name, other),
            reference_count=(reference_counts or {}).get(other, 0),
        ))

    matches.sort(key=lambda s: (-s.similarity, s.name))
    return matches[:limit]
