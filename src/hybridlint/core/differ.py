"""
Change detection and file prioritisation.

Compares current file hashes against stored fingerprints to find what
changed, and ranks files so changed and highly connected ones go first.
"""

from __future__ import annotations

from typing import Mapping

from ..store.models import HistoryRecord
from ..utils.logging import logger
from .indexer import compute_file_hash

CHANGED_WEIGHT = 100
DEPENDENCY_WEIGHT = 2
DEPENDENT_WEIGHT = 3
REFACTOR_WEIGHT = 20
FREQUENCY_WEIGHT = 15


class Differ:
    """Detect file changes against a set of stored fingerprints."""

    def __init__(self, fingerprints: Mapping[str, str]):
        self.fingerprints = fingerprints

    def has_changed(self, path: str) -> bool:
        stored = self.fingerprints.get(path)
        if stored is None:
            return True
        try:
            return compute_file_hash(path) != stored
        except OSError as e:
            logger.warning(f"Cannot re-fingerprint {path}: {e}")
            return True

    def changed_files(self, paths: list[str]) -> list[str]:
        """Files whose current hash differs from the stored one."""
        return [p for p in paths if self.has_changed(p)]


def priority_scores(
    paths: list[str],
    changed: set[str],
    dependencies: Mapping[str, list[str]],
    reverse_dependencies: Mapping[str, list[str]],
    history: Mapping[str, HistoryRecord],
) -> dict[str, float]:
    scores = {}
    for path in paths:
        score = float(CHANGED_WEIGHT if path in changed else 0)
        score += len(dependencies.get(path, [])) * DEPENDENCY_WEIGHT
        score += len(reverse_dependencies.get(path, [])) * DEPENDENT_WEIGHT
        record = history.get(path)
        if record is not None:
            score += record.refactor_probability * REFACTOR_WEIGHT
            score += record.change_frequency * FREQUENCY_WEIGHT
        scores[path] = score
    return scores


def prioritize(paths: list[str], scores: Mapping[str, float]) -> list[str]:
    """Highest score first; path breaks ties."""
    return sorted(paths, key=lambda p: (-scores.get(p, 0.0), p))
