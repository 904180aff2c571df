"""
Version-control history — per-file commit signals.

Shells out to git. No git binary or no repository means no history,
never an error.
"""

from __future__ import annotations

import math
import os
import shutil
import subprocess
import time
from collections import Counter
from pathlib import Path
from typing import Optional

from ..store.models import Commit, HistoryRecord
from ..utils.logging import logger

REFACTOR_KEYWORDS = ("refactor", "rename", "restructure", "rewrite", "clean", "improve")

SECONDS_PER_DAY = 60 * 60 * 24
LOG_FORMAT = "%h|%an|%at|%s"


def refactor_probability(commits: list[Commit], now: Optional[float] = None) -> float:
    """0.7 x share of refactor-flavoured messages + 0.3 x mean recency.

    Recency of a commit is exp(-0.1 x age in days).
    """
    if not commits:
        return 0.0
    now = time.time() if now is None else now

    flagged = sum(
        1 for c in commits
        if any(k in c.message.lower() for k in REFACTOR_KEYWORDS)
    )
    refactor_ratio = flagged / len(commits)

    recency = [
        math.exp(-0.1 * max(0.0, now - c.timestamp) / SECONDS_PER_DAY)
        for c in commits
    ]
    recency_factor = sum(recency) / len(recency)

    return refactor_ratio * 0.7 + recency_factor * 0.3


def change_frequency(commits: list[Commit]) -> float:
    """Saturates at 1.0 when commits land under ~3 days apart on average."""
    if len(commits) < 2:
        return 0.0
    stamps = sorted(c.timestamp for c in commits)
    gaps = [(b - a) / SECONDS_PER_DAY for a, b in zip(stamps, stamps[1:])]
    mean_gap = sum(gaps) / len(gaps)
    return min(1.0, 3 / (mean_gap + 0.1))


def parse_log(output: str) -> list[Commit]:
    commits = []
    for line in output.splitlines():
        parts = line.split("|", 3)
        if len(parts) != 4:
            continue
        commit_id, author, stamp, message = parts
        try:
            timestamp = int(stamp)
        except ValueError:
            continue
        commits.append(Commit(commit_id=commit_id, author=author, timestamp=timestamp, message=message))
    return commits


def parse_blame_authors(output: str) -> dict[str, int]:
    """Count `author <name>` records from `git blame --line-porcelain`."""
    counts: Counter[str] = Counter()
    for line in output.splitlines():
        if line.startswith("author "):
            counts[line[len("author "):]] += 1
    return dict(counts)


class HistoryAggregator:
    """Collect commit history for tracked files."""

    def __init__(self, project_root: Path, max_commits: int = 10, git: str = "git"):
        self.project_root = project_root.resolve()
        self.max_commits = max_commits
        self.git = git

    def _run(self, *args: str) -> Optional[str]:
        try:
            result = subprocess.run(
                [self.git, *args],
                cwd=self.project_root,
                check=False,
                capture_output=True,
                text=True,
                errors="replace",
            )
        except OSError as e:
            logger.debug(f"git {args[0]} failed to start: {e}")
            return None
        if result.returncode != 0:
            return None
        return result.stdout

    def available(self) -> bool:
        """True when git is installed and the project is inside a work tree."""
        if shutil.which(self.git) is None:
            logger.info("git not available, skipping history collection")
            return False
        out = self._run("rev-parse", "--is-inside-work-tree")
        if out is None or out.strip() != "true":
            logger.info("Not a git repository, skipping history collection")
            return False
        return True

    def collect(self, files: list[str]) -> dict[str, HistoryRecord]:
        """History for each file that has commits. Empty when git is unusable."""
        if not self.available():
            return {}

        now = time.time()
        history: dict[str, HistoryRecord] = {}
        for i, path in enumerate(files, start=1):
            record = self.collect_file(path, now=now)
            if record is not None:
                history[path] = record
            if i % 100 == 0:
                logger.debug(f"History collected for {i}/{len(files)} files")

        logger.info(f"Collected history for {len(history)} files")
        return history

    def collect_file(self, path: str, now: Optional[float] = None) -> Optional[HistoryRecord]:
        rel_path = os.path.relpath(path, self.project_root)
        log = self._run(
            "log", "-n", str(self.max_commits), f"--pretty=format:{LOG_FORMAT}", "--", rel_path,
        )
        commits = parse_log(log or "")
        if not commits:
            return None

        blame = self._run("blame", "--line-porcelain", "--", rel_path)
        return HistoryRecord(
            commits=commits,
            author_line_counts=parse_blame_authors(blame or ""),
            refactor_probability=refactor_probability(commits, now=now),
            change_frequency=change_frequency(commits),
        )
