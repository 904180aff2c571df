"""
Dependency graph — resolve import specifiers to tracked files.

Only edges between tracked files are kept, so the forward graph and its
transpose always agree.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from ..store.models import FileRecord
from ..utils.logging import logger

RESOLVE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx")


class ImportResolver:
    """Resolve relative and aliased module specifiers against the filesystem."""

    def __init__(self, project_root: Path, aliases: Optional[Mapping[str, str]] = None):
        self.project_root = project_root.resolve()
        # Longest alias first so "@app/ui" wins over "@app"
        self.aliases = sorted((aliases or {}).items(), key=lambda kv: len(kv[0]), reverse=True)

    def resolve(self, from_file: str, specifier: str) -> Optional[str]:
        """Absolute path of the imported file, or None for packages / misses."""
        if specifier.startswith("."):
            base = os.path.join(os.path.dirname(from_file), specifier)
            return self._probe(base)

        for alias, target in self.aliases:
            if specifier == alias or specifier.startswith(alias.rstrip("/") + "/"):
                remainder = specifier[len(alias):].lstrip("/")
                base = os.path.join(str(self.project_root), target, remainder)
                found = self._probe(base)
                if found:
                    return found

        return None

    def _probe(self, base: str) -> Optional[str]:
        base = os.path.normpath(base)
        candidates = [base]
        candidates.extend(base + ext for ext in RESOLVE_EXTENSIONS)
        candidates.extend(os.path.join(base, "index" + ext) for ext in RESOLVE_EXTENSIONS)
        for candidate in candidates:
            if os.path.isfile(candidate):
                return candidate
        return None


def build_dependency_graph(
    files: Mapping[str, FileRecord],
    resolver: ImportResolver,
) -> dict[str, list[str]]:
    """file -> files it imports (tracked files only, first-seen order)."""
    graph: dict[str, list[str]] = {}
    for path, record in files.items():
        deps: dict[str, None] = {}
        for edge in record.imports:
            target = resolver.resolve(path, edge.source)
            if target is None:
                continue
            if target not in files:
                logger.debug(f"{path}: import {edge.source!r} resolves outside the index")
                continue
            if target != path:
                deps.setdefault(target, None)
        graph[path] = list(deps)
    return graph


def build_reverse_graph(
    dependencies: Mapping[str, list[str]],
    files: Mapping[str, FileRecord],
) -> dict[str, list[str]]:
    """Transpose of the dependency graph: file -> files that import it."""
    reverse: dict[str, list[str]] = {path: [] for path in files}
    for path in sorted(dependencies):
        for dep in dependencies[path]:
            reverse.setdefault(dep, []).append(path)
    return reverse
