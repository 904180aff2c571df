"""
Impact analysis — which files may need re-checking after a file changes.

Breadth-first over two kinds of edges: importers (reverse dependencies)
and files that reference an identifier declared in the current file.
"""

from __future__ import annotations

from collections import deque
from typing import Mapping

from ..store.models import FileRecord, ImpactRecord, Reference

# Tunable heuristics, kept for compatibility with earlier reports.
IMPORT_HOP_DECAY = 0.9
SHARED_IDENTIFIER_HOP_DECAY = 0.8
SHARED_IDENTIFIER_BUMP = 0.05
SHARED_IDENTIFIER_CAP = 0.95


class ImpactAnalyzer:
    """Rank files by how likely they are affected by a change elsewhere."""

    def __init__(
        self,
        files: Mapping[str, FileRecord],
        references: Mapping[str, list[Reference]],
        reverse_dependencies: Mapping[str, list[str]],
    ):
        self.files = files
        self.references = references
        self.reverse_dependencies = reverse_dependencies

    def affected_files(self, source: str) -> list[ImpactRecord]:
        """Affected files sorted by impact score, never including `source`."""
        if source not in self.files:
            return []

        impacts: dict[str, ImpactRecord] = {
            source: ImpactRecord(file_path=source, impact_score=1.0, impact_path=[source]),
        }
        queue = deque([source])

        while queue:
            current = queue.popleft()
            parent = impacts[current]

            for dependent in self.reverse_dependencies.get(current, []):
                if dependent in impacts:
                    if dependent != source:
                        impacts[dependent].direct_dependency_count += 1
                    continue
                impacts[dependent] = ImpactRecord(
                    file_path=dependent,
                    direct_dependency_count=1,
                    impact_score=parent.impact_score * IMPORT_HOP_DECAY,
                    impact_path=parent.impact_path + [dependent],
                )
                queue.append(dependent)

            record = self.files.get(current)
            if record is None:
                continue
            for name in record.declared_names():
                for ref in self.references.get(name, []):
                    other = ref.file_path
                    if other == current or other == source:
                        continue
                    if other not in impacts:
                        impacts[other] = ImpactRecord(
                            file_path=other,
                            shared_variables=[name],
                            impact_score=parent.impact_score * SHARED_IDENTIFIER_HOP_DECAY,
                            impact_path=parent.impact_path + [other],
                        )
                        queue.append(other)
                    else:
                        existing = impacts[other]
                        if name not in existing.shared_variables:
                            existing.shared_variables.append(name)
                            existing.impact_score = min(
                                SHARED_IDENTIFIER_CAP,
                                existing.impact_score + SHARED_IDENTIFIER_BUMP,
                            )

        del impacts[source]
        return sorted(impacts.values(), key=lambda r: (-r.impact_score, r.file_path))
