"""
Base extractor types and abstract interface.

All language extractors produce the same output types, so the index and
everything downstream of it never care which one ran.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from ..store.models import ExportEntry, IdentifierOccurrence, ImportEdge


@dataclass
class ExtractResult:
    """Output of extracting a single file."""
    identifiers: list[IdentifierOccurrence] = field(default_factory=list)
    imports: list[ImportEdge] = field(default_factory=list)
    exports: list[ExportEntry] = field(default_factory=list)


class LanguageExtractor(ABC):
    """Abstract base for language-specific extractors."""

    @property
    @abstractmethod
    def language(self) -> str:
        """Language identifier (e.g. 'typescript')."""

    @property
    @abstractmethod
    def extensions(self) -> tuple[str, ...]:
        """File extensions this extractor handles (e.g. ('.ts',))."""

    @abstractmethod
    def extract(self, source: str) -> ExtractResult:
        """Extract declarations, usages, imports and exports. Pure, no I/O."""
