"""
Extractor registry — pick an extractor from the file extension.
"""

from __future__ import annotations

from pathlib import Path

from .base import LanguageExtractor
from .typescript import TypeScriptExtractor

_DEFAULT = TypeScriptExtractor()

_EXTRACTORS: list[LanguageExtractor] = [
    _DEFAULT,
]

_EXT_MAP: dict[str, LanguageExtractor] = {}
for e in _EXTRACTORS:
    for ext in e.extensions:
        _EXT_MAP[ext] = e


def get_extractor(path: str | Path) -> LanguageExtractor:
    """Return the extractor for a file.

    Extensions added through configuration without a dedicated extractor
    go through the TypeScript/JavaScript one.
    """
    ext = Path(path).suffix.lower()
    return _EXT_MAP.get(ext, _DEFAULT)
