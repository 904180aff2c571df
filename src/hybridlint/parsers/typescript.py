"""
TypeScript / JavaScript lexical extractor.

Line-oriented pattern matching, not a parser. Extracts:
- declarations (variables, functions, classes, method-like blocks, JSX components)
- usages (every other identifier token on a line)
- imports (module specifier + bound names)
- exports (name + whether it is the default export)

Usages are over-counted on purpose: property names and tokens next to
strings all land in the reference map. Identifier matching is global,
not scope-aware.
"""

from __future__ import annotations

import re

from .base import ExtractResult, LanguageExtractor
from ..store.models import ExportEntry, IdentifierKind, IdentifierOccurrence, ImportEdge

IDENT = r"[A-Za-z_$][A-Za-z0-9_$]*"

KEYWORDS = frozenset({
    "break", "case", "catch", "class", "const", "continue", "debugger",
    "default", "delete", "do", "else", "export", "extends", "false",
    "finally", "for", "function", "if", "import", "in", "instanceof",
    "new", "null", "return", "super", "switch", "this", "throw", "true",
    "try", "typeof", "var", "void", "while", "with", "yield", "let",
    "static", "enum", "await", "implements", "package", "protected",
    "interface", "private", "public", "as", "from",
})

# Evaluated independently, in this order, on every line.
DECLARATION_PATTERNS: tuple[tuple[re.Pattern[str], IdentifierKind], ...] = (
    (re.compile(r"\b(?:const|let|var)\s+(" + IDENT + ")"), IdentifierKind.VARIABLE),
    (re.compile(r"\bfunction\s+(" + IDENT + ")"), IdentifierKind.FUNCTION),
    (re.compile(r"\bclass\s+(" + IDENT + ")"), IdentifierKind.CLASS),
    (re.compile(r"(?<![A-Za-z0-9_$])(" + IDENT + r")\s*\([^)]*\)\s*\{"), IdentifierKind.METHOD),
    (re.compile(r"<([A-Z][A-Za-z0-9_$]*)(?=[\s/>])"), IdentifierKind.JSX_COMPONENT),
)

USAGE_PATTERN = re.compile(r"(?<![A-Za-z0-9_$])(" + IDENT + ")")

IMPORT_PATTERN = re.compile(
    r"\bimport\s+(?:type\s+)?"
    r"(?:\{([^}]+)\}|\*\s+as\s+(" + IDENT + r")|(" + IDENT + r"))?"
    r"(?:\s*,\s*\{([^}]+)\})?"
    r"(?:\s*,\s*(" + IDENT + r"))?"
    r"\s*from\s+['\"]([^'\"]+)['\"]"
)

EXPORT_PATTERN = re.compile(
    r"\bexport\s+(default\s+)?(?:async\s+)?"
    r"(?:(?:abstract\s+)?(?:class|function\*?|const|let|var|interface|type|enum)\s+)?"
    r"(" + IDENT + ")"
)

_ALIAS_SPLIT = re.compile(r"\s+as\s+")

# `export type { A }` and `export default async () =>` match `type` / `async` as a name
_OPENS_CLAUSE = re.compile(r"\s*[{(]")


class TypeScriptExtractor(LanguageExtractor):
    """Regex-based extractor for .ts/.tsx/.js/.jsx sources."""

    @property
    def language(self) -> str:
        return "typescript"

    @property
    def extensions(self) -> tuple[str, ...]:
        return (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")

    def extract(self, source: str) -> ExtractResult:
        return ExtractResult(
            identifiers=extract_identifiers(source),
            imports=extract_imports(source),
            exports=extract_exports(source),
        )


def extract_identifiers(source: str) -> list[IdentifierOccurrence]:
    """Declarations then usages, line by line, in source order."""
    occurrences: list[IdentifierOccurrence] = []

    for line_no, line in enumerate(source.split("\n"), start=1):
        declared_here: set[str] = set()

        for pattern, kind in DECLARATION_PATTERNS:
            for match in pattern.finditer(line):
                name = match.group(1)
                # `if (x) {` and friends look like method headers
                if kind is IdentifierKind.METHOD and name in KEYWORDS:
                    continue
                occurrences.append(IdentifierOccurrence(
                    name=name, line=line_no, kind=kind, is_declaration=True,
                ))
                declared_here.add(name)

        for match in USAGE_PATTERN.finditer(line):
            name = match.group(1)
            if len(name) <= 1 or name in KEYWORDS or name in declared_here:
                continue
            occurrences.append(IdentifierOccurrence(
                name=name, line=line_no, kind=IdentifierKind.USAGE, is_declaration=False,
            ))

    return occurrences


def extract_imports(source: str) -> list[ImportEdge]:
    imports = []
    for match in IMPORT_PATTERN.finditer(source):
        named, namespace, default, extra_named, extra_default, module = match.groups()
        names: list[str] = []
        for clause in (named, extra_named):
            if clause:
                names.extend(_parse_named_clause(clause))
        imports.append(ImportEdge(
            source=module,
            default_import=default or extra_default,
            namespace_import=namespace,
            named_imports=names,
        ))
    return imports


def _parse_named_clause(clause: str) -> list[str]:
    """`a, b as c, type D` -> ['a', 'b', 'D'] (original exported names)."""
    names = []
    for part in clause.split(","):
        part = part.strip()
        if part.startswith("type "):
            part = part[5:].strip()
        if not part:
            continue
        original = _ALIAS_SPLIT.split(part, maxsplit=1)[0].strip()
        if original:
            names.append(original)
    return names


def extract_exports(source: str) -> list[ExportEntry]:
    exports = []
    for match in EXPORT_PATTERN.finditer(source):
        name = match.group(2)
        if name in KEYWORDS:
            continue
        if name in ("type", "async") and _OPENS_CLAUSE.match(source, match.end()):
            continue
        exports.append(ExportEntry(name=name, is_default=match.group(1) is not None))
    return exports
