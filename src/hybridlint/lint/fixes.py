"""
Unused-identifier fixes — apply a classifier verdict to file text.

Edits are confined to the diagnostic's line: the flagged name is
prefixed, renamed to its typo target, or the line is commented out when
it looks like refactor leftovers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from ..store.models import AnalysisType, ClassificationResult, ImpactRecord, LintMessage
from ..utils.logging import logger
from .runner import is_unused_diagnostic, unused_identifier_name

if TYPE_CHECKING:
    from ..core.context import ProjectContext

RENAME_CONFIDENCE = 0.7
REMOVE_CONFIDENCE = 0.8

FIX_PREFIX = "PREFIX"
FIX_RENAME = "RENAME"
FIX_REMOVE = "REMOVE"


@dataclass
class FixOutcome:
    """One fix applied (or proposed, in dry-run mode) to a file."""
    file_path: str
    line: int
    name: str
    fix_type: str
    replacement: Optional[str]
    analysis: ClassificationResult
    diagnostic: Optional[LintMessage] = None
    fix_id: Optional[str] = None
    affected: list[ImpactRecord] = field(default_factory=list)


def _declaration_patterns(name: str) -> list[re.Pattern]:
    n = re.escape(name)
    return [
        re.compile(rf"(\b(?:const|let|var)\s+)({n})(?=\s*[=:;,)]|\s*$)"),
        re.compile(rf"(\(\s*|,\s*)({n})(?=\s*[:,)=])"),
        re.compile(rf"(\{{\s*|,\s*)({n})(?=\s*[,}}])"),
        re.compile(rf"(\bfunction\s+)({n})(?=\s*[(<])"),
        re.compile(rf"(\bclass\s+)({n})\b"),
    ]


def rename_on_line(line: str, name: str, new_name: str) -> str:
    """Rewrite declaration-shaped occurrences of `name` on one line."""
    updated = line
    for pattern in _declaration_patterns(name):
        updated = pattern.sub(lambda m: m.group(1) + new_name, updated)
    return updated


def comment_out(line: str) -> str:
    body = line.rstrip("\r")
    eol = line[len(body):]
    stripped = body.lstrip()
    indent = body[: len(body) - len(stripped)]
    return f"{indent}// {stripped} // removed: unused{eol}"


def choose_fix(result: ClassificationResult, prefix: str) -> tuple[str, Optional[str]]:
    """(fix type, replacement name) for a verdict."""
    if (
        result.analysis_type == AnalysisType.TYPO
        and result.similar_names
        and result.confidence > RENAME_CONFIDENCE
    ):
        return FIX_RENAME, result.similar_names[0].name
    if (
        result.analysis_type == AnalysisType.REFACTOR_LEFTOVER
        and result.confidence > REMOVE_CONFIDENCE
    ):
        return FIX_REMOVE, None
    return FIX_PREFIX, f"{prefix}{result.name}"


def fix_unused_identifiers(
    context: "ProjectContext",
    file_path: str,
    messages: list[LintMessage],
    use_ai: Optional[bool] = None,
    cross_module: bool = False,
    apply: bool = False,
) -> list[FixOutcome]:
    """Classify each unused-identifier diagnostic in a file and fix it.

    With `apply=False` the file is left untouched and no fix is recorded;
    the outcomes show what would change.
    """
    path = context.resolve_path(file_path)
    # Line endings and undecodable bytes must round-trip untouched.
    try:
        with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
            text = f.read()
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return []
    if not text:
        return []
    lines = text.split("\n")
    prefix = context.config.unused_prefix
    outcomes: list[FixOutcome] = []

    for message in sorted(messages, key=lambda m: m.line):
        if not is_unused_diagnostic(message):
            continue
        name = unused_identifier_name(message)
        if not name or (prefix and name.startswith(prefix)):
            continue
        if not 1 <= message.line <= len(lines):
            logger.debug(f"{path}:{message.line}: diagnostic line out of range")
            continue

        if cross_module:
            analysis = context.analyze_cross_module(name, path, message)
        else:
            analysis = context.analyze_variable(name, path, message, use_ai=use_ai)

        fix_type, replacement = choose_fix(analysis, prefix)
        original = lines[message.line - 1]
        if fix_type == FIX_REMOVE:
            updated = comment_out(original)
        else:
            updated = rename_on_line(original, name, replacement)

        if updated == original:
            logger.debug(f"{path}:{message.line}: no declaration of {name} to rewrite")
            continue

        lines[message.line - 1] = updated
        outcomes.append(FixOutcome(
            file_path=path,
            line=message.line,
            name=name,
            fix_type=fix_type,
            replacement=replacement,
            analysis=analysis,
            diagnostic=message,
        ))

    if not outcomes or not apply:
        return outcomes

    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        f.write("\n".join(lines))

    affected = context.get_affected_files(path)
    for outcome in outcomes:
        details = {"original": outcome.name, "fixed": outcome.replacement}
        if outcome.fix_type == FIX_RENAME and outcome.analysis.similar_names:
            details["similarity"] = round(outcome.analysis.similar_names[0].similarity, 4)
        outcome.fix_id = context.record_fix(path, outcome.diagnostic, outcome.fix_type, details)
        outcome.affected = affected

    logger.info(f"Applied {len(outcomes)} fixes to {context.relative(path)}")
    return outcomes

