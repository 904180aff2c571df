"""
Prompt builders and reply parsing for the AI oracle.
"""

from __future__ import annotations

import json
import os
import re
from typing import Any, Optional

from ..errors import OracleResponseError
from ..store.models import HistoryRecord, LintMessage, SimilarName

MAX_RELATED_FILES = 3

RESPONSE_SCHEMA = """{
  "analysisType": "GENUINE_UNUSED", "TYPO", "REFACTOR_LEFTOVER", "INTENTIONAL_UNUSED", "REFACTOR_ISSUE", "PARAMETER_MISMATCH", "TYPE_DEFINITION_MISMATCH", or "UNKNOWN",
  "confidence": (number between 0-1),
  "explanation": (string explanation),
  "rootCause": (brief description of the cause),
  "recommendation": {
    "actionType": "RENAME", "PREFIX", "REMOVE", "KEEP", "UPDATE_IMPORT", "UPDATE_USAGE", or "OTHER",
    "details": (specific changes needed)
  },
  "possibleActions": [
    {
      "action": "ACTION_TYPE",
      "description": "Description of the action",
      "confidence": (number between 0-1)
    }
  ]
}"""

_FENCE = re.compile(r"^```[a-zA-Z]*\s*\n?|\n?```\s*$")


def _code_block(content: str) -> str:
    return f"```typescript\n{content}\n```"


def variable_prompt(
    name: str,
    file_path: str,
    content: str,
    diagnostic: Optional[LintMessage] = None,
    reference_count: int = 0,
    similar: Optional[list[SimilarName]] = None,
    history: Optional[HistoryRecord] = None,
) -> str:
    """Ask the oracle to classify one unused-identifier diagnostic."""
    parts = [
        "Please analyze this unused variable in a TypeScript project.",
        "",
        f"File ({os.path.basename(file_path)}):",
        _code_block(content),
        "",
    ]

    if diagnostic is not None:
        parts.append(
            f'The variable "{name}" on line {diagnostic.line} is flagged by '
            f"rule {diagnostic.rule_id}: {diagnostic.message}"
        )
    else:
        parts.append(f'The variable "{name}" is flagged as unused by the linter.')

    parts.append(f"It has {reference_count} references across the project.")

    if similar:
        listed = ", ".join(f"{s.name} ({s.similarity:.2f})" for s in similar)
        parts.append(f"Similarly named identifiers: {listed}")

    if history is not None and history.commits:
        parts.append(
            f"Recent history: {len(history.commits)} commits, refactor probability "
            f"{history.refactor_probability:.2f}, change frequency {history.change_frequency:.2f}."
        )
        for commit in history.commits[:3]:
            parts.append(f"- {commit.commit_id} {commit.author}: {commit.message}")

    parts += [
        "",
        f'Is "{name}" genuinely unused, a typo of another identifier, leftover from a '
        "refactor, or intentionally unused?",
        "",
        "Please format your response as JSON with the following structure:",
        RESPONSE_SCHEMA,
    ]
    return "\n".join(parts)


def cross_module_prompt(
    name: str,
    file_path: str,
    content: str,
    line: int,
    related: list[tuple[str, str, str]],
) -> str:
    """Cross-module prompt. `related` holds (path, relationship, content) triples."""
    parts = [
        "I'm analyzing a potential cross-module issue in a TypeScript project.",
        "",
        f"File with the issue ({os.path.basename(file_path)}):",
        _code_block(content),
        "",
        f'The variable "{name}" on line {line} is flagged as unused by the linter.',
        "However, this might be due to refactoring where variable names changed between modules.",
        "",
        "Here are the related files that might help understand the issue:",
    ]

    for path, relationship, related_content in related[:MAX_RELATED_FILES]:
        parts += [
            "",
            f"Related file ({os.path.basename(path)}) - This file {relationship} the file with the issue:",
            _code_block(related_content),
        ]

    parts += [
        "",
        "Based on your analysis of these files:",
        f'1. Is "{name}" genuinely unused or is it related to a cross-module refactoring issue?',
        "2. If it's a refactoring issue, what specific changes would fix the problem?",
        "3. What is the root cause of this issue?",
        "",
        "Please format your response as JSON with the following structure:",
        RESPONSE_SCHEMA,
    ]
    return "\n".join(parts)


def parse_classification_reply(text: str) -> dict[str, Any]:
    """Decode an oracle reply into a verdict dict or raise OracleResponseError.

    Markdown code fences around the JSON are tolerated. The verdict must be
    an object with an `analysisType` and a numeric `confidence` in [0, 1].
    """
    stripped = _FENCE.sub("", (text or "").strip()).strip()
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"Oracle reply is not JSON: {e}", raw=text) from e

    if not isinstance(data, dict):
        raise OracleResponseError("Oracle reply is not a JSON object", raw=text)
    if "analysisType" not in data:
        raise OracleResponseError("Oracle reply lacks analysisType", raw=text)

    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise OracleResponseError("Oracle reply confidence is not a number", raw=text)
    if not 0.0 <= float(confidence) <= 1.0:
        raise OracleResponseError(f"Oracle reply confidence out of range: {confidence}", raw=text)

    actions = data.get("possibleActions", [])
    if not isinstance(actions, list):
        raise OracleResponseError("Oracle reply possibleActions is not a list", raw=text)

    return data
