"""
Variable classifier — decide what an "unused identifier" diagnostic means.

A fixed cascade of heuristics over reference counts, name similarity and
commit history produces a verdict with ranked remediation actions. When
asked, the AI oracle gets a chance to override a heuristic verdict; a
failed or unparseable oracle answer never replaces it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from ..ai.prompts import cross_module_prompt, parse_classification_reply, variable_prompt
from ..config import LintConfig
from ..errors import OracleError, OracleResponseError
from ..store.models import (
    ActionKind, AnalysisType, ClassificationResult, HistoryRecord, LintMessage,
    PossibleAction,
)
from ..utils.logging import logger

if TYPE_CHECKING:
    from ..ai.oracle import Oracle
    from .context import ProjectContext

ORACLE_OVERRIDE_CONFIDENCE = 0.7
TYPO_SIMILARITY = 0.8
REFACTOR_LEFTOVER_PROBABILITY = 0.6
CERTAIN_UNUSED_CONFIDENCE = 0.9


class VariableClassifier:
    """Classify unused-identifier diagnostics against a project index."""

    def __init__(
        self,
        context: "ProjectContext",
        config: Optional[LintConfig] = None,
        oracle: Optional["Oracle"] = None,
    ):
        self.context = context
        self.config = config or context.config
        self.oracle = oracle
        self._cache: dict[tuple[str, str, str, str], ClassificationResult] = {}

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    # ── Heuristics ──

    def heuristic(self, name: str, file_path: str) -> ClassificationResult:
        """First matching rule wins. Pure given the index state."""
        references = self.context.references.get(name, [])
        similar = self.context.find_similar_variables(name)
        history = self.context.history.get(file_path) or HistoryRecord()
        refactor_prob = history.refactor_probability
        prefix = self.config.unused_prefix
        prefixed = f"{prefix}{name}"

        result = ClassificationResult(
            name=name,
            file_path=file_path,
            similar_names=similar,
            reference_count=len(references),
            refactor_probability=refactor_prob,
        )

        if len(references) <= 1:
            result.reasoning.append("The variable is declared but has no usages in the codebase")
            result.analysis_type = AnalysisType.GENUINE_UNUSED
            result.confidence = 0.8
            result.explanation = "No usages found for this variable in the entire project"
            result.recommended_action = ActionKind.PREFIX
            actions = [
                PossibleAction(ActionKind.PREFIX, f"Add prefix: {prefixed}", 0.9, prefixed),
                PossibleAction(ActionKind.REMOVE, "Remove the unused variable declaration", 0.7),
            ]

        elif similar and similar[0].similarity > TYPO_SIMILARITY:
            match = similar[0]
            result.reasoning.append(
                f"Found very similar variable '{match.name}' (similarity {match.similarity:.2f})"
            )
            result.reasoning.append(
                f"The similar variable has {match.reference_count} references across the codebase"
            )
            if refactor_prob > 0.5:
                result.reasoning.append(
                    "The file was recently refactored, increasing likelihood of a renaming typo"
                )
            result.analysis_type = AnalysisType.TYPO
            result.confidence = match.similarity
            result.explanation = f"Very similar to '{match.name}' (similarity {match.similarity:.2f})"
            result.recommended_action = ActionKind.RENAME
            actions = [
                PossibleAction(ActionKind.RENAME, f"Rename to '{match.name}'", match.similarity, match.name),
                PossibleAction(ActionKind.PREFIX, f"Add prefix: {prefixed}", 0.4, prefixed),
                PossibleAction(ActionKind.KEEP, "Keep as separate variable", 0.3),
            ]

        elif refactor_prob > REFACTOR_LEFTOVER_PROBABILITY:
            result.reasoning.append(
                f"This file has a high refactoring probability ({refactor_prob:.2f})"
            )
            result.reasoning.append("The refactoring history suggests this may be leftover code")
            result.reasoning.append(
                f"The variable has {len(references)} references, but may still be orphaned"
            )
            result.analysis_type = AnalysisType.REFACTOR_LEFTOVER
            result.confidence = refactor_prob
            result.explanation = "This file was recently refactored, variable may be a leftover"
            result.recommended_action = ActionKind.REMOVE
            actions = [
                PossibleAction(ActionKind.REMOVE, "Remove leftover code", refactor_prob),
                PossibleAction(ActionKind.PREFIX, f"Add prefix: {prefixed}", 0.5, prefixed),
                PossibleAction(ActionKind.KEEP, "Keep for potential future use", 0.3),
            ]

        elif prefix and name.startswith(prefix):
            result.reasoning.append(
                f"Variable already starts with '{prefix}', suggesting an intentionally unused variable"
            )
            result.analysis_type = AnalysisType.INTENTIONAL_UNUSED
            result.confidence = 0.75
            result.explanation = f"Variable is already prefixed with '{prefix}', suggesting it's deliberately unused"
            result.recommended_action = ActionKind.KEEP
            actions = [
                PossibleAction(ActionKind.KEEP, "Keep as is (already prefixed)", 0.9),
                PossibleAction(ActionKind.REMOVE, "Remove if truly unneeded", 0.4),
            ]

        else:
            confidence = 0.6
            if len(references) == 1:
                confidence += 0.1
            if not similar:
                confidence += 0.1
            result.reasoning.append(f"Variable has {len(references)} references in codebase")
            result.reasoning.append("No clear refactoring pattern or similar variables detected")
            result.analysis_type = AnalysisType.GENUINE_UNUSED
            result.confidence = confidence
            result.explanation = "No clear pattern detected, likely a genuinely unused variable"
            result.recommended_action = ActionKind.PREFIX
            actions = [
                PossibleAction(ActionKind.PREFIX, f"Add prefix: {prefixed}", 0.8, prefixed),
                PossibleAction(ActionKind.REMOVE, "Remove if not needed", 0.6),
            ]

        result.possible_actions = _rank_actions(actions, prefixed)
        return result

    # ── Entry points ──

    def analyze(
        self,
        name: str,
        file_path: str,
        diagnostic: Optional[LintMessage] = None,
        use_ai: bool = False,
    ) -> tuple[ClassificationResult, bool]:
        """Classify one diagnostic. Returns (result, computed_now).

        Results are memoized per (name, file, diagnostic, mode) for the
        lifetime of the classifier.
        """
        mode = "ai" if use_ai else "heuristic"
        key = (name, file_path, diagnostic.cache_token() if diagnostic else "", mode)
        cached = self._cache.get(key)
        if cached is not None:
            return cached, False

        result = self.heuristic(name, file_path)

        if use_ai and self.oracle is not None:
            if self.config.cross_file_analysis:
                prompt = self._cross_module_prompt(name, file_path, diagnostic)
                model = self.config.complex_model
            else:
                prompt = variable_prompt(
                    name,
                    file_path,
                    self.context.read_file(file_path),
                    diagnostic=diagnostic,
                    reference_count=result.reference_count,
                    similar=result.similar_names,
                    history=self.context.history.get(file_path),
                )
                model = self.config.default_model
            verdict = self._consult(prompt, model)
            if verdict is not None:
                result.oracle_verdict = verdict
                if verdict["confidence"] > ORACLE_OVERRIDE_CONFIDENCE:
                    self._adopt(result, verdict)

        self._cache[key] = result
        return result, True

    def analyze_cross_module(
        self,
        name: str,
        file_path: str,
        diagnostic: Optional[LintMessage] = None,
    ) -> tuple[ClassificationResult, bool]:
        """Heuristics first; the oracle sees related files only when they are unsure.

        A near-certain GENUINE_UNUSED verdict is returned as is. The
        oracle's answer is adopted only when it is confident and names an
        actual cross-module cause.
        """
        key = (name, file_path, diagnostic.cache_token() if diagnostic else "", "cross-module")
        cached = self._cache.get(key)
        if cached is not None:
            return cached, False

        result = self.heuristic(name, file_path)
        certain = (
            result.analysis_type == AnalysisType.GENUINE_UNUSED
            and result.confidence > CERTAIN_UNUSED_CONFIDENCE
        )

        if not certain and self.oracle is not None:
            prompt = self._cross_module_prompt(name, file_path, diagnostic)
            verdict = self._consult(prompt, self.config.complex_model)
            if verdict is not None:
                result.oracle_verdict = verdict
                oracle_type = AnalysisType.parse(verdict.get("analysisType"))
                if (
                    verdict["confidence"] > ORACLE_OVERRIDE_CONFIDENCE
                    and oracle_type not in (AnalysisType.GENUINE_UNUSED, AnalysisType.UNKNOWN)
                ):
                    fallback = result.top_action
                    self._adopt(result, verdict)
                    if fallback is not None and all(
                        a.action != fallback.action for a in result.possible_actions
                    ):
                        result.possible_actions.append(fallback)

        self._cache[key] = result
        return result, True

    # ── Oracle plumbing ──

    def _cross_module_prompt(
        self, name: str, file_path: str, diagnostic: Optional[LintMessage],
    ) -> str:
        related = []
        for dep in self.context.dependencies.get(file_path, []):
            related.append((dep, "imports from", self.context.read_file(dep)))
        for dep in self.context.reverse_dependencies.get(file_path, []):
            related.append((dep, "imported by", self.context.read_file(dep)))
        line = diagnostic.line if diagnostic else 0
        return cross_module_prompt(
            name, file_path, self.context.read_file(file_path), line, related,
        )

    def _consult(self, prompt: str, model: str) -> Optional[dict[str, Any]]:
        """Oracle verdict dict, a low-confidence UNKNOWN on a bad reply, or
        None when the oracle could not be reached."""
        try:
            reply = self.oracle.complete(prompt, model=model)
        except OracleError as e:
            logger.warning(f"AI analysis unavailable, keeping heuristic result: {e}")
            return None

        try:
            return parse_classification_reply(reply)
        except OracleResponseError as e:
            logger.warning(f"Failed to parse AI response: {e}")
            return parse_error_verdict(reply)

    def _adopt(self, result: ClassificationResult, verdict: dict[str, Any]):
        result.analysis_type = AnalysisType.parse(verdict.get("analysisType"))
        result.confidence = float(verdict["confidence"])
        result.explanation = str(verdict.get("explanation") or result.explanation)
        result.source = "oracle"
        if verdict.get("rootCause"):
            result.reasoning = result.reasoning + [f"Root cause: {verdict['rootCause']}"]

        recommendation = verdict.get("recommendation")
        if isinstance(recommendation, dict) and recommendation.get("actionType"):
            result.recommended_action = ActionKind.parse(recommendation["actionType"])

        actions = _actions_from_verdict(verdict)
        if actions:
            result.possible_actions = actions
            if not (isinstance(recommendation, dict) and recommendation.get("actionType")):
                result.recommended_action = actions[0].action


def parse_error_verdict(raw: str) -> dict[str, Any]:
    """Safe stand-in for an oracle reply that is not the JSON we asked for."""
    return {
        "analysisType": AnalysisType.UNKNOWN.value,
        "confidence": 0.5,
        "explanation": "Failed to parse AI response",
        "parseError": True,
        "rawResponse": raw,
        "possibleActions": [
            {"action": ActionKind.PREFIX.value, "description": "Add prefix to mark as unused", "confidence": 0.8},
            {"action": ActionKind.MANUAL_REVIEW.value, "description": "Review manually", "confidence": 0.7},
        ],
    }


def _actions_from_verdict(verdict: dict[str, Any]) -> list[PossibleAction]:
    actions = []
    for item in verdict.get("possibleActions") or []:
        if not isinstance(item, dict):
            continue
        try:
            confidence = float(item.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        actions.append(PossibleAction(
            action=ActionKind.parse(item.get("action")),
            description=str(item.get("description", "")),
            confidence=min(1.0, max(0.0, confidence)),
        ))
    actions.sort(key=lambda a: -a.confidence)
    return actions


def _rank_actions(actions: list[PossibleAction], prefixed: str) -> list[PossibleAction]:
    """Sort by confidence; the prefix action is always offered."""
    if all(a.action != ActionKind.PREFIX for a in actions):
        actions.append(PossibleAction(ActionKind.PREFIX, f"Add prefix: {prefixed}", 0.3, prefixed))
    return sorted(actions, key=lambda a: -a.confidence)
