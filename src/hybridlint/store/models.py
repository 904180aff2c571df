"""
Domain models for the project index.

Pure dataclasses and closed enums. File records travel between worker
processes by value, so everything here must stay picklable.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class IdentifierKind(str, Enum):
    """What a textual identifier match was recognised as."""
    VARIABLE = "variable"
    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    JSX_COMPONENT = "jsx-component"
    USAGE = "usage"


class AnalysisType(str, Enum):
    """Verdict for an unused-identifier diagnostic."""
    GENUINE_UNUSED = "GENUINE_UNUSED"
    TYPO = "TYPO"
    REFACTOR_LEFTOVER = "REFACTOR_LEFTOVER"
    INTENTIONAL_UNUSED = "INTENTIONAL_UNUSED"
    REFACTOR_ISSUE = "REFACTOR_ISSUE"
    PARAMETER_MISMATCH = "PARAMETER_MISMATCH"
    TYPE_DEFINITION_MISMATCH = "TYPE_DEFINITION_MISMATCH"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "AnalysisType":
        """Map a free-form tag (e.g. from the oracle) onto the closed set."""
        if isinstance(value, cls):
            return value
        tag = str(value or "").strip().upper().replace("-", "_").replace(" ", "_")
        tag = _ANALYSIS_ALIASES.get(tag, tag)
        try:
            return cls(tag)
        except ValueError:
            return cls.UNKNOWN


_ANALYSIS_ALIASES = {
    "TYPE_MISMATCH": "TYPE_DEFINITION_MISMATCH",
    "PARAMETER_CHANGE": "PARAMETER_MISMATCH",
    "UNUSED": "GENUINE_UNUSED",
    "FUTURE_USE": "INTENTIONAL_UNUSED",
}


class ActionKind(str, Enum):
    """Remediation for a classified identifier."""
    RENAME = "RENAME"
    PREFIX = "PREFIX"
    REMOVE = "REMOVE"
    KEEP = "KEEP"
    UPDATE_IMPORT = "UPDATE_IMPORT"
    UPDATE_USAGE = "UPDATE_USAGE"
    MANUAL_REVIEW = "MANUAL_REVIEW"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, value: Any) -> "ActionKind":
        if isinstance(value, cls):
            return value
        tag = str(value or "").strip().upper().replace("-", "_").replace(" ", "_")
        if tag == "MANUAL":
            tag = "MANUAL_REVIEW"
        try:
            return cls(tag)
        except ValueError:
            return cls.OTHER


# ── Extraction output ──

@dataclass
class IdentifierOccurrence:
    """One textual identifier match. Not deduplicated across lines."""
    name: str = ""
    line: int = 0
    kind: IdentifierKind = IdentifierKind.USAGE
    is_declaration: bool = False

    @property
    def is_usage(self) -> bool:
        return not self.is_declaration


@dataclass
class ImportEdge:
    """An import statement: module specifier plus what it binds."""
    source: str = ""
    default_import: Optional[str] = None
    namespace_import: Optional[str] = None
    named_imports: list[str] = field(default_factory=list)  # original exported names, aliases stripped


@dataclass
class ExportEntry:
    name: str = ""
    is_default: bool = False


@dataclass
class FileRecord:
    """Everything the index knows about one tracked file.

    Replaced wholesale on re-scan, never patched in place.
    """
    path: str = ""
    identifiers: list[IdentifierOccurrence] = field(default_factory=list)
    imports: list[ImportEdge] = field(default_factory=list)
    exports: list[ExportEntry] = field(default_factory=list)
    fingerprint: str = ""

    def declared_names(self) -> list[str]:
        """Declared names in first-seen order, without repeats."""
        seen: dict[str, None] = {}
        for occ in self.identifiers:
            if occ.is_declaration:
                seen.setdefault(occ.name, None)
        return list(seen)


@dataclass
class Reference:
    """An entry in the global identifier reference map."""
    file_path: str = ""
    line: int = 0
    is_declaration: bool = False
    is_usage: bool = False


# ── Version-control history ──

@dataclass
class Commit:
    commit_id: str = ""
    author: str = ""
    timestamp: int = 0  # unix seconds
    message: str = ""


@dataclass
class HistoryRecord:
    """Commit-derived signals for one file."""
    commits: list[Commit] = field(default_factory=list)
    author_line_counts: dict[str, int] = field(default_factory=dict)
    refactor_probability: float = 0.0
    change_frequency: float = 0.0


# ── Similarity, classification, impact ──

@dataclass
class SimilarName:
    name: str = ""
    similarity: float = 0.0
    distance: int = 0
    reference_count: int = 0


@dataclass
class PossibleAction:
    action: ActionKind = ActionKind.OTHER
    description: str = ""
    confidence: float = 0.0
    target: Optional[str] = None  # replacement name for RENAME / PREFIX

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "description": self.description,
            "confidence": round(self.confidence, 4),
            "target": self.target,
        }


@dataclass
class ClassificationResult:
    """Verdict for one (identifier, file, diagnostic) tuple."""
    name: str = ""
    file_path: str = ""
    analysis_type: AnalysisType = AnalysisType.UNKNOWN
    confidence: float = 0.0
    explanation: str = ""
    reasoning: list[str] = field(default_factory=list)
    recommended_action: ActionKind = ActionKind.MANUAL_REVIEW
    possible_actions: list[PossibleAction] = field(default_factory=list)
    similar_names: list[SimilarName] = field(default_factory=list)
    reference_count: int = 0
    refactor_probability: float = 0.0
    source: str = "heuristic"  # heuristic | oracle
    oracle_verdict: Optional[dict[str, Any]] = None

    @property
    def top_action(self) -> Optional[PossibleAction]:
        return self.possible_actions[0] if self.possible_actions else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "file": self.file_path,
            "analysis_type": self.analysis_type.value,
            "confidence": round(self.confidence, 4),
            "explanation": self.explanation,
            "reasoning": list(self.reasoning),
            "recommended_action": self.recommended_action.value,
            "possible_actions": [a.to_dict() for a in self.possible_actions],
            "similar_names": [asdict(s) for s in self.similar_names],
            "reference_count": self.reference_count,
            "refactor_probability": round(self.refactor_probability, 4),
            "source": self.source,
            "oracle_verdict": self.oracle_verdict,
        }


@dataclass
class ImpactRecord:
    """How one file is affected by a change to another."""
    file_path: str = ""
    direct_dependency_count: int = 0
    shared_variables: list[str] = field(default_factory=list)  # set semantics, insertion ordered
    impact_score: float = 0.0
    impact_path: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file_path,
            "direct_dependency_count": self.direct_dependency_count,
            "shared_variables": list(self.shared_variables),
            "impact_score": round(self.impact_score, 4),
            "impact_path": list(self.impact_path),
        }


# ── Linter collaborator ──

@dataclass
class LintMessage:
    """A single linter diagnostic."""
    line: int = 0
    column: int = 0
    severity: int = 1  # 1 warning, 2 error
    message: str = ""
    rule_id: Optional[str] = None
    fatal: bool = False

    def cache_token(self) -> str:
        return f"{self.rule_id}|{self.line}|{self.column}|{self.severity}|{self.fatal}|{self.message}"


@dataclass
class FileDiagnostics:
    file_path: str = ""
    messages: list[LintMessage] = field(default_factory=list)


# ── Persisted histories ──

@dataclass
class FixRecord:
    fix_id: str = ""
    timestamp: str = ""
    file_path: str = ""
    rule_id: Optional[str] = None
    line: int = 0
    message: str = ""
    fix_type: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    dependencies: int = 0
    dependents: int = 0
    has_history: bool = False
    refactor_probability: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FixRecord":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class DecisionRecord:
    timestamp: str = ""
    name: str = ""
    file_path: str = ""
    analysis_type: str = ""
    confidence: float = 0.0
    recommended_action: str = ""
    similar_count: int = 0
    reference_count: int = 0
    refactor_probability: float = 0.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DecisionRecord":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class RollbackRecord:
    timestamp: str = ""
    fix_id: str = ""
    file_path: str = ""
    fix_type: str = ""
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RollbackRecord":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class IndexStats:
    """Summary statistics for the index."""
    total_files: int = 0
    total_identifiers: int = 0
    total_occurrences: int = 0
    total_imports: int = 0
    total_exports: int = 0
    dependency_edges: int = 0
    files_with_history: int = 0
    extraction_errors: int = 0
    worker_count: int = 1
    parallel: bool = False
    elapsed_seconds: float = 0.0
