"""
Project context — the index every other component queries.

Built once per run by the entry point and passed to whoever needs it.
All maps are written during initialize() and treated as read-only by the
query methods afterwards.
"""

from __future__ import annotations

import os
import random
import time
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from ..config import LintConfig
from ..errors import IndexingError
from ..store.journal import Journal, now_iso
from ..store.models import (
    ClassificationResult, DecisionRecord, FileRecord, FixRecord, HistoryRecord,
    ImpactRecord, IndexStats, LintMessage, Reference, RollbackRecord, SimilarName,
)
from ..utils.logging import logger
from .classifier import VariableClassifier
from .differ import Differ, prioritize, priority_scores
from .graph import ImportResolver, build_dependency_graph, build_reverse_graph
from .history import HistoryAggregator
from .impact import ImpactAnalyzer
from .indexer import Indexer
from .similarity import find_similar

if TYPE_CHECKING:
    from ..ai.oracle import Oracle

MAX_DECISIONS = 1000
SAVE_FIXES_EVERY = 10
SAVE_DECISIONS_EVERY = 50


class ProjectContext:
    """Project-wide index of identifiers, imports and history."""

    def __init__(
        self,
        project_root: Path,
        config: Optional[LintConfig] = None,
        oracle: Optional["Oracle"] = None,
        journal: Optional[Journal] = None,
        history_aggregator: Optional[HistoryAggregator] = None,
    ):
        self.project_root = Path(project_root).resolve()
        self.config = config or LintConfig.load(self.project_root)
        self.oracle = oracle
        self.journal = journal or Journal(self.config.output_path(self.project_root), self.project_root)
        self.history_aggregator = history_aggregator or HistoryAggregator(
            self.project_root, max_commits=self.config.history_commits,
        )

        self.files: dict[str, FileRecord] = {}
        self.references: dict[str, list[Reference]] = {}
        self.dependencies: dict[str, list[str]] = {}
        self.reverse_dependencies: dict[str, list[str]] = {}
        self.history: dict[str, HistoryRecord] = {}
        self.fingerprints: dict[str, str] = {}

        self.fix_history: list[FixRecord] = []
        self.decision_history: list[DecisionRecord] = []
        self.rollback_history: list[RollbackRecord] = []

        self.stats = IndexStats()
        self.classifier = VariableClassifier(self, self.config, oracle)
        self._baseline: dict[str, str] = {}
        self._reference_counts: dict[str, int] = {}
        self._unsaved_decisions = 0
        self._initialized = False
        self.scan_count = 0

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ── Build ──

    def initialize(self) -> bool:
        """Build the index. A second call is a no-op."""
        if self._initialized:
            return True

        t0 = time.time()
        logger.info(f"Initializing project context for {self.project_root}")
        self._build(collect_history=True)

        self.fix_history = self.journal.load_fixes()
        self.decision_history = self.journal.load_decisions()[-MAX_DECISIONS:]
        self.rollback_history = self.journal.load_rollbacks()

        saved = self.journal.load_fingerprints()
        if not self.config.incremental:
            self._baseline = {}
        elif saved:
            self._baseline = saved
        else:
            self._baseline = dict(self.fingerprints)

        self.stats.elapsed_seconds = time.time() - t0
        self._initialized = True
        logger.info(
            f"Indexed {self.stats.total_files} files, {self.stats.total_identifiers} identifiers "
            f"in {self.stats.elapsed_seconds:.2f}s"
        )
        return True

    def reindex(self):
        """Re-scan files and rebuild graphs. History is kept as is."""
        self._build(collect_history=False)
        self.classifier = VariableClassifier(self, self.config, self.oracle)
        self._initialized = True

    def _build(self, collect_history: bool):
        indexer = Indexer(self.project_root, self.config)
        paths = indexer.discover_files()
        self.scan_count += 1
        self.fingerprints = indexer.fingerprint_files(paths)

        workers = indexer.worker_count()
        extraction = indexer.extract(paths, worker_count=workers)
        self.files = extraction.records
        self.references = extraction.references
        self._reference_counts = {name: len(refs) for name, refs in self.references.items()}

        resolver = ImportResolver(self.project_root, self.config.module_aliases)
        self.dependencies = build_dependency_graph(self.files, resolver)
        self.reverse_dependencies = build_reverse_graph(self.dependencies, self.files)

        if collect_history:
            self.history = self.history_aggregator.collect(sorted(self.files))

        self.stats = IndexStats(
            total_files=len(self.files),
            total_identifiers=len(self.references),
            total_occurrences=sum(len(r.identifiers) for r in self.files.values()),
            total_imports=sum(len(r.imports) for r in self.files.values()),
            total_exports=sum(len(r.exports) for r in self.files.values()),
            dependency_edges=sum(len(d) for d in self.dependencies.values()),
            files_with_history=len(self.history),
            extraction_errors=len(extraction.errors),
            worker_count=extraction.worker_count,
            parallel=extraction.parallel,
            elapsed_seconds=extraction.elapsed_seconds,
        )

    def _require_initialized(self):
        if not self._initialized:
            raise IndexingError("Project context queried before initialize()")

    def resolve_path(self, path: str | Path) -> str:
        """Absolute path for a file given relative to the project root or cwd."""
        p = Path(path)
        if not p.is_absolute():
            candidate = self.project_root / p
            p = candidate if candidate.exists() else p.resolve()
        return str(p.resolve())

    def relative(self, path: str) -> str:
        return Path(os.path.relpath(path, self.project_root)).as_posix()

    def read_file(self, path: str) -> str:
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
        except OSError as e:
            logger.warning(f"Cannot read {path}: {e}")
            return ""

    # ── Queries ──

    def get_changed_files(self) -> list[str]:
        """Files whose current content differs from the baseline fingerprints."""
        self._require_initialized()
        return Differ(self._baseline).changed_files(sorted(self.files))

    def get_prioritized_files(self) -> list[tuple[str, float]]:
        """(path, score) pairs, most urgent first."""
        self._require_initialized()
        paths = sorted(self.files)
        changed = set(self.get_changed_files())
        scores = priority_scores(paths, changed, self.dependencies, self.reverse_dependencies, self.history)
        return [(p, scores[p]) for p in prioritize(paths, scores)]

    def get_affected_files(self, file_path: str) -> list[ImpactRecord]:
        self._require_initialized()
        analyzer = ImpactAnalyzer(self.files, self.references, self.reverse_dependencies)
        return analyzer.affected_files(self.resolve_path(file_path))

    def find_similar_variables(self, name: str) -> list[SimilarName]:
        self._require_initialized()
        return find_similar(
            name,
            self.references.keys(),
            threshold=self.config.similarity_threshold,
            limit=self.config.similarity_limit,
            reference_counts=self._reference_counts,
        )

    def analyze_variable(
        self,
        name: str,
        file_path: str,
        diagnostic: Optional[LintMessage] = None,
        use_ai: Optional[bool] = None,
    ) -> ClassificationResult:
        self._require_initialized()
        use_ai = self.config.use_ai if use_ai is None else use_ai
        result, fresh = self.classifier.analyze(name, self.resolve_path(file_path), diagnostic, use_ai)
        if fresh:
            self.record_decision(result)
        return result

    def analyze_cross_module(
        self,
        name: str,
        file_path: str,
        diagnostic: Optional[LintMessage] = None,
    ) -> ClassificationResult:
        self._require_initialized()
        result, fresh = self.classifier.analyze_cross_module(name, self.resolve_path(file_path), diagnostic)
        if fresh:
            self.record_decision(result)
        return result

    # ── Histories ──

    def record_decision(self, result: ClassificationResult):
        self.decision_history.append(DecisionRecord(
            timestamp=now_iso(),
            name=result.name,
            file_path=self.relative(result.file_path),
            analysis_type=result.analysis_type.value,
            confidence=result.confidence,
            recommended_action=result.recommended_action.value,
            similar_count=len(result.similar_names),
            reference_count=result.reference_count,
            refactor_probability=result.refactor_probability,
        ))
        if len(self.decision_history) > MAX_DECISIONS:
            self.decision_history = self.decision_history[-MAX_DECISIONS:]
        self._unsaved_decisions += 1
        if self._unsaved_decisions >= SAVE_DECISIONS_EVERY:
            self.journal.save_decisions(self.decision_history)
            self._unsaved_decisions = 0

    def record_fix(
        self,
        file_path: str,
        diagnostic: Optional[LintMessage],
        fix_type: str,
        details: Optional[dict[str, Any]] = None,
    ) -> str:
        """Append an audit entry for an applied fix and return its id."""
        path = self.resolve_path(file_path)
        history = self.history.get(path)
        fix = FixRecord(
            fix_id=f"fix-{int(time.time() * 1000)}-{random.randrange(1000)}",
            timestamp=now_iso(),
            file_path=self.relative(path),
            rule_id=diagnostic.rule_id if diagnostic else None,
            line=diagnostic.line if diagnostic else 0,
            message=diagnostic.message if diagnostic else "",
            fix_type=fix_type,
            details=dict(details or {}),
            dependencies=len(self.dependencies.get(path, [])),
            dependents=len(self.reverse_dependencies.get(path, [])),
            has_history=history is not None,
            refactor_probability=history.refactor_probability if history else 0.0,
        )
        self.fix_history.append(fix)
        if len(self.fix_history) % SAVE_FIXES_EVERY == 0:
            self.journal.save_fixes(self.fix_history)
        return fix.fix_id

    def record_rollback(self, fix: FixRecord, reason: str = "Manual rollback"):
        self.rollback_history.append(RollbackRecord(
            timestamp=now_iso(),
            fix_id=fix.fix_id,
            file_path=fix.file_path,
            fix_type=fix.fix_type,
            reason=reason,
        ))
        self.journal.save_rollbacks(self.rollback_history)

    # ── Checkpoints ──

    def create_checkpoint(self, name: str) -> dict[str, Any]:
        self._require_initialized()
        return self.journal.create_checkpoint(
            name, sorted(self.files), self.fingerprints, len(self.fix_history),
        )

    def revert_to_checkpoint(self, name: str) -> list[str]:
        """Restore files from a checkpoint. Returns the ids of reverted fixes."""
        self._require_initialized()
        meta, fingerprints = self.journal.restore_checkpoint(name)
        self._baseline = fingerprints

        keep = int(meta.get("fix_history_length", 0))
        reverted = self.fix_history[keep:]
        for fix in reverted:
            self.record_rollback(fix, reason=f"Reverted to checkpoint: {name}")
        if reverted:
            self.fix_history = self.fix_history[:keep]
            self.journal.save_fixes(self.fix_history)

        self.reindex()
        logger.info(f"Reverted to checkpoint {name} ({len(reverted)} fixes rolled back)")
        return [f.fix_id for f in reverted]

    def list_checkpoints(self) -> list[dict[str, Any]]:
        return self.journal.list_checkpoints()

    # ── Reporting ──

    def get_stats(self) -> dict[str, Any]:
        decisions = self.decision_history
        mean_confidence = (
            sum(d.confidence for d in decisions) / len(decisions) if decisions else 0.0
        )
        return {
            "total_files": self.stats.total_files,
            "total_identifiers": self.stats.total_identifiers,
            "total_occurrences": self.stats.total_occurrences,
            "dependency_edges": self.stats.dependency_edges,
            "extraction_errors": self.stats.extraction_errors,
            "files_with_history": len(self.history),
            "total_fixes": len(self.fix_history),
            "fixes_by_type": dict(Counter(f.fix_type for f in self.fix_history)),
            "rollbacks": len(self.rollback_history),
            "cache_size": self.classifier.cache_size,
            "decisions": {
                "total": len(decisions),
                "by_type": dict(Counter(d.analysis_type for d in decisions)),
                "by_action": dict(Counter(d.recommended_action for d in decisions)),
                "average_confidence": round(mean_confidence, 4),
            },
            "processing": {
                "worker_count": self.stats.worker_count,
                "parallel": self.stats.parallel,
                "elapsed_seconds": round(self.stats.elapsed_seconds, 3),
            },
            "checkpoints": len(self.list_checkpoints()),
        }

    def shutdown(self, save_fingerprints: bool = False):
        """Persist histories; with `save_fingerprints` the current file
        hashes become the next run's change-detection baseline."""
        self.journal.save_fixes(self.fix_history)
        self.journal.save_decisions(self.decision_history)
        self.journal.save_rollbacks(self.rollback_history)
        if save_fingerprints and self._initialized:
            current = Indexer(self.project_root, self.config).fingerprint_files(sorted(self.files))
            self.journal.save_fingerprints(current)
        if self.oracle is not None:
            self.oracle.close()
        logger.debug("Project context state saved")
