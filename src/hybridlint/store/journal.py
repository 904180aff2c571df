"""
JSON journal — fix, decision and rollback histories, saved fingerprints
and file checkpoints under the project's output directory.

Layout:
    <output_dir>/history/fix-history.json
    <output_dir>/history/decision-history.json
    <output_dir>/history/rollback-history.json
    <output_dir>/fingerprints.json
    <output_dir>/checkpoints/<name>/checkpoint.json
    <output_dir>/checkpoints/<name>/files/<project relative path>
"""

from __future__ import annotations

import json
import os
import shutil
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from ..errors import CheckpointError
from ..utils.logging import logger
from .models import DecisionRecord, FixRecord, RollbackRecord

FIX_HISTORY = "fix-history.json"
DECISION_HISTORY = "decision-history.json"
ROLLBACK_HISTORY = "rollback-history.json"
FINGERPRINTS = "fingerprints.json"
CHECKPOINT_META = "checkpoint.json"


def now_iso() -> str:
    return datetime.now().isoformat()


class Journal:
    """Persisted state for one project."""

    def __init__(self, output_dir: Path, project_root: Path):
        self.output_dir = Path(output_dir)
        self.project_root = Path(project_root).resolve()
        self.history_dir = self.output_dir / "history"
        self.checkpoint_dir = self.output_dir / "checkpoints"

    # ── Generic JSON helpers ──

    def _read_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable {path}: {e}")
            return default

    def _write_json(self, path: Path, data: Any) -> bool:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
            os.replace(tmp, path)
            return True
        except OSError as e:
            logger.warning(f"Could not save {path}: {e}")
            return False

    def _load_records(self, filename: str, factory) -> list:
        data = self._read_json(self.history_dir / filename, [])
        if not isinstance(data, list):
            logger.warning(f"{filename} is not a JSON array, starting empty")
            return []
        return [factory(item) for item in data if isinstance(item, dict)]

    # ── Histories ──

    def load_fixes(self) -> list[FixRecord]:
        return self._load_records(FIX_HISTORY, FixRecord.from_dict)

    def save_fixes(self, fixes: Iterable[FixRecord]) -> bool:
        return self._write_json(self.history_dir / FIX_HISTORY, [asdict(f) for f in fixes])

    def load_decisions(self) -> list[DecisionRecord]:
        return self._load_records(DECISION_HISTORY, DecisionRecord.from_dict)

    def save_decisions(self, decisions: Iterable[DecisionRecord]) -> bool:
        return self._write_json(self.history_dir / DECISION_HISTORY, [asdict(d) for d in decisions])

    def load_rollbacks(self) -> list[RollbackRecord]:
        return self._load_records(ROLLBACK_HISTORY, RollbackRecord.from_dict)

    def save_rollbacks(self, rollbacks: Iterable[RollbackRecord]) -> bool:
        return self._write_json(self.history_dir / ROLLBACK_HISTORY, [asdict(r) for r in rollbacks])

    # ── Fingerprints ──

    def _relative(self, path: str) -> str:
        return Path(os.path.relpath(path, self.project_root)).as_posix()

    def _absolute(self, rel_path: str) -> str:
        return str(self.project_root / rel_path)

    def load_fingerprints(self) -> dict[str, str]:
        """Saved fingerprints keyed by absolute path."""
        data = self._read_json(self.output_dir / FINGERPRINTS, {})
        if not isinstance(data, dict):
            return {}
        return {self._absolute(rel): str(h) for rel, h in data.items()}

    def save_fingerprints(self, fingerprints: dict[str, str]) -> bool:
        data = {self._relative(p): h for p, h in sorted(fingerprints.items())}
        return self._write_json(self.output_dir / FINGERPRINTS, data)

    # ── Checkpoints ──

    def _checkpoint_path(self, name: str) -> Path:
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise CheckpointError(f"Invalid checkpoint name: {name!r}")
        return self.checkpoint_dir / name

    def create_checkpoint(
        self,
        name: str,
        files: Iterable[str],
        fingerprints: dict[str, str],
        fix_count: int,
    ) -> dict[str, Any]:
        """Copy tracked files and metadata into a named checkpoint."""
        target = self._checkpoint_path(name)
        files_dir = target / "files"
        if target.exists():
            shutil.rmtree(target)

        copied = []
        try:
            for path in files:
                if not os.path.isfile(path):
                    continue
                rel = self._relative(path)
                backup = files_dir / rel
                backup.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(path, backup)
                copied.append(rel)
        except OSError as e:
            raise CheckpointError(f"Could not create checkpoint {name}: {e}") from e

        meta = {
            "name": name,
            "timestamp": now_iso(),
            "fingerprints": {self._relative(p): h for p, h in sorted(fingerprints.items())},
            "fix_history_length": fix_count,
            "files": copied,
        }
        if not self._write_json(target / CHECKPOINT_META, meta):
            raise CheckpointError(f"Could not write checkpoint metadata for {name}")
        logger.info(f"Created checkpoint {name} with {len(copied)} files")
        return meta

    def read_checkpoint(self, name: str) -> dict[str, Any]:
        meta_path = self._checkpoint_path(name) / CHECKPOINT_META
        if not meta_path.exists():
            raise CheckpointError(f"Checkpoint not found: {name}")
        meta = self._read_json(meta_path, None)
        if not isinstance(meta, dict):
            raise CheckpointError(f"Checkpoint data unreadable: {meta_path}")
        return meta

    def restore_checkpoint(self, name: str) -> tuple[dict[str, Any], dict[str, str]]:
        """Copy checkpoint files back over the project.

        Returns the checkpoint metadata and its fingerprints keyed by
        absolute path.
        """
        meta = self.read_checkpoint(name)
        files_dir = self._checkpoint_path(name) / "files"
        try:
            for rel in meta.get("files", []):
                backup = files_dir / rel
                if backup.is_file():
                    dest = Path(self._absolute(rel))
                    dest.parent.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(backup, dest)
        except OSError as e:
            raise CheckpointError(f"Could not restore checkpoint {name}: {e}") from e

        fingerprints = {self._absolute(rel): h for rel, h in meta.get("fingerprints", {}).items()}
        return meta, fingerprints

    def list_checkpoints(self) -> list[dict[str, Any]]:
        """Checkpoint summaries, newest first."""
        if not self.checkpoint_dir.is_dir():
            return []

        summaries = []
        for entry in self.checkpoint_dir.iterdir():
            meta_path = entry / CHECKPOINT_META
            if not meta_path.is_file():
                continue
            meta = self._read_json(meta_path, None)
            if not isinstance(meta, dict):
                summaries.append({"name": entry.name, "timestamp": "", "file_count": 0, "error": "unreadable"})
                continue
            summaries.append({
                "name": entry.name,
                "timestamp": meta.get("timestamp", ""),
                "file_count": len(meta.get("files", [])),
                "fix_history_length": meta.get("fix_history_length", 0),
            })

        summaries.sort(key=lambda s: (s["timestamp"], s["name"]), reverse=True)
        return summaries
