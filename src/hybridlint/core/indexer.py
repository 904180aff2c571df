"""
Indexer — discover files, fingerprint them, extract identifiers.

Extraction runs in-process or fanned out over worker processes. Each
worker owns a disjoint slice of the file list and returns records by
value; the coordinator merges them in path order, so both modes build
the same reference map for the same input.
"""

from __future__ import annotations

import hashlib
import os
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from concurrent.futures.process import BrokenProcessPool
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import pathspec

from ..config import LintConfig
from ..errors import IndexingError
from ..parsers.registry import get_extractor
from ..store.models import FileRecord, Reference
from ..utils.logging import logger

CI_ENV_VARS = ("GITHUB_ACTIONS", "GITLAB_CI")


def compute_file_hash(path: str | Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def extract_file(path: str) -> FileRecord:
    """Read and extract one file. Raises OSError if it cannot be read."""
    with open(path, "rb") as f:
        raw = f.read()
    source = raw.decode("utf-8", errors="replace")
    result = get_extractor(path).extract(source)
    return FileRecord(
        path=path,
        identifiers=result.identifiers,
        imports=result.imports,
        exports=result.exports,
        fingerprint=hashlib.sha256(raw).hexdigest(),
    )


def extract_files(paths: list[str]) -> tuple[list[FileRecord], list[tuple[str, str]]]:
    """Worker entry point: extract a shard, collecting per-file errors."""
    records = []
    errors = []
    for path in paths:
        try:
            records.append(extract_file(path))
        except OSError as e:
            errors.append((path, str(e)))
    return records, errors


def is_ci(environ: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if environ is None else environ
    return env.get("CI") == "true" or any(env.get(v) for v in CI_ENV_VARS)


def determine_worker_count(
    override: int = 0,
    cpu_count: Optional[int] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> int:
    """Worker processes to use for extraction. Always at least 1.

    An explicit override is capped at the core count. Otherwise half the
    cores on CI runners, three quarters locally.
    """
    cores = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    if override and override > 0:
        return max(1, min(override, cores))
    if is_ci(environ):
        return max(1, int(cores * 0.5))
    return max(1, int(cores * 0.75))


def chunk_files(files: list[str], parts: int) -> list[list[str]]:
    """Split into at most `parts` contiguous, near-equal slices."""
    if not files:
        return []
    size = -(-len(files) // max(1, parts))
    return [files[i:i + size] for i in range(0, len(files), size)]


@dataclass
class ExtractionResult:
    """Merged output of an extraction pass."""
    records: dict[str, FileRecord] = field(default_factory=dict)
    references: dict[str, list[Reference]] = field(default_factory=dict)
    errors: list[tuple[str, str]] = field(default_factory=list)
    worker_count: int = 1
    parallel: bool = False
    elapsed_seconds: float = 0.0


class Indexer:
    """Discover and extract the tracked files of a project."""

    def __init__(self, project_root: Path, config: Optional[LintConfig] = None):
        self.project_root = project_root.resolve()
        self.config = config or LintConfig()
        self._extensions = {e.lower() for e in self.config.extensions}
        self._excluded = set(self.config.excluded_dirs)
        self._output_dir = self.config.output_path(self.project_root).resolve()
        self._ignore_spec = self._build_ignore_spec()

    def _build_ignore_spec(self) -> Optional[pathspec.PathSpec]:
        """Build a pathspec from .gitignore + config ignore patterns."""
        patterns = list(self.config.ignore)

        gitignore = self.project_root / ".gitignore"
        if gitignore.exists():
            try:
                patterns.extend(gitignore.read_text(errors="replace").splitlines())
            except OSError as e:
                logger.warning(f"Cannot read {gitignore}: {e}")

        if patterns:
            return pathspec.PathSpec.from_lines("gitwildmatch", patterns)
        return None

    def discover_files(self) -> list[str]:
        """Walk the project, return absolute paths of tracked files, sorted."""
        results = []

        for dirpath, dirnames, filenames in os.walk(self.project_root):
            dirnames[:] = [
                d for d in dirnames
                if d not in self._excluded and Path(dirpath, d).resolve() != self._output_dir
            ]

            rel_dir = Path(dirpath).relative_to(self.project_root).as_posix()

            prefix = "" if rel_dir == "." else f"{rel_dir}/"
            if self._ignore_spec:
                dirnames[:] = [
                    d for d in dirnames
                    if not self._ignore_spec.match_file(f"{prefix}{d}/")
                ]

            for fname in filenames:
                if Path(fname).suffix.lower() not in self._extensions:
                    continue
                abs_path = Path(dirpath) / fname
                rel_path = abs_path.relative_to(self.project_root).as_posix()

                if self._ignore_spec and self._ignore_spec.match_file(rel_path):
                    continue

                results.append(str(abs_path))

        return sorted(results)

    def fingerprint_files(self, files: list[str]) -> dict[str, str]:
        fingerprints = {}
        for path in files:
            try:
                fingerprints[path] = compute_file_hash(path)
            except OSError as e:
                logger.warning(f"Cannot fingerprint {path}: {e}")
        return fingerprints

    def worker_count(self) -> int:
        return determine_worker_count(self.config.worker_count)

    def extract(self, files: list[str], worker_count: Optional[int] = None) -> ExtractionResult:
        """Extract all files and build the global reference map."""
        t0 = time.time()
        workers = worker_count if worker_count is not None else self.worker_count()
        use_parallel = (
            self.config.parallel
            and workers > 1
            and len(files) > self.config.parallel_threshold
        )

        if use_parallel:
            logger.info(f"Extracting {len(files)} files with {workers} workers")
            records, errors = self._extract_parallel(files, workers)
        else:
            logger.info(f"Extracting {len(files)} files sequentially")
            records, errors = extract_files(files)
            workers = 1

        for path, message in errors:
            logger.warning(f"Skipping {path}: {message}")

        result = merge_records(records)
        result.errors = errors
        result.worker_count = workers
        result.parallel = use_parallel
        result.elapsed_seconds = time.time() - t0
        return result

    def _extract_parallel(self, files: list[str], workers: int):
        records: list[FileRecord] = []
        errors: list[tuple[str, str]] = []
        shards = chunk_files(files, workers)

        with ProcessPoolExecutor(max_workers=len(shards)) as pool:
            futures = {pool.submit(extract_files, shard): i for i, shard in enumerate(shards)}
            for future in as_completed(futures):
                shard_id = futures[future]
                try:
                    shard_records, shard_errors = future.result()
                except BrokenProcessPool as e:
                    raise IndexingError(f"Extraction worker {shard_id} exited unexpectedly") from e
                except Exception as e:
                    raise IndexingError(f"Extraction worker {shard_id} failed: {e!r}") from e
                logger.debug(f"Worker {shard_id}: {len(shard_records)} files extracted")
                records.extend(shard_records)
                errors.extend(shard_errors)

        return records, errors


def merge_records(records: list[FileRecord]) -> ExtractionResult:
    """Fold file records into the index maps, in path order."""
    result = ExtractionResult()
    for record in sorted(records, key=lambda r: r.path):
        result.records[record.path] = record
        for occ in record.identifiers:
            result.references.setdefault(occ.name, []).append(Reference(
                file_path=record.path,
                line=occ.line,
                is_declaration=occ.is_declaration,
                is_usage=occ.is_usage,
            ))
    return result
