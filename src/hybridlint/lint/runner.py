"""
Linter runner — the external linter as a subprocess.

`<linter> <files...> --fix` applies autofixes; `<linter> <files...>
--format json` reports diagnostics. Linters exit non-zero whenever
problems remain, so the exit code is ignored and stdout is used as long
as it is present.
"""

from __future__ import annotations

import json
import re
import subprocess
from pathlib import Path
from typing import Optional

from ..errors import LinterError
from ..store.models import FileDiagnostics, LintMessage
from ..utils.logging import logger

CHUNK_SIZE = 50

UNUSED_RULES = ("no-unused-vars", "@typescript-eslint/no-unused-vars")

_FIXED_PATTERN = re.compile(r"Fixed (\d+) error")
_QUOTED_NAME = re.compile(r"'([^']+)'")


def count_fixed_issues(output: str) -> int:
    """Sum the 'Fixed N error(s)' lines of autofix output."""
    return sum(int(m) for m in _FIXED_PATTERN.findall(output or ""))


def is_unused_diagnostic(message: LintMessage) -> bool:
    return message.rule_id in UNUSED_RULES


def unused_identifier_name(message: LintMessage) -> Optional[str]:
    """The identifier an unused-variable diagnostic is about, e.g.
    "'userData' is assigned a value but never used." -> userData."""
    match = _QUOTED_NAME.search(message.message or "")
    return match.group(1) if match else None


def parse_diagnostics(output: str) -> list[FileDiagnostics]:
    """Decode `--format json` output. Raises LinterError on non-JSON."""
    text = (output or "").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LinterError(f"Linter output is not JSON: {e}") from e
    if not isinstance(data, list):
        raise LinterError("Linter JSON output is not an array")

    results = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        messages = [
            LintMessage(
                line=int(m.get("line") or 0),
                column=int(m.get("column") or 0),
                severity=int(m.get("severity") or 1),
                message=str(m.get("message", "")),
                rule_id=m.get("ruleId"),
                fatal=bool(m.get("fatal", False)),
            )
            for m in entry.get("messages", [])
            if isinstance(m, dict)
        ]
        results.append(FileDiagnostics(file_path=str(entry.get("filePath", "")), messages=messages))
    return results


class LinterRunner:
    """Run the configured linter command over batches of files."""

    def __init__(self, command: list[str], cwd: Path, chunk_size: int = CHUNK_SIZE):
        if not command:
            raise LinterError("No linter command configured")
        self.command = list(command)
        self.cwd = Path(cwd)
        self.chunk_size = chunk_size

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                [*self.command, *args],
                cwd=self.cwd,
                check=False,
                capture_output=True,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as e:
            raise LinterError(f"Linter not found: {self.command[0]}") from e

    def _chunks(self, files: list[str]):
        for i in range(0, len(files), self.chunk_size):
            yield files[i:i + self.chunk_size]

    def run_autofix(self, files: list[str]) -> str:
        """Apply the linter's own fixes. Returns the combined stdout."""
        output = []
        for chunk in self._chunks(files):
            proc = self._run([*chunk, "--fix"])
            if proc.returncode not in (0, 1):
                logger.warning(f"Linter exited with {proc.returncode}: {proc.stderr.strip()[:200]}")
            output.append(proc.stdout)
        return "".join(output)

    def find_issues(self, files: list[str]) -> list[FileDiagnostics]:
        """Diagnostics for the given files, files without messages dropped."""
        results: list[FileDiagnostics] = []
        for chunk in self._chunks(files):
            proc = self._run([*chunk, "--format", "json"])
            stdout = proc.stdout.strip()
            if not stdout:
                if proc.returncode != 0:
                    raise LinterError(
                        f"Linter exited with {proc.returncode} and no output: {proc.stderr.strip()[:200]}"
                    )
                continue
            results.extend(parse_diagnostics(stdout))
        return [r for r in results if r.messages]
