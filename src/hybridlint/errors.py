"""
Error taxonomy.

Input problems (unreadable files, no repository) never raise; they are
logged and absorbed where they happen. Everything here is either an
oracle failure the classifier can fall back from, or something the
top-level run must report and exit on.
"""

from __future__ import annotations


class HybridLintError(Exception):
    """Base class for errors the CLI reports and exits non-zero on."""


class ConfigError(HybridLintError):
    """The project configuration file exists but cannot be used."""


class IndexingError(HybridLintError):
    """Index construction failed or the index was queried before it was built."""


class LinterError(HybridLintError):
    """The linter binary is missing or produced output we cannot use."""


class OracleError(HybridLintError):
    """The AI oracle could not be reached, or retries were exhausted."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OracleResponseError(OracleError):
    """The oracle answered, but not with the JSON object we asked for."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class CheckpointError(HybridLintError):
    """A checkpoint is missing, malformed, or could not be written."""
