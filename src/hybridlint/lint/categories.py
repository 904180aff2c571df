"""
Diagnostic categories and per-rule suggestions.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional

from ..store.models import LintMessage

OTHER = "OTHER"

# Checked in order; a rule id matches a category if it contains any of
# the listed fragments.
ERROR_CATEGORIES: dict[str, tuple[str, ...]] = {
    "SYNTAX": ("parsing-error", "syntax"),
    "UNUSED": ("no-unused-vars", "@typescript-eslint/no-unused-vars"),
    "TYPE": ("@typescript-eslint/no-explicit-any", "@typescript-eslint/explicit-module-boundary-types"),
    "STYLE": ("indent", "quotes", "semi", "no-multiple-empty-lines"),
    "IMPORT": ("import/no-unresolved", "import/named", "import/order"),
    "BEST_PRACTICE": ("no-console", "prefer-const", "no-var"),
}

CATEGORY_NAMES = (*ERROR_CATEGORIES, OTHER)


def categorize(rule_id: Optional[str]) -> str:
    if rule_id:
        for category, fragments in ERROR_CATEGORIES.items():
            if any(f in rule_id for f in fragments):
                return category
    return OTHER


def count_by_category(messages: Iterable[LintMessage]) -> dict[str, int]:
    """Counts for every category, zeros included, in declaration order."""
    counts = Counter(categorize(m.rule_id) for m in messages)
    return {name: counts.get(name, 0) for name in CATEGORY_NAMES}


def suggestion(rule_id: Optional[str]) -> str:
    if rule_id == "@typescript-eslint/no-explicit-any":
        return (
            'Replace "any" with a more specific type or "unknown". If unsure, consider '
            "using a type assertion or a generic type parameter."
        )
    if rule_id in ("@typescript-eslint/no-unused-vars", "no-unused-vars"):
        return (
            "Remove the unused variable or prefix it with an underscore (_) to indicate "
            "it's intentionally unused."
        )
    if rule_id and "import" in rule_id:
        return (
            "Check import paths and make sure imported items are actually used. You may "
            "need to install missing dependencies."
        )
    if rule_id == "@typescript-eslint/explicit-module-boundary-types":
        return (
            "Add explicit return type to functions exported from modules. Example: "
            '"function example(): ReturnType { ... }"'
        )
    return "Consider reviewing the linter documentation for this rule for guidance."
