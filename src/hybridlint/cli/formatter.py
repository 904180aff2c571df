"""
Human-readable output formatting for CLI.
"""

from __future__ import annotations

from typing import Any

from ..lint.categories import suggestion
from ..store.models import SimilarName


def format_stats(stats: Any) -> str:
    """Format index stats for display."""
    if hasattr(stats, "total_files"):
        # IndexStats dataclass
        mode = f"{stats.worker_count} workers" if stats.parallel else "sequential"
        lines = [
            f"Files:        {stats.total_files}",
            f"Identifiers:  {stats.total_identifiers} ({stats.total_occurrences} occurrences)",
            f"Imports:      {stats.total_imports} ({stats.dependency_edges} resolved edges)",
            f"Exports:      {stats.total_exports}",
            f"History:      {stats.files_with_history} files",
            f"Extraction:   {mode}, {stats.elapsed_seconds:.2f}s",
        ]
        if stats.extraction_errors:
            lines.append(f"Read errors:  {stats.extraction_errors}")
        return "\n".join(lines)

    # Dict form from ProjectContext.get_stats()
    decisions = stats.get("decisions", {})
    lines = [
        f"Files:        {stats.get('total_files', 0)}",
        f"Identifiers:  {stats.get('total_identifiers', 0)}",
        f"Edges:        {stats.get('dependency_edges', 0)}",
        f"History:      {stats.get('files_with_history', 0)} files",
        f"Fixes:        {stats.get('total_fixes', 0)} ({stats.get('rollbacks', 0)} rolled back)",
        f"Decisions:    {decisions.get('total', 0)} (avg confidence {decisions.get('average_confidence', 0):.2f})",
        f"Checkpoints:  {stats.get('checkpoints', 0)}",
    ]
    for fix_type, count in sorted(stats.get("fixes_by_type", {}).items()):
        lines.append(f"  fix {fix_type:12s} {count}")
    for kind, count in sorted(decisions.get("by_type", {}).items()):
        lines.append(f"  verdict {kind:20s} {count}")
    return "\n".join(lines)


def format_file_list(paths: list[str], title: str) -> str:
    if not paths:
        return f"{title}: none."
    return f"{title} ({len(paths)}):\n" + "\n".join(f"  {p}" for p in paths)


def format_prioritized(ranked: list[tuple[str, float]]) -> str:
    if not ranked:
        return "No files indexed."
    lines = ["Priority  File"]
    for path, score in ranked:
        lines.append(f"  {score:7.1f} {path}")
    return "\n".join(lines)


def format_impact(source: str, records: list[dict]) -> str:
    """Format impact analysis for display."""
    lines = [f"Impact analysis for: {source}"]
    if not records:
        lines.append("No other files affected.")
        return "\n".join(lines)

    lines.append(f"\nAffected files ({len(records)}):")
    for r in records:
        shared = ", ".join(r["shared_variables"])
        extra = f" shares: {shared}" if shared else ""
        lines.append(f"  {r['impact_score']:.2f}  {r['file']}{extra}")
        if len(r["impact_path"]) > 2:
            lines.append(f"        via {' -> '.join(r['impact_path'])}")
    return "\n".join(lines)


def format_similar(name: str, matches: list[SimilarName]) -> str:
    if not matches:
        return f"No identifiers similar to '{name}'."
    lines = [f"Similar to '{name}' ({len(matches)}):"]
    for m in matches:
        lines.append(f"  {m.similarity:.2f}  {m.name:30s} {m.reference_count} refs, distance {m.distance}")
    return "\n".join(lines)


def format_classification(result: dict) -> str:
    """Format a classification verdict for display."""
    lines = [
        f"{result['name']} in {result['file']}",
        f"  {result['analysis_type']} ({round(result['confidence'] * 100)}% confidence, {result['source']})",
        f"  {result['explanation']}",
    ]

    if result["reasoning"]:
        lines.append("\nReasoning:")
        for step in result["reasoning"]:
            lines.append(f"  - {step}")

    lines.append(f"\nRecommended: {result['recommended_action']}")
    for a in result["possible_actions"]:
        lines.append(f"  {a['confidence']:.2f}  {a['action']:14s} {a['description']}")

    verdict = result.get("oracle_verdict")
    if verdict and verdict.get("parseError"):
        lines.append("\nAI response could not be parsed; heuristic result kept.")
    return "\n".join(lines)


def format_lint(data: dict) -> str:
    lines = [f"Checked {data['files_checked']} files: {data['total_issues']} issues"]
    if data["autofixed"]:
        lines.append(f"Linter autofix resolved {data['autofixed']} issues")

    for entry in data["files"]:
        lines.append(f"\n{entry['file']}")
        for m in entry["messages"]:
            marker = "E" if m["severity"] == 2 else "W"
            lines.append(f"  [{marker}] {m['line']}:{m['column']} {m['rule_id'] or '-'}: {m['message']}")

    categories = {k: v for k, v in data["by_category"].items() if v}
    if categories:
        total = sum(categories.values())
        lines.append("\nIssues by category:")
        for category, count in sorted(categories.items(), key=lambda kv: -kv[1]):
            pct = round(count / total * 100)
            lines.append(f"  {category:15s} {count:3d} ({pct}%) {'#' * (pct // 5)}")

    rules = sorted({m["rule_id"] for e in data["files"] for m in e["messages"] if m["rule_id"]})
    if rules:
        lines.append("\nSuggestions:")
        for rule in rules:
            lines.append(f"  {rule}: {suggestion(rule)}")
    return "\n".join(lines)


def format_fixes(fixes: list[dict], applied: bool) -> str:
    if not fixes:
        return "No unused-identifier fixes to make."
    verb = "Applied" if applied else "Would apply"
    lines = [f"{verb} {len(fixes)} fixes:"]
    for f in fixes:
        target = f" -> {f['replacement']}" if f["replacement"] else ""
        lines.append(
            f"  {f['file']}:{f['line']} {f['fix_type']} {f['name']}{target} "
            f"({f['analysis_type']}, {f['confidence']:.2f})"
        )
        if f["affected"]:
            lines.append(f"      re-check: {', '.join(f['affected'])}")
    return "\n".join(lines)


def format_checkpoints(checkpoints: list[dict]) -> str:
    if not checkpoints:
        return "No checkpoints."
    lines = [f"Checkpoints ({len(checkpoints)}):"]
    for c in checkpoints:
        lines.append(f"  {c['name']:24s} {c.get('timestamp', '')}  {c.get('file_count', 0)} files")
    return "\n".join(lines)
