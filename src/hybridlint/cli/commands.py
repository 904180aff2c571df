"""
CLI commands — argparse subcommands for hybridlint.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from ..ai.oracle import Oracle
from ..config import LintConfig
from ..core.context import ProjectContext
from ..errors import HybridLintError
from ..lint.categories import count_by_category
from ..lint.fixes import fix_unused_identifiers
from ..lint.runner import LinterRunner, count_fixed_issues
from ..store.models import LintMessage
from ..utils.logging import logger, set_console_level
from . import formatter


def _get_config(args) -> LintConfig:
    """Load .hybridlint.yaml, then apply command-line overrides."""
    project_root = Path(args.project).resolve()
    config = LintConfig.load(project_root)

    if args.full_scan:
        config.incremental = False
    if args.no_parallel:
        config.parallel = False
    if args.workers is not None:
        config.worker_count = args.workers
    if args.cross_file:
        config.cross_file_analysis = True
    if args.ai:
        config.use_ai = True
    if args.retries is not None:
        config.max_retries = args.retries
    return config


def _get_context(args) -> ProjectContext:
    """Build and initialize the project context."""
    root = Path(args.project).resolve()
    config = _get_config(args)
    oracle = Oracle(config) if config.use_ai or config.cross_file_analysis else None
    context = ProjectContext(root, config=config, oracle=oracle)
    context.initialize()
    return context


def _target_files(context: ProjectContext) -> list[str]:
    if context.config.incremental:
        return context.get_changed_files()
    return sorted(context.files)


def _emit(args, data, text: str):
    if args.json:
        print(json.dumps(data, indent=2, default=str))
    else:
        print(text)


def cmd_init(args):
    """Build the index and record the change-detection baseline."""
    root = Path(args.project).resolve()
    if not args.json:
        print(f"Indexing {root}...", flush=True)
    context = _get_context(args)
    _emit(args, asdict(context.stats), formatter.format_stats(context.stats))
    context.shutdown(save_fingerprints=True)


def cmd_stats(args):
    """Show index, fix and decision statistics."""
    context = _get_context(args)
    stats = context.get_stats()
    _emit(args, stats, formatter.format_stats(stats))
    context.shutdown()


def cmd_changed(args):
    """List files changed since the last baseline."""
    context = _get_context(args)
    changed = [context.relative(p) for p in context.get_changed_files()]
    _emit(args, changed, formatter.format_file_list(changed, "Changed files"))
    context.shutdown()


def cmd_prioritize(args):
    """Rank files for analysis."""
    context = _get_context(args)
    ranked = [(context.relative(p), score) for p, score in context.get_prioritized_files()]
    ranked = ranked[: args.limit]
    _emit(
        args,
        [{"file": p, "score": s} for p, s in ranked],
        formatter.format_prioritized(ranked),
    )
    context.shutdown()


def cmd_impact(args):
    """Show which files a change to FILE may affect."""
    context = _get_context(args)
    path = context.resolve_path(args.file)
    if path not in context.files:
        print(f"File not tracked: {args.file}")
        context.shutdown()
        return

    records = context.get_affected_files(path)
    data = [_relative_impact(context, r.to_dict()) for r in records]
    _emit(args, data, formatter.format_impact(context.relative(path), data))
    context.shutdown()


def _relative_impact(context: ProjectContext, record: dict) -> dict:
    record["file"] = context.relative(record["file"])
    record["impact_path"] = [context.relative(p) for p in record["impact_path"]]
    return record


def cmd_similar(args):
    """Find identifiers with names similar to NAME."""
    context = _get_context(args)
    matches = context.find_similar_variables(args.name)
    _emit(args, [asdict(m) for m in matches], formatter.format_similar(args.name, matches))
    context.shutdown()


def cmd_analyze(args):
    """Classify an unused identifier."""
    context = _get_context(args)
    diagnostic = None
    if args.line:
        diagnostic = LintMessage(
            line=args.line,
            rule_id="no-unused-vars",
            message=f"'{args.name}' is defined but never used.",
        )

    if context.config.cross_file_analysis:
        result = context.analyze_cross_module(args.name, args.file, diagnostic)
    else:
        result = context.analyze_variable(args.name, args.file, diagnostic)

    data = result.to_dict()
    data["file"] = context.relative(result.file_path)
    _emit(args, data, formatter.format_classification(data))
    context.shutdown()


def cmd_lint(args):
    """Run the linter over changed (or all) files and summarise diagnostics."""
    context = _get_context(args)
    files = _target_files(context)
    if not files:
        print("No files to lint. Everything is up to date.")
        context.shutdown()
        return

    runner = LinterRunner(context.config.linter_command, context.project_root)
    fixed = 0
    if args.autofix:
        fixed = count_fixed_issues(runner.run_autofix(files))

    results = runner.find_issues(files)
    messages = [m for r in results for m in r.messages]
    categories = count_by_category(messages)

    data = {
        "files_checked": len(files),
        "autofixed": fixed,
        "total_issues": len(messages),
        "by_category": categories,
        "files": [
            {"file": context.relative(r.file_path), "messages": [asdict(m) for m in r.messages]}
            for r in results
        ],
    }
    _emit(args, data, formatter.format_lint(data))
    context.shutdown(save_fingerprints=args.autofix)


def cmd_fix(args):
    """Classify unused-identifier diagnostics and fix them."""
    context = _get_context(args)
    files = _target_files(context)
    if not files:
        print("No files to fix. Everything is up to date.")
        context.shutdown()
        return

    runner = LinterRunner(context.config.linter_command, context.project_root)
    outcomes = []
    for result in runner.find_issues(files):
        outcomes.extend(fix_unused_identifiers(
            context,
            result.file_path,
            result.messages,
            cross_module=context.config.cross_file_analysis,
            apply=args.apply,
        ))

    data = [
        {
            "file": context.relative(o.file_path),
            "line": o.line,
            "name": o.name,
            "fix_type": o.fix_type,
            "replacement": o.replacement,
            "analysis_type": o.analysis.analysis_type.value,
            "confidence": round(o.analysis.confidence, 4),
            "fix_id": o.fix_id,
            "affected": [context.relative(a.file_path) for a in o.affected],
        }
        for o in outcomes
    ]
    _emit(args, data, formatter.format_fixes(data, applied=args.apply))
    if args.apply and outcomes:
        context.reindex()
    context.shutdown(save_fingerprints=args.apply)


def cmd_checkpoint(args):
    """Create, revert to, or list checkpoints."""
    context = _get_context(args)

    if args.action == "create":
        meta = context.create_checkpoint(args.name)
        print(f"Created checkpoint {meta['name']} ({len(meta['files'])} files)")
    elif args.action == "revert":
        reverted = context.revert_to_checkpoint(args.name)
        print(f"Reverted to checkpoint {args.name} ({len(reverted)} fixes rolled back)")
    else:
        checkpoints = context.list_checkpoints()
        _emit(args, checkpoints, formatter.format_checkpoints(checkpoints))

    context.shutdown()


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="hybridlint",
        description="Project-aware unused-identifier analysis for TypeScript/JavaScript",
    )
    parser.add_argument(
        "--project", "-p", default=".",
        help="Project root directory (default: current dir)",
    )
    parser.add_argument(
        "--json", "-j", action="store_true", default=False,
        help="Output as JSON",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--full-scan", action="store_true", help="Process all files, not only changed ones")
    parser.add_argument("--no-parallel", action="store_true", help="Extract files in-process")
    parser.add_argument("--workers", type=int, default=None, help="Worker process count override")
    parser.add_argument("--cross-file", action="store_true", help="Cross-module analysis")
    parser.add_argument("--ai", action="store_true", help="Ask the AI oracle when classifying")
    parser.add_argument("--retries", type=int, default=None, help="Max oracle attempts")

    sub = parser.add_subparsers(dest="command", help="Available commands")

    # init
    sub.add_parser("init", help="Build the index and record a baseline")

    # stats
    sub.add_parser("stats", help="Show index and history statistics")

    # changed
    sub.add_parser("changed", help="List files changed since the baseline")

    # prioritize
    p = sub.add_parser("prioritize", help="Rank files for analysis")
    p.add_argument("--limit", type=int, default=20)

    # impact
    p = sub.add_parser("impact", help="Files affected by a change to FILE")
    p.add_argument("file", help="File path (relative to project root)")

    # similar
    p = sub.add_parser("similar", help="Identifiers with similar names")
    p.add_argument("name", help="Identifier name")

    # analyze
    p = sub.add_parser("analyze", help="Classify an unused identifier")
    p.add_argument("name", help="Identifier name")
    p.add_argument("file", help="File declaring the identifier")
    p.add_argument("--line", type=int, default=0, help="Line of the diagnostic")

    # lint
    p = sub.add_parser("lint", help="Run the linter and summarise diagnostics")
    p.add_argument("--autofix", action="store_true", help="Apply the linter's own fixes first")

    # fix
    p = sub.add_parser("fix", help="Fix unused-identifier diagnostics")
    p.add_argument("--apply", action="store_true", help="Write changes (default: dry run)")

    # checkpoint
    p = sub.add_parser("checkpoint", help="Manage file checkpoints")
    cp = p.add_subparsers(dest="action", required=True)
    cp.add_parser("create", help="Snapshot tracked files").add_argument("name")
    cp.add_parser("revert", help="Restore a snapshot").add_argument("name")
    cp.add_parser("list", help="List snapshots, newest first")

    return parser


def run_cli(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        set_console_level("DEBUG")

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "init": cmd_init,
        "stats": cmd_stats,
        "changed": cmd_changed,
        "prioritize": cmd_prioritize,
        "impact": cmd_impact,
        "similar": cmd_similar,
        "analyze": cmd_analyze,
        "lint": cmd_lint,
        "fix": cmd_fix,
        "checkpoint": cmd_checkpoint,
    }

    cmd = commands.get(args.command)
    if not cmd:
        parser.print_help()
        return 2

    try:
        cmd(args)
    except HybridLintError as e:
        logger.debug(f"{args.command} failed: {e!r}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0
