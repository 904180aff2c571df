"""
Tests for the hybridlint package.

Uses fixture_project/ (a small TypeScript tree) as a known codebase with
predictable structure; tests that mutate files work on a copy.
"""

import json
import math
import re
import shutil
import subprocess
import sys
import time
from pathlib import Path

import httpx
import pytest

from hybridlint.ai.oracle import Oracle
from hybridlint.ai.prompts import cross_module_prompt, parse_classification_reply
from hybridlint.cli.commands import run_cli
from hybridlint.config import LintConfig
from hybridlint.core.context import ProjectContext
from hybridlint.core import indexer as indexer_module
from hybridlint.core.graph import ImportResolver
from hybridlint.core.history import (
    HistoryAggregator, change_frequency, parse_blame_authors, parse_log,
    refactor_probability,
)
from hybridlint.core.indexer import Indexer, chunk_files, determine_worker_count, extract_files
from hybridlint.core.impact import SHARED_IDENTIFIER_CAP
from hybridlint.core.similarity import find_similar, levenshtein, similarity
from hybridlint.errors import (
    CheckpointError, ConfigError, IndexingError, LinterError, OracleError,
    OracleResponseError,
)
from hybridlint.lint.categories import categorize, count_by_category, suggestion
from hybridlint.lint.fixes import comment_out, fix_unused_identifiers, rename_on_line
from hybridlint.lint.runner import (
    LinterRunner, count_fixed_issues, parse_diagnostics, unused_identifier_name,
)
from hybridlint.parsers.registry import get_extractor
from hybridlint.parsers.typescript import extract_exports, extract_identifiers, extract_imports
from hybridlint.store.models import (
    ActionKind, AnalysisType, ClassificationResult, Commit, HistoryRecord,
    IdentifierKind, LintMessage,
)

FIXTURE_DIR = Path(__file__).parent / "fixture_project"


class StaticHistory:
    """History source with canned records, keyed by file name."""

    def __init__(self, records=None):
        self.records = records or {}

    def collect(self, files):
        return {p: self.records[Path(p).name] for p in files if Path(p).name in self.records}


def unused(name, line=1):
    return LintMessage(
        line=line, column=7, severity=1, rule_id="no-unused-vars",
        message=f"'{name}' is assigned a value but never used.",
    )


def oracle_reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def corrupt_gzip_reply(request):
    """Claims gzip, streams plain bytes, so reading the body fails."""
    return httpx.Response(200, headers={"content-encoding": "gzip"}, content=iter([b"not gzip"]))


def make_oracle(handler, **overrides):
    overrides.setdefault("openai_api_key", "test-key")
    config = LintConfig(**overrides)
    sleeps = []
    client = httpx.Client(transport=httpx.MockTransport(handler))
    oracle = Oracle(config, client=client, sleep=sleeps.append, jitter=lambda: 0.0)
    return oracle, sleeps


def build_context(root, files, history=None, oracle=None, **overrides):
    """Write `files` under `root` and return an initialized context."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    config = LintConfig(**overrides)
    ctx = ProjectContext(
        root, config=config, oracle=oracle,
        history_aggregator=StaticHistory(history),
    )
    ctx.initialize()
    return ctx


@pytest.fixture
def project(tmp_path):
    """A writable copy of the fixture project."""
    dest = tmp_path / "project"
    shutil.copytree(FIXTURE_DIR, dest)
    return dest


@pytest.fixture
def ctx(project):
    """Initialized context over the fixture project."""
    config = LintConfig.load(project, environ={})
    context = ProjectContext(project, config=config, history_aggregator=StaticHistory())
    context.initialize()
    return context


# ── Extractor tests ──

class TestExtractor:
    def test_variable_declaration_and_usages(self):
        occs = extract_identifiers("const foo = bar(baz);\n")
        assert [(o.name, o.kind, o.is_declaration) for o in occs] == [
            ("foo", IdentifierKind.VARIABLE, True),
            ("bar", IdentifierKind.USAGE, False),
            ("baz", IdentifierKind.USAGE, False),
        ]

    def test_keywords_and_short_names_skipped(self):
        occs = extract_identifiers("if (x) {\n  render() {\n")
        assert [o.name for o in occs if o.is_declaration] == ["render"]
        assert all(o.name not in ("if", "x") for o in occs)
        assert [o.line for o in occs if o.name == "render"] == [2]

    def test_function_class_and_jsx(self):
        source = "function load() {}\nclass Store {}\nreturn <UserCard name={value} />;\n"
        decls = [(o.name, o.kind) for o in extract_identifiers(source) if o.is_declaration]
        assert ("load", IdentifierKind.FUNCTION) in decls
        assert ("Store", IdentifierKind.CLASS) in decls
        assert ("UserCard", IdentifierKind.JSX_COMPONENT) in decls

    def test_declaration_and_usage_exclusive_per_line(self):
        for path in sorted(FIXTURE_DIR.rglob("*.ts*")):
            occs = extract_identifiers(path.read_text())
            decls = {(o.name, o.line) for o in occs if o.is_declaration}
            uses = {(o.name, o.line) for o in occs if o.is_usage}
            assert not decls & uses, path.name

    def test_imports(self):
        source = (
            "import React, { useState as useS, type FC } from 'react';\n"
            "import * as path from 'path';\n"
            'import type { Props } from "./types";\n'
        )
        imports = extract_imports(source)
        assert [i.source for i in imports] == ["react", "path", "./types"]
        assert imports[0].default_import == "React"
        assert imports[0].named_imports == ["useState", "FC"]
        assert imports[1].namespace_import == "path"
        assert imports[2].named_imports == ["Props"]

    def test_exports(self):
        source = (
            "export default class App {}\n"
            "export const limit = 3;\n"
            "export async function load() {}\n"
            "export interface Shape {}\n"
            "export { a };\n"
        )
        exports = extract_exports(source)
        assert [e.name for e in exports] == ["App", "limit", "load", "Shape"]
        assert [e.is_default for e in exports] == [True, False, False, False]

    def test_type_and_async_are_not_export_names(self):
        source = (
            "export type { Props } from './types';\n"
            "export default async () => 1;\n"
            "export type Shape = { id: string };\n"
            "export async function load() {}\n"
        )
        assert [e.name for e in extract_exports(source)] == ["Shape", "load"]

    def test_registry_falls_back_to_typescript(self):
        assert get_extractor("a.tsx").language == "typescript"
        assert get_extractor("a.vue").language == "typescript"


# ── Similarity tests ──

class TestSimilarity:
    def test_levenshtein_known_value(self):
        assert levenshtein("kitten", "sitting") == 3

    @pytest.mark.parametrize("a,b", [
        ("kitten", "sitting"), ("", "abc"), ("userData", "userDate"), ("flaw", "lawn"),
    ])
    def test_levenshtein_symmetry_and_bounds(self, a, b):
        d = levenshtein(a, b)
        assert d == levenshtein(b, a)
        assert d <= max(len(a), len(b))
        assert levenshtein(a, a) == 0

    def test_similarity_bounds(self):
        for a, b in [("a", "b"), ("userData", "userInfo"), ("x", "longerName"), ("", "")]:
            assert 0.0 <= similarity(a, b) <= 1.0
        assert similarity("userData", "userData") == 1.0

    def test_length_gap_rejected(self):
        assert similarity("id", "identifier") == 0.0

    def test_naming_floors(self):
        assert similarity("userData", "user_data") == pytest.approx(0.9)
        assert similarity("item", "items") == pytest.approx(0.85)
        assert similarity("userData", "userDate") == pytest.approx(0.875)

    def test_prefix_and_suffix_floors(self):
        # distance alone gives 0.71 and 0.67
        assert similarity("count", "counter") == pytest.approx(0.8)
        assert similarity("counter", "count") == pytest.approx(0.8)
        assert similarity("data", "mydata") == pytest.approx(0.7)

    def test_find_similar(self):
        pool = ["userData", "userDate", "userDates", "u", "somethingElse"]
        matches = find_similar("userData", pool, reference_counts={"userDate": 4})
        assert [m.name for m in matches] == ["userDate", "userDates"]
        assert matches[0].reference_count == 4
        assert matches[0].distance == 1

    def test_find_similar_limit(self):
        pool = [f"value{i}" for i in range(10)]
        assert len(find_similar("value", pool, threshold=0.5, limit=3)) == 3


# ── Indexer tests ──

class TestIndexer:
    def test_discover_files(self, tmp_path):
        for rel in [
            "a.ts", "b.tsx", "c.py", "d.spec.ts", "node_modules/x/index.js",
            "dist/out.js", "generated/skip.ts", ".hybridlint/checkpoints/cp/files/a.ts",
        ]:
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("const a1 = 1;\n")
        (tmp_path / ".gitignore").write_text("generated/\n")

        indexer = Indexer(tmp_path, LintConfig(ignore=["*.spec.ts"]))
        found = [Path(p).relative_to(tmp_path.resolve()).as_posix() for p in indexer.discover_files()]
        assert found == ["a.ts", "b.tsx"]

    def test_worker_count(self):
        assert determine_worker_count(override=8, cpu_count=4, environ={}) == 4
        assert determine_worker_count(cpu_count=8, environ={"CI": "true"}) == 4
        assert determine_worker_count(cpu_count=8, environ={}) == 6
        assert determine_worker_count(cpu_count=1, environ={}) == 1

    def test_chunk_files(self):
        chunks = chunk_files([str(i) for i in range(5)], 2)
        assert [len(c) for c in chunks] == [3, 2]
        assert chunk_files([], 4) == []

    def test_unreadable_file_skipped(self, tmp_path):
        missing = str(tmp_path / "missing.ts")
        records, errors = extract_files([missing])
        assert records == []
        assert errors[0][0] == missing

    def test_parallel_matches_sequential(self):
        indexer = Indexer(FIXTURE_DIR, LintConfig(parallel_threshold=0))
        files = indexer.discover_files()
        sequential = indexer.extract(files, worker_count=1)
        parallel = indexer.extract(files, worker_count=2)
        assert parallel.parallel
        assert not sequential.parallel
        assert parallel.records == sequential.records
        assert parallel.references == sequential.references

    def test_worker_failure_is_indexing_error(self, monkeypatch):
        # a lambda cannot be pickled into the worker processes
        monkeypatch.setattr(indexer_module, "extract_files", lambda paths: ([], []))
        indexer = Indexer(FIXTURE_DIR, LintConfig(parallel_threshold=0))
        with pytest.raises(IndexingError):
            indexer.extract(indexer.discover_files(), worker_count=2)

    def test_fingerprint_is_content_hash(self, tmp_path):
        (tmp_path / "a.ts").write_text("const a1 = 1;\n")
        indexer = Indexer(tmp_path)
        files = indexer.discover_files()
        fingerprints = indexer.fingerprint_files(files)
        assert fingerprints[files[0]] == indexer.extract(files).records[files[0]].fingerprint


# ── Dependency graph tests ──

class TestGraph:
    def test_resolution(self, ctx):
        root = ctx.project_root
        resolver = ImportResolver(root, {"@app": "src"})
        app = str(root / "src" / "app.ts")
        card = str(root / "src" / "components" / "UserCard.tsx")
        assert resolver.resolve(app, "./components/UserCard") == card
        assert resolver.resolve(card, "../utils") == str(root / "src" / "utils" / "index.ts")
        assert resolver.resolve(card, "@app/module-b") == str(root / "src" / "module-b.ts")
        assert resolver.resolve(card, "react") is None

    def test_edges(self, ctx):
        deps = ctx.dependencies[ctx.resolve_path("src/app.ts")]
        assert deps == [
            ctx.resolve_path("src/components/UserCard.tsx"),
            ctx.resolve_path("src/module-a.ts"),
        ]
        card_deps = ctx.dependencies[ctx.resolve_path("src/components/UserCard.tsx")]
        assert ctx.resolve_path("src/module-b.ts") in card_deps
        assert ctx.resolve_path("src/utils/index.ts") in card_deps

    def test_graph_consistency(self, ctx):
        for f, deps in ctx.dependencies.items():
            for g in deps:
                assert f in ctx.reverse_dependencies[g]
        for g, dependents in ctx.reverse_dependencies.items():
            for f in dependents:
                assert g in ctx.dependencies[f]


# ── Impact tests ──

class TestImpact:
    def test_direct_importer_scored(self, ctx):
        records = {r.file_path: r for r in ctx.get_affected_files("src/module-a.ts")}
        b = records[ctx.resolve_path("src/module-b.ts")]
        assert 0.8 <= b.impact_score <= 0.95
        assert "helperFunction" in b.shared_variables
        assert b.impact_path == [ctx.resolve_path("src/module-a.ts"), b.file_path]

    def test_source_excluded(self, ctx):
        for path in ctx.files:
            assert path not in [r.file_path for r in ctx.get_affected_files(path)]

    def test_scores_decay_and_cap(self, ctx):
        source = ctx.resolve_path("src/module-a.ts")
        records = ctx.get_affected_files(source)
        assert records
        assert [r.impact_score for r in records] == sorted((r.impact_score for r in records), reverse=True)
        for r in records:
            assert 0.0 < r.impact_score <= 0.95
            assert r.impact_path[0] == source
            assert r.impact_path[-1] == r.file_path

    def test_scores_decay_along_path(self, ctx, tmp_path):
        chain = build_context(tmp_path / "chain", {
            "a.ts": "export const seedValue = 1;\n",
            "b.ts": "import { seedValue } from './a';\nexport const relayValue = seedValue + 1;\n",
            "c.ts": "import { relayValue } from './b';\nconsole.log(relayValue);\n",
        })
        for context, source in ((ctx, "src/module-a.ts"), (chain, "a.ts")):
            source = context.resolve_path(source)
            records = context.get_affected_files(source)
            scores = {source: 1.0, **{r.file_path: r.impact_score for r in records}}
            for r in records:
                assert r.impact_score < scores[r.impact_path[-2]]

        by_name = {Path(r.file_path).name: r for r in chain.get_affected_files("a.ts")}
        assert by_name["c.ts"].impact_path[1:] == [by_name["b.ts"].file_path, by_name["c.ts"].file_path]

    def test_shared_identifier_bumps_stop_at_cap(self, tmp_path):
        ctx = build_context(tmp_path, {
            "a.ts": "".join(f"export const {n} = 1;\n" for n in ("alpha", "beta", "gamma", "delta", "epsilon")),
            "b.ts": "import { alpha, beta, gamma, delta } from './a';\nconsole.log(alpha, beta, gamma, delta);\n",
            "c.ts": "console.log(alpha, beta, gamma, delta, epsilon);\n",
        })
        by_name = {Path(r.file_path).name: r for r in ctx.get_affected_files("a.ts")}
        assert by_name["b.ts"].impact_score == SHARED_IDENTIFIER_CAP
        assert by_name["c.ts"].impact_score == SHARED_IDENTIFIER_CAP
        assert by_name["c.ts"].shared_variables == ["alpha", "beta", "gamma", "delta", "epsilon"]

    def test_unrelated_file_not_affected(self, ctx):
        affected = [r.file_path for r in ctx.get_affected_files("src/module-a.ts")]
        assert ctx.resolve_path("src/legacy.js") not in affected
        assert ctx.get_affected_files("src/legacy.js") == []


# ── Classifier tests ──

class TestClassifier:
    def test_genuine_unused(self, tmp_path):
        ctx = build_context(tmp_path, {"a.ts": "const lonelyValue = 1;\nexport const other = 2;\n"})
        result = ctx.analyze_variable("lonelyValue", "a.ts", unused("lonelyValue"))
        assert result.analysis_type == AnalysisType.GENUINE_UNUSED
        assert result.confidence == pytest.approx(0.8)
        assert result.recommended_action == ActionKind.PREFIX
        assert result.top_action.target == "_lonelyValue"

    def test_typo(self, tmp_path):
        source = (
            "const userDate = new Date();\n"
            "console.log(userDate);\n"
            "const userData = loadUser();\n"
            "console.log(userData);\n"
        )
        ctx = build_context(tmp_path, {"a.ts": source})
        result = ctx.analyze_variable("userData", "a.ts", unused("userData", line=3))
        assert result.analysis_type == AnalysisType.TYPO
        assert result.confidence == pytest.approx(0.875)
        assert result.recommended_action == ActionKind.RENAME
        assert result.top_action.action == ActionKind.RENAME
        assert result.top_action.target == "userDate"

    def test_refactor_leftover(self, tmp_path):
        history = {"b.ts": HistoryRecord(refactor_probability=0.75)}
        ctx = build_context(
            tmp_path, {"b.ts": "const staleValue = compute();\nreport(staleValue);\n"}, history=history,
        )
        result = ctx.analyze_variable("staleValue", "b.ts")
        assert result.analysis_type == AnalysisType.REFACTOR_LEFTOVER
        assert result.confidence == pytest.approx(0.75)
        assert result.top_action.action == ActionKind.REMOVE

    def test_intentional_unused(self, tmp_path):
        ctx = build_context(tmp_path, {"c.ts": "const _ignored = setup();\nteardown(_ignored);\n"})
        result = ctx.analyze_variable("_ignored", "c.ts")
        assert result.analysis_type == AnalysisType.INTENTIONAL_UNUSED
        assert result.confidence == pytest.approx(0.75)
        assert result.recommended_action == ActionKind.KEEP

    def test_default_rule(self, tmp_path):
        ctx = build_context(tmp_path, {"d.ts": "const orphanedThing = build();\ninspect(orphanedThing);\n"})
        result = ctx.analyze_variable("orphanedThing", "d.ts")
        assert result.analysis_type == AnalysisType.GENUINE_UNUSED
        assert result.confidence == pytest.approx(0.7)

    def test_prefix_action_always_offered(self, tmp_path):
        ctx = build_context(tmp_path, {"c.ts": "const _ignored = setup();\nteardown(_ignored);\n"})
        result = ctx.analyze_variable("_ignored", "c.ts")
        assert ActionKind.PREFIX in [a.action for a in result.possible_actions]
        confidences = [a.confidence for a in result.possible_actions]
        assert confidences == sorted(confidences, reverse=True)

    def test_deterministic_and_memoized(self, ctx):
        first = ctx.analyze_variable("unusedHelper", "src/app.ts", unused("unusedHelper", 4), use_ai=False)
        second = ctx.analyze_variable("unusedHelper", "src/app.ts", unused("unusedHelper", 4), use_ai=False)
        assert (first.analysis_type, first.confidence) == (second.analysis_type, second.confidence)
        assert ctx.classifier.cache_size == 1
        assert len(ctx.decision_history) == 1

    def test_fresh_classifiers_agree(self, ctx):
        a = ctx.classifier.heuristic("processItems", ctx.resolve_path("src/module-b.ts"))
        b = ctx.classifier.heuristic("processItems", ctx.resolve_path("src/module-b.ts"))
        assert a.to_dict() == b.to_dict()


class TestClassifierWithOracle:
    FILES = {"a.ts": "const lonelyValue = 1;\nexport const other = 2;\n"}

    def test_malformed_reply_keeps_heuristic(self, tmp_path):
        oracle, _ = make_oracle(lambda request: oracle_reply("I think it is unused."))
        ctx = build_context(tmp_path, self.FILES, oracle=oracle)
        result = ctx.analyze_variable("lonelyValue", "a.ts", unused("lonelyValue"), use_ai=True)
        assert result.analysis_type == AnalysisType.GENUINE_UNUSED
        assert result.confidence == pytest.approx(0.8)
        assert result.source == "heuristic"
        assert result.oracle_verdict["parseError"] is True
        assert result.oracle_verdict["confidence"] == 0.5

    def test_confident_reply_overrides(self, tmp_path):
        reply = json.dumps({
            "analysisType": "REFACTOR_ISSUE",
            "confidence": 0.92,
            "explanation": "Renamed in the exporting module",
            "rootCause": "Export renamed",
            "recommendation": {"actionType": "UPDATE_IMPORT", "details": "Import the new name"},
            "possibleActions": [
                {"action": "UPDATE_IMPORT", "description": "Import the renamed symbol", "confidence": 0.9},
            ],
        })
        oracle, _ = make_oracle(lambda request: oracle_reply(f"```json\n{reply}\n```"))
        ctx = build_context(tmp_path, self.FILES, oracle=oracle)
        result = ctx.analyze_variable("lonelyValue", "a.ts", unused("lonelyValue"), use_ai=True)
        assert result.analysis_type == AnalysisType.REFACTOR_ISSUE
        assert result.source == "oracle"
        assert result.recommended_action == ActionKind.UPDATE_IMPORT
        assert result.top_action.action == ActionKind.UPDATE_IMPORT

    def test_unconfident_reply_ignored(self, tmp_path):
        reply = json.dumps({"analysisType": "TYPO", "confidence": 0.6, "explanation": "maybe"})
        oracle, _ = make_oracle(lambda request: oracle_reply(reply))
        ctx = build_context(tmp_path, self.FILES, oracle=oracle)
        result = ctx.analyze_variable("lonelyValue", "a.ts", use_ai=True)
        assert result.analysis_type == AnalysisType.GENUINE_UNUSED
        assert result.oracle_verdict["analysisType"] == "TYPO"

    def test_oracle_failure_keeps_heuristic(self, tmp_path):
        oracle, _ = make_oracle(lambda request: httpx.Response(503), max_retries=2)
        ctx = build_context(tmp_path, self.FILES, oracle=oracle)
        result = ctx.analyze_variable("lonelyValue", "a.ts", use_ai=True)
        assert result.analysis_type == AnalysisType.GENUINE_UNUSED
        assert result.oracle_verdict is None

    def test_undecodable_reply_keeps_heuristic(self, tmp_path):
        oracle, _ = make_oracle(corrupt_gzip_reply, max_retries=2)
        ctx = build_context(tmp_path, self.FILES, oracle=oracle)
        result = ctx.analyze_variable("lonelyValue", "a.ts", use_ai=True)
        assert result.analysis_type == AnalysisType.GENUINE_UNUSED
        assert result.source == "heuristic"
        assert result.oracle_verdict is None

    def test_cross_module(self, tmp_path):
        prompts = []
        reply = json.dumps({
            "analysisType": "REFACTOR_ISSUE",
            "confidence": 0.85,
            "explanation": "The export was renamed",
            "possibleActions": [
                {"action": "UPDATE_USAGE", "description": "Use the new export", "confidence": 0.85},
            ],
        })

        def handler(request):
            prompts.append(json.loads(request.content)["messages"][1]["content"])
            return oracle_reply(reply)

        oracle, _ = make_oracle(handler)
        files = {
            "lib.ts": "export const settingsValue = 1;\n",
            "main.ts": (
                "import { settingsValue } from './lib';\n"
                "const staleThing = settingsValue;\n"
                "inspect(staleThing);\n"
            ),
        }
        ctx = build_context(tmp_path, files, oracle=oracle)
        result = ctx.analyze_cross_module("staleThing", "main.ts", unused("staleThing", 2))
        assert result.analysis_type == AnalysisType.REFACTOR_ISSUE
        actions = [a.action for a in result.possible_actions]
        assert actions[0] == ActionKind.UPDATE_USAGE
        assert ActionKind.PREFIX in actions
        assert "imports from" in prompts[0]
        assert "lib.ts" in prompts[0]

    def test_cross_module_rejects_unused_verdict(self, tmp_path):
        reply = json.dumps({"analysisType": "GENUINE_UNUSED", "confidence": 0.95, "explanation": "dead"})
        oracle, _ = make_oracle(lambda request: oracle_reply(reply))
        files = {"main.ts": "const staleThing = build();\ninspect(staleThing);\n"}
        ctx = build_context(tmp_path, files, oracle=oracle)
        result = ctx.analyze_cross_module("staleThing", "main.ts")
        assert result.source == "heuristic"
        assert result.confidence == pytest.approx(0.7)


# ── Oracle tests ──

class TestOracle:
    def test_success_and_cache(self):
        calls = []

        def handler(request):
            calls.append(request)
            return oracle_reply("  hello  ")

        oracle, _ = make_oracle(handler)
        assert oracle.complete("prompt") == "hello"
        assert oracle.complete("prompt") == "hello"
        assert len(calls) == 1
        body = json.loads(calls[0].content)
        assert body["model"] == "gpt-3.5-turbo"
        assert body["temperature"] == 0.2
        assert calls[0].headers["Authorization"] == "Bearer test-key"

    def test_rate_limit_backoff(self):
        responses = [httpx.Response(429), oracle_reply("ok")]
        oracle, sleeps = make_oracle(lambda request: responses.pop(0))
        assert oracle.complete("prompt") == "ok"
        assert sleeps == [2.0]

    def test_retries_exhausted(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        oracle, sleeps = make_oracle(handler, max_retries=3)
        with pytest.raises(OracleError) as exc:
            oracle.complete("prompt")
        assert len(calls) == 3
        assert sleeps == [1.0, 2.0]
        assert exc.value.status_code == 500

    def test_transport_error_retried(self):
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return oracle_reply("ok")

        oracle, sleeps = make_oracle(handler)
        assert oracle.complete("prompt") == "ok"
        assert sleeps == [1.0]

    def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400)

        oracle, sleeps = make_oracle(handler)
        with pytest.raises(OracleError):
            oracle.complete("prompt")
        assert len(calls) == 1
        assert sleeps == []

    def test_undecodable_body_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return corrupt_gzip_reply(request)

        oracle, sleeps = make_oracle(handler, max_retries=3)
        with pytest.raises(OracleError):
            oracle.complete("prompt")
        assert len(calls) == 3
        assert sleeps == [1.0, 2.0]

    def test_missing_key(self):
        calls = []
        oracle, _ = make_oracle(lambda request: calls.append(request), openai_api_key="")
        with pytest.raises(OracleError):
            oracle.complete("prompt")
        assert calls == []

    def test_azure_request(self):
        seen = []

        def handler(request):
            seen.append(request)
            return oracle_reply("ok")

        oracle, _ = make_oracle(
            handler,
            ai_provider="azure",
            azure_api_key="azure-key",
            azure_endpoint="https://example.openai.azure.com/",
            azure_deployments={"gpt-4o": "gpt4-deploy"},
        )
        oracle.complete("prompt", model="gpt-4o")
        request = seen[0]
        assert request.url.path == "/openai/deployments/gpt4-deploy/chat/completions"
        assert request.url.params["api-version"] == "2023-05-15"
        assert request.headers["api-key"] == "azure-key"


class TestPrompts:
    def test_parse_fenced_reply(self):
        data = parse_classification_reply('```json\n{"analysisType": "TYPO", "confidence": 0.9}\n```')
        assert data["analysisType"] == "TYPO"

    @pytest.mark.parametrize("text", [
        "not json",
        "[1, 2]",
        '{"confidence": 0.9}',
        '{"analysisType": "TYPO", "confidence": "high"}',
        '{"analysisType": "TYPO", "confidence": 1.5}',
    ])
    def test_rejects_bad_replies(self, text):
        with pytest.raises(OracleResponseError):
            parse_classification_reply(text)

    def test_cross_module_prompt_limits_related_files(self):
        related = [(f"/p/f{i}.ts", "imported by", f"// file {i}") for i in range(5)]
        prompt = cross_module_prompt("name", "/p/main.ts", "const name = 1;", 1, related)
        assert "f2.ts" in prompt
        assert "f3.ts" not in prompt
        assert '"analysisType"' in prompt


class TestModels:
    def test_analysis_type_parse(self):
        assert AnalysisType.parse("TYPE_MISMATCH") == AnalysisType.TYPE_DEFINITION_MISMATCH
        assert AnalysisType.parse("parameter-change") == AnalysisType.PARAMETER_MISMATCH
        assert AnalysisType.parse("weird") == AnalysisType.UNKNOWN

    def test_action_kind_parse(self):
        assert ActionKind.parse("manual") == ActionKind.MANUAL_REVIEW
        assert ActionKind.parse("rename") == ActionKind.RENAME
        assert ActionKind.parse(None) == ActionKind.OTHER


# ── History tests ──

class TestHistory:
    NOW = 1_700_000_000

    def test_refactor_probability(self):
        commits = [
            Commit(message="refactor: rename helpers", timestamp=self.NOW),
            Commit(message="add feature", timestamp=self.NOW - 10 * 86400),
        ]
        expected = 0.7 * 0.5 + 0.3 * (1 + math.exp(-1)) / 2
        assert refactor_probability(commits, now=self.NOW) == pytest.approx(expected)
        assert refactor_probability([], now=self.NOW) == 0.0

    def test_change_frequency(self):
        daily = [Commit(timestamp=self.NOW + i * 86400) for i in range(3)]
        sparse = [Commit(timestamp=self.NOW + i * 10 * 86400) for i in range(3)]
        assert change_frequency(daily) == 1.0
        assert change_frequency(sparse) == pytest.approx(3 / 10.1)
        assert change_frequency(daily[:1]) == 0.0

    def test_parse_log(self):
        commits = parse_log("abc123|Ada|1700000000|refactor: split | module\nbroken line\n")
        assert len(commits) == 1
        assert commits[0].author == "Ada"
        assert commits[0].message == "refactor: split | module"

    def test_parse_blame(self):
        output = "author Ada\nauthor-mail <a@x>\nauthor Ada\nauthor Grace\n"
        assert parse_blame_authors(output) == {"Ada": 2, "Grace": 1}

    def test_no_repository(self, tmp_path):
        (tmp_path / "a.ts").write_text("const a1 = 1;\n")
        assert HistoryAggregator(tmp_path).collect([str(tmp_path / "a.ts")]) == {}

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_collect_from_repository(self, tmp_path):
        def git(*args):
            subprocess.run(
                ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com",
                 "-c", "commit.gpgsign=false", *args],
                cwd=tmp_path, check=True, capture_output=True,
            )

        path = tmp_path / "a.ts"
        path.write_text("const a1 = 1;\n")
        git("init", "-q")
        git("add", "a.ts")
        git("commit", "-q", "-m", "refactor: rename constants")

        key = str(path.resolve())
        record = HistoryAggregator(tmp_path).collect([key])[key]
        assert [c.message for c in record.commits] == ["refactor: rename constants"]
        assert record.author_line_counts == {"Test": 1}
        assert record.refactor_probability > 0.9


# ── Project context tests ──

class TestProjectContext:
    def test_initialize_is_idempotent(self, ctx):
        assert ctx.scan_count == 1
        assert ctx.initialize() is True
        assert ctx.scan_count == 1

    def test_query_before_initialize(self, project):
        context = ProjectContext(project, config=LintConfig(), history_aggregator=StaticHistory())
        with pytest.raises(IndexingError):
            context.get_changed_files()

    def test_stats(self, ctx):
        assert ctx.stats.total_files == 6
        stats = ctx.get_stats()
        assert stats["total_files"] == 6
        assert stats["total_fixes"] == 0
        assert stats["decisions"]["total"] == 0

    def test_changed_files_against_saved_baseline(self, project, ctx):
        assert ctx.get_changed_files() == []
        ctx.shutdown(save_fingerprints=True)

        target = project / "src" / "module-b.ts"
        target.write_text(target.read_text() + "// touched\n")

        config = LintConfig.load(project, environ={})
        fresh = ProjectContext(project, config=config, history_aggregator=StaticHistory())
        fresh.initialize()
        changed = fresh.resolve_path("src/module-b.ts")
        assert fresh.get_changed_files() == [changed]

        path, score = fresh.get_prioritized_files()[0]
        assert path == changed
        assert score >= 100

    def test_full_scan_reports_everything(self, project):
        config = LintConfig.load(project, environ={})
        config.incremental = False
        context = ProjectContext(project, config=config, history_aggregator=StaticHistory())
        context.initialize()
        assert context.get_changed_files() == sorted(context.files)

    def test_record_fix_and_persist(self, ctx):
        for i in range(10):
            fix_id = ctx.record_fix("src/app.ts", unused("unusedHelper", 4), "PREFIX", {"n": i})
        assert re.fullmatch(r"fix-\d+-\d+", fix_id)
        saved = json.loads((ctx.journal.history_dir / "fix-history.json").read_text())
        assert len(saved) == 10
        assert saved[0]["file_path"] == "src/app.ts"
        assert saved[0]["dependencies"] == 2

    def test_decisions_reloaded(self, project, ctx):
        ctx.analyze_variable("unusedHelper", "src/app.ts")
        ctx.shutdown()
        config = LintConfig.load(project, environ={})
        fresh = ProjectContext(project, config=config, history_aggregator=StaticHistory())
        fresh.initialize()
        assert [d.name for d in fresh.decision_history] == ["unusedHelper"]

    def test_decision_saves_batched_past_cap(self, ctx, monkeypatch):
        saves = []
        monkeypatch.setattr(ctx.journal, "save_decisions", lambda decisions: saves.append(len(decisions)))
        result = ClassificationResult(name="unusedHelper", file_path=ctx.resolve_path("src/app.ts"))
        for _ in range(1049):
            ctx.record_decision(result)
        assert len(ctx.decision_history) == 1000
        assert len(saves) == 20
        ctx.record_decision(result)
        assert saves[-1] == 1000
        assert len(saves) == 21


class TestCheckpoints:
    def test_revert_restores_files_and_history(self, project, ctx):
        ctx.create_checkpoint("before-fix")
        target = project / "src" / "app.ts"
        original = target.read_text()
        target.write_text(original.replace("const unusedHelper", "const _unusedHelper"))
        fix_id = ctx.record_fix("src/app.ts", unused("unusedHelper", 4), "PREFIX")

        reverted = ctx.revert_to_checkpoint("before-fix")
        assert reverted == [fix_id]
        assert target.read_text() == original
        assert ctx.fix_history == []
        assert ctx.rollback_history[-1].fix_id == fix_id
        assert "before-fix" in ctx.rollback_history[-1].reason
        assert ctx.get_changed_files() == []
        assert ctx.stats.total_files == 6

    def test_list_newest_first(self, ctx):
        ctx.create_checkpoint("first")
        time.sleep(0.01)
        ctx.create_checkpoint("second")
        names = [c["name"] for c in ctx.list_checkpoints()]
        assert names == ["second", "first"]
        assert ctx.list_checkpoints()[0]["file_count"] == 6

    def test_missing_and_invalid(self, ctx):
        with pytest.raises(CheckpointError):
            ctx.revert_to_checkpoint("nope")
        with pytest.raises(CheckpointError):
            ctx.create_checkpoint("../escape")


# ── Config tests ──

class TestConfig:
    def test_load_missing_config(self, tmp_path):
        config = LintConfig.load(tmp_path, environ={})
        assert config.extensions == [".ts", ".tsx", ".js", ".jsx"]
        assert config.similarity_threshold == 0.7
        assert config.max_retries == 3

    def test_load_yaml_config(self, tmp_path):
        (tmp_path / ".hybridlint.yaml").write_text(
            "extensions: [ts, .JS]\nsimilarity_threshold: 0.8\nmodule_aliases:\n  '@app': src\n"
        )
        config = LintConfig.load(tmp_path, environ={})
        assert config.extensions == [".ts", ".js"]
        assert config.similarity_threshold == 0.8
        assert config.module_aliases == {"@app": "src"}

    def test_unknown_key(self, tmp_path):
        (tmp_path / ".hybridlint.yaml").write_text("similarity: 0.8\n")
        with pytest.raises(ConfigError):
            LintConfig.load(tmp_path, environ={})

    def test_not_a_mapping(self, tmp_path):
        (tmp_path / ".hybridlint.yaml").write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            LintConfig.load(tmp_path, environ={})

    def test_environment_overrides(self, tmp_path):
        config = LintConfig.load(tmp_path, environ={"MAX_RETRIES": "5", "OPENAI_API_KEY": "sk-test"})
        assert config.max_retries == 5
        assert config.openai_api_key == "sk-test"
        assert config.to_dict() == {"max_retries": 5}

    def test_bad_environment_value(self, tmp_path):
        with pytest.raises(ConfigError):
            LintConfig.load(tmp_path, environ={"WORKER_COUNT": "many"})


# ── Linter collaborator tests ──

FAKE_LINTER = """
import json
import sys

args = sys.argv[1:]
files = [a for a in args if not a.startswith("--") and a != "json"]
if "--fix" in args:
    print("Fixed 2 error(s)")
    sys.exit(1)
print(json.dumps([
    {"filePath": f, "messages": [{
        "line": 1, "column": 7, "severity": 1, "ruleId": "no-unused-vars",
        "message": "'lonelyValue' is assigned a value but never used.",
    }]}
    for f in files
]))
sys.exit(1)
"""


class TestLint:
    def test_parse_diagnostics(self):
        output = json.dumps([
            {"filePath": "/p/a.ts", "messages": [
                {"line": 3, "column": 7, "severity": 2, "message": "'x' is defined but never used.",
                 "ruleId": "no-unused-vars"},
            ]},
            {"filePath": "/p/b.ts", "messages": []},
        ])
        results = parse_diagnostics(output)
        assert [r.file_path for r in results] == ["/p/a.ts", "/p/b.ts"]
        assert results[0].messages[0].rule_id == "no-unused-vars"
        assert results[0].messages[0].severity == 2
        with pytest.raises(LinterError):
            parse_diagnostics("Oops, something went wrong")

    def test_count_fixed_issues(self):
        assert count_fixed_issues("Fixed 3 error(s)\nnoise\nFixed 2 error(s)\n") == 5
        assert count_fixed_issues("") == 0

    def test_unused_identifier_name(self):
        assert unused_identifier_name(unused("userData")) == "userData"
        assert unused_identifier_name(LintMessage(message="no quotes here")) is None

    def test_categories(self):
        assert categorize("@typescript-eslint/no-unused-vars") == "UNUSED"
        assert categorize("@typescript-eslint/no-explicit-any") == "TYPE"
        assert categorize("semi") == "STYLE"
        assert categorize("import/order") == "IMPORT"
        assert categorize("no-console") == "BEST_PRACTICE"
        assert categorize("react/jsx-key") == "OTHER"
        assert categorize(None) == "OTHER"
        counts = count_by_category([LintMessage(rule_id="semi"), LintMessage(rule_id="no-var")])
        assert list(counts) == ["SYNTAX", "UNUSED", "TYPE", "STYLE", "IMPORT", "BEST_PRACTICE", "OTHER"]
        assert counts["STYLE"] == 1 and counts["BEST_PRACTICE"] == 1

    def test_suggestions(self):
        assert "underscore" in suggestion("@typescript-eslint/no-unused-vars")
        assert "import paths" in suggestion("import/no-unresolved")
        assert "documentation" in suggestion("eqeqeq")

    def test_runner_tolerates_nonzero_exit(self, tmp_path):
        script = tmp_path / "fake_linter.py"
        script.write_text(FAKE_LINTER)
        runner = LinterRunner([sys.executable, str(script)], tmp_path, chunk_size=1)
        results = runner.find_issues(["a.ts", "b.ts"])
        assert [r.file_path for r in results] == ["a.ts", "b.ts"]
        assert count_fixed_issues(runner.run_autofix(["a.ts", "b.ts"])) == 4

    def test_missing_linter(self, tmp_path):
        runner = LinterRunner(["hybridlint-no-such-linter"], tmp_path)
        with pytest.raises(LinterError):
            runner.find_issues(["a.ts"])


class TestFixes:
    def test_rename_on_line(self):
        assert rename_on_line("const userData = 1;", "userData", "_userData") == "const _userData = 1;"
        assert rename_on_line("function greet(name, userData) {", "userData", "_userData") == \
            "function greet(name, _userData) {"
        assert rename_on_line("const { id, userData } = payload;", "userData", "_userData") == \
            "const { id, _userData } = payload;"
        assert rename_on_line("const userDataList = 1;", "userData", "_userData") == "const userDataList = 1;"

    def test_comment_out(self):
        assert comment_out("  const x = 1;") == "  // const x = 1; // removed: unused"
        assert comment_out("const x = 1;\r") == "// const x = 1; // removed: unused\r"

    def test_dry_run_leaves_file(self, tmp_path):
        source = "const lonelyValue = 1;\nexport const other = 2;\n"
        ctx = build_context(tmp_path, {"a.ts": source})
        outcomes = fix_unused_identifiers(ctx, "a.ts", [unused("lonelyValue")])
        assert [(o.fix_type, o.replacement) for o in outcomes] == [("PREFIX", "_lonelyValue")]
        assert outcomes[0].fix_id is None
        assert (tmp_path / "a.ts").read_text() == source
        assert ctx.fix_history == []

    def test_apply_prefix(self, tmp_path):
        ctx = build_context(tmp_path, {"a.ts": "const lonelyValue = 1;\nexport const other = 2;\n"})
        outcomes = fix_unused_identifiers(ctx, "a.ts", [unused("lonelyValue")], apply=True)
        assert (tmp_path / "a.ts").read_text().splitlines()[0] == "const _lonelyValue = 1;"
        assert outcomes[0].fix_id.startswith("fix-")
        assert ctx.fix_history[0].details == {"original": "lonelyValue", "fixed": "_lonelyValue"}

    def test_apply_preserves_line_endings_and_bytes(self, tmp_path):
        original = b"const lonelyValue = 1;\r\nexport const other = 2;\r\n// caf\xe9\r\n"
        (tmp_path / "a.ts").write_bytes(original)
        ctx = build_context(tmp_path, {})
        fix_unused_identifiers(ctx, "a.ts", [unused("lonelyValue")], apply=True)
        assert (tmp_path / "a.ts").read_bytes() == original.replace(b"lonelyValue", b"_lonelyValue")

    def test_apply_typo_rename(self, tmp_path):
        source = (
            "const userDate = new Date();\n"
            "console.log(userDate);\n"
            "const userData = loadUser();\n"
            "console.log(userData);\n"
        )
        ctx = build_context(tmp_path, {"a.ts": source})
        outcomes = fix_unused_identifiers(ctx, "a.ts", [unused("userData", line=3)], apply=True)
        assert outcomes[0].fix_type == "RENAME"
        assert (tmp_path / "a.ts").read_text().splitlines()[2] == "const userDate = loadUser();"

    def test_skips_prefixed_and_other_rules(self, tmp_path):
        ctx = build_context(tmp_path, {"a.ts": "const _kept = 1;\nlet counter = 2;\n"})
        messages = [unused("_kept"), LintMessage(line=2, rule_id="prefer-const", message="'counter' is never reassigned.")]
        assert fix_unused_identifiers(ctx, "a.ts", messages, apply=True) == []


# ── CLI tests ──

class TestCLI:
    def test_init(self, project, capsys):
        assert run_cli(["--project", str(project), "init"]) == 0
        out = capsys.readouterr().out
        assert "Files:" in out
        assert (project / ".hybridlint" / "fingerprints.json").exists()

    def test_similar_json(self, project, capsys):
        assert run_cli(["--project", str(project), "--json", "similar", "helperFunctio"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data[0]["name"] == "helperFunction"

    def test_impact_json(self, project, capsys):
        assert run_cli(["--project", str(project), "--json", "impact", "src/module-a.ts"]) == 0
        files = [r["file"] for r in json.loads(capsys.readouterr().out)]
        assert "src/module-b.ts" in files
        assert "src/module-a.ts" not in files

    def test_impact_untracked(self, project, capsys):
        assert run_cli(["--project", str(project), "impact", "src/nope.ts"]) == 0
        assert "File not tracked" in capsys.readouterr().out

    def test_analyze_json(self, project, capsys):
        argv = ["--project", str(project), "--json", "analyze", "unusedHelper", "src/app.ts", "--line", "4"]
        assert run_cli(argv) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["analysis_type"] == "GENUINE_UNUSED"
        assert data["file"] == "src/app.ts"

    def test_checkpoints(self, project, capsys):
        assert run_cli(["--project", str(project), "checkpoint", "create", "snap"]) == 0
        assert "Created checkpoint snap" in capsys.readouterr().out
        assert run_cli(["--project", str(project), "--json", "checkpoint", "list"]) == 0
        assert [c["name"] for c in json.loads(capsys.readouterr().out)] == ["snap"]

    def test_error_exit_code(self, project, capsys):
        assert run_cli(["--project", str(project), "checkpoint", "revert", "missing"]) == 1
        assert "Checkpoint not found" in capsys.readouterr().err
