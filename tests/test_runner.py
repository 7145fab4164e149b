# tests/test_runner.py
"""
Tests for the module driver: function selection, deterministic ordering
under a thread pool, the shared finding sink and result aggregation.
"""

import logging
import threading

import pytest

from suspicious_ptr.config import AnalysisConfig
from suspicious_ptr.findings import Category
from suspicious_ptr.ir_parser import parse_module
from suspicious_ptr.runner import AnalysisRunner, FindingSink, RunResults, analyze_module
from tests.conftest import CLEAN_SXIR, END_TO_END_SXIR, HEAP_SXIR, INTTOPTR_SXIR


def _many_functions(count):
    """A module of ``count`` functions, each with one out-of-bounds store."""
    parts = ["(module many", "  (global g (array 2 i16))"]
    for k in range(count):
        parts.append(
            f"  (function fn{k:03d} (params)\n"
            f"    (block entry\n"
            f"      (%e = gep i16 @g (i64 {2 + k % 5}))\n"
            f'      (store (i16 0) %e (loc "many.c" {k + 1} 1))\n'
            f"      (ret)))"
        )
    return parse_module("\n".join(parts) + ")")


def _signature(results):
    return [(f.function, f.category.tag, f.location_str, f.message) for f in results.findings]


class TestAnalysisRunner:

    def test_default_run(self):
        results = AnalysisRunner().run(parse_module(END_TO_END_SXIR))
        assert [f.category for f in results.findings] == [
            Category.DEF_OOB, Category.DEF_TRUNC_ROUNDTRIP,
        ]
        assert results.function_names == ["main"]
        assert results.stats["functions"] == 1
        assert "main_elapsed_ms" in results.stats
        assert "total_elapsed_ms" in results.stats

    def test_declarations_are_skipped(self):
        results = AnalysisRunner().run(parse_module(CLEAN_SXIR))
        assert results.function_names == ["ok"]
        assert results.total_count == 0

    def test_rejects_zero_jobs(self):
        with pytest.raises(ValueError):
            AnalysisRunner(jobs=0)

    @pytest.mark.parametrize("jobs", [2, 4, 16])
    def test_parallel_run_matches_sequential(self, jobs):
        module = _many_functions(40)
        sequential = AnalysisRunner(jobs=1).run(module)
        parallel = AnalysisRunner(jobs=jobs).run(module)
        assert _signature(parallel) == _signature(sequential)
        assert parallel.function_names == [f"fn{k:03d}" for k in range(40)]

    def test_function_filter(self):
        module = parse_module(HEAP_SXIR)
        results = AnalysisRunner().run(module, functions=["spilled", "in_bounds"])
        assert results.function_names == ["spilled", "in_bounds"]
        assert [f.function for f in results.findings] == ["spilled"]

    def test_unknown_function_is_logged(self, caplog):
        module = parse_module(HEAP_SXIR)
        with caplog.at_level(logging.WARNING, logger="suspicious_ptr.runner"):
            results = AnalysisRunner().run(module, functions=["nope"])
        assert results.function_names == []
        assert "nope" in caplog.text

    def test_config_is_applied(self):
        module = parse_module(INTTOPTR_SXIR)
        assert AnalysisRunner().run(module).total_count == 0
        results = AnalysisRunner(AnalysisConfig.all_warnings(), jobs=2).run(module)
        assert results.warning_count == 4
        assert results.error_count == 0

    def test_analyze_module(self):
        results = analyze_module(parse_module(END_TO_END_SXIR))
        assert results.total_count == 2


class TestFindingSink:

    def test_runner_feeds_sink(self):
        sink = FindingSink()
        module = _many_functions(12)
        results = AnalysisRunner(jobs=4, sink=sink).run(module)
        assert len(sink) == results.total_count
        assert sorted(_signature_of(sink.findings)) == sorted(_signature(results))

    def test_blocks_are_not_interleaved(self):
        sink = FindingSink()
        blocks = [[(t, i) for i in range(200)] for t in range(8)]
        threads = [threading.Thread(target=sink.extend, args=(b,)) for b in blocks]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        got = sink.findings
        assert len(got) == 1600
        for start in range(0, 1600, 200):
            chunk = got[start:start + 200]
            assert len({owner for owner, _ in chunk}) == 1

    def test_emit(self):
        sink = FindingSink()
        sink.emit("x")
        assert sink.findings == ["x"]


def _signature_of(findings):
    return [(f.function, f.category.tag, f.location_str, f.message) for f in findings]


class TestRunResults:

    @pytest.fixture(scope="class")
    def results(self):
        return AnalysisRunner().run(parse_module(HEAP_SXIR))

    def test_counts(self, results):
        assert results.total_count == 3
        assert results.error_count == 3
        assert results.warning_count == 0

    def test_preserves_all(self, results):
        assert results.preserves_all is True

    def test_by_category(self, results):
        assert len(results.by_category(Category.DEF_OOB)) == 3
        assert results.by_category(Category.ROUNDTRIP) == []

    def test_by_function(self, results):
        assert len(results.by_function("spilled")) == 1
        assert results.by_function("missing") == []

    def test_by_file(self, results):
        assert len(results.by_file("heap.c")) == 3
        assert results.by_file("other.c") == []

    def test_category_counts(self, results):
        counts = results.category_counts()
        assert counts["DEF-OOB"] == 3
        assert counts["DEF-TRUNC-ROUNDTRIP"] == 0
        assert set(counts) == {c.tag for c in Category}

    def test_summary(self, results):
        lines = results.summary().splitlines()
        assert lines[0] == (
            "Analysis complete: 3 findings (3 errors, 0 warnings) in 4 functions"
        )
        assert lines[1:] == ["  DEF-OOB: 3"]

    def test_text_forms(self, results):
        assert results.to_text().count("[SuspiciousPtr][DEF-OOB]") == 3
        assert len(results.to_json_lines().splitlines()) == 3
        assert results.to_gcc_format().splitlines()[0].startswith("heap.c:5:8: error:")

    def test_merge(self, results):
        merged = RunResults()
        merged.merge(results)
        merged.merge(AnalysisRunner().run(parse_module(END_TO_END_SXIR)))
        assert merged.total_count == 5
        assert merged.function_names[-1] == "main"
        assert merged.stats["functions"] == 5
        assert len(merged.findings_by_function["main"]) == 2
