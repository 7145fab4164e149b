"""
suspicious_ptr/runner.py
════════════════════════

Module-level driver.

``AnalysisRunner`` scans every defined function of a module, optionally
in a thread pool, and aggregates the findings into ``RunResults``.

Ordering
────────
Functions are independent, so with ``jobs > 1`` they are scanned
concurrently.  Each function's findings are produced as one block and
handed to the ``FindingSink`` under a lock; ``RunResults`` is always
assembled in module order, so its output does not depend on scheduling.

Usage
─────
    >>> module = parse_file("example.sxir")
    >>> results = AnalysisRunner(AnalysisConfig(warn_roundtrip=True)).run(module)
    >>> print(results.summary())
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, cast

from .config import AnalysisConfig
from .findings import Category, Finding, Severity
from .ir import Function, Module
from .layout import DataLayout
from .scanner import scan_function

_log = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — FINDING SINK
# ═════════════════════════════════════════════════════════════════════════

class FindingSink:
    """Append-only, thread-safe collector of findings."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._findings: List[Finding] = []

    def emit(self, finding: Finding) -> None:
        with self._lock:
            self._findings.append(finding)

    def extend(self, findings: Iterable[Finding]) -> None:
        """Append a block of findings without interleaving other writers."""
        block = list(findings)
        with self._lock:
            self._findings.extend(block)

    @property
    def findings(self) -> List[Finding]:
        with self._lock:
            return list(self._findings)

    def __len__(self) -> int:
        with self._lock:
            return len(self._findings)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — RESULTS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class RunResults:
    """
    Aggregate results of analysing one or more modules.

    Attributes
    ----------
    findings               : All findings, function by function in module order
    findings_by_function   : Findings grouped by function name
    stats                  : Timing and counting statistics
    function_names         : Names of the functions that were analysed
    """
    findings: List[Finding] = field(default_factory=list)
    findings_by_function: Dict[str, List[Finding]] = field(
        default_factory=lambda: defaultdict(list)
    )
    stats: Dict[str, Any] = field(default_factory=dict)
    function_names: List[str] = field(default_factory=list)

    @property
    def preserves_all(self) -> bool:
        """The analysis never transforms the IR."""
        return True

    @property
    def error_count(self) -> int:
        return sum(1 for f in self.findings if f.severity is Severity.ERROR)

    @property
    def warning_count(self) -> int:
        return sum(1 for f in self.findings if f.severity is Severity.WARNING)

    @property
    def total_count(self) -> int:
        return len(self.findings)

    def by_category(self, category: Category) -> List[Finding]:
        return [f for f in self.findings if f.category is category]

    def by_function(self, name: str) -> List[Finding]:
        return list(self.findings_by_function.get(name, []))

    def by_file(self, file: str) -> List[Finding]:
        return [f for f in self.findings if f.location and f.location.file == file]

    def category_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {c.tag: 0 for c in Category}
        for f in self.findings:
            counts[f.category.tag] += 1
        return counts

    def merge(self, other: "RunResults") -> None:
        """Append ``other`` (e.g. the next input file) to these results."""
        self.findings.extend(other.findings)
        for name, items in other.findings_by_function.items():
            self.findings_by_function[name].extend(items)
        for key, val in other.stats.items():
            if isinstance(val, (int, float)) and key in self.stats:
                self.stats[key] += val
            else:
                self.stats[key] = val
        for name in other.function_names:
            if name not in self.function_names:
                self.function_names.append(name)

    def to_text(self) -> str:
        return "\n".join(f.to_text() for f in self.findings)

    def to_json_lines(self) -> str:
        return "\n".join(f.to_json_str() for f in self.findings)

    def to_gcc_format(self) -> str:
        return "\n".join(f.to_gcc_format() for f in self.findings)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"Analysis complete: {self.total_count} findings "
            f"({self.error_count} errors, {self.warning_count} warnings) "
            f"in {len(self.function_names)} functions",
        ]
        for tag, count in self.category_counts().items():
            if count:
                lines.append(f"  {tag}: {count}")
        return "\n".join(lines)


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — RUNNER
# ═════════════════════════════════════════════════════════════════════════

class AnalysisRunner:
    """
    Runs the scanner over every defined function of a module.

    Parameters for constructor
    ─────────────────────────
    config : AnalysisConfig — opt-in warning categories
    jobs   : int — worker threads (1 = scan sequentially)
    sink   : FindingSink — optional shared collector fed as functions finish
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        jobs: int = 1,
        sink: Optional[FindingSink] = None,
    ) -> None:
        if jobs < 1:
            raise ValueError(f"jobs must be at least 1, got {jobs}")
        self.config = config or AnalysisConfig()
        self.jobs = jobs
        self.sink = sink

    def _select(self, module: Module, functions: Optional[Sequence[str]]) -> List[Function]:
        defined = module.defined_functions
        if functions is None:
            return defined
        wanted = set(functions)
        missing = wanted - {fn.name for fn in defined}
        for name in sorted(missing):
            _log.warning("%s: no defined function named %r", module.name, name)
        return [fn for fn in defined if fn.name in wanted]

    def _scan_one(self, function: Function, layout: DataLayout) -> Tuple[List[Finding], float]:
        t0 = time.monotonic()
        findings = scan_function(function, layout, self.config)
        elapsed_ms = (time.monotonic() - t0) * 1000.0
        if self.sink is not None:
            self.sink.extend(findings)
        return findings, elapsed_ms

    def run(
        self,
        module: Module,
        layout: Optional[DataLayout] = None,
        functions: Optional[Sequence[str]] = None,
    ) -> RunResults:
        """
        Analyse ``module``.

        Parameters
        ----------
        module    : the IR module
        layout    : layout oracle (default: the module's declared layout)
        functions : restrict the run to these function names (None = all)
        """
        layout = layout or DataLayout.for_module(module)
        selected = self._select(module, functions)
        slots: List[Optional[Tuple[List[Finding], float]]] = [None] * len(selected)

        t0 = time.monotonic()
        if self.jobs == 1 or len(selected) < 2:
            for idx, fn in enumerate(selected):
                slots[idx] = self._scan_one(fn, layout)
        else:
            with ThreadPoolExecutor(max_workers=self.jobs) as executor:
                futures = {
                    executor.submit(self._scan_one, fn, layout): idx
                    for idx, fn in enumerate(selected)
                }
                for future in as_completed(futures):
                    slots[futures[future]] = future.result()

        results = RunResults()
        for fn, slot in zip(selected, slots):
            findings, elapsed_ms = cast(Tuple[List[Finding], float], slot)
            results.function_names.append(fn.name)
            results.findings.extend(findings)
            results.findings_by_function[fn.name].extend(findings)
            results.stats[f"{fn.name}_elapsed_ms"] = elapsed_ms
        results.stats["total_elapsed_ms"] = (time.monotonic() - t0) * 1000.0
        results.stats["functions"] = len(selected)

        _log.info("%s: %d function(s) analysed, %d finding(s)",
                  module.name, len(selected), results.total_count)
        return results


def analyze_module(
    module: Module,
    config: Optional[AnalysisConfig] = None,
    layout: Optional[DataLayout] = None,
    jobs: int = 1,
) -> RunResults:
    """Convenience wrapper: ``AnalysisRunner(config, jobs).run(module, layout)``."""
    return AnalysisRunner(config, jobs).run(module, layout)


__all__ = [
    "FindingSink",
    "RunResults",
    "AnalysisRunner",
    "analyze_module",
]
