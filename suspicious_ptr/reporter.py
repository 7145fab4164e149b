"""
suspicious_ptr/reporter.py
══════════════════════════

Rendering of findings.

Output formats
──────────────
  • text    : colourful Rust-style rendering (termcolor)
  • plain   : the classic ``[SuspiciousPtr][CATEGORY] fn loc: message`` block
  • json    : one JSON object per line
  • gcc     : ``file:line:col: severity: message [CATEGORY]`` one-liners
  • sarif   : a SARIF 2.1.0 document, written when the reporter finishes
  • summary : only the per-category counts

Usage
─────
    with Reporter(sys.stdout, fmt="text") as rep:
        rep.report_all(results.findings)
    # finish() writes the trailer (summary line / SARIF document)
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, TextIO

from termcolor import colored

from . import __version__
from .findings import Category, Finding

FORMATS = ("text", "plain", "json", "gcc", "sarif", "summary")
TOOL_NAME = "suspicious-ptr"


# ═════════════════════════════════════════════════════════════════════════
#  STATISTICS
# ═════════════════════════════════════════════════════════════════════════

@dataclass
class ReporterStats:
    """Counts per severity and per category."""
    error: int = 0
    warning: int = 0
    by_category: Dict[str, int] = field(default_factory=dict)

    def record(self, finding: Finding) -> None:
        attr = finding.severity.label
        setattr(self, attr, getattr(self, attr) + 1)
        tag = finding.category.tag
        self.by_category[tag] = self.by_category.get(tag, 0) + 1

    @property
    def total(self) -> int:
        return self.error + self.warning

    def summary_line(self) -> str:
        parts: List[str] = []
        if self.error:
            parts.append(f"{self.error} error{'s' if self.error != 1 else ''}")
        if self.warning:
            parts.append(f"{self.warning} warning{'s' if self.warning != 1 else ''}")
        if not parts:
            return "no findings"
        return "; ".join(parts) + f" ({self.total} total)"


# ═════════════════════════════════════════════════════════════════════════
#  RENDERERS
# ═════════════════════════════════════════════════════════════════════════

class _TerminalRenderer:
    """Rust-style rendering; colours only when ``colour`` is set."""

    def __init__(self, stream: TextIO, colour: bool) -> None:
        self._stream = stream
        self._colour = colour

    def _paint(self, text: str, color: Optional[str] = None,
               attrs: Optional[List[str]] = None) -> str:
        if not self._colour:
            return text
        return colored(text, color, attrs=attrs, force_color=True)

    def render(self, finding: Finding) -> None:
        sev = finding.severity
        lines: List[str] = []

        # ── header: severity[CATEGORY]: message ───────────────────────
        head = self._paint(f"{sev.label}[{finding.category.tag}]", sev.color, ["bold"])
        lines.append(f"{head}: {self._paint(finding.message, attrs=['bold'])}")

        arrow = self._paint("-->", "blue", ["bold"])
        lines.append(f"  {arrow} {finding.location_str}")

        note = self._paint("note", "cyan", ["bold"])
        lines.append(f"  = {note}: in function '{finding.function}'")
        for label, text in finding.evidence():
            lines.append(f"  = {note}: {label}: {text}")

        cwe = finding.category.cwe
        cwe_str = self._paint(f"CWE-{cwe}", "blue", ["underline"])
        lines.append(f"  = {cwe_str}: https://cwe.mitre.org/data/definitions/{cwe}.html")

        lines.append("")
        self._stream.write("\n".join(lines) + "\n")

    def finish(self, stats: ReporterStats) -> None:
        summary = f"  ╰─ {stats.summary_line()}"
        if stats.error:
            summary = self._paint(summary, "red", ["bold"])
        elif stats.total:
            summary = self._paint(summary, "yellow", ["bold"])
        else:
            summary = self._paint(summary, "green", ["bold"])
        self._stream.write(summary + "\n")


class _PlainRenderer:
    """Uncoloured, one block per finding."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def render(self, finding: Finding) -> None:
        self._stream.write(finding.to_text() + "\n")

    def finish(self, stats: ReporterStats) -> None:
        self._stream.write(f"  {stats.summary_line()}\n")


class _LineRenderer:
    """One machine-readable line per finding, no trailer."""

    def __init__(self, stream: TextIO, fmt: str) -> None:
        self._stream = stream
        self._fmt = fmt

    def render(self, finding: Finding) -> None:
        if self._fmt == "json":
            self._stream.write(finding.to_json_str() + "\n")
        else:
            self._stream.write(finding.to_gcc_format() + "\n")

    def finish(self, stats: ReporterStats) -> None:
        pass


class _SummaryRenderer:
    """Per-category counts only."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def render(self, finding: Finding) -> None:
        pass

    def finish(self, stats: ReporterStats) -> None:
        lines = [f"{TOOL_NAME}: {stats.summary_line()}"]
        for category in Category:
            count = stats.by_category.get(category.tag, 0)
            lines.append(f"  {category.tag:<20} {count}")
        self._stream.write("\n".join(lines) + "\n")


# ═════════════════════════════════════════════════════════════════════════
#  SARIF 2.1.0 BUILDER
# ═════════════════════════════════════════════════════════════════════════

class _SarifBuilder:
    """Accumulates findings and renders a SARIF 2.1.0 document."""

    SARIF_VERSION = "2.1.0"
    SARIF_SCHEMA = (
        "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/"
        "Schemata/sarif-schema-2.1.0.json"
    )

    def __init__(self) -> None:
        self._results: List[Dict[str, Any]] = []
        self._rules: Dict[str, Dict[str, Any]] = {}

    def add(self, finding: Finding) -> None:
        category = finding.category
        if category.tag not in self._rules:
            self._rules[category.tag] = {
                "id": category.tag,
                "shortDescription": {"text": category.description},
                "defaultConfiguration": {"level": category.severity.sarif_level},
                "relationships": [
                    {
                        "target": {
                            "id": str(category.cwe),
                            "toolComponent": {"name": "CWE"},
                        },
                        "kinds": ["superset"],
                    }
                ],
            }

        result: Dict[str, Any] = {
            "ruleId": category.tag,
            "level": category.severity.sarif_level,
            "message": {"text": finding.message},
            "locations": [
                {"logicalLocations": [{"name": finding.function, "kind": "function"}]}
            ],
            "properties": {
                "cwe": category.cwe,
                "evidence": {label: text for label, text in finding.evidence()},
            },
        }
        loc = finding.location
        if loc is not None:
            region: Dict[str, Any] = {"startLine": loc.line}
            if loc.column:
                region["startColumn"] = loc.column
            result["locations"][0]["physicalLocation"] = {
                "artifactLocation": {"uri": loc.file},
                "region": region,
            }
        self._results.append(result)

    def to_dict(self, tool_name: str, version: str) -> Dict[str, Any]:
        return {
            "$schema": self.SARIF_SCHEMA,
            "version": self.SARIF_VERSION,
            "runs": [
                {
                    "tool": {
                        "driver": {
                            "name": tool_name,
                            "version": version,
                            "rules": list(self._rules.values()),
                        }
                    },
                    "results": self._results,
                }
            ],
        }

    def to_json(self, tool_name: str, version: str) -> str:
        return json.dumps(self.to_dict(tool_name, version), indent=2)


# ═════════════════════════════════════════════════════════════════════════
#  REPORTER
# ═════════════════════════════════════════════════════════════════════════

class Reporter:
    """
    Central finding dispatcher.

    Use as a context manager::

        with Reporter(sys.stdout, fmt="gcc") as rep:
            rep.report_all(findings)
        # finish() is called automatically
    """

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        fmt: str = "text",
        colour: Optional[bool] = None,
        tool_name: str = TOOL_NAME,
        tool_version: str = __version__,
    ) -> None:
        if fmt not in FORMATS:
            raise ValueError(f"unknown output format {fmt!r}")
        if stream is None:
            stream = sys.stdout
        self.stream = stream
        self.fmt = fmt
        self.tool_name = tool_name
        self.tool_version = tool_version
        self.stats = ReporterStats()
        self._finished = False
        self._sarif: Optional[_SarifBuilder] = None

        if fmt == "text":
            use_colour = colour if colour is not None else (
                hasattr(stream, "isatty") and stream.isatty()
            )
            self._renderer: Any = _TerminalRenderer(stream, use_colour)
        elif fmt == "plain":
            self._renderer = _PlainRenderer(stream)
        elif fmt in ("json", "gcc"):
            self._renderer = _LineRenderer(stream, fmt)
        elif fmt == "summary":
            self._renderer = _SummaryRenderer(stream)
        else:
            self._renderer = None
            self._sarif = _SarifBuilder()

    def __enter__(self) -> "Reporter":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            self.finish()

    def report(self, finding: Finding) -> None:
        self.stats.record(finding)
        if self._renderer is not None:
            self._renderer.render(finding)
        if self._sarif is not None:
            self._sarif.add(finding)

    def report_all(self, findings: Iterable[Finding]) -> None:
        for finding in findings:
            self.report(finding)

    def finish(self) -> ReporterStats:
        """Write the trailer (summary line or SARIF document) once."""
        if self._finished:
            return self.stats
        self._finished = True
        if self._sarif is not None:
            self.stream.write(self._sarif.to_json(self.tool_name, self.tool_version) + "\n")
        else:
            self._renderer.finish(self.stats)
        self.stream.flush()
        return self.stats


__all__ = [
    "FORMATS",
    "TOOL_NAME",
    "ReporterStats",
    "Reporter",
]
