"""
suspicious_ptr — Pointer-safety checks over a compiled IR
=========================================================

Flags, without executing the program:

* memory accesses whose constant address is provably outside the object
  they target (``DEF-OOB``);
* dereferences of pointers fabricated from integers, most importantly
  pointers that were squeezed through a narrower integer and back
  (``DEF-TRUNC-ROUNDTRIP``), plus the opt-in ``ROUNDTRIP``,
  ``CONST-INTTOPTR`` and ``COMPUTED-INTTOPTR`` categories.

The analysis is read-only and abstains whenever it cannot prove a claim.

Quick start
-----------
>>> from suspicious_ptr import parse_file, analyze_module
>>> results = analyze_module(parse_file("module.sxir"))
>>> for finding in results.findings:
...     print(finding.to_text())

Package layout
--------------
::

    suspicious_ptr/
    ├── __init__.py       ← this file
    ├── errors.py         exception hierarchy
    ├── ir.py             IR model (types, values, instructions, modules)
    ├── ir_parser.py      .sxir reader (parsimonious grammar)
    ├── layout.py         data layout: sizes, alignments, offsets
    ├── access.py         access extraction, constant resolution
    ├── bounds.py         subobject bounds, object sizes, bounds rule
    ├── provenance.py     integer cast-chain tracer, round-trip tiers
    ├── findings.py       finding types and categories
    ├── config.py         analysis configuration
    ├── scanner.py        per-function orchestration
    ├── runner.py         module driver, thread pool, results
    ├── reporter.py       text / json / gcc / sarif rendering
    └── main.py           command-line interface
"""

from __future__ import annotations

import logging

__version__ = "0.1.0"
__license__ = "MIT"

_log = logging.getLogger(__name__)

from .errors import IRParseError, LayoutError, SuspiciousPtrError  # noqa: E402
from .config import AnalysisConfig  # noqa: E402
from .layout import DataLayout  # noqa: E402
from .ir_parser import parse_file, parse_module  # noqa: E402
from .findings import (  # noqa: E402
    Category,
    ComputedIntToPtr,
    ConstantIntToPtr,
    Finding,
    OutOfBoundsAccess,
    RoundTrip,
    Severity,
    TruncatingRoundTrip,
)
from .scanner import scan_function  # noqa: E402
from .runner import AnalysisRunner, FindingSink, RunResults, analyze_module  # noqa: E402
from .reporter import Reporter  # noqa: E402

__all__ = [
    "__version__",
    # errors
    "SuspiciousPtrError",
    "IRParseError",
    "LayoutError",
    # inputs
    "AnalysisConfig",
    "DataLayout",
    "parse_file",
    "parse_module",
    # findings
    "Category",
    "Severity",
    "Finding",
    "OutOfBoundsAccess",
    "TruncatingRoundTrip",
    "RoundTrip",
    "ConstantIntToPtr",
    "ComputedIntToPtr",
    # analysis
    "scan_function",
    "AnalysisRunner",
    "FindingSink",
    "RunResults",
    "analyze_module",
    "Reporter",
]
