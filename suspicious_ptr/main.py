"""suspicious_ptr/main.py — CLI entry-point.

Usage examples
--------------
    # Analyse one module with the default (always-on) categories
    suspicious-ptr module.sxir

    # Enable every opt-in category and emit GCC-style one-liners
    suspicious-ptr module.sxir --all-warnings --format gcc

    # Only the non-truncating round-trips on top, SARIF to a file
    suspicious-ptr a.sxir b.sxir --warn-roundtrip --format sarif -o report.sarif

    # Restrict the run to two functions, scan in four threads
    suspicious-ptr module.sxir --function main --function helper --jobs 4

Exit codes
----------
    0   No finding.
    1   At least one finding.
    2   Infrastructure failure (unreadable file, malformed IR or layout).

The module doubles as ``python -m suspicious_ptr`` via the companion
``suspicious_ptr/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, TextIO

from . import __version__
from .config import AnalysisConfig
from .errors import SuspiciousPtrError
from .ir_parser import parse_file
from .layout import DataLayout
from .reporter import FORMATS, TOOL_NAME, Reporter
from .runner import AnalysisRunner, RunResults

_log = logging.getLogger("suspicious_ptr")

EXIT_OK: int = 0
EXIT_FINDINGS: int = 1
EXIT_INFRA: int = 2

_HANDLER_NAME = "suspicious_ptr.cli"


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the package logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root = logging.getLogger("suspicious_ptr")
    for old in list(root.handlers):
        if old.get_name() == _HANDLER_NAME:
            root.removeHandler(old)
    root.setLevel(level)
    root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=TOOL_NAME,
        description="Flag definite out-of-bounds accesses and suspicious "
                    "integer-to-pointer dereferences in .sxir modules.",
    )
    parser.add_argument("files", nargs="+", metavar="FILE", help="IR module(s) to analyse")

    cats = parser.add_argument_group("opt-in categories")
    cats.add_argument("--warn-roundtrip", action="store_true",
                      help="report non-truncating ptr → int → ptr round-trips (ROUNDTRIP)")
    cats.add_argument("--warn-computed-inttoptr", action="store_true",
                      help="report non-volatile dereferences of computed addresses "
                           "(COMPUTED-INTTOPTR)")
    cats.add_argument("--warn-const-inttoptr", action="store_true",
                      help="report non-volatile dereferences of constant addresses "
                           "(CONST-INTTOPTR)")
    cats.add_argument("--all-warnings", action="store_true",
                      help="enable every opt-in category")

    parser.add_argument("--format", choices=FORMATS, default="text",
                        help="output format (default: text)")
    parser.add_argument("-o", "--output", default=None,
                        help="write the report to this file (default: stdout)")
    parser.add_argument("-j", "--jobs", type=int, default=1,
                        help="analyse functions in N threads (default: 1)")
    parser.add_argument("--function", action="append", dest="functions", default=None,
                        metavar="NAME", help="only analyse this function (repeatable)")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="increase log verbosity (-v info, -vv debug)")
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")
    return parser


def _config_from_args(args: argparse.Namespace) -> AnalysisConfig:
    if args.all_warnings:
        return AnalysisConfig.all_warnings()
    return AnalysisConfig(
        warn_roundtrip=args.warn_roundtrip,
        warn_computed_inttoptr=args.warn_computed_inttoptr,
        warn_const_inttoptr=args.warn_const_inttoptr,
    )


def _analyse(paths: Sequence[str], runner: AnalysisRunner,
             functions: Optional[List[str]]) -> RunResults:
    results = RunResults()
    for path in paths:
        module = parse_file(path)
        layout = DataLayout.for_module(module)
        _log.info("%s: layout %s", path, layout.spec)
        results.merge(runner.run(module, layout, functions))
    return results


# ===========================================================================
# Entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.jobs < 1:
        parser.error("--jobs must be at least 1")

    runner = AnalysisRunner(_config_from_args(args), jobs=args.jobs)
    try:
        results = _analyse(args.files, runner, args.functions)
    except SuspiciousPtrError as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    try:
        stream = _open_output(args.output)
    except OSError as exc:
        _log.error("cannot open output %s: %s", args.output, exc)
        return EXIT_INFRA
    try:
        with Reporter(stream, fmt=args.format) as reporter:
            reporter.report_all(results.findings)
    finally:
        if stream is not sys.stdout:
            stream.close()

    return EXIT_FINDINGS if results.total_count else EXIT_OK


__all__ = [
    "EXIT_OK",
    "EXIT_FINDINGS",
    "EXIT_INFRA",
    "build_parser",
    "main",
]
