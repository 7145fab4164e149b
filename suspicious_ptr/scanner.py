"""
suspicious_ptr/scanner.py
═════════════════════════

Per-function orchestration.

Every instruction is visited once, in block order.  For each memory
access it performs, the bounds check runs first; the round-trip
classification follows for every access whose pointer is integer-derived.
For bulk copies that means: bounds(dest), bounds(source), round-trip(dest),
round-trip(source).

The scan is a pure function of (function, layout, config).
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .access import memory_accesses
from .bounds import check_access_bounds
from .config import AnalysisConfig
from .findings import Finding, OutOfBoundsAccess
from .ir import Function, Instruction
from .layout import DataLayout
from .provenance import classify_round_trip

_log = logging.getLogger(__name__)


def scan_instruction(
    inst: Instruction,
    function: Function,
    layout: DataLayout,
    config: AnalysisConfig,
) -> List[Finding]:
    """Findings for a single instruction, in emission order."""
    accesses = memory_accesses(inst, layout, function)
    if not accesses:
        return []

    findings: List[Finding] = []
    for access in accesses:
        violation = check_access_bounds(access, layout, function)
        if violation is not None:
            findings.append(OutOfBoundsAccess(
                function=function.name,
                instruction=inst,
                base=violation.base,
                offset=violation.offset,
                access_size=violation.access_size,
                object_size=violation.object_size,
                allocation=violation.resolved_base,
            ))
    for access in accesses:
        finding = classify_round_trip(access, function, layout, config)
        if finding is not None:
            findings.append(finding)
    return findings


def scan_function(
    function: Function,
    layout: DataLayout,
    config: Optional[AnalysisConfig] = None,
) -> List[Finding]:
    """All findings of ``function`` in program order."""
    config = config or AnalysisConfig()
    findings: List[Finding] = []
    for inst in function.instructions():
        findings.extend(scan_instruction(inst, function, layout, config))
    _log.debug("%s: %d instruction(s), %d finding(s)",
               function.name, len(function), len(findings))
    return findings


__all__ = [
    "scan_instruction",
    "scan_function",
]
