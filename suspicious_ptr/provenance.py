"""
suspicious_ptr/provenance.py
════════════════════════════

Cast-Chain Tracer and Round-Trip Classifier.

A dereferenced pointer whose cast-stripped root is an ``inttoptr`` was
fabricated from an integer.  The tracer walks that integer backward:

    CAST        trunc / zext / sext / integer bitcast   → follow the operand
    BINARY      add / sub with one constant side        → follow the other side
    CONVERSION  ptrtoint                                → origin found
    CONSTANT    constant integer                        → constant address
    OTHER       anything else                           → computed address

The walk is bounded to ``MAX_TRACE_DEPTH`` hops; the value graph is
acyclic, so the bound only caps cost.  Hitting it counts as "computed".

Classification of the trace outcome:

    ptrtoint narrower than the pointer width  → DEF-TRUNC-ROUNDTRIP (always)
    ptrtoint at least as wide                 → ROUNDTRIP (opt-in)
    constant integer                          → CONST-INTTOPTR (opt-in, non-volatile)
    anything else                             → COMPUTED-INTTOPTR (opt-in, non-volatile)
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .access import MemoryAccess, fold_constant
from .config import AnalysisConfig
from .findings import (
    ComputedIntToPtr,
    ConstantIntToPtr,
    Finding,
    RoundTrip,
    TruncatingRoundTrip,
)
from .ir import (
    BinaryOp,
    BinaryOpcode,
    Cast,
    CastOp,
    ConstantInt,
    Function,
    IntegerType,
    PointerType,
    Value,
    strip_pointer_casts,
    value_type,
)
from .layout import DataLayout

_log = logging.getLogger(__name__)

MAX_TRACE_DEPTH = 8


class NodeKind(enum.Enum):
    CONSTANT = enum.auto()
    CAST = enum.auto()
    BINARY = enum.auto()
    CONVERSION = enum.auto()
    OTHER = enum.auto()


def node_kind(value: Value) -> NodeKind:
    """Tag ``value`` for the backward walk."""
    if isinstance(value, ConstantInt):
        return NodeKind.CONSTANT
    if isinstance(value, Cast):
        if value.op.is_integer_resize:
            return NodeKind.CAST
        if value.op is CastOp.BITCAST and isinstance(value.type, IntegerType) \
                and isinstance(value_type(value.operand), IntegerType):
            return NodeKind.CAST
        if value.op in (CastOp.PTRTOINT, CastOp.INTTOPTR):
            return NodeKind.CONVERSION
        return NodeKind.OTHER
    if isinstance(value, BinaryOp):
        return NodeKind.BINARY
    return NodeKind.OTHER


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — TRACER
# ═════════════════════════════════════════════════════════════════════════

class Origin(enum.Enum):
    POINTER_TO_INT = "ptrtoint"
    CONSTANT = "constant"
    COMPUTED = "computed"


@dataclass(frozen=True)
class TraceResult:
    """Where the backward walk stopped and why."""
    origin: Origin
    value: Value
    hops: int

    @property
    def pointer_to_int(self) -> Optional[Cast]:
        if self.origin is Origin.POINTER_TO_INT:
            return self.value  # type: ignore[return-value]
        return None


def _constant_side(op: BinaryOp) -> Optional[Value]:
    """The non-constant operand of ``add``/``sub`` with one constant side."""
    if op.op not in (BinaryOpcode.ADD, BinaryOpcode.SUB):
        return None
    if isinstance(op.lhs, ConstantInt):
        return op.rhs
    if isinstance(op.rhs, ConstantInt):
        return op.lhs
    return None


def trace_integer_origin(value: Value, max_depth: int = MAX_TRACE_DEPTH) -> TraceResult:
    """Follow ``value`` backward through casts and constant offsets."""
    for hops in range(max_depth + 1):
        kind = node_kind(value)
        if kind is NodeKind.CONSTANT:
            return TraceResult(Origin.CONSTANT, value, hops)
        if kind is NodeKind.CONVERSION and value.op is CastOp.PTRTOINT:  # type: ignore[attr-defined]
            return TraceResult(Origin.POINTER_TO_INT, value, hops)
        if kind is NodeKind.CAST:
            value = value.operand  # type: ignore[attr-defined]
            continue
        if kind is NodeKind.BINARY:
            nxt = _constant_side(value)  # type: ignore[arg-type]
            if nxt is not None:
                value = nxt
                continue
        return TraceResult(Origin.COMPUTED, value, hops)
    _log.debug("integer trace gave up after %d hops", max_depth)
    return TraceResult(Origin.COMPUTED, value, max_depth + 1)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — CLASSIFIER
# ═════════════════════════════════════════════════════════════════════════

def int_to_ptr_root(pointer: Value) -> Optional[Cast]:
    """The ``inttoptr`` (instruction or constant expression) behind ``pointer``."""
    root = strip_pointer_casts(pointer)
    if isinstance(root, Cast) and root.op is CastOp.INTTOPTR:
        return root
    return None


def classify_round_trip(
    access: MemoryAccess,
    function: Function,
    layout: DataLayout,
    config: AnalysisConfig,
) -> Optional[Finding]:
    """Severity-tier the ``inttoptr`` behind ``access.pointer``, if any."""
    root = int_to_ptr_root(access.pointer)
    if root is None:
        return None

    trace = trace_integer_origin(root.operand)
    common = dict(function=function.name, instruction=access.instruction,
                  root=root, origin=trace.value)

    pti = trace.pointer_to_int
    if pti is not None:
        int_type = pti.type
        source_type = value_type(pti.operand)
        space = source_type.address_space if isinstance(source_type, PointerType) else 0
        pointer_bits = layout.pointer_size_in_bits(space)
        int_bits = int_type.bits if isinstance(int_type, IntegerType) else pointer_bits
        if int_bits < pointer_bits:
            return TruncatingRoundTrip(integer_bits=int_bits, pointer_bits=pointer_bits,
                                       **common)
        if config.warn_roundtrip:
            return RoundTrip(integer_bits=int_bits, pointer_bits=pointer_bits, **common)
        return None

    if access.volatile:
        return None

    if trace.origin is Origin.CONSTANT:
        if config.warn_const_inttoptr:
            address = fold_constant(root.operand)
            if address is None:
                address = trace.value.zext_value  # type: ignore[attr-defined]
            return ConstantIntToPtr(address=address, **common)
        return None

    if config.warn_computed_inttoptr:
        return ComputedIntToPtr(**common)
    return None


__all__ = [
    "MAX_TRACE_DEPTH",
    "NodeKind",
    "node_kind",
    "Origin",
    "TraceResult",
    "trace_integer_origin",
    "int_to_ptr_root",
    "classify_round_trip",
]
