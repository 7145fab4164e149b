"""
suspicious_ptr/access.py
════════════════════════

Access Extractor and constant resolution.

``memory_accesses`` answers, for one instruction, *where* it touches memory
and *how many bytes*:

    load        → (pointer, store size of the loaded type)
    store       → (pointer, store size of the stored value's type)
    atomicrmw   → (pointer, store size of the operand type)
    cmpxchg     → (pointer, store size of the comparison operand type)
    memset      → (dest, constant length)
    memcpy/move → (dest, constant length), (source, constant length)

Anything else, unsized access types and non-constant bulk lengths yield no
access at all.

Constant resolution
───────────────────
Bulk lengths and allocation sizes are resolved by folding integer casts
and ``add``/``sub``/``mul`` over constants, plus one level of
*single-write recovery*: a ``load`` from a stack slot that is written by
exactly one ``store`` stands for the stored value.  ``single_write`` is the
whole heuristic, a pure function of (slot, write set); there is no
reaching-definitions analysis behind it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .ir import (
    Alloca,
    AtomicCmpXchg,
    AtomicRMW,
    BinaryOp,
    BinaryOpcode,
    Cast,
    CastOp,
    ConstantInt,
    Function,
    Instruction,
    IntegerType,
    Load,
    MemCopy,
    MemSet,
    Store,
    Value,
    value_type,
)
from .layout import DataLayout

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class MemoryAccess:
    """One pointer dereference performed by ``instruction``."""
    instruction: Instruction
    pointer: Value
    size: int
    volatile: bool = False
    role: str = "pointer"   # "pointer" | "dest" | "source"


def is_volatile(inst: Instruction) -> bool:
    return bool(getattr(inst, "volatile", False))


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — SINGLE-WRITE RECOVERY
# ═════════════════════════════════════════════════════════════════════════

def slot_writes(slot: Alloca, function: Function) -> Tuple[Store, ...]:
    """Every ``store`` of ``function`` whose destination is exactly ``slot``."""
    return tuple(
        user for user in function.users(slot)
        if isinstance(user, Store) and user.pointer is slot
    )


def single_write(slot: Alloca, writes: Sequence[Store]) -> Optional[Value]:
    """
    The value written to ``slot`` if it has exactly one writer.

    Zero writes and several writes both mean "unknown".
    """
    matching = [w for w in writes if w.pointer is slot]
    if len(matching) != 1:
        return None
    return matching[0].value


def recover_stored_value(value: Value, function: Optional[Function]) -> Optional[Value]:
    """For ``load slot`` with a single writer, return the written value."""
    if function is None or not isinstance(value, Load):
        return None
    slot = value.pointer
    if not isinstance(slot, Alloca):
        return None
    stored = single_write(slot, slot_writes(slot, function))
    if stored is None:
        _log.debug("%s: slot %%%s has no unique writer", function.name, slot.name)
    return stored


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — CONSTANT FOLDING
# ═════════════════════════════════════════════════════════════════════════

def _mask(bits: int) -> int:
    return (1 << bits) - 1


def _fold(value: Value) -> Optional[Tuple[int, int]]:
    """Fold ``value`` to (unsigned value, bit width), or None."""
    if isinstance(value, ConstantInt):
        return value.zext_value, value.type.bits

    if isinstance(value, Cast) and value.op.is_integer_resize:
        inner = _fold(value.operand)
        target = value.type
        if inner is None or not isinstance(target, IntegerType):
            return None
        raw, bits = inner
        if value.op is CastOp.SEXT and bits and raw >> (bits - 1):
            raw -= 1 << bits
        return raw & _mask(target.bits), target.bits

    if isinstance(value, BinaryOp) and value.op in (
        BinaryOpcode.ADD, BinaryOpcode.SUB, BinaryOpcode.MUL
    ):
        lhs, rhs = _fold(value.lhs), _fold(value.rhs)
        if lhs is None or rhs is None:
            return None
        bits = lhs[1]
        if value.op is BinaryOpcode.ADD:
            raw = lhs[0] + rhs[0]
        elif value.op is BinaryOpcode.SUB:
            raw = lhs[0] - rhs[0]
        else:
            raw = lhs[0] * rhs[0]
        return raw & _mask(bits), bits

    return None


def fold_constant(value: Value) -> Optional[int]:
    """Zero-extended value of a constant integer expression."""
    folded = _fold(value)
    return folded[0] if folded is not None else None


def resolve_constant_int(value: Value, function: Optional[Function] = None) -> Optional[int]:
    """
    Resolve ``value`` to a compile-time unsigned integer.

    Tries constant folding first, then one level of single-write recovery
    through a stack slot (the stored value must itself fold).
    """
    folded = fold_constant(value)
    if folded is not None:
        return folded
    stored = recover_stored_value(value, function)
    if stored is not None:
        return fold_constant(stored)
    return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — ACCESS EXTRACTION
# ═════════════════════════════════════════════════════════════════════════

def memory_accesses(
    inst: Instruction,
    layout: DataLayout,
    function: Optional[Function] = None,
) -> List[MemoryAccess]:
    """Pointer operand(s) and byte size(s) of the accesses ``inst`` performs."""
    volatile = is_volatile(inst)

    if isinstance(inst, (Load, Store, AtomicRMW, AtomicCmpXchg)):
        if isinstance(inst, Load):
            accessed = inst.type
        elif isinstance(inst, AtomicCmpXchg):
            accessed = value_type(inst.compare)
        else:
            accessed = value_type(inst.value)
        size = layout.store_size(accessed)
        if size is None:
            return []
        return [MemoryAccess(inst, inst.pointer, size, volatile)]

    if isinstance(inst, (MemSet, MemCopy)):
        length = resolve_constant_int(inst.length, function)
        if length is None:
            _log.debug("%s: non-constant length, skipped", inst.opcode)
            return []
        accesses = [MemoryAccess(inst, inst.dest, length, volatile, "dest")]
        if isinstance(inst, MemCopy):
            accesses.append(MemoryAccess(inst, inst.source, length, volatile, "source"))
        return accesses

    return []


__all__ = [
    "MemoryAccess",
    "is_volatile",
    "slot_writes",
    "single_write",
    "recover_stored_value",
    "fold_constant",
    "resolve_constant_int",
    "memory_accesses",
]
