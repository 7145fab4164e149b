"""
suspicious_ptr/bounds.py
════════════════════════

Definite out-of-bounds detection.

Three cooperating pieces:

* **Subobject bounds** – a constant-indexed ``gep`` path is walked type by
  type; an index outside its struct / array extent is a definite bug no
  matter what object the base pointer addresses.

* **Object size** – the allocation size of a base object: a stack slot, a
  global, a recognised heap allocation call with constant size
  arguments, or a stack temporary that is written exactly once with one
  of those.

* **Bounds rule** – the pointer is decomposed into (base, constant byte
  offset) and the access ``[offset, offset + access)`` is checked against
  ``[0, size)`` without ever forming ``offset + access``.

Every step abstains (returns ``None``) when it cannot prove its answer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .access import MemoryAccess, fold_constant, recover_stored_value, resolve_constant_int
from .ir import (
    Alloca,
    ArrayType,
    Call,
    ConstantInt,
    Function,
    GetElementPtr,
    GlobalVariable,
    IRType,
    PointerType,
    StructType,
    Value,
    VectorType,
    strip_pointer_casts,
    value_type,
)
from .layout import DataLayout

_log = logging.getLogger(__name__)

_U64_MAX = (1 << 64) - 1


def wrap_signed(value: int, bits: int = 64) -> int:
    """Two's-complement wrap of ``value`` into a signed ``bits``-wide integer."""
    value &= (1 << bits) - 1
    if value >> (bits - 1):
        value -= 1 << bits
    return value


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — SUBOBJECT BOUNDS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SubobjectViolation:
    """
    An out-of-extent index in a constant ``gep`` path.

    ``offset`` is the byte displacement of the bad selection from the
    start of the addressed object; ``subobject_size`` is the byte size of
    the array whose extent was exceeded (``None`` for a struct step).
    """
    gep: GetElementPtr
    offset: int
    subobject_size: Optional[int]


def _index_out_of_extent(index: int, extent: int) -> bool:
    # index 0 and zero-extent aggregates are never flagged (flexible members)
    return index < 0 or (index >= extent and index != 0 and extent > 0)


def check_subobject_bounds(gep: GetElementPtr, layout: DataLayout) -> Optional[SubobjectViolation]:
    """Validate every index after the first against the active aggregate."""
    ty: IRType = gep.source_type
    offset = 0
    for idx in gep.indices[1:]:
        if not isinstance(idx, ConstantInt):
            return None
        index = idx.sext_value

        if isinstance(ty, StructType):
            fields = ty.num_elements
            if _index_out_of_extent(index, fields):
                return SubobjectViolation(gep, wrap_signed(offset), None)
            struct_layout = layout.struct_layout(ty)
            if struct_layout is None or index >= fields:
                return None
            offset += struct_layout.element_offset(index)
            ty = ty.elements[index]  # type: ignore[index]

        elif isinstance(ty, ArrayType):
            elem_size = layout.alloc_size(ty.element)
            if elem_size is None:
                return None
            if _index_out_of_extent(index, ty.count):
                return SubobjectViolation(
                    gep,
                    wrap_signed(offset + index * elem_size),
                    ty.count * elem_size,
                )
            offset += index * elem_size
            ty = ty.element

        else:
            return None
    return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — BASE + CONSTANT OFFSET
# ═════════════════════════════════════════════════════════════════════════

def gep_constant_offset(gep: GetElementPtr, layout: DataLayout) -> Optional[int]:
    """Byte offset of an all-constant ``gep`` from its base, or None."""
    if not gep.indices:
        return 0
    if not gep.has_all_constant_indices:
        return None
    first = gep.indices[0]
    stride = layout.alloc_size(gep.source_type)
    if stride is None:
        return None
    offset = first.sext_value * stride  # type: ignore[union-attr]

    ty: IRType = gep.source_type
    for idx in gep.indices[1:]:
        index = idx.sext_value  # type: ignore[union-attr]
        if isinstance(ty, StructType):
            struct_layout = layout.struct_layout(ty)
            if struct_layout is None or not 0 <= index < ty.num_elements:
                return None
            offset += struct_layout.element_offset(index)
            ty = ty.elements[index]  # type: ignore[index]
        elif isinstance(ty, (ArrayType, VectorType)):
            elem_size = layout.alloc_size(ty.element)
            if elem_size is None:
                return None
            offset += index * elem_size
            ty = ty.element
        else:
            return None
    return offset


def _index_bits(value: Value, layout: DataLayout) -> int:
    ty = value_type(value)
    space = ty.address_space if isinstance(ty, PointerType) else 0
    return layout.index_size_in_bits(space)


def pointer_base_with_constant_offset(pointer: Value, layout: DataLayout) -> Tuple[Value, int]:
    """
    Peel pointer casts and all-constant ``gep``s off ``pointer``.

    Returns the first value that is neither, together with the accumulated
    byte offset wrapped to the pointer's index width.
    """
    bits = _index_bits(pointer, layout)
    offset = 0
    while True:
        pointer = strip_pointer_casts(pointer)
        if not isinstance(pointer, GetElementPtr):
            break
        step = gep_constant_offset(pointer, layout)
        if step is None:
            break
        offset = wrap_signed(offset + step, bits)
        pointer = pointer.base
    return pointer, wrap_signed(offset, bits)


def underlying_object(value: Value) -> Value:
    """Object identity of an already offset-stripped base."""
    return strip_pointer_casts(value)


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — OBJECT SIZE
# ═════════════════════════════════════════════════════════════════════════

#: Recognised allocation functions → indices of the size-determining
#: arguments whose product is the allocation size.
ALLOCATION_FUNCTIONS: Dict[str, Tuple[int, ...]] = {
    "malloc": (0,),
    "_Znwm": (0,),
    "_Znam": (0,),
    "calloc": (0, 1),
}


def allocation_call_size(call: Call, function: Optional[Function] = None) -> Optional[int]:
    """Byte size requested by a recognised allocation call, or None."""
    size_args = ALLOCATION_FUNCTIONS.get(call.callee_name or "")
    if size_args is None:
        return None
    if max(size_args) >= len(call.arguments):
        return None
    size = 1
    for position in size_args:
        factor = resolve_constant_int(call.arguments[position], function)
        if factor is None:
            return None
        size *= factor
        if size > _U64_MAX:
            _log.debug("%s: allocation size overflows 64 bits", call.callee_name)
            return None
    return size


def _direct_object_size(
    obj: Value, layout: DataLayout, function: Optional[Function]
) -> Optional[int]:
    if isinstance(obj, Alloca):
        elem = layout.alloc_size(obj.allocated_type)
        if elem is None:
            return None
        if obj.count is None:
            return elem
        count = fold_constant(obj.count)
        return None if count is None else elem * count
    if isinstance(obj, GlobalVariable):
        return layout.alloc_size(obj.value_type)
    if isinstance(obj, Call):
        return allocation_call_size(obj, function)
    return None


def object_size(
    obj: Value, layout: DataLayout, function: Optional[Function] = None
) -> Optional[int]:
    """
    Allocation size of the object ``obj`` identifies.

    A load from a singly-written stack slot is resolved through the written
    value, one level deep.
    """
    obj = strip_pointer_casts(obj)
    size = _direct_object_size(obj, layout, function)
    if size is not None:
        return size
    stored = recover_stored_value(obj, function)
    if stored is not None:
        return _direct_object_size(strip_pointer_casts(stored), layout, function)
    return None


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — BOUNDS RULE
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class BoundsViolation:
    """A proven out-of-bounds access."""
    access: MemoryAccess
    base: Value
    offset: int
    object_size: Optional[int]
    resolved_base: Optional[Value] = None

    @property
    def access_size(self) -> int:
        return self.access.size


def exceeds_bounds(offset: int, access_size: int, size: int) -> bool:
    """True iff ``[offset, offset + access_size)`` is not inside ``[0, size)``."""
    if offset < 0 or access_size > size:
        return True
    return offset > size or size - offset < access_size


def check_access_bounds(
    access: MemoryAccess,
    layout: DataLayout,
    function: Optional[Function] = None,
) -> Optional[BoundsViolation]:
    pointer = access.pointer

    if isinstance(pointer, GetElementPtr):
        sub = check_subobject_bounds(pointer, layout)
        if sub is not None:
            return BoundsViolation(access, pointer, sub.offset, sub.subobject_size)

    base, offset = pointer_base_with_constant_offset(pointer, layout)
    obj = underlying_object(base)
    size = object_size(obj, layout, function)
    if not size:
        return None

    if exceeds_bounds(offset, access.size, size):
        resolved = recover_stored_value(obj, function)
        return BoundsViolation(access, obj, offset, size,
                               strip_pointer_casts(resolved) if resolved is not None else None)
    return None


__all__ = [
    "wrap_signed",
    "SubobjectViolation",
    "check_subobject_bounds",
    "gep_constant_offset",
    "pointer_base_with_constant_offset",
    "underlying_object",
    "ALLOCATION_FUNCTIONS",
    "allocation_call_size",
    "object_size",
    "BoundsViolation",
    "exceeds_bounds",
    "check_access_bounds",
]
