"""
suspicious_ptr/layout.py
════════════════════════

The Layout Oracle: sizes, alignments and field offsets of IR types.

A ``DataLayout`` is built from an LLVM-style data layout string, e.g.::

    e-m:e-p270:32:32-p271:32:32-p272:64:64-i64:64-i128:128-f80:128-n8:16:32:64-S128

Recognised components (all sizes and alignments are given in bits):

    e | E                         little / big endian
    p[AS]:size:abi[:pref[:idx]]   pointer width of an address space
    i<N>:abi[:pref]               integer alignment
    f<N>:abi[:pref]               floating point alignment
    v<N>:abi[:pref]               vector alignment
    a:abi[:pref]                  aggregate (struct) alignment

Everything else (mangling, native widths, stack alignment, …) does not
influence sizes and is ignored.  Unspecified entries fall back to the
usual LLVM defaults.

Sizes
─────
  type size   : bit width (integers, floats, pointers, fixed vectors), or
                the laid-out size (arrays, structs)
  store size  : ceil(type size / 8) bytes
  alloc size  : store size rounded up to the ABI alignment

Scalable vectors, opaque structs and ``void`` have no size: every query
returns ``None`` for them (and for any aggregate containing them).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import LayoutError
from .ir import (
    ArrayType,
    FloatType,
    IntegerType,
    IRType,
    Module,
    PointerType,
    StructType,
    VectorType,
    VoidType,
)

#: Layout of a typical x86-64 Linux target.
DEFAULT_DATA_LAYOUT = (
    "e-m:e-p270:32:32-p271:32:32-p272:64:64-i64:64-i128:128-f80:128-n8:16:32:64-S128"
)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — LAYOUT RECORDS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PointerSpec:
    """Pointer parameters of one address space (bit quantities)."""
    size_bits: int
    abi_align_bits: int
    pref_align_bits: int
    index_bits: int


@dataclass(frozen=True)
class StructLayout:
    """Byte size, byte alignment and per-field byte offsets of a struct."""
    size: int
    alignment: int
    offsets: Tuple[int, ...]

    def element_offset(self, index: int) -> int:
        return self.offsets[index]


def _align_to(value: int, align: int) -> int:
    if align <= 1:
        return value
    return (value + align - 1) // align * align


def _power_of_2_ceil(value: int) -> int:
    if value <= 1:
        return 1
    return 1 << (value - 1).bit_length()


_DEFAULT_INT_ALIGN: Dict[int, int] = {1: 8, 8: 8, 16: 16, 32: 32, 64: 32}
_DEFAULT_FLOAT_ALIGN: Dict[int, int] = {16: 16, 32: 32, 64: 64, 128: 128}
_DEFAULT_VECTOR_ALIGN: Dict[int, int] = {64: 64, 128: 128}
_DEFAULT_POINTER = PointerSpec(64, 64, 64, 64)

_SIZED_SPEC = re.compile(r"^([ifv])(\d+)$")
_POINTER_SPEC = re.compile(r"^p(\d*)$")


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — DATA LAYOUT
# ═════════════════════════════════════════════════════════════════════════

class DataLayout:
    """
    Answers size and offset questions for a single target.

    Instances are immutable after construction and safe to share between
    threads.
    """

    def __init__(self, spec: str = DEFAULT_DATA_LAYOUT) -> None:
        self.spec = spec
        self.big_endian = False
        self._int_align: Dict[int, int] = dict(_DEFAULT_INT_ALIGN)
        self._float_align: Dict[int, int] = dict(_DEFAULT_FLOAT_ALIGN)
        self._vector_align: Dict[int, int] = dict(_DEFAULT_VECTOR_ALIGN)
        self._aggregate_align_bits = 0
        self._pointers: Dict[int, PointerSpec] = {0: _DEFAULT_POINTER}
        self._parse(spec)

    @classmethod
    def for_module(cls, module: Module) -> "DataLayout":
        """Layout declared by ``module``, or the default target layout."""
        return cls(module.data_layout or DEFAULT_DATA_LAYOUT)

    def __repr__(self) -> str:
        return f"DataLayout({self.spec!r})"

    # ── parsing ───────────────────────────────────────────────────────────

    def _bits(self, text: str, what: str) -> int:
        if not text.isdigit():
            raise LayoutError(f"invalid {what} {text!r}", self.spec)
        return int(text)

    def _align_bits(self, text: str, what: str) -> int:
        bits = self._bits(text, what)
        if bits % 8:
            raise LayoutError(f"{what} {bits} is not a whole number of bytes", self.spec)
        return bits

    def _parse(self, spec: str) -> None:
        if not spec:
            return
        for token in spec.split("-"):
            if not token:
                raise LayoutError("empty component", spec)
            head, *fields = token.split(":")

            if head in ("e", "E") and not fields:
                self.big_endian = head == "E"
                continue

            m = _POINTER_SPEC.match(head)
            if m:
                if len(fields) < 2:
                    raise LayoutError(f"pointer component {token!r} needs size and alignment", spec)
                addrspace = int(m.group(1)) if m.group(1) else 0
                size = self._bits(fields[0], "pointer size")
                if size == 0:
                    raise LayoutError("pointer size must be non-zero", spec)
                abi = self._align_bits(fields[1], "pointer alignment")
                pref = self._align_bits(fields[2], "pointer alignment") if len(fields) > 2 else abi
                index = self._bits(fields[3], "index size") if len(fields) > 3 else size
                self._pointers[addrspace] = PointerSpec(size, abi, pref, index)
                continue

            m = _SIZED_SPEC.match(head)
            if m:
                if not fields:
                    raise LayoutError(f"component {token!r} needs an alignment", spec)
                kind, size = m.group(1), int(m.group(2))
                abi = self._align_bits(fields[0], "alignment")
                table = {"i": self._int_align, "f": self._float_align,
                         "v": self._vector_align}[kind]
                table[size] = abi
                continue

            if head in ("a", "a0"):
                if not fields:
                    raise LayoutError(f"component {token!r} needs an alignment", spec)
                self._aggregate_align_bits = self._align_bits(fields[0], "aggregate alignment")
                continue

            # m:, n…, S…, A…, P…, G…, F…, ni: do not affect sizes

    # ── pointers ──────────────────────────────────────────────────────────

    def _pointer(self, address_space: int) -> PointerSpec:
        return self._pointers.get(address_space, self._pointers[0])

    def pointer_size_in_bits(self, address_space: int = 0) -> int:
        return self._pointer(address_space).size_bits

    def pointer_size(self, address_space: int = 0) -> int:
        return (self.pointer_size_in_bits(address_space) + 7) // 8

    def index_size_in_bits(self, address_space: int = 0) -> int:
        return self._pointer(address_space).index_bits

    # ── alignment ─────────────────────────────────────────────────────────

    def _integer_align_bits(self, bits: int) -> int:
        candidates = sorted(self._int_align)
        for width in candidates:
            if width >= bits:
                return self._int_align[width]
        return self._int_align[candidates[-1]]

    def abi_alignment(self, ty: IRType) -> Optional[int]:
        """ABI alignment in bytes, or ``None`` for unsized types."""
        if isinstance(ty, IntegerType):
            return self._integer_align_bits(ty.bits) // 8
        if isinstance(ty, FloatType):
            if ty.bits in self._float_align:
                return self._float_align[ty.bits] // 8
            return _power_of_2_ceil((ty.bits + 7) // 8)
        if isinstance(ty, PointerType):
            return self._pointer(ty.address_space).abi_align_bits // 8
        if isinstance(ty, ArrayType):
            return self.abi_alignment(ty.element)
        if isinstance(ty, StructType):
            layout = self.struct_layout(ty)
            return layout.alignment if layout is not None else None
        if isinstance(ty, VectorType):
            if ty.scalable:
                return None
            bits = self.type_size_in_bits(ty)
            if bits is None:
                return None
            if bits in self._vector_align:
                return self._vector_align[bits] // 8
            return _power_of_2_ceil((bits + 7) // 8)
        return None

    # ── sizes ─────────────────────────────────────────────────────────────

    def type_size_in_bits(self, ty: IRType) -> Optional[int]:
        if isinstance(ty, IntegerType):
            return ty.bits
        if isinstance(ty, FloatType):
            return ty.bits
        if isinstance(ty, PointerType):
            return self.pointer_size_in_bits(ty.address_space)
        if isinstance(ty, ArrayType):
            elem = self.alloc_size(ty.element)
            return None if elem is None else ty.count * elem * 8
        if isinstance(ty, StructType):
            layout = self.struct_layout(ty)
            return None if layout is None else layout.size * 8
        if isinstance(ty, VectorType):
            if ty.scalable:
                return None
            elem = self.type_size_in_bits(ty.element)
            return None if elem is None else ty.count * elem
        if isinstance(ty, VoidType):
            return None
        return None

    def is_sized(self, ty: IRType) -> bool:
        return self.type_size_in_bits(ty) is not None

    def store_size(self, ty: IRType) -> Optional[int]:
        """Bytes written by a store of ``ty``."""
        bits = self.type_size_in_bits(ty)
        return None if bits is None else (bits + 7) // 8

    def alloc_size(self, ty: IRType) -> Optional[int]:
        """Bytes between consecutive ``ty`` elements of an array."""
        size = self.store_size(ty)
        if size is None:
            return None
        align = self.abi_alignment(ty)
        return _align_to(size, align or 1)

    def struct_layout(self, ty: StructType) -> Optional[StructLayout]:
        if ty.elements is None:
            return None
        offset = 0
        alignment = 1
        offsets = []
        for elem in ty.elements:
            size = self.alloc_size(elem)
            if size is None:
                return None
            align = 1 if ty.packed else (self.abi_alignment(elem) or 1)
            offset = _align_to(offset, align)
            offsets.append(offset)
            offset += size
            alignment = max(alignment, align)
        if not ty.packed:
            alignment = max(alignment, self._aggregate_align_bits // 8)
        return StructLayout(_align_to(offset, alignment), alignment, tuple(offsets))


__all__ = [
    "DEFAULT_DATA_LAYOUT",
    "DataLayout",
    "PointerSpec",
    "StructLayout",
]
