"""
suspicious_ptr/ir.py
════════════════════

Immutable program representation consumed by the pointer-safety analysis.

The model is a small, typed subset of an SSA compiler IR:

  τ ::= iN | half | bfloat | float | double | fp128 | x86_fp80
      | ptr [addrspace]                  (opaque pointer)
      | array(τ, n)                      (n == 0 → unbounded / unknown)
      | struct(τ_1 … τ_n) [packed]       (no body → opaque, unsized)
      | vector(τ, n) | vscale(τ, n)      (scalable → no fixed size)
      | void

  v ::= constant int | null | @global | %argument | %instruction
      | constant expression              (op node outside any block)

Values form a DAG: operands always refer to earlier-defined values.  The
analysis only ever walks it backward and never mutates it, so every node
here is a frozen dataclass.  Value nodes compare by identity (``eq=False``)
because two structurally identical instructions are still distinct
program points.

Cast, address-computation and arithmetic nodes double as constant
expressions: a node that is not listed in any ``BasicBlock`` is a
constant expression, exactly like an operand written inline in the text
format.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    ClassVar,
    Dict,
    Iterator,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — TYPES
# ═════════════════════════════════════════════════════════════════════════

class IRType:
    """Base class of the type term algebra."""


@dataclass(frozen=True)
class VoidType(IRType):
    def __str__(self) -> str:
        return "void"


@dataclass(frozen=True)
class IntegerType(IRType):
    bits: int

    def __str__(self) -> str:
        return f"i{self.bits}"


_FLOAT_BITS: Dict[str, int] = {
    "half": 16,
    "bfloat": 16,
    "float": 32,
    "double": 64,
    "x86_fp80": 80,
    "fp128": 128,
}


@dataclass(frozen=True)
class FloatType(IRType):
    name: str

    @property
    def bits(self) -> int:
        return _FLOAT_BITS[self.name]

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class PointerType(IRType):
    address_space: int = 0

    def __str__(self) -> str:
        if self.address_space:
            return f"(ptr {self.address_space})"
        return "ptr"


@dataclass(frozen=True)
class ArrayType(IRType):
    element: IRType
    count: int

    def __str__(self) -> str:
        return f"(array {self.count} {self.element})"


@dataclass(frozen=True)
class StructType(IRType):
    """
    Struct type.

    ``elements is None`` marks an opaque struct (declared without a body);
    it has no layout and therefore no size.
    """
    elements: Optional[Tuple[IRType, ...]]
    packed: bool = False
    name: str = ""

    @property
    def is_opaque(self) -> bool:
        return self.elements is None

    @property
    def num_elements(self) -> int:
        return len(self.elements) if self.elements is not None else 0

    def body_str(self) -> str:
        if self.elements is None:
            return "opaque"
        head = "packed-struct" if self.packed else "struct"
        inner = " ".join(str(e) for e in self.elements)
        return f"({head} {inner})" if inner else f"({head})"

    def __str__(self) -> str:
        if self.name:
            return self.name
        return self.body_str()


@dataclass(frozen=True)
class VectorType(IRType):
    element: IRType
    count: int
    scalable: bool = False

    def __str__(self) -> str:
        head = "vscale" if self.scalable else "vector"
        return f"({head} {self.count} {self.element})"


VOID = VoidType()
I1 = IntegerType(1)
I8 = IntegerType(8)
I16 = IntegerType(16)
I32 = IntegerType(32)
I64 = IntegerType(64)
PTR = PointerType(0)


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — SOURCE LOCATIONS
# ═════════════════════════════════════════════════════════════════════════

#: Rendered in place of a location when an instruction carries none.
NO_LOCATION = "<no debugloc>"


@dataclass(frozen=True)
class SourceLocation:
    """A (file, line, column) debug location attached to an instruction."""
    file: str
    line: int
    column: int = 0

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


def format_location(loc: Optional[SourceLocation]) -> str:
    return str(loc) if loc is not None else NO_LOCATION


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — VALUES
# ═════════════════════════════════════════════════════════════════════════

class CastOp(Enum):
    TRUNC = "trunc"
    ZEXT = "zext"
    SEXT = "sext"
    BITCAST = "bitcast"
    ADDRSPACECAST = "addrspacecast"
    PTRTOINT = "ptrtoint"
    INTTOPTR = "inttoptr"

    @property
    def is_integer_resize(self) -> bool:
        return self in (CastOp.TRUNC, CastOp.ZEXT, CastOp.SEXT)

    @property
    def is_pointer_cast(self) -> bool:
        return self in (CastOp.BITCAST, CastOp.ADDRSPACECAST)


class BinaryOpcode(Enum):
    ADD = "add"
    SUB = "sub"
    MUL = "mul"
    UDIV = "udiv"
    SDIV = "sdiv"
    UREM = "urem"
    SREM = "srem"
    SHL = "shl"
    LSHR = "lshr"
    ASHR = "ashr"
    AND = "and"
    OR = "or"
    XOR = "xor"


class Value:
    """Base class for every node of the value graph."""

    @property
    def operands(self) -> Tuple[Value, ...]:
        return ()


@dataclass(frozen=True, eq=False)
class ConstantInt(Value):
    type: IntegerType
    value: int

    @property
    def zext_value(self) -> int:
        return self.value & ((1 << self.type.bits) - 1)

    @property
    def sext_value(self) -> int:
        bits = self.type.bits
        raw = self.zext_value
        if bits and raw >> (bits - 1):
            return raw - (1 << bits)
        return raw


@dataclass(frozen=True, eq=False)
class ConstantNull(Value):
    type: PointerType = PTR


@dataclass(frozen=True, eq=False)
class GlobalVariable(Value):
    name: str
    value_type: IRType
    address_space: int = 0
    is_constant: bool = False
    is_external: bool = False

    @property
    def type(self) -> PointerType:
        return PointerType(self.address_space)


@dataclass(frozen=True, eq=False)
class Argument(Value):
    name: str
    type: IRType


@dataclass(frozen=True, eq=False)
class Instruction(Value):
    """
    Base for operation nodes.

    ``name`` is empty for void results and for constant expressions;
    ``location`` is the optional debug location.
    """
    name: str = field(default="", kw_only=True)
    location: Optional[SourceLocation] = field(default=None, kw_only=True)

    opcode: ClassVar[str] = "?"


@dataclass(frozen=True, eq=False)
class Alloca(Instruction):
    """A local storage slot (stack object)."""
    allocated_type: IRType
    count: Optional[Value] = None
    address_space: int = 0

    opcode: ClassVar[str] = "alloca"

    @property
    def type(self) -> PointerType:
        return PointerType(self.address_space)

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.count,) if self.count is not None else ()


@dataclass(frozen=True, eq=False)
class Load(Instruction):
    type: IRType
    pointer: Value
    volatile: bool = False
    atomic: bool = False

    opcode: ClassVar[str] = "load"

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.pointer,)


@dataclass(frozen=True, eq=False)
class Store(Instruction):
    value: Value
    pointer: Value
    volatile: bool = False
    atomic: bool = False

    opcode: ClassVar[str] = "store"

    @property
    def type(self) -> IRType:
        return VOID

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.value, self.pointer)


@dataclass(frozen=True, eq=False)
class AtomicRMW(Instruction):
    operation: str
    pointer: Value
    value: Value
    volatile: bool = False

    opcode: ClassVar[str] = "atomicrmw"

    @property
    def type(self) -> IRType:
        return value_type(self.value)

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.pointer, self.value)


@dataclass(frozen=True, eq=False)
class AtomicCmpXchg(Instruction):
    pointer: Value
    compare: Value
    new_value: Value
    volatile: bool = False

    opcode: ClassVar[str] = "cmpxchg"

    @property
    def type(self) -> IRType:
        return StructType((value_type(self.compare), I1))

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.pointer, self.compare, self.new_value)


@dataclass(frozen=True, eq=False)
class GetElementPtr(Instruction):
    """
    Subobject addressing: ``base`` plus an index path over ``source_type``.

    The first index steps over whole ``source_type`` objects; every later
    index selects a field (struct) or an element (array) of the type that
    is active at that step.
    """
    source_type: IRType
    base: Value
    indices: Tuple[Value, ...]
    inbounds: bool = False

    opcode: ClassVar[str] = "gep"

    @property
    def type(self) -> IRType:
        return value_type(self.base)

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.base,) + tuple(self.indices)

    @property
    def has_all_constant_indices(self) -> bool:
        return all(isinstance(i, ConstantInt) for i in self.indices)

    @property
    def has_all_zero_indices(self) -> bool:
        return all(
            isinstance(i, ConstantInt) and i.zext_value == 0
            for i in self.indices
        )


@dataclass(frozen=True, eq=False)
class Cast(Instruction):
    op: CastOp
    operand: Value
    type: IRType

    @property
    def opcode(self) -> str:  # type: ignore[override]
        return self.op.value

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.operand,)


@dataclass(frozen=True, eq=False)
class BinaryOp(Instruction):
    op: BinaryOpcode
    lhs: Value
    rhs: Value

    @property
    def opcode(self) -> str:  # type: ignore[override]
        return self.op.value

    @property
    def type(self) -> IRType:
        return value_type(self.lhs)

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.lhs, self.rhs)


@dataclass(frozen=True, eq=False)
class Call(Instruction):
    """Call; ``callee`` is a symbol name for direct calls, a value otherwise."""
    type: IRType
    callee: Union[str, Value]
    arguments: Tuple[Value, ...] = ()

    opcode: ClassVar[str] = "call"

    @property
    def callee_name(self) -> Optional[str]:
        return self.callee if isinstance(self.callee, str) else None

    @property
    def operands(self) -> Tuple[Value, ...]:
        if isinstance(self.callee, Value):
            return (self.callee,) + tuple(self.arguments)
        return tuple(self.arguments)


@dataclass(frozen=True, eq=False)
class MemSet(Instruction):
    """Bulk fill of ``length`` bytes at ``dest``."""
    dest: Value
    value: Value
    length: Value
    volatile: bool = False

    opcode: ClassVar[str] = "memset"

    @property
    def type(self) -> IRType:
        return VOID

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.dest, self.value, self.length)


@dataclass(frozen=True, eq=False)
class MemCopy(Instruction):
    """Bulk copy of ``length`` bytes from ``source`` to ``dest``."""
    dest: Value
    source: Value
    length: Value
    volatile: bool = False

    opcode: ClassVar[str] = "memcpy"

    @property
    def type(self) -> IRType:
        return VOID

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.dest, self.source, self.length)


class MemMove(MemCopy):
    """Bulk copy whose ranges may overlap."""

    opcode: ClassVar[str] = "memmove"


@dataclass(frozen=True, eq=False)
class Return(Instruction):
    value: Optional[Value] = None

    opcode: ClassVar[str] = "ret"

    @property
    def type(self) -> IRType:
        return VOID

    @property
    def operands(self) -> Tuple[Value, ...]:
        return (self.value,) if self.value is not None else ()


@dataclass(frozen=True, eq=False)
class OpaqueInst(Instruction):
    """Any operation the analysis has no model for (phi, select, br, ...)."""
    type: IRType
    text: str
    operand_values: Tuple[Value, ...] = ()

    opcode: ClassVar[str] = "opaque"

    @property
    def operands(self) -> Tuple[Value, ...]:
        return tuple(self.operand_values)


def value_type(value: Value) -> IRType:
    """Type of any value node."""
    return value.type  # type: ignore[attr-defined]


def strip_pointer_casts(value: Value) -> Value:
    """
    Strip pointer-to-pointer casts and all-zero-index address computations.

    These never change the address, only how it is typed.
    """
    while True:
        if isinstance(value, Cast) and value.op.is_pointer_cast:
            value = value.operand
        elif isinstance(value, GetElementPtr) and value.has_all_zero_indices:
            value = value.base
        else:
            return value


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — CONTAINERS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class BasicBlock:
    label: str
    instructions: Tuple[Instruction, ...] = ()

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    def __len__(self) -> int:
        return len(self.instructions)


@dataclass(frozen=True, eq=False)
class Function:
    """
    A function body: parameters plus basic blocks in layout order.

    The use lists (``users``) are computed once at construction time; the
    function is never modified afterwards.
    """
    name: str
    params: Tuple[Argument, ...] = ()
    blocks: Tuple[BasicBlock, ...] = ()
    return_type: IRType = VOID
    _users: Dict[int, List[Instruction]] = field(
        init=False, repr=False, compare=False, default_factory=dict,
    )

    def __post_init__(self) -> None:
        users: Dict[int, List[Instruction]] = defaultdict(list)
        for inst in self.instructions():
            for op in inst.operands:
                users[id(op)].append(inst)
        object.__setattr__(self, "_users", dict(users))

    @property
    def is_declaration(self) -> bool:
        return not self.blocks

    def instructions(self) -> Iterator[Instruction]:
        """All instructions, block by block, in program order."""
        for block in self.blocks:
            yield from block.instructions

    def users(self, value: Value) -> Tuple[Instruction, ...]:
        """Instructions of this function that take ``value`` as an operand."""
        return tuple(self._users.get(id(value), ()))

    def __len__(self) -> int:
        return sum(len(b) for b in self.blocks)


@dataclass(frozen=True, eq=False)
class Module:
    name: str
    functions: Tuple[Function, ...] = ()
    globals: Tuple[GlobalVariable, ...] = ()
    data_layout: str = ""
    struct_types: Tuple[StructType, ...] = ()

    def get_function(self, name: str) -> Optional[Function]:
        for fn in self.functions:
            if fn.name == name:
                return fn
        return None

    def get_global(self, name: str) -> Optional[GlobalVariable]:
        for gv in self.globals:
            if gv.name == name:
                return gv
        return None

    @property
    def defined_functions(self) -> List[Function]:
        return [fn for fn in self.functions if not fn.is_declaration]


# ═════════════════════════════════════════════════════════════════════════
#  PART 5 — TEXT RENDERING
# ═════════════════════════════════════════════════════════════════════════
#
#  Rendering uses the same S-expression surface syntax that
#  ``ir_parser`` reads, so evidence printed in a finding can be pasted
#  back into a test module.

def render_ref(value: Value) -> str:
    """Short operand form: ``%x``, ``@g``, ``(i32 4)`` or an inline expression."""
    if isinstance(value, ConstantInt):
        return f"({value.type} {value.value})"
    if isinstance(value, ConstantNull):
        if value.type.address_space:
            return f"(null {value.type})"
        return "(null)"
    if isinstance(value, GlobalVariable):
        return f"@{value.name}"
    if isinstance(value, Argument):
        return f"%{value.name}"
    if isinstance(value, Instruction) and value.name:
        return f"%{value.name}"
    if isinstance(value, Instruction):
        return render(value)
    return f"<{type(value).__name__}>"


def _flag(enabled: bool, word: str) -> List[str]:
    return [word] if enabled else []


def _body(inst: Instruction) -> List[str]:
    if isinstance(inst, Alloca):
        parts = ["alloca", str(inst.allocated_type)]
        if inst.count is not None:
            parts.append(render_ref(inst.count))
        if inst.address_space:
            parts.append(f"(addrspace {inst.address_space})")
        return parts
    if isinstance(inst, Load):
        return (["load", str(inst.type), render_ref(inst.pointer)]
                + _flag(inst.volatile, "volatile") + _flag(inst.atomic, "atomic"))
    if isinstance(inst, Store):
        return (["store", render_ref(inst.value), render_ref(inst.pointer)]
                + _flag(inst.volatile, "volatile") + _flag(inst.atomic, "atomic"))
    if isinstance(inst, AtomicRMW):
        return (["atomicrmw", inst.operation, render_ref(inst.pointer),
                 render_ref(inst.value)] + _flag(inst.volatile, "volatile"))
    if isinstance(inst, AtomicCmpXchg):
        return (["cmpxchg", render_ref(inst.pointer), render_ref(inst.compare),
                 render_ref(inst.new_value)] + _flag(inst.volatile, "volatile"))
    if isinstance(inst, GetElementPtr):
        return (["gep"] + _flag(inst.inbounds, "inbounds")
                + [str(inst.source_type), render_ref(inst.base)]
                + [render_ref(i) for i in inst.indices])
    if isinstance(inst, Cast):
        return [inst.op.value, render_ref(inst.operand), str(inst.type)]
    if isinstance(inst, BinaryOp):
        return [inst.op.value, render_ref(inst.lhs), render_ref(inst.rhs)]
    if isinstance(inst, Call):
        callee = f"@{inst.callee}" if isinstance(inst.callee, str) else render_ref(inst.callee)
        return ["call", str(inst.type), callee] + [render_ref(a) for a in inst.arguments]
    if isinstance(inst, MemSet):
        return (["memset", render_ref(inst.dest), render_ref(inst.value),
                 render_ref(inst.length)] + _flag(inst.volatile, "volatile"))
    if isinstance(inst, MemCopy):
        return ([inst.opcode, render_ref(inst.dest), render_ref(inst.source),
                 render_ref(inst.length)] + _flag(inst.volatile, "volatile"))
    if isinstance(inst, Return):
        return ["ret"] + ([render_ref(inst.value)] if inst.value is not None else [])
    if isinstance(inst, OpaqueInst):
        return (["opaque", str(inst.type), '"' + inst.text.replace('"', '\\"') + '"']
                + [render_ref(o) for o in inst.operand_values])
    return [inst.opcode]


def render(value: Value) -> str:
    """Full textual form of a value; instructions include their result name."""
    if not isinstance(value, Instruction):
        if isinstance(value, GlobalVariable):
            attrs = _flag(value.is_constant, "constant") + _flag(value.is_external, "external")
            if value.address_space:
                attrs.append(f"(addrspace {value.address_space})")
            return " ".join(["(global", value.name, str(value.value_type)] + attrs) + ")"
        return render_ref(value)
    body = " ".join(_body(value))
    if value.name:
        return f"(%{value.name} = {body})"
    return f"({body})"


__all__ = [
    # types
    "IRType", "VoidType", "IntegerType", "FloatType", "PointerType",
    "ArrayType", "StructType", "VectorType",
    "VOID", "I1", "I8", "I16", "I32", "I64", "PTR",
    # locations
    "SourceLocation", "NO_LOCATION", "format_location",
    # values
    "CastOp", "BinaryOpcode", "Value", "ConstantInt", "ConstantNull",
    "GlobalVariable", "Argument", "Instruction", "Alloca", "Load", "Store",
    "AtomicRMW", "AtomicCmpXchg", "GetElementPtr", "Cast", "BinaryOp",
    "Call", "MemSet", "MemCopy", "MemMove", "Return", "OpaqueInst",
    "value_type", "strip_pointer_casts",
    # containers
    "BasicBlock", "Function", "Module",
    # rendering
    "render", "render_ref",
]
