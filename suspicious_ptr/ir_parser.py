"""
suspicious_ptr/ir_parser.py
═══════════════════════════

Reader for the ``.sxir`` S-expression IR text format.

Parsing happens in two passes:

1. **Reader** – a parsimonious PEG grammar turns the text into nested
   ``SList`` / ``Symbol`` / ``str`` / ``int`` data, remembering the line
   and column of every list.
2. **Builder** – head-symbol dispatch over that data creates the typed
   IR model of :mod:`suspicious_ptr.ir`.  Every list ``(tag ...)`` is
   handled by a ``_build_<tag>`` helper registered in a dispatch table.

Surface syntax
--------------
::

    (module NAME
      (datalayout "e-m:e-p:64:64-i64:64-n8:16:32:64-S128")
      (type %struct.S (struct i32 (array 4 i8)))
      (type %struct.O opaque)
      (global NAME TYPE [external] [constant] [(addrspace N)])
      (function NAME (params (%a i64) ...) [(returns T)]
        (block LABEL
          (%x = OP operand ... [volatile] [atomic] [(loc "file" LINE COL)])
          (OP operand ...)
          ...)))

    operand ::= %name | @name | (iN VALUE) | (null [TYPE]) | (inline-expr)

Instruction forms::

    alloca T [count] [(addrspace N)]      load T ptr
    store value ptr                       atomicrmw OP ptr value
    cmpxchg ptr cmp new                   gep [inbounds] T base idx...
    CAST value T                          BINOP lhs rhs
    call T callee arg...                  memset dst val len
    memcpy dst src len                    memmove dst src len
    ret [value]                           opaque T "text" operand...

Comments run from ``;`` to end of line.

Public API
----------
``parse_module(text, filename="<string>") -> ir.Module``
``parse_file(path) -> ir.Module``
``read_data(text, filename="<string>") -> list``  (reader pass only)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from . import ir
from .errors import IRParseError

_log = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — READER (text → nested data)
# ═════════════════════════════════════════════════════════════════════════

SXIR_GRAMMAR = Grammar(r'''
    document = _ datum*
    datum    = (list / atom) _
    list     = "(" _ datum* ")"
    atom     = string / number / symbol
    string   = ~r'"(?:[^"\\]|\\.)*"'
    number   = ~r"[-+]?(?:0[xX][0-9a-fA-F]+|\d+)(?![^\s();\"])"
    symbol   = ~r"[^\s();\"]+"
    _        = ~r"(?:\s|;[^\n]*)*"
''')


class Symbol(str):
    """A bare word of the text format (as opposed to a string literal)."""

    def __repr__(self) -> str:
        return f"Symbol({str.__repr__(self)})"


class SList(list):
    """A parenthesised form; remembers where it started."""

    def __init__(self, items: Sequence[Any] = (), line: int = 0, column: int = 0) -> None:
        super().__init__(items)
        self.line = line
        self.column = column


def _position(text: str, pos: int) -> Tuple[int, int]:
    line = text.count("\n", 0, pos) + 1
    column = pos - text.rfind("\n", 0, pos)
    return line, column


class _DataBuilder(NodeVisitor):
    """Transforms the parsimonious parse tree into nested Python data."""

    unwrapped_exceptions = (IRParseError,)

    def generic_visit(self, node, visited_children):
        return visited_children or node

    @staticmethod
    def _items(children) -> list:
        # an empty ``datum*`` visits to the bare Node
        return list(children) if isinstance(children, list) else []

    def visit_document(self, node, visited_children):
        _, data = visited_children
        return self._items(data)

    def visit_datum(self, node, visited_children):
        value, _ = visited_children
        return value[0]

    def visit_list(self, node, visited_children):
        _, _, items, _ = visited_children
        line, column = _position(node.full_text, node.start)
        return SList(self._items(items), line, column)

    def visit_atom(self, node, visited_children):
        return visited_children[0]

    def visit_string(self, node, visited_children):
        return re.sub(r"\\(.)", r"\1", node.text[1:-1])

    def visit_number(self, node, visited_children):
        text = node.text
        return int(text, 16 if "x" in text.lower() else 10)

    def visit_symbol(self, node, visited_children):
        return Symbol(node.text)


def read_data(text: str, filename: str = "<string>") -> list:
    """Reader pass: return the top-level forms of ``text``."""
    try:
        tree = SXIR_GRAMMAR.parse(text)
    except RecursionError as exc:
        raise IRParseError("input nested too deeply", filename) from exc
    except ParseError as exc:
        snippet = text[exc.pos:exc.pos + 20].split("\n")[0]
        raise IRParseError(
            f"syntax error near {snippet!r}", filename, exc.line(), exc.column()
        ) from exc
    try:
        return _DataBuilder().visit(tree)
    except RecursionError as exc:
        raise IRParseError("input nested too deeply", filename) from exc
    except VisitationError as exc:
        raise IRParseError(f"malformed input: {exc}", filename) from exc


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — SHAPE HELPERS
# ═════════════════════════════════════════════════════════════════════════

_INT_TYPE = re.compile(r"^i(\d+)$")
_FLOAT_TYPES = frozenset({"half", "bfloat", "float", "double", "fp128", "x86_fp80"})
_ATTRIBUTE_WORDS = frozenset({"volatile", "atomic"})


def _is_symbol(s: Any, name: Optional[str] = None) -> bool:
    return isinstance(s, Symbol) and (name is None or s == name)


def _head(s: Any) -> Optional[str]:
    if isinstance(s, SList) and s and isinstance(s[0], Symbol):
        return str(s[0])
    return None


@dataclass
class _Attributes:
    volatile: bool = False
    atomic: bool = False
    location: Optional[ir.SourceLocation] = None


# Maps an instruction head symbol to its builder.
_INSTRUCTION_FORMS: Dict[str, Callable[..., ir.Instruction]] = {}


def _register(*tags: str):
    """Decorator: register a builder under each of *tags*."""
    def deco(fn):
        for tag in tags:
            _INSTRUCTION_FORMS[tag] = fn
        return fn
    return deco


#: Forms that may also appear inline as constant expressions.
_EXPRESSION_FORMS = frozenset(
    [op.value for op in ir.CastOp]
    + [op.value for op in ir.BinaryOpcode]
    + ["gep"]
)


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — BUILDER (nested data → IR model)
# ═════════════════════════════════════════════════════════════════════════

class _ModuleBuilder:

    def __init__(self, filename: str) -> None:
        self.filename = filename
        self.struct_types: Dict[str, ir.StructType] = {}
        self.globals: Dict[str, ir.GlobalVariable] = {}
        self._current: Optional[SList] = None

    # ── errors ────────────────────────────────────────────────────────────

    def error(self, message: str, form: Any = None) -> IRParseError:
        anchor = form if isinstance(form, SList) else self._current
        if isinstance(anchor, SList):
            return IRParseError(message, self.filename, anchor.line, anchor.column)
        return IRParseError(message, self.filename)

    def expect_int(self, s: Any, what: str) -> int:
        if isinstance(s, int):
            return s
        raise self.error(f"expected integer {what}, got {s!r}")

    def expect_name(self, s: Any, what: str) -> str:
        if isinstance(s, str):
            return str(s)
        raise self.error(f"expected {what}, got {s!r}")

    def arity(self, args: list, low: int, high: Optional[int], form: str) -> None:
        high = low if high is None else high
        if not low <= len(args) <= high:
            expected = str(low) if low == high else f"{low}..{high}"
            raise self.error(f"'{form}' expects {expected} operand(s), got {len(args)}")

    # ── types ─────────────────────────────────────────────────────────────

    def parse_type(self, s: Any) -> ir.IRType:
        if isinstance(s, Symbol):
            m = _INT_TYPE.match(s)
            if m:
                bits = int(m.group(1))
                if bits == 0:
                    raise self.error("integer type must have a non-zero width")
                return ir.IntegerType(bits)
            if s in _FLOAT_TYPES:
                return ir.FloatType(str(s))
            if s == "ptr":
                return ir.PTR
            if s == "void":
                return ir.VOID
            if s in self.struct_types:
                return self.struct_types[s]
            raise self.error(f"unknown type {str(s)!r}")

        head = _head(s)
        if head == "ptr":
            self.arity(s[1:], 1, None, "ptr")
            return ir.PointerType(self.expect_int(s[1], "address space"))
        if head == "array":
            self.arity(s[1:], 2, None, "array")
            return ir.ArrayType(self.parse_type(s[2]), self.expect_int(s[1], "element count"))
        if head in ("struct", "packed-struct"):
            return ir.StructType(
                tuple(self.parse_type(e) for e in s[1:]),
                packed=head == "packed-struct",
            )
        if head in ("vector", "vscale"):
            self.arity(s[1:], 2, None, head)
            return ir.VectorType(
                self.parse_type(s[2]),
                self.expect_int(s[1], "element count"),
                scalable=head == "vscale",
            )
        raise self.error(f"malformed type {s!r}", s)

    # ── module level ──────────────────────────────────────────────────────

    def build_module(self, form: Any) -> ir.Module:
        if _head(form) != "module":
            raise self.error("expected (module NAME ...)", form)
        self._current = form
        if len(form) < 2:
            raise self.error("module needs a name", form)
        name = self.expect_name(form[1], "module name")

        data_layout = ""
        functions: List[ir.Function] = []
        function_names = set()
        for item in form[2:]:
            self._current = item if isinstance(item, SList) else form
            head = _head(item)
            if head == "datalayout":
                self.arity(item[1:], 1, None, "datalayout")
                data_layout = self.expect_name(item[1], "data layout string")
            elif head == "type":
                self._build_named_type(item)
            elif head == "global":
                gv = self._build_global(item)
                if gv.name in self.globals:
                    raise self.error(f"redefinition of global @{gv.name}", item)
                self.globals[gv.name] = gv
            elif head == "function":
                fn = _FunctionBuilder(self).build(item)
                if fn.name in function_names:
                    raise self.error(f"redefinition of function {fn.name}", item)
                function_names.add(fn.name)
                functions.append(fn)
            else:
                raise self.error(f"unknown module item {item!r}", item)

        _log.debug("parsed module %s: %d function(s), %d global(s)",
                   name, len(functions), len(self.globals))
        return ir.Module(
            name=name,
            functions=tuple(functions),
            globals=tuple(self.globals.values()),
            data_layout=data_layout,
            struct_types=tuple(self.struct_types.values()),
        )

    def _build_named_type(self, form: SList) -> None:
        self.arity(form[1:], 2, None, "type")
        name = form[1]
        if not (_is_symbol(name) and name.startswith("%")):
            raise self.error(f"named type must start with '%', got {name!r}", form)
        if name in self.struct_types:
            raise self.error(f"redefinition of type {name}", form)
        if _is_symbol(form[2], "opaque"):
            self.struct_types[name] = ir.StructType(None, name=str(name))
            return
        body = self.parse_type(form[2])
        if not isinstance(body, ir.StructType):
            raise self.error(f"named type {name} must be a struct", form)
        self.struct_types[name] = ir.StructType(body.elements, body.packed, str(name))

    def _build_global(self, form: SList) -> ir.GlobalVariable:
        if len(form) < 3:
            raise self.error("expected (global NAME TYPE ...)", form)
        name = self.expect_name(form[1], "global name").lstrip("@")
        value_type = self.parse_type(form[2])
        is_constant = is_external = False
        address_space = 0
        for attr in form[3:]:
            if _is_symbol(attr, "constant"):
                is_constant = True
            elif _is_symbol(attr, "external"):
                is_external = True
            elif _head(attr) == "addrspace":
                self.arity(attr[1:], 1, None, "addrspace")
                address_space = self.expect_int(attr[1], "address space")
            else:
                raise self.error(f"unknown global attribute {attr!r}", form)
        return ir.GlobalVariable(name, value_type, address_space, is_constant, is_external)


class _FunctionBuilder:

    def __init__(self, module: _ModuleBuilder) -> None:
        self.m = module
        self.values: Dict[str, ir.Value] = {}

    def build(self, form: SList) -> ir.Function:
        m = self.m
        if len(form) < 2:
            raise m.error("expected (function NAME ...)", form)
        name = m.expect_name(form[1], "function name").lstrip("@")
        params: List[ir.Argument] = []
        return_type: ir.IRType = ir.VOID
        blocks: List[ir.BasicBlock] = []
        labels = set()

        for item in form[2:]:
            head = _head(item)
            if head == "params":
                for p in item[1:]:
                    if not (isinstance(p, SList) and len(p) == 2 and _is_symbol(p[0])
                            and p[0].startswith("%")):
                        raise m.error(f"malformed parameter {p!r}", item)
                    arg = ir.Argument(p[0][1:], m.parse_type(p[1]))
                    self.define(arg.name, arg, item)
                    params.append(arg)
            elif head == "returns":
                m.arity(item[1:], 1, None, "returns")
                return_type = m.parse_type(item[1])
            elif head == "block":
                if len(item) < 2:
                    raise m.error("block needs a label", item)
                label = m.expect_name(item[1], "block label")
                if label in labels:
                    raise m.error(f"duplicate block label {label!r}", item)
                labels.add(label)
                insts = tuple(self.build_instruction(i) for i in item[2:])
                blocks.append(ir.BasicBlock(label, insts))
            else:
                raise m.error(f"unknown function item {item!r}", item)

        return ir.Function(name, tuple(params), tuple(blocks), return_type)

    def define(self, name: str, value: ir.Value, form: Any) -> None:
        if name in self.values:
            raise self.m.error(f"redefinition of %{name}", form)
        self.values[name] = value

    # ── operands ──────────────────────────────────────────────────────────

    def operand(self, s: Any) -> ir.Value:
        m = self.m
        if isinstance(s, Symbol):
            if s.startswith("%"):
                value = self.values.get(s[1:])
                if value is None:
                    raise m.error(f"use of undefined value {s}")
                return value
            if s.startswith("@"):
                gv = m.globals.get(s[1:])
                if gv is None:
                    raise m.error(f"use of undefined global {s}")
                return gv
            raise m.error(f"expected operand, got {str(s)!r}")

        head = _head(s)
        if head is not None and _INT_TYPE.match(head):
            m.arity(s[1:], 1, None, head)
            ty = m.parse_type(s[0])
            return ir.ConstantInt(ty, m.expect_int(s[1], "constant"))
        if head == "null":
            ty = m.parse_type(s[1]) if len(s) > 1 else ir.PTR
            if not isinstance(ty, ir.PointerType):
                raise m.error("null constant must have pointer type", s)
            return ir.ConstantNull(ty)
        if head in _EXPRESSION_FORMS:
            return self.expression(s, name="")
        raise m.error(f"expected operand, got {s!r}", s)

    # ── instructions ──────────────────────────────────────────────────────

    def build_instruction(self, form: Any) -> ir.Instruction:
        m = self.m
        if not isinstance(form, SList) or not form:
            raise m.error(f"expected instruction form, got {form!r}")
        name = ""
        body = list(form)
        if len(body) >= 3 and _is_symbol(body[0]) and body[0].startswith("%") \
                and _is_symbol(body[1], "="):
            name = body[0][1:]
            body = body[2:]
        inst = self.expression(SList(body, form.line, form.column), name)
        if name:
            self.define(name, inst, form)
        return inst

    def expression(self, form: SList, name: str) -> ir.Instruction:
        m = self.m
        previous, m._current = m._current, form
        try:
            head = _head(form)
            builder = _INSTRUCTION_FORMS.get(head or "")
            if builder is None:
                raise m.error(f"unknown operation {form[0]!r}", form)
            attrs = _Attributes()
            args = []
            for item in form[1:]:
                if _is_symbol(item) and item in _ATTRIBUTE_WORDS:
                    setattr(attrs, str(item), True)
                elif _head(item) == "loc":
                    attrs.location = self._location(item)
                else:
                    args.append(item)
            return builder(self, head, args, name, attrs)
        finally:
            m._current = previous

    def _location(self, form: SList) -> ir.SourceLocation:
        m = self.m
        m.arity(form[1:], 2, 3, "loc")
        file = m.expect_name(form[1], "file name")
        line = m.expect_int(form[2], "line")
        column = m.expect_int(form[3], "column") if len(form) > 3 else 0
        return ir.SourceLocation(file, line, column)


# ── instruction builders ──────────────────────────────────────────────────

@_register("alloca")
def _build_alloca(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    address_space = 0
    if args and _head(args[-1]) == "addrspace":
        space = args.pop()
        b.m.arity(space[1:], 1, None, "addrspace")
        address_space = b.m.expect_int(space[1], "address space")
    b.m.arity(args, 1, 2, head)
    count = b.operand(args[1]) if len(args) > 1 else None
    return ir.Alloca(b.m.parse_type(args[0]), count, address_space,
                     name=name, location=attrs.location)


@_register("load")
def _build_load(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 2, None, head)
    return ir.Load(b.m.parse_type(args[0]), b.operand(args[1]),
                   volatile=attrs.volatile, atomic=attrs.atomic,
                   name=name, location=attrs.location)


@_register("store")
def _build_store(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 2, None, head)
    return ir.Store(b.operand(args[0]), b.operand(args[1]),
                    volatile=attrs.volatile, atomic=attrs.atomic,
                    name=name, location=attrs.location)


@_register("atomicrmw")
def _build_atomicrmw(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 3, None, head)
    return ir.AtomicRMW(b.m.expect_name(args[0], "atomicrmw operation"),
                        b.operand(args[1]), b.operand(args[2]),
                        volatile=attrs.volatile, name=name, location=attrs.location)


@_register("cmpxchg")
def _build_cmpxchg(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 3, None, head)
    return ir.AtomicCmpXchg(b.operand(args[0]), b.operand(args[1]), b.operand(args[2]),
                            volatile=attrs.volatile, name=name, location=attrs.location)


@_register("gep")
def _build_gep(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    inbounds = bool(args) and _is_symbol(args[0], "inbounds")
    if inbounds:
        args = args[1:]
    if len(args) < 2:
        raise b.m.error("'gep' expects a source type and a base pointer")
    return ir.GetElementPtr(
        b.m.parse_type(args[0]),
        b.operand(args[1]),
        tuple(b.operand(i) for i in args[2:]),
        inbounds,
        name=name,
        location=attrs.location,
    )


@_register(*(op.value for op in ir.CastOp))
def _build_cast(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 2, None, head)
    return ir.Cast(ir.CastOp(head), b.operand(args[0]), b.m.parse_type(args[1]),
                   name=name, location=attrs.location)


@_register(*(op.value for op in ir.BinaryOpcode))
def _build_binary(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 2, None, head)
    return ir.BinaryOp(ir.BinaryOpcode(head), b.operand(args[0]), b.operand(args[1]),
                       name=name, location=attrs.location)


@_register("call")
def _build_call(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    if len(args) < 2:
        raise b.m.error("'call' expects a return type and a callee")
    callee_form = args[1]
    if _is_symbol(callee_form) and not callee_form.startswith("%"):
        callee = str(callee_form).lstrip("@")
    else:
        callee = b.operand(callee_form)
    return ir.Call(b.m.parse_type(args[0]), callee,
                   tuple(b.operand(a) for a in args[2:]),
                   name=name, location=attrs.location)


@_register("memset")
def _build_memset(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 3, None, head)
    return ir.MemSet(b.operand(args[0]), b.operand(args[1]), b.operand(args[2]),
                     volatile=attrs.volatile, name=name, location=attrs.location)


@_register("memcpy", "memmove")
def _build_mem_transfer(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 3, None, head)
    cls = ir.MemMove if head == "memmove" else ir.MemCopy
    return cls(b.operand(args[0]), b.operand(args[1]), b.operand(args[2]),
               volatile=attrs.volatile, name=name, location=attrs.location)


@_register("ret")
def _build_ret(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    b.m.arity(args, 0, 1, head)
    value = b.operand(args[0]) if args else None
    return ir.Return(value, name=name, location=attrs.location)


@_register("opaque")
def _build_opaque(b: _FunctionBuilder, head, args, name, attrs) -> ir.Instruction:
    if len(args) < 2 or isinstance(args[1], Symbol) or not isinstance(args[1], str):
        raise b.m.error("'opaque' expects a type and a quoted description")
    operands = []
    for a in args[2:]:
        # phi-like operations may name values defined later in the function
        if _is_symbol(a) and a.startswith("%") and a[1:] not in b.values:
            _log.debug("opaque %s: dropping forward reference %s", args[1], a)
            continue
        operands.append(b.operand(a))
    return ir.OpaqueInst(b.m.parse_type(args[0]), args[1], tuple(operands),
                         name=name, location=attrs.location)


# ═════════════════════════════════════════════════════════════════════════
#  PART 4 — PUBLIC API
# ═════════════════════════════════════════════════════════════════════════

def parse_module(text: str, filename: str = "<string>") -> ir.Module:
    """Parse a complete ``.sxir`` document containing one module."""
    data = read_data(text, filename)
    if len(data) != 1:
        raise IRParseError(f"expected exactly one (module ...) form, found {len(data)}",
                           filename)
    try:
        return _ModuleBuilder(filename).build_module(data[0])
    except RecursionError as exc:
        raise IRParseError("input nested too deeply", filename) from exc


def parse_file(path: str) -> ir.Module:
    """Read and parse the ``.sxir`` file at *path*."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            text = fh.read()
    except OSError as exc:
        raise IRParseError(f"cannot read file: {exc.strerror or exc}", path) from exc
    except UnicodeDecodeError as exc:
        raise IRParseError(f"cannot decode file as UTF-8: {exc.reason}", path) from exc
    return parse_module(text, path)


__all__ = [
    "SXIR_GRAMMAR",
    "Symbol",
    "SList",
    "read_data",
    "parse_module",
    "parse_file",
]
