# tests/test_ir_parser.py
"""
Tests for the .sxir reader: text → nested data → IR model.
"""

import pytest

from suspicious_ptr.errors import IRParseError
from suspicious_ptr.ir import (
    I32, I64, PTR,
    Alloca, Argument, ArrayType, AtomicCmpXchg, AtomicRMW, BinaryOp,
    BinaryOpcode, Call, Cast, CastOp, ConstantInt, ConstantNull,
    GetElementPtr, GlobalVariable, IntegerType, Load, MemCopy, MemMove,
    MemSet, OpaqueInst, PointerType, Return, SourceLocation, Store,
    StructType, render,
)
from suspicious_ptr.ir_parser import SList, Symbol, parse_file, parse_module, read_data
from tests.conftest import END_TO_END_SXIR, MINIMAL_SXIR


def _body(*lines, params="(%p ptr) (%n i64)"):
    """Wrap instruction lines into a one-function module and parse it."""
    text = (
        "(module t\n"
        "  (global g (array 4 i32))\n"
        f"  (function f (params {params})\n"
        "    (block entry\n"
        + "".join(f"      {line}\n" for line in lines)
        + "      (ret))))\n"
    )
    return parse_module(text).get_function("f")


def _first(*lines, **kw):
    return next(_body(*lines, **kw).instructions())


class TestReader:

    def test_atoms(self):
        data = read_data('(a "b c" 12 -3 0x10)')
        assert len(data) == 1
        form = data[0]
        assert isinstance(form, SList)
        assert form[0] == "a" and isinstance(form[0], Symbol)
        assert form[1] == "b c" and not isinstance(form[1], Symbol)
        assert form[2:] == [12, -3, 16]

    def test_nested_lists_keep_position(self):
        data = read_data("(outer\n  (inner x))")
        inner = data[0][1]
        assert isinstance(inner, SList)
        assert (inner.line, inner.column) == (2, 3)

    def test_comments_are_skipped(self):
        data = read_data("; leading\n(a ; trailing\n b)\n; end")
        assert data == [["a", "b"]]

    def test_empty_list(self):
        assert read_data("()") == [[]]

    def test_escaped_string(self):
        assert read_data(r'("say \"hi\"")')[0][0] == 'say "hi"'

    def test_symbol_starting_with_digit(self):
        assert read_data("(0abc)")[0][0] == Symbol("0abc")

    def test_unbalanced(self):
        with pytest.raises(IRParseError) as excinfo:
            read_data("(module m", "broken.sxir")
        err = excinfo.value
        assert err.file == "broken.sxir"
        assert err.line == 1
        assert "syntax error" in err.message


class TestModuleItems:

    def test_minimal(self):
        module = parse_module(MINIMAL_SXIR)
        assert module.name == "minimal"
        fn = module.get_function("empty")
        assert fn is not None
        assert [b.label for b in fn.blocks] == ["entry"]
        assert isinstance(fn.blocks[0].instructions[0], Return)

    def test_datalayout(self):
        module = parse_module('(module m (datalayout "e-p:32:32"))')
        assert module.data_layout == "e-p:32:32"

    def test_no_datalayout(self):
        assert parse_module("(module m)").data_layout == ""

    def test_named_struct(self):
        module = parse_module(
            "(module m\n"
            "  (type %struct.S (struct i32 (array 4 i8)))\n"
            "  (global s %struct.S))"
        )
        st = module.get_global("s").value_type
        assert isinstance(st, StructType)
        assert st.name == "%struct.S"
        assert st.elements[0] == I32
        assert st.elements[1] == ArrayType(IntegerType(8), 4)

    def test_opaque_struct(self):
        module = parse_module("(module m (type %struct.O opaque) (global o %struct.O))")
        assert module.get_global("o").value_type.is_opaque

    def test_packed_struct_type(self):
        module = parse_module("(module m (global s (packed-struct i8 i32)))")
        assert module.get_global("s").value_type.packed is True

    def test_global_attributes(self):
        module = parse_module("(module m (global g i32 external constant (addrspace 270)))")
        gv = module.get_global("g")
        assert isinstance(gv, GlobalVariable)
        assert gv.is_external and gv.is_constant
        assert gv.address_space == 270
        assert gv.type == PointerType(270)

    def test_declaration(self):
        module = parse_module("(module m (function puts (params (%s ptr)) (returns i32)))")
        fn = module.get_function("puts")
        assert fn.is_declaration
        assert fn.return_type == I32
        assert module.defined_functions == []

    def test_params(self):
        fn = _body()
        assert [(a.name, a.type) for a in fn.params] == [("p", PTR), ("n", I64)]
        assert all(isinstance(a, Argument) for a in fn.params)


class TestInstructions:

    @pytest.mark.parametrize("line,cls", [
        ("(%a = alloca i32)", Alloca),
        ("(%v = load i32 %p)", Load),
        ("(store (i32 1) %p)", Store),
        ("(%r = atomicrmw add %p (i32 1))", AtomicRMW),
        ("(%r = cmpxchg %p (i32 0) (i32 1))", AtomicCmpXchg),
        ("(%e = gep i32 %p (i64 1))", GetElementPtr),
        ("(%i = ptrtoint %p i64)", Cast),
        ("(%s = add %n (i64 1))", BinaryOp),
        ("(%c = call ptr @malloc %n)", Call),
        ("(memset %p (i8 0) %n)", MemSet),
        ("(memcpy %p @g (i64 4))", MemCopy),
        ("(memmove %p @g (i64 4))", MemMove),
        ('(%x = opaque i32 "select" %n)', OpaqueInst),
    ])
    def test_forms(self, line, cls):
        assert type(_first(line)) is cls

    def test_names_and_types(self):
        inst = _first("(%v = load i64 %p)")
        assert inst.name == "v"
        assert inst.type == I64
        assert isinstance(inst.pointer, Argument)

    def test_attributes(self):
        inst = _first('(%v = load i32 %p volatile atomic (loc "a.c" 3 9))')
        assert inst.volatile and inst.atomic
        assert inst.location == SourceLocation("a.c", 3, 9)

    def test_location_without_column(self):
        inst = _first('(store (i32 0) %p (loc "a.c" 7))')
        assert inst.location == SourceLocation("a.c", 7, 0)

    def test_constants(self):
        inst = _first("(store (i64 0x10) %p)")
        assert isinstance(inst.value, ConstantInt)
        assert inst.value.value == 16
        neg = _first("(store (i8 -1) %p)").value
        assert neg.zext_value == 255
        assert neg.sext_value == -1

    def test_null(self):
        inst = _first("(store (null) %p)")
        assert isinstance(inst.value, ConstantNull)
        assert inst.value.type == PTR

    def test_gep_fields(self):
        inst = _first("(%e = gep inbounds (array 4 i32) @g (i64 0) (i32 2))")
        assert inst.inbounds
        assert inst.source_type == ArrayType(I32, 4)
        assert isinstance(inst.base, GlobalVariable)
        assert [i.value for i in inst.indices] == [0, 2]
        assert inst.has_all_constant_indices
        assert not inst.has_all_zero_indices

    def test_cast_and_binary(self):
        fn = _body("(%i = ptrtoint %p i32)", "(%j = sub %i (i32 4))")
        cast, binary, _ = fn.instructions()
        assert cast.op is CastOp.PTRTOINT and cast.type == I32
        assert binary.op is BinaryOpcode.SUB and binary.lhs is cast

    def test_inline_constant_expression(self):
        fn = _body("(%v = load i32 (gep (array 4 i32) @g (i64 0) (i64 2)))")
        load = fn.blocks[0].instructions[0]
        assert isinstance(load.pointer, GetElementPtr)
        assert load.pointer.name == ""
        # the expression is an operand, not a block member
        assert len(fn.blocks[0]) == 2

    def test_inline_inttoptr(self):
        load = _first("(%v = load i32 (inttoptr (i64 4096) ptr))")
        assert isinstance(load.pointer, Cast)
        assert load.pointer.op is CastOp.INTTOPTR

    def test_alloca_count_and_addrspace(self):
        fn = _body("(%a = alloca i32 (i64 5))", "(%b = alloca i8 (addrspace 5))")
        a, b, _ = fn.instructions()
        assert a.count.value == 5
        assert b.count is None and b.address_space == 5
        assert b.type == PointerType(5)

    def test_indirect_call(self):
        call = _first("(call void %p)")
        assert call.callee_name is None
        assert call.operands == (call.callee,)

    def test_direct_call(self):
        call = _first("(%c = call ptr @calloc (i64 4) %n)")
        assert call.callee_name == "calloc"
        assert len(call.arguments) == 2

    def test_opaque_drops_forward_reference(self):
        fn = _body('(%x = opaque i64 "phi" %n %later)', "(%later = add %n (i64 1))")
        opaque = fn.blocks[0].instructions[0]
        assert opaque.text == "phi"
        assert [o.name for o in opaque.operands] == ["n"]

    def test_users(self):
        fn = _body("(%i = ptrtoint %p i64)", "(%j = add %i (i64 1))", "(%k = mul %i %j)")
        i, j, k, _ = fn.instructions()
        assert fn.users(i) == (j, k)
        assert fn.users(k) == ()
        assert len(fn) == 4

    def test_render_matches_source(self):
        inst = _first("(%v = load i32 %p volatile)")
        assert render(inst) == "(%v = load i32 %p volatile)"

    def test_end_to_end_module(self):
        module = parse_module(END_TO_END_SXIR)
        fn = module.get_function("main")
        kinds = [type(i).__name__ for i in fn.instructions()]
        assert kinds == ["GetElementPtr", "Store", "Cast", "Cast", "Cast", "Load", "Return"]


class TestErrors:

    def _raises(self, text):
        with pytest.raises(IRParseError) as excinfo:
            parse_module(text, "bad.sxir")
        return excinfo.value

    def test_undefined_value_reports_line(self):
        err = self._raises(
            "(module m\n"
            "  (function f (params)\n"
            "    (block entry\n"
            "      (%v = load i32 %nope)\n"
            "      (ret))))"
        )
        assert "undefined value %nope" in err.message
        assert err.line == 4
        assert str(err).startswith("bad.sxir:4:")

    def test_undefined_global(self):
        err = self._raises("(module m (function f (params) (block b (store (i32 0) @g))))")
        assert "undefined global @g" in err.message

    @pytest.mark.parametrize("text,fragment", [
        ("(module m (global g foo))", "unknown type"),
        ("(module m (global g i0))", "non-zero width"),
        ("(module m (global g i32) (global g i64))", "redefinition of global"),
        ("(module m (type %T (struct i8)) (type %T (struct i8)))", "redefinition of type"),
        ("(module m (type T (struct i8)))", "must start with '%'"),
        ("(module m (global g i32 weird))", "unknown global attribute"),
        ("(module m (bogus))", "unknown module item"),
        ("(function f)", "expected (module"),
        ("(module m (function f (params) (block b (frobnicate %x))))", "unknown operation"),
        ("(module m (function f (params (%p ptr)) (block b (load i32))))", "expects"),
        ("(module m (function f (params (%p ptr)) (block b (%x = load i32 %p)"
         " (%x = load i32 %p))))", "redefinition of %x"),
        ("(module m (function f (params) (block b (ret)) (block b (ret))))", "duplicate block"),
        ("(module m (function f (params)) (function f (params)))", "redefinition of function"),
        ("(module m (function f (params (%p ptr)) (block b (store (null i32) %p))))",
         "pointer type"),
    ])
    def test_rejected(self, text, fragment):
        assert fragment in self._raises(text).message

    def test_empty_document(self):
        assert "found 0" in self._raises("").message

    def test_two_modules(self):
        assert "found 2" in self._raises("(module a) (module b)").message

    def test_missing_file(self, tmp_path):
        path = str(tmp_path / "absent.sxir")
        with pytest.raises(IRParseError) as excinfo:
            parse_file(path)
        assert excinfo.value.file == path

    def test_parse_file(self, sxir_file):
        module = parse_file(sxir_file(MINIMAL_SXIR))
        assert module.name == "minimal"
