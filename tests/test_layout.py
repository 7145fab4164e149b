# tests/test_layout.py
"""
Tests for the data layout oracle: layout-string parsing, sizes,
alignments and struct field offsets.
"""

import pytest

from suspicious_ptr.errors import LayoutError
from suspicious_ptr.ir import (
    I1, I8, I16, I32, I64, PTR, VOID,
    ArrayType, FloatType, IntegerType, PointerType, StructType, VectorType,
)
from suspicious_ptr.layout import DEFAULT_DATA_LAYOUT, DataLayout


class TestParseLayoutString:

    def test_default_is_little_endian(self):
        assert DataLayout().big_endian is False

    def test_big_endian_flag(self):
        assert DataLayout("E-p:32:32").big_endian is True

    def test_spec_is_kept(self):
        assert DataLayout("e-p:32:32").spec == "e-p:32:32"

    def test_default_layout_string(self):
        assert DataLayout().spec == DEFAULT_DATA_LAYOUT

    def test_ignored_components(self):
        layout = DataLayout("e-m:o-n8:16:32:64-S128-A5-G1")
        assert layout.pointer_size() == 8

    @pytest.mark.parametrize("bad", [
        "p:abc:64",
        "i32",
        "i32:12",
        "e--p:64:64",
        "p:64",
        "p:0:64",
        "a",
    ])
    def test_malformed(self, bad):
        with pytest.raises(LayoutError) as excinfo:
            DataLayout(bad)
        assert excinfo.value.spec == bad


class TestPointers:

    def test_default_pointer_width(self):
        layout = DataLayout()
        assert layout.pointer_size_in_bits() == 64
        assert layout.pointer_size() == 8

    def test_32_bit_address_space(self):
        layout = DataLayout()
        assert layout.pointer_size_in_bits(270) == 32
        assert layout.pointer_size(270) == 4

    def test_unknown_address_space_uses_default(self):
        assert DataLayout().pointer_size(5) == 8

    def test_index_width_defaults_to_pointer_width(self):
        layout = DataLayout("e-p:32:32")
        assert layout.index_size_in_bits() == 32

    def test_explicit_index_width(self):
        layout = DataLayout("e-p:64:64:64:32")
        assert layout.pointer_size_in_bits() == 64
        assert layout.index_size_in_bits() == 32

    def test_pointer_type_size(self):
        layout = DataLayout()
        assert layout.store_size(PTR) == 8
        assert layout.store_size(PointerType(270)) == 4


class TestScalarSizes:

    @pytest.mark.parametrize("ty,store,alloc", [
        (I1, 1, 1),
        (I8, 1, 1),
        (I16, 2, 2),
        (I32, 4, 4),
        (I64, 8, 8),
        (IntegerType(24), 3, 4),
        (IntegerType(128), 16, 16),
        (FloatType("float"), 4, 4),
        (FloatType("double"), 8, 8),
        (FloatType("x86_fp80"), 10, 16),
    ], ids=str)
    def test_store_and_alloc_size(self, layout, ty, store, alloc):
        assert layout.store_size(ty) == store
        assert layout.alloc_size(ty) == alloc

    def test_i64_alignment_follows_layout(self):
        assert DataLayout().abi_alignment(I64) == 8
        assert DataLayout("e").abi_alignment(I64) == 4

    def test_void_is_unsized(self, layout):
        assert layout.is_sized(VOID) is False
        assert layout.store_size(VOID) is None
        assert layout.alloc_size(VOID) is None


class TestAggregates:

    def test_array(self, layout):
        assert layout.alloc_size(ArrayType(I32, 10)) == 40

    def test_empty_array(self, layout):
        assert layout.alloc_size(ArrayType(I32, 0)) == 0

    def test_struct_padding(self, layout):
        st = StructType((I8, I32))
        sl = layout.struct_layout(st)
        assert sl.offsets == (0, 4)
        assert sl.size == 8
        assert sl.alignment == 4

    def test_packed_struct(self, layout):
        st = StructType((I8, I32), packed=True)
        sl = layout.struct_layout(st)
        assert sl.offsets == (0, 1)
        assert sl.size == 5
        assert layout.abi_alignment(st) == 1

    def test_tail_padding(self, layout):
        st = StructType((I64, I8))
        assert layout.alloc_size(st) == 16

    def test_struct_with_array_field(self, layout):
        st = StructType((I32, ArrayType(I8, 4)))
        assert layout.struct_layout(st).element_offset(1) == 4
        assert layout.alloc_size(st) == 8

    def test_i64_field_on_32_bit_alignment(self):
        st = StructType((I32, I64))
        assert DataLayout("e").alloc_size(st) == 12
        assert DataLayout().alloc_size(st) == 16

    def test_pointer_field_on_32_bit_target(self):
        sl = DataLayout("e-p:32:32").struct_layout(StructType((I8, PTR)))
        assert sl.offsets == (0, 4)
        assert sl.size == 8

    def test_aggregate_alignment(self):
        st = StructType((I8,))
        assert DataLayout("e-a:64").alloc_size(st) == 8

    def test_opaque_struct_is_unsized(self, layout):
        opaque = StructType(None, name="%struct.O")
        assert layout.struct_layout(opaque) is None
        assert layout.alloc_size(opaque) is None
        assert layout.alloc_size(ArrayType(opaque, 2)) is None
        assert layout.alloc_size(StructType((I32, opaque))) is None


class TestVectors:

    def test_fixed_vector(self, layout):
        vec = VectorType(I32, 4)
        assert layout.type_size_in_bits(vec) == 128
        assert layout.alloc_size(vec) == 16

    def test_odd_vector_rounds_alignment_up(self, layout):
        vec = VectorType(I32, 3)
        assert layout.store_size(vec) == 12
        assert layout.alloc_size(vec) == 16

    def test_scalable_vector_is_unsized(self, layout):
        vec = VectorType(I32, 4, scalable=True)
        assert layout.is_sized(vec) is False
        assert layout.store_size(vec) is None
