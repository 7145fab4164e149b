# tests/conftest.py
"""
Shared .sxir sources and fixtures for the suspicious_ptr test suite.

The module-level constants are imported directly by the test modules;
the fixtures wrap the ones most tests need already parsed.
"""

import pytest

from suspicious_ptr.config import AnalysisConfig
from suspicious_ptr.ir_parser import parse_module
from suspicious_ptr.layout import DataLayout
from suspicious_ptr.scanner import scan_function


# ═════════════════════════════════════════════════════════════════════════
#  SOURCES
# ═════════════════════════════════════════════════════════════════════════

MINIMAL_SXIR = """\
(module minimal
  (function empty (params)
    (block entry
      (ret))))
"""

# out-of-range constant index into a 4-byte global, then a pointer squeezed
# through an i8 and widened back before the dereference
END_TO_END_SXIR = """\
(module e2e
  (global src_buf (array 4 i8))
  (function main (params)
    (block entry
      (%p = gep inbounds (array 4 i8) @src_buf (i64 0) (i64 5) (loc "e2e.c" 4 3))
      (store (i8 1) %p (loc "e2e.c" 4 10))
      (%a = ptrtoint @src_buf i8 (loc "e2e.c" 6 20))
      (%w = zext %a i64)
      (%q = inttoptr %w ptr)
      (%v = load i8 %q (loc "e2e.c" 7 11))
      (ret))))
"""

MEMSET_TRUNC_SXIR = """\
(module memset_2
  (global src_buf (array 4 i8) external)
  (function test (params)
    (block entry
      (%t = ptrtoint @src_buf i8)
      (%z = zext %t i16)
      (%p = inttoptr %z ptr)
      (memset %p (i8 0) (i64 4) (loc "memset_2.c" 15 5))
      (ret))))
"""

HEAP_SXIR = """\
(module heap
  (function heap_overflow (params)
    (block entry
      (%m = call ptr @malloc (i64 8))
      (%e = gep i32 %m (i64 2))
      (store (i32 0) %e (loc "heap.c" 5 8))
      (ret)))
  (function stack_overflow (params)
    (block entry
      (%buf = alloca (array 4 i32))
      (%e = gep (array 4 i32) %buf (i64 0) (i64 3))
      (%v = load i64 %e (loc "heap.c" 11 12))
      (ret)))
  (function spilled (params)
    (block entry
      (%slot = alloca ptr)
      (%m = call ptr @calloc (i64 4) (i64 4))
      (store %m %slot)
      (%p = load ptr %slot)
      (%e = gep i8 %p (i64 16))
      (store (i8 0) %e (loc "heap.c" 20 5))
      (ret)))
  (function in_bounds (params)
    (block entry
      (%m = call ptr @malloc (i64 16))
      (%e = gep i32 %m (i64 3))
      (store (i32 0) %e)
      (ret))))
"""

INTTOPTR_SXIR = """\
(module inttoptr
  (global slot i64)
  (global low i32 (addrspace 270))
  (function widen (params)
    (block entry
      (%i = ptrtoint @slot i64)
      (%p = inttoptr %i ptr)
      (%v = load i32 %p (loc "rt.c" 3 7))
      (ret)))
  (function narrow_as (params)
    (block entry
      (%i = ptrtoint @low i32)
      (%p = inttoptr %i (ptr 270))
      (%v = load i32 %p (loc "rt.c" 8 7))
      (ret)))
  (function fixed (params)
    (block entry
      (%p = inttoptr (i64 0x1000) ptr)
      (%v = load i32 %p (loc "rt.c" 12 7))
      (%w = load i32 %p volatile (loc "rt.c" 13 7))
      (ret)))
  (function computed (params (%addr i64))
    (block entry
      (%m = mul %addr (i64 8))
      (%p = inttoptr %m ptr)
      (store (i32 0) %p (loc "rt.c" 18 3))
      (store (i32 0) %p volatile (loc "rt.c" 19 3))
      (ret))))
"""

COPY_SXIR = """\
(module copies
  (global small (array 4 i8))
  (global big (array 16 i8))
  (global wide i64)
  (function copy_trunc (params)
    (block entry
      (%a = ptrtoint @wide i32)
      (%d = inttoptr %a ptr)
      (memcpy %d @small (i64 8) (loc "copy.c" 9 3))
      (ret)))
  (function copy_small (params)
    (block entry
      (memcpy @big @small (i64 8) (loc "copy.c" 14 3))
      (ret)))
  (function spill_len (params)
    (block entry
      (%n = alloca i64)
      (store (i64 32) %n)
      (%len = load i64 %n)
      (memset @small (i8 0) %len (loc "copy.c" 21 3))
      (ret))))
"""

CLEAN_SXIR = """\
(module clean
  (global table (array 8 i32))
  (function puts (params (%s ptr)) (returns i32))
  (function ok (params (%i i64))
    (block entry
      (%e = gep (array 8 i32) @table (i64 0) (i64 7))
      (%v = load i32 %e)
      (%d = gep (array 8 i32) @table (i64 0) %i)
      (store (i32 1) %d)
      (ret))))
"""


# ═════════════════════════════════════════════════════════════════════════
#  HELPERS
# ═════════════════════════════════════════════════════════════════════════

def scan_source(text, function=None, config=None):
    """Parse ``text`` and scan one function (or all, concatenated)."""
    module = parse_module(text)
    layout = DataLayout.for_module(module)
    if function is not None:
        return scan_function(module.get_function(function), layout, config)
    findings = []
    for fn in module.defined_functions:
        findings.extend(scan_function(fn, layout, config))
    return findings


def tags(findings):
    return [f.category.tag for f in findings]


# ═════════════════════════════════════════════════════════════════════════
#  FIXTURES
# ═════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="module")
def layout():
    return DataLayout()


@pytest.fixture
def all_warnings():
    return AnalysisConfig.all_warnings()


@pytest.fixture(scope="module")
def e2e_module():
    return parse_module(END_TO_END_SXIR, "e2e.sxir")


@pytest.fixture
def sxir_file(tmp_path):
    """Write an .sxir source into a temporary file and return its path."""
    def _write(text, name="module.sxir"):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)
    return _write
