"""
suspicious_ptr/findings.py
══════════════════════════

Finding types produced by the scanner.

Findings form a closed family: one frozen dataclass per category, each
carrying only the evidence that category needs.

  Finding (abstract)
  ├── OutOfBoundsAccess      DEF-OOB               error
  └── _IntToPtrFinding
      ├── TruncatingRoundTrip    DEF-TRUNC-ROUNDTRIP   error
      ├── RoundTrip              ROUNDTRIP             warning (opt-in)
      ├── ConstantIntToPtr       CONST-INTTOPTR        warning (opt-in)
      └── ComputedIntToPtr       COMPUTED-INTTOPTR     warning (opt-in)

Every finding can render itself as the classic one-block text form::

    [SuspiciousPtr][DEF-OOB] fn file.c:12:5: constant out-of-bounds memory access (offset=8, access=4B, object=8B) base=@g
      IR: (%v = load i32 %p)

as a JSON-serialisable dict, and as a GCC-style one-liner.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .ir import (
    Alloca,
    Call,
    GetElementPtr,
    GlobalVariable,
    Instruction,
    SourceLocation,
    Value,
    format_location,
    render,
    strip_pointer_casts,
)

TOOL_TAG = "SuspiciousPtr"


# ═════════════════════════════════════════════════════════════════════════
#  SEVERITY / CATEGORY
# ═════════════════════════════════════════════════════════════════════════

class Severity(enum.Enum):
    """
    Finding severity.

    Each carries:
      • label       — the string used in text output
      • color       — termcolor colour name
      • sarif_level — SARIF 2.1.0 ``level`` string
    """

    ERROR = ("error", "red", "error")
    WARNING = ("warning", "yellow", "warning")

    def __init__(self, label: str, color: str, sarif_level: str) -> None:
        self.label = label
        self.color = color
        self.sarif_level = sarif_level


class Category(enum.Enum):
    """Finding categories: (tag, severity, CWE, short description)."""

    DEF_OOB = ("DEF-OOB", Severity.ERROR, 119,
               "constant out-of-bounds memory access")
    DEF_TRUNC_ROUNDTRIP = ("DEF-TRUNC-ROUNDTRIP", Severity.ERROR, 197,
                           "dereference of a pointer round-tripped through a narrower integer")
    ROUNDTRIP = ("ROUNDTRIP", Severity.WARNING, 704,
                 "dereference of a pointer round-tripped through an integer")
    CONST_INTTOPTR = ("CONST-INTTOPTR", Severity.WARNING, 587,
                      "non-volatile dereference of a constant address")
    COMPUTED_INTTOPTR = ("COMPUTED-INTTOPTR", Severity.WARNING, 704,
                         "non-volatile dereference of a computed address")

    def __init__(self, tag: str, severity: Severity, cwe: int, description: str) -> None:
        self.tag = tag
        self.severity = severity
        self.cwe = cwe
        self.description = description

    @classmethod
    def from_tag(cls, tag: str) -> "Category":
        for member in cls:
            if member.tag == tag:
                return member
        raise KeyError(tag)


# ═════════════════════════════════════════════════════════════════════════
#  FINDINGS
# ═════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, kw_only=True)
class Finding:
    """
    Common part of every finding.

    ``instruction`` is the memory operation that performs the offending
    access; ``location`` is its debug location, if any.
    """
    function: str
    instruction: Instruction

    category: ClassVar[Category]

    @property
    def location(self) -> Optional[SourceLocation]:
        return self.instruction.location

    @property
    def location_str(self) -> str:
        return format_location(self.location)

    @property
    def severity(self) -> Severity:
        return self.category.severity

    @property
    def message(self) -> str:
        raise NotImplementedError

    def evidence(self) -> List[Tuple[str, str]]:
        """(label, rendered IR) pairs shown beneath the message."""
        return [("IR", render(self.instruction))]

    def details(self) -> Dict[str, Any]:
        """Category-specific numeric evidence."""
        return {}

    # ── serialisation ─────────────────────────────────────────────────────

    def to_text(self) -> str:
        lines = [f"[{TOOL_TAG}][{self.category.tag}] {self.function} "
                 f"{self.location_str}: {self.message}"]
        lines.extend(f"  {label}: {text}" for label, text in self.evidence())
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        loc = self.location
        result: Dict[str, Any] = {
            "category": self.category.tag,
            "severity": self.severity.label,
            "function": self.function,
            "file": loc.file if loc else "",
            "line": loc.line if loc else 0,
            "column": loc.column if loc else 0,
            "message": self.message,
            "cwe": self.category.cwe,
        }
        result.update(self.details())
        result["evidence"] = {label: text for label, text in self.evidence()}
        return result

    def to_json_str(self) -> str:
        return json.dumps(self.to_dict())

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message [tag]."""
        return (f"{self.location_str}: {self.severity.label}: "
                f"{self.message} [{self.category.tag}]")


def describe_base(base: Value) -> str:
    """Short identity of a base object: ``@g``, ``%alloca`` or ``heap:malloc``."""
    base = strip_pointer_casts(base)
    while isinstance(base, GetElementPtr):
        base = strip_pointer_casts(base.base)
    if isinstance(base, GlobalVariable):
        return f"@{base.name}"
    if isinstance(base, Alloca):
        return "%alloca"
    if isinstance(base, Call) and base.callee_name:
        return f"heap:{base.callee_name}"
    return ""


@dataclass(frozen=True, kw_only=True)
class OutOfBoundsAccess(Finding):
    """An access provably outside its base object (or subobject)."""
    base: Value
    offset: int
    access_size: int
    object_size: Optional[int]
    allocation: Optional[Value] = None

    category: ClassVar[Category] = Category.DEF_OOB

    @property
    def message(self) -> str:
        size = f"{self.object_size}B" if self.object_size is not None else "?"
        text = (f"constant out-of-bounds memory access (offset={self.offset}, "
                f"access={self.access_size}B, object={size})")
        described = describe_base(self.allocation if self.allocation is not None else self.base)
        if described:
            text += f" base={described}"
        return text

    def evidence(self) -> List[Tuple[str, str]]:
        items = [("IR", render(self.instruction)), ("Base", render(self.base))]
        if self.allocation is not None:
            items.append(("Allocation", render(self.allocation)))
        return items

    def details(self) -> Dict[str, Any]:
        return {
            "offset": self.offset,
            "access_size": self.access_size,
            "object_size": self.object_size,
            "base": describe_base(self.base) or None,
        }


@dataclass(frozen=True, kw_only=True)
class _IntToPtrFinding(Finding):
    """Dereference of a pointer materialised by ``inttoptr``."""
    root: Value
    origin: Value

    @property
    def message(self) -> str:
        return "dereferenced integer-to-pointer materialization"

    def evidence(self) -> List[Tuple[str, str]]:
        items = [("IR", render(self.instruction)), ("From", render(self.root))]
        if self.origin is not self.root:
            items.append(("Origin", render(self.origin)))
        return items


@dataclass(frozen=True, kw_only=True)
class TruncatingRoundTrip(_IntToPtrFinding):
    integer_bits: int
    pointer_bits: int

    category: ClassVar[Category] = Category.DEF_TRUNC_ROUNDTRIP

    @property
    def message(self) -> str:
        return (f"dereferenced integer-to-pointer materialization "
                f"(pointer truncated to {self.integer_bits} bits, "
                f"pointer width {self.pointer_bits})")

    def details(self) -> Dict[str, Any]:
        return {"integer_bits": self.integer_bits, "pointer_bits": self.pointer_bits}


@dataclass(frozen=True, kw_only=True)
class RoundTrip(_IntToPtrFinding):
    integer_bits: int
    pointer_bits: int

    category: ClassVar[Category] = Category.ROUNDTRIP

    def details(self) -> Dict[str, Any]:
        return {"integer_bits": self.integer_bits, "pointer_bits": self.pointer_bits}


@dataclass(frozen=True, kw_only=True)
class ConstantIntToPtr(_IntToPtrFinding):
    address: int

    category: ClassVar[Category] = Category.CONST_INTTOPTR

    @property
    def message(self) -> str:
        return (f"dereferenced integer-to-pointer materialization "
                f"(constant address {self.address:#x})")

    def details(self) -> Dict[str, Any]:
        return {"address": self.address}


@dataclass(frozen=True, kw_only=True)
class ComputedIntToPtr(_IntToPtrFinding):
    category: ClassVar[Category] = Category.COMPUTED_INTTOPTR


#: Every concrete finding class, in category order.
FINDING_TYPES = (
    OutOfBoundsAccess,
    TruncatingRoundTrip,
    RoundTrip,
    ConstantIntToPtr,
    ComputedIntToPtr,
)


__all__ = [
    "TOOL_TAG",
    "Severity",
    "Category",
    "Finding",
    "describe_base",
    "OutOfBoundsAccess",
    "TruncatingRoundTrip",
    "RoundTrip",
    "ConstantIntToPtr",
    "ComputedIntToPtr",
    "FINDING_TYPES",
]
