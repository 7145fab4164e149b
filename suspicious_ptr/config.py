"""
suspicious_ptr/config.py
════════════════════════

Immutable analysis configuration.

The three opt-in warning categories are plain booleans on a frozen value
that is passed explicitly into the scanner and the runner.  Nothing reads
process-wide state, so runs with different configurations can share a
process (or a thread pool) without interfering.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping

#: Option spellings accepted by ``AnalysisConfig.from_options`` besides the
#: attribute names themselves.
OPTION_ALIASES: Dict[str, str] = {
    "suspiciousptr-warn-roundtrip": "warn_roundtrip",
    "suspiciousptr-warn-computed-inttoptr": "warn_computed_inttoptr",
    "suspiciousptr-warn-const-inttoptr": "warn_const_inttoptr",
    "warn-roundtrip": "warn_roundtrip",
    "warn-computed-inttoptr": "warn_computed_inttoptr",
    "warn-const-inttoptr": "warn_const_inttoptr",
}

_TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
_FALSE_WORDS = frozenset({"0", "false", "no", "off", ""})


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ValueError(f"option {name!r}: expected a boolean, got {value!r}")


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Switches for the opt-in categories (all default off).

    warn_roundtrip         : report non-truncating ptr → int → ptr round-trips
    warn_computed_inttoptr : report non-volatile dereferences of computed addresses
    warn_const_inttoptr    : report non-volatile dereferences of constant addresses
    """
    warn_roundtrip: bool = False
    warn_computed_inttoptr: bool = False
    warn_const_inttoptr: bool = False

    @classmethod
    def all_warnings(cls) -> "AnalysisConfig":
        return cls(True, True, True)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> "AnalysisConfig":
        """
        Build a configuration from a mapping of option names to values.

        Keys may be attribute names (``warn_roundtrip``) or option spellings
        (``suspiciousptr-warn-roundtrip``).  Unknown keys raise ``KeyError``.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, bool] = {}
        for key, value in options.items():
            name = OPTION_ALIASES.get(key, key)
            if name not in known:
                raise KeyError(f"unknown analysis option {key!r}")
            values[name] = _as_bool(key, value)
        return cls(**values)

    def enabled(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


__all__ = [
    "OPTION_ALIASES",
    "AnalysisConfig",
]
