"""
suspicious_ptr/errors.py
════════════════════════

Exception hierarchy for infrastructure failures.

The analysis itself never raises: every ambiguous resolution step simply
abstains.  These exceptions cover the layers around it (reading IR text and
building a data layout) so that the CLI can map them to an exit code
instead of a traceback.

  SuspiciousPtrError (base)
  ├── IRParseError    - malformed or inconsistent ``.sxir`` text
  └── LayoutError     - malformed data layout string / unsized query
"""

from __future__ import annotations

from typing import Optional


class SuspiciousPtrError(Exception):
    """Base class for every error raised by this package."""


class IRParseError(SuspiciousPtrError):
    """Raised when IR text cannot be mapped onto the IR model.

    Carries an optional source position so the user sees *where* in the
    input the problem occurred.
    """

    def __init__(
        self,
        message: str,
        file: str = "<string>",
        line: int = 0,
        column: int = 0,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.file = file
        self.line = line
        self.column = column

    def __str__(self) -> str:
        if self.line:
            return f"{self.file}:{self.line}:{self.column}: {self.message}"
        return f"{self.file}: {self.message}"


class LayoutError(SuspiciousPtrError):
    """Raised for a malformed data layout specification."""

    def __init__(self, message: str, spec: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.spec = spec

    def __str__(self) -> str:
        if self.spec is not None:
            return f"{self.message} (in data layout {self.spec!r})"
        return self.message


__all__ = [
    "SuspiciousPtrError",
    "IRParseError",
    "LayoutError",
]
