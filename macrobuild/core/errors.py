#!/usr/bin/env python
#
#
# -----------------------------------------------------------------------------
"""
Error taxonomy
==============
Every error raised while expanding a file is fatal for that file's pass:

- NamingError         — a macro closure has no derivable name, or a name is
                        defined twice in the same file
- ExecutionError      — the macro body raised, or its awaitable failed
- SerializationError  — the macro's result cannot be written back as source

Nothing is retried.  The build pipeline turns these into a failed build.
"""
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Optional


# -----------------------------------------------------------------------------

class MacroError(Exception):
    """Base class for all expansion failures."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        lineno: Optional[int] = None,
        col_offset: Optional[int] = None,
        macro: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.lineno = lineno
        self.col_offset = col_offset
        self.macro = macro

    @property
    def location(self) -> str:
        parts = [self.path or "<unknown>"]
        if self.lineno is not None:
            parts.append(str(self.lineno))
            if self.col_offset is not None:
                parts.append(str(self.col_offset))
        return ":".join(parts)

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


# -----------------------------------------------------------------------------

class NamingError(MacroError):
    pass


# -----------------------------------------------------------------------------

class ExecutionError(MacroError):
    pass


# -----------------------------------------------------------------------------

class SerializationError(MacroError):
    pass


# -----------------------------------------------------------------------------
