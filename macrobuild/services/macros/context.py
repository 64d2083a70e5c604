"""
Macro data model
================
Records produced by the registry scan and consumed by the executor,
serializer and rewriter during one file pass.
"""

from __future__ import annotations

import ast
import hashlib
from dataclasses import dataclass, field
from typing import Hashable, Optional, Union

from macrobuild.core.config import CachePolicy

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]


@dataclass(frozen=True)
class Dialect:
    # typed macros carry annotations that are stripped before execution
    typed: bool = False


@dataclass
class MacroDefinition:
    """
    One macro, normalised to a single shape.

    ``node`` is always a function definition, whatever the original spelling
    (``def``, ``async def`` or a name bound to a lambda).  It is a private copy:
    calls to other macros in its body (``calls``) are replaced in place before
    it runs.  ``source`` is the body as written, taken before any such
    replacement.  ``removals`` holds the original statements that disappear
    from the output.
    """
    name: str
    node: FunctionNode
    path: str
    dialect: Dialect = field(default_factory=Dialect)
    removals: list[ast.stmt] = field(default_factory=list)
    lineno: int = 0
    col_offset: int = 0
    source: str = ""
    calls: list[MacroCallSite] = field(default_factory=list)

    @property
    def params(self) -> ast.arguments:
        return self.node.args

    @property
    def is_async(self) -> bool:
        return isinstance(self.node, ast.AsyncFunctionDef)

    def cache_key(self, policy: CachePolicy) -> Hashable:
        if policy == "name":
            return self.name
        if policy == "content":
            digest = hashlib.sha256(self.source.encode("utf-8")).hexdigest()
            return (self.name, digest)
        return (self.path, self.name)


@dataclass
class MacroCallSite:
    """A call of a registered macro; rewritten at most once."""
    name: str
    node: ast.Call
    # text of the parenthesised argument list, "(...)"
    args_span: Optional[tuple[tuple[int, int], tuple[int, int]]] = None
    args_source: str = "()"
    lineno: int = 0
    col_offset: int = 0
    rewritten: bool = False


@dataclass(frozen=True)
class SerializedResult:
    key: Hashable
    expression: str
    macro: str          # provenance


@dataclass
class ScanResult:
    definitions: dict[str, MacroDefinition] = field(default_factory=dict)
    call_sites: list[MacroCallSite] = field(default_factory=list)
    references: list[ast.Name] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.definitions)

    def definition_for(self, site: MacroCallSite) -> Optional[MacroDefinition]:
        return self.definitions.get(site.name)
