"""
MacroRegistry — finds macro definitions and their call sites in one file.

A macro is any function whose body opens with the directive string::

    def version():
        "use macro"
        return read_version()

    async def message():
        "use macro"
        return await load_message()

    url = lambda: ("use macro", URL("https://example.com/?a=1"))

All three spellings are normalised into a :class:`MacroDefinition` backed
by a function definition, so nothing downstream needs to know how a macro
was written.

The scan is read-only.  It records what to rewrite and what to remove; the
tree is only mutated once every macro result for the pass is known.  Calls
to other macros inside a macro body are recorded on that definition
(``MacroDefinition.calls``) rather than with the module's call sites.
"""

from __future__ import annotations

import ast
import copy
import logging
from typing import Sequence

from macrobuild.core.errors import NamingError
from macrobuild.services.source.annotations import has_annotations
from macrobuild.services.source.generator import char_column, node_span
from .context import Dialect, MacroCallSite, MacroDefinition, ScanResult

logger = logging.getLogger(__name__)


DEFAULT_DIRECTIVE = "use macro"


def parent_map(tree: ast.AST) -> dict[ast.AST, ast.AST]:
    return {
        child: parent
        for parent in ast.walk(tree)
        for child in ast.iter_child_nodes(parent)
    }


class MacroRegistry:
    """
    Name → definition table for a single file pass.

    Usage::

        registry = MacroRegistry("pkg/build_info.py")
        scan = registry.scan(tree, lines)
    """

    def __init__(self, path: str, directive: str = DEFAULT_DIRECTIVE) -> None:
        self.path = path
        self.directive = directive
        self._definitions: dict[str, MacroDefinition] = {}

    # ---------------------------------------------------------------- lookup

    def has(self, name: str) -> bool:
        return name in self._definitions

    def get(self, name: str) -> MacroDefinition | None:
        return self._definitions.get(name)

    def registered_names(self) -> list[str]:
        return sorted(self._definitions)

    # ------------------------------------------------------------------ scan

    def scan(self, tree: ast.Module, lines: Sequence[str]) -> ScanResult:
        """Collect definitions first, then call sites (which may precede them)."""
        _DefinitionFinder(self, parent_map(tree), lines).visit(tree)

        result = ScanResult(definitions=dict(self._definitions))
        if not self._definitions:
            return result

        finder = _CallSiteFinder(self, lines)
        finder.visit(tree)
        result.call_sites = finder.call_sites
        result.references = finder.references

        # calls between macros are expanded into the executable copy
        for definition in self._definitions.values():
            inner = _CallSiteFinder(self, lines)
            inner.visit(definition.node)
            definition.calls = inner.call_sites

        for ref in result.references:
            logger.warning(
                "%s:%d: macro %r referenced outside a call; the name will not exist after expansion",
                self.path, ref.lineno, ref.id,
            )
        logger.debug(
            "Scanned %s: %d macro(s), %d call site(s)",
            self.path, len(self._definitions), len(result.call_sites),
        )
        return result

    # ------------------------------------------------------------- internals

    def _add(self, definition: MacroDefinition) -> None:
        existing = self._definitions.get(definition.name)
        if existing is not None:
            raise NamingError(
                f"macro {definition.name!r} is already defined at line {existing.lineno}",
                path=self.path,
                lineno=definition.lineno,
                col_offset=definition.col_offset,
                macro=definition.name,
            )
        self._definitions[definition.name] = definition
        logger.debug("Registered macro: %s (async=%s)", definition.name, definition.is_async)

    def is_directive(self, node: ast.AST) -> bool:
        return (
            isinstance(node, ast.Constant)
            and isinstance(node.value, str)
            and node.value == self.directive
        )


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

class _DefinitionFinder(ast.NodeVisitor):

    def __init__(self, registry: MacroRegistry, parents: dict, lines: Sequence[str]) -> None:
        self.registry = registry
        self.parents = parents
        self.lines = lines

    def _column(self, node: ast.AST) -> int:
        return char_column(self.lines[node.lineno - 1], node.col_offset)

    def _visit_function(self, node):
        body = node.body
        if not (isinstance(body[0], ast.Expr) and self.registry.is_directive(body[0].value)):
            self.generic_visit(node)
            return
        if isinstance(self.parents.get(node), ast.ClassDef):
            logger.warning(
                "%s:%d: method %r carries the macro directive; methods are not expanded",
                self.registry.path, node.lineno, node.name,
            )
            self.generic_visit(node)
            return

        executable = copy.deepcopy(node)
        # decorators would run inside the sandbox; the macro is called once anyway
        executable.decorator_list = []
        self.registry._add(MacroDefinition(
            name=node.name,
            node=executable,
            path=self.registry.path,
            dialect=Dialect(typed=has_annotations(node)),
            removals=[node],
            lineno=node.lineno,
            col_offset=self._column(node),
            source=ast.unparse(executable),
        ))

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function

    def visit_Lambda(self, node: ast.Lambda) -> None:
        body = node.body
        if not (
            isinstance(body, ast.Tuple)
            and len(body.elts) >= 2
            and self.registry.is_directive(body.elts[0])
        ):
            self.generic_visit(node)
            return

        statement, name = self._binding(node)
        if name is None:
            raise NamingError(
                "macro function must have a name; bind it with a plain assignment "
                "(immediately invoked or unbound lambdas are not supported)",
                path=self.registry.path,
                lineno=node.lineno,
                col_offset=self._column(node),
            )

        *effects, result = body.elts[1:]
        stmts: list[ast.stmt] = [ast.Expr(value=copy.deepcopy(e)) for e in effects]
        stmts.append(ast.Return(value=copy.deepcopy(result)))
        executable = ast.FunctionDef(
            name=name,
            args=copy.deepcopy(node.args),
            body=stmts,
            decorator_list=[],
            returns=None,
            type_params=[],
        )
        ast.copy_location(executable, node)
        for stmt in stmts:
            ast.copy_location(stmt, stmt.value)
        ast.fix_missing_locations(executable)

        self.registry._add(MacroDefinition(
            name=name,
            node=executable,
            path=self.registry.path,
            dialect=Dialect(typed=isinstance(statement, ast.AnnAssign)),
            removals=[statement],
            lineno=statement.lineno,
            col_offset=self._column(statement),
            source=ast.unparse(executable),
        ))

    def _binding(self, node: ast.Lambda) -> tuple[ast.stmt | None, str | None]:
        """Return the assignment statement and bound name of a macro lambda."""
        parent = self.parents.get(node)
        if isinstance(parent, ast.Assign) and parent.value is node:
            if len(parent.targets) == 1 and isinstance(parent.targets[0], ast.Name):
                return parent, parent.targets[0].id
        if isinstance(parent, ast.AnnAssign) and parent.value is node:
            if isinstance(parent.target, ast.Name):
                return parent, parent.target.id
        return None, None


# ---------------------------------------------------------------------------
# Call sites
# ---------------------------------------------------------------------------

class _CallSiteFinder(ast.NodeVisitor):
    """Post-order walk: a call nested in another call's arguments comes first."""

    def __init__(self, registry: MacroRegistry, lines: Sequence[str]) -> None:
        self.registry = registry
        self.lines = lines
        self.call_sites: list[MacroCallSite] = []
        self.references: list[ast.Name] = []
        # the original macro statements are removed; their calls are found
        # on the executable copies instead
        self._skip = {
            id(stmt)
            for name in registry.registered_names()
            for stmt in registry.get(name).removals
        }

    def visit(self, node: ast.AST):
        if id(node) in self._skip:
            return None
        return super().visit(node)

    def visit_Call(self, node: ast.Call) -> None:
        func = node.func
        if not (isinstance(func, ast.Name) and self.registry.has(func.id)):
            self.generic_visit(node)
            return

        for arg in node.args:
            self.visit(arg)
        for keyword in node.keywords:
            self.visit(keyword)

        func_span = node_span(func, self.lines)
        call_span = node_span(node, self.lines)
        self.call_sites.append(MacroCallSite(
            name=func.id,
            node=node,
            args_span=(func_span[1], call_span[1]),
            lineno=node.lineno,
            col_offset=call_span[0][1],
        ))

    def visit_Name(self, node: ast.Name) -> None:
        if isinstance(node.ctx, ast.Load) and self.registry.has(node.id):
            self.references.append(node)
