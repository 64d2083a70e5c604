"""
Rewriting
=========
Two transformers that run after every macro in the pass has a result.

``CallSiteRewriter`` swaps each macro call for the expression that rebuilds
its value.  ``DefinitionStripper`` deletes the macro definitions.

Both also record :class:`TextEdit` objects, so the generator can patch the
original text instead of re-emitting the whole tree.  Edits never change the
number of lines they cover.
"""

from __future__ import annotations

import ast
import logging
from typing import Iterable, Sequence

from macrobuild.services.source.generator import TextEdit, node_span
from .context import MacroCallSite, MacroDefinition, SerializedResult

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Call sites
# ---------------------------------------------------------------------------

def _is_atomic(expr: ast.expr) -> bool:
    """Expressions that bind tighter than any surrounding operator."""
    if isinstance(expr, ast.Constant):
        return isinstance(expr.value, (str, bytes, bool)) or expr.value is None
    return isinstance(expr, (ast.List, ast.Dict, ast.Set, ast.Tuple, ast.Call, ast.Attribute, ast.Name))


def _any_expression_allowed(call: ast.Call, parent: ast.AST | None) -> bool:
    """True where the call occupies a slot that accepts any expression."""
    if isinstance(parent, (ast.Assign, ast.AnnAssign, ast.Return, ast.Expr)):
        return parent.value is call
    if isinstance(parent, ast.Call):
        return call in parent.args
    return isinstance(parent, (ast.List, ast.Tuple, ast.Set, ast.Dict, ast.keyword))


class CallSiteRewriter(ast.NodeTransformer):
    """
    Replace recorded macro calls with their serialized results.

    Usage::

        rewriter = CallSiteRewriter(lines, parents)
        rewriter.expand(site, result)       # records a TextEdit
        tree = rewriter.visit(tree)         # swaps the AST nodes
    """

    def __init__(self, lines: Sequence[str], parents: dict[ast.AST, ast.AST]) -> None:
        self.lines = lines
        self.parents = parents
        self.edits: list[TextEdit] = []
        self._expansions: dict[int, tuple[MacroCallSite, ast.expr]] = {}

    def expand(self, site: MacroCallSite, result: SerializedResult) -> TextEdit:
        if site.rewritten:
            raise ValueError(f"call to {site.name!r} at line {site.lineno} was already rewritten")

        expr = ast.parse(result.expression, mode="eval").body
        start, end = node_span(site.node, self.lines)
        replacement = result.expression

        newlines = end[0] - start[0]
        if newlines:
            replacement = "(" + replacement + "\n" * newlines + ")"
        elif not (_is_atomic(expr) or _any_expression_allowed(site.node, self.parents.get(site.node))):
            replacement = f"({replacement})"

        edit = TextEdit(start, end, replacement, macro=site.name)
        self.edits.append(edit)
        self._expansions[id(site.node)] = (site, expr)
        site.rewritten = True
        logger.debug("Expanded %s at line %d", site.name, site.lineno)
        return edit

    def visit_Call(self, node: ast.Call) -> ast.AST:
        self.generic_visit(node)
        entry = self._expansions.get(id(node))
        if entry is None:
            return node
        site, expr = entry
        for child in ast.walk(expr):
            ast.copy_location(child, node)
        expr.macro_provenance = site.name
        return expr


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------

class DefinitionStripper(ast.NodeTransformer):
    """
    Remove every macro definition from the tree.

    A block left with no statements gets a ``pass``.  In the text, a removed
    statement's lines are blanked, or the statement itself is replaced by
    ``pass`` when it shares a line with other code.
    """

    def __init__(self, definitions: Iterable[MacroDefinition], lines: Sequence[str]) -> None:
        self.lines = lines
        self.edits: list[TextEdit] = []
        self._removals = {
            id(stmt): definition.name
            for definition in definitions
            for stmt in definition.removals
        }

    def generic_visit(self, node: ast.AST) -> ast.AST:
        for name, value in ast.iter_fields(node):
            if isinstance(value, list):
                value[:] = self._strip_block(node, value)
            elif isinstance(value, ast.AST):
                new_node = self.visit(value)
                if new_node is None:
                    delattr(node, name)
                else:
                    setattr(node, name, new_node)
        return node

    def _strip_block(self, owner: ast.AST, items: list) -> list:
        kept: list = []
        removed: list[ast.stmt] = []
        for item in items:
            if not isinstance(item, ast.AST):
                kept.append(item)
                continue
            if id(item) in self._removals:
                removed.append(item)
                continue
            item = self.visit(item)
            if item is None:
                continue
            if isinstance(item, ast.AST):
                kept.append(item)
            else:
                kept.extend(item)

        if not removed:
            return kept

        needs_pass = not kept and not isinstance(owner, ast.Module)
        for index, stmt in enumerate(removed):
            self.edits.append(self._edit(stmt, with_pass=needs_pass and index == 0))
            logger.debug("Removed macro %s", self._removals[id(stmt)])
        if needs_pass:
            kept.append(ast.copy_location(ast.Pass(), removed[0]))
        return kept

    def _edit(self, stmt: ast.stmt, with_pass: bool) -> TextEdit:
        start, end = node_span(stmt, self.lines)
        decorators = getattr(stmt, "decorator_list", None)
        if decorators:
            first = min(decorator.lineno for decorator in decorators)
            line = self.lines[first - 1]
            start = (first, len(line) - len(line.lstrip()))

        first_line = self.lines[start[0] - 1]
        last_line = self.lines[end[0] - 1].rstrip("\r\n")
        prefix = first_line[:start[1]]
        suffix = last_line[end[1]:].strip()
        newlines = end[0] - start[0]

        if prefix.strip() or (suffix and not suffix.startswith("#")):
            # shares its line(s) with other statements
            return TextEdit(start, end, "pass" + " \\\n" * newlines)

        replacement = "\n" * newlines
        if with_pass:
            replacement = prefix + "pass" + replacement
        return TextEdit((start[0], 0), (end[0], len(last_line)), replacement)
