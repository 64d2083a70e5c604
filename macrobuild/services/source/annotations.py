"""
Annotation stripping
--------------------
Annotations are evaluated when a ``def`` executes, so a macro annotated with
names from its own module would fail inside the sandbox.  Stripping them
keeps runtime behaviour and drops only the static information.
"""

from __future__ import annotations

import ast


class _AnnotationStripper(ast.NodeTransformer):

    def _strip_arguments(self, args: ast.arguments) -> None:
        for arg in (*args.posonlyargs, *args.args, *args.kwonlyargs):
            arg.annotation = None
            arg.type_comment = None
        if args.vararg is not None:
            args.vararg.annotation = None
        if args.kwarg is not None:
            args.kwarg.annotation = None

    def _visit_function(self, node):
        self._strip_arguments(node.args)
        node.returns = None
        node.type_comment = None
        self.generic_visit(node)
        return node

    visit_FunctionDef = _visit_function
    visit_AsyncFunctionDef = _visit_function

    def visit_AnnAssign(self, node: ast.AnnAssign):
        self.generic_visit(node)
        if node.value is None:
            # bare ``x: int`` declares nothing at runtime inside a function
            return ast.copy_location(ast.Pass(), node)
        target = node.target
        if isinstance(target, ast.Name):
            target.ctx = ast.Store()
        return ast.copy_location(ast.Assign(targets=[target], value=node.value), node)

    def generic_visit(self, node):
        super().generic_visit(node)
        # a body emptied by dropped declarations still needs a statement
        body = getattr(node, "body", None)
        if isinstance(body, list) and not body:
            body.append(ast.Pass())
        return node


def has_annotations(tree: ast.AST) -> bool:
    """True if *tree* carries any parameter, return or variable annotation."""
    for node in ast.walk(tree):
        if isinstance(node, ast.AnnAssign):
            return True
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.returns is not None:
            return True
        if isinstance(node, ast.arg) and node.annotation is not None:
            return True
    return False


def strip_annotations(tree: ast.AST) -> ast.AST:
    """Remove annotations from *tree* in place and return it."""
    tree = _AnnotationStripper().visit(tree)
    ast.fix_missing_locations(tree)
    return tree


def strip(code: str, path: str = "<unknown>") -> str:
    """Return *code* with all static annotations removed."""
    tree = ast.parse(code, filename=path)
    return ast.unparse(strip_annotations(tree))
