"""
Code generator
==============
Turns the rewritten tree back into source text.

With ``retain_lines`` the original text is kept and only the recorded edit
spans are replaced, so every untouched line keeps its number, formatting and
comments.  Edits must preserve the number of newlines they replace; the
rewriter guarantees this by parenthesising multi-line replacements.

Provenance comments (``# @__MACRO__ name``) are appended to the physical line
on which a rewritten call ends.  Python has no inline comments, so when that
line cannot hold one (inside a multi-line string, or continued with a
backslash) the next line that can is used instead.

Without ``retain_lines`` the tree is emitted with :func:`ast.unparse`; the
layout is normalised and provenance comments are not available.
"""

from __future__ import annotations

import ast
import io
import tokenize
from dataclasses import dataclass
from typing import Optional, Sequence

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextEdit:
    """Replace the text between two ``(lineno, column)`` positions.

    Lines are 1-based, columns are 0-based character offsets.
    """
    start: tuple[int, int]
    end: tuple[int, int]
    replacement: str
    macro: Optional[str] = None


@dataclass(frozen=True)
class GeneratorOptions:
    retain_lines: bool = True
    provenance: bool = True
    provenance_tag: str = "@__MACRO__"
    source_file_name: str = "<unknown>"


class SourceMap(BaseModel):
    """Source Map revision 3."""
    version: int = 3
    file: str
    sources: list[str]
    names: list[str] = Field(default_factory=list)
    mappings: str = ""


@dataclass
class GeneratedCode:
    code: str
    source_map: SourceMap


# ---------------------------------------------------------------------------
# Position helpers
# ---------------------------------------------------------------------------

def char_column(line: str, byte_offset: int) -> int:
    """Convert an AST column (UTF-8 byte offset) into a character offset."""
    return len(line.encode("utf-8")[:byte_offset].decode("utf-8", errors="replace"))


def node_span(node: ast.AST, lines: Sequence[str]) -> tuple[tuple[int, int], tuple[int, int]]:
    """Return the ``((line, col), (end_line, end_col))`` character span of *node*."""
    start = (node.lineno, char_column(lines[node.lineno - 1], node.col_offset))
    end = (node.end_lineno, char_column(lines[node.end_lineno - 1], node.end_col_offset))
    return start, end


def split_lines(text: str) -> list[str]:
    """Split *text* into lines the way the tokenizer does, keeping line endings."""
    return io.StringIO(text, newline="").readlines()


def _line_starts(source: str) -> list[int]:
    starts = [0]
    for line in split_lines(source):
        starts.append(starts[-1] + len(line))
    return starts


def _offset(starts: list[int], position: tuple[int, int]) -> int:
    lineno, col = position
    return starts[lineno - 1] + col


def _comment_lines(source: str) -> set[int]:
    """Line numbers whose end lies outside any string or continuation."""
    lines: set[int] = set()
    tokens = tokenize.generate_tokens(io.StringIO(source).readline)
    for tok in tokens:
        if tok.type in (tokenize.NEWLINE, tokenize.NL):
            lines.add(tok.start[0])
    return lines


# ---------------------------------------------------------------------------
# Splicing
# ---------------------------------------------------------------------------

def _outermost(edits: Sequence[TextEdit], starts: list[int]) -> list[TextEdit]:
    """Sort edits by position and drop those nested inside another edit."""
    ordered = sorted(edits, key=lambda e: (_offset(starts, e.start), -_offset(starts, e.end)))
    kept: list[TextEdit] = []
    for edit in ordered:
        if kept and _offset(starts, edit.end) <= _offset(starts, kept[-1].end):
            continue
        if kept and _offset(starts, edit.start) < _offset(starts, kept[-1].end):
            raise ValueError(f"overlapping edits at line {edit.start[0]}")
        kept.append(edit)
    return kept


def splice(source: str, edits: Sequence[TextEdit], span: tuple[tuple[int, int], tuple[int, int]] | None = None) -> str:
    """Apply *edits* to *source*, or to the slice of it covered by *span*."""
    starts = _line_starts(source)
    lo = _offset(starts, span[0]) if span else 0
    hi = _offset(starts, span[1]) if span else len(source)

    parts: list[str] = []
    cursor = lo
    for edit in _outermost(edits, starts):
        begin, end = _offset(starts, edit.start), _offset(starts, edit.end)
        if begin < lo or end > hi:
            continue
        parts.append(source[cursor:begin])
        parts.append(edit.replacement)
        cursor = end
    parts.append(source[cursor:hi])
    return "".join(parts)


def _check_line_count(source: str, edits: Sequence[TextEdit]) -> None:
    starts = _line_starts(source)
    for edit in edits:
        replaced = source[_offset(starts, edit.start):_offset(starts, edit.end)]
        if replaced.count("\n") != edit.replacement.count("\n"):
            raise ValueError(f"edit at line {edit.start[0]} changes the line count")


def _annotate(code: str, source: str, edits: Sequence[TextEdit], tag: str) -> str:
    """Append provenance comments for every rewritten call."""
    safe = _comment_lines(source)
    last = max(safe, default=0)
    notes: dict[int, list[str]] = {}
    for edit in edits:
        if edit.macro is None:
            continue
        lineno = edit.end[0]
        while lineno not in safe and lineno < last:
            lineno += 1
        names = notes.setdefault(lineno, [])
        if edit.macro not in names:
            names.append(edit.macro)

    lines = split_lines(code)
    for lineno, names in notes.items():
        if lineno > len(lines):
            continue
        line = lines[lineno - 1]
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        comment = ", ".join(f"{tag} {name}" for name in names)
        lines[lineno - 1] = f"{body}  # {comment}{ending}"
    return "".join(lines)


# ---------------------------------------------------------------------------
# Source maps
# ---------------------------------------------------------------------------

def _line_mappings(line_count: int) -> str:
    # first segment: generated col 0 -> source 0, line 0, col 0;
    # every following line advances the original line by one
    if line_count <= 0:
        return ""
    return ";".join(["AAAA"] + ["AACA"] * (line_count - 1))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def generate(
    tree: ast.Module,
    source: str,
    edits: Sequence[TextEdit],
    options: GeneratorOptions | None = None,
) -> GeneratedCode:
    """Emit code for the rewritten *tree* of *source*."""
    options = options or GeneratorOptions()
    source_map = SourceMap(file=options.source_file_name, sources=[options.source_file_name])

    if not options.retain_lines:
        code = ast.unparse(tree)
        if code:
            code += "\n"
        return GeneratedCode(code=code, source_map=source_map)

    starts = _line_starts(source)
    kept = _outermost(edits, starts)
    _check_line_count(source, kept)

    code = splice(source, kept)
    if options.provenance:
        code = _annotate(code, source, kept, options.provenance_tag)

    source_map.mappings = _line_mappings(len(split_lines(code)))
    return GeneratedCode(code=code, source_map=source_map)
