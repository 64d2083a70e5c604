"""
Source parser
-------------
Thin wrapper over :func:`ast.parse`.  The grammar options are inferred from
the file path: stub files (``.pyi``) are parsed with type comments enabled,
everything else follows the build settings.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional

from macrobuild.core.config import Settings, get_settings


@dataclass(frozen=True)
class ParserOptions:
    type_comments: bool = False
    feature_version: Optional[tuple[int, int]] = None


def options_for(path: str, settings: Settings | None = None) -> ParserOptions:
    """Return the parser options for *path*."""
    settings = settings or get_settings()
    stub = PurePath(path).suffix == ".pyi"
    return ParserOptions(type_comments=stub or settings.type_comments)


def parse(text: str, options: ParserOptions | None = None, filename: str = "<unknown>") -> ast.Module:
    """Parse *text* into a module tree.  ``SyntaxError`` propagates unchanged."""
    options = options or ParserOptions()
    return ast.parse(
        text,
        filename=filename,
        mode="exec",
        type_comments=options.type_comments,
        feature_version=options.feature_version,
    )
