"""
Source collaborators: parsing, annotation stripping and code generation.
"""

from .parser import ParserOptions, options_for, parse
from .annotations import strip, strip_annotations, has_annotations
from .generator import GeneratedCode, GeneratorOptions, SourceMap, TextEdit, generate

__all__ = [
    "ParserOptions",
    "options_for",
    "parse",
    "strip",
    "strip_annotations",
    "has_annotations",
    "GeneratedCode",
    "GeneratorOptions",
    "SourceMap",
    "TextEdit",
    "generate",
]
