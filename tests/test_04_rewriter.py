"""
Rewriter & Generator Test Suite
===============================
Tests for:
  - Position helpers and text splicing
  - Line retention and provenance comments
  - Parenthesisation of spliced expressions
  - Definition removal (blanking, pass insertion, shared lines)
  - Re-emitting without line retention
  - Source maps

Run with:  pytest tests/test_04_rewriter.py -v
"""

from __future__ import annotations

import ast

import pytest

from macrobuild.services.source import GeneratorOptions, TextEdit, generate
from macrobuild.services.source.generator import char_column, node_span, splice, split_lines
from macrobuild.services.macros import MacroEngine
from tests.conftest import run_module


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 1. Generator helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TestGeneratorHelpers:
    def test_char_column(self):
        line = "x = 'é'; y = 1\n"
        assert char_column(line, len("x = 'é'; ".encode("utf-8"))) == len("x = 'é'; ")

    def test_node_span_with_unicode(self):
        source = "s = 'ü'; f()\n"
        call = ast.parse(source).body[1].value
        assert node_span(call, split_lines(source)) == ((1, 9), (1, 12))

    def test_split_lines_keeps_form_feed(self):
        assert split_lines("a\x0cb\nc") == ["a\x0cb\n", "c"]

    def test_splice_slice(self):
        source = "x = f(g(1), 2)\n"
        edits = [TextEdit((1, 6), (1, 10), "7")]
        assert splice(source, edits) == "x = f(7, 2)\n"
        assert splice(source, edits, ((1, 5), (1, 14))) == "(7, 2)"

    def test_nested_edits_are_dropped(self):
        source = "x = f(g(1))\n"
        edits = [TextEdit((1, 6), (1, 10), "7"), TextEdit((1, 4), (1, 11), "8")]
        assert splice(source, edits) == "x = 8\n"

    def test_overlapping_edits(self):
        source = "abcdef\n"
        edits = [TextEdit((1, 0), (1, 3), "x"), TextEdit((1, 2), (1, 5), "y")]
        with pytest.raises(ValueError, match="overlapping"):
            splice(source, edits)

    def test_line_count_is_enforced(self):
        source = "a = 1\nb = 2\n"
        tree = ast.parse(source)
        with pytest.raises(ValueError, match="line count"):
            generate(tree, source, [TextEdit((1, 4), (1, 5), "(\n1)")])

    def test_source_map(self):
        source = "a = 1\nb = 2\nc = 3\n"
        generated = generate(ast.parse(source), source, [], GeneratorOptions(source_file_name="m.py"))
        assert generated.code == source
        assert generated.source_map.version == 3
        assert generated.source_map.sources == ["m.py"]
        assert generated.source_map.mappings == "AAAA;AACA;AACA"

    def test_comment_after_multi_line_string(self):
        source = 'x = f("""a\nb""")\ny = 2\n'
        edits = [TextEdit((1, 4), (2, 5), "(1\n)", macro="f")]
        code = generate(ast.parse(source), source, edits).code
        assert code == "x = (1\n)  # @__MACRO__ f\ny = 2\n"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 2. Call-site rewriting
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@pytest.mark.asyncio
class TestCallSites:
    async def test_lines_and_comments_are_kept(self, expand):
        source = '''\
            import os  # a comment

            def stamp():
                "use macro"
                return 42

            VALUE = stamp()
            OTHER = "untouched"   # keep me
        '''
        result = await expand(source)
        lines = result.code.splitlines()
        assert len(lines) == 8
        assert lines[0] == "import os  # a comment"
        assert lines[2:5] == ["", "", ""]
        assert lines[6] == "VALUE = 42  # @__MACRO__ stamp"
        assert lines[7] == 'OTHER = "untouched"   # keep me'

    async def test_operator_context_is_parenthesised(self, expand):
        result = await expand('''\
            def neg():
                "use macro"
                return -5

            TOTAL = neg() + 1
            POWER = 2 ** neg()
        ''')
        assert "TOTAL = (-5) + 1" in result.code
        assert "POWER = 2 ** (-5)" in result.code
        namespace = run_module(result.code)
        assert namespace["TOTAL"] == -4
        assert namespace["POWER"] == 2 ** -5

    async def test_attribute_access(self, expand):
        result = await expand('''\
            def name():
                "use macro"
                return "abc"

            def number():
                "use macro"
                return 7

            UPPER = name().upper()
            REAL = number().real
        ''')
        assert "UPPER = 'abc'.upper()" in result.code
        assert "REAL = (7).real" in result.code
        namespace = run_module(result.code)
        assert namespace["UPPER"] == "ABC"
        assert namespace["REAL"] == 7

    async def test_safe_contexts_are_bare(self, expand):
        result = await expand('''\
            def neg():
                "use macro"
                return -1

            ITEMS = [neg(), (neg(), 0), {neg(): neg()}]
            print(neg(), sep=neg())
        ''')
        assert "ITEMS = [-1, (-1, 0), {-1: -1}]" in result.code
        assert "print(-1, sep=-1)" in result.code

    async def test_multi_line_call(self, expand):
        result = await expand('''\
            def add(a, b):
                "use macro"
                return a + b

            VALUE = add(
                1,
                2,
            )
            AFTER = VALUE
        ''')
        lines = result.code.splitlines()
        assert lines[4:8] == ["VALUE = (3", "", "", ")  # @__MACRO__ add"]
        assert lines[8] == "AFTER = VALUE"
        assert run_module(result.code)["AFTER"] == 3

    async def test_nested_calls_forward_expanded_arguments(self, expand):
        result = await expand('''\
            def inner():
                "use macro"
                return 2

            def outer(x):
                "use macro"
                return x * 10

            RESULT = outer(inner())
        ''')
        assert "RESULT = 20  # @__MACRO__ outer" in result.code

    async def test_several_calls_on_one_line(self, expand):
        result = await expand('''\
            def one():
                "use macro"
                return 1

            def two():
                "use macro"
                return 2

            PAIR = one(), two()
        ''')
        assert "PAIR = 1, 2  # @__MACRO__ one, @__MACRO__ two" in result.code

    async def test_await_of_pending_result(self, expand):
        result = await expand('''\
            async def message():
                "use macro"
                return "hello"

            async def main():
                return await message()
        ''')
        assert "return await __import__('asyncio').sleep(0, result='hello')" in result.code
        assert await run_module(result.code)["main"]() == "hello"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 3. Definition removal
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@pytest.mark.asyncio
class TestDefinitionRemoval:
    async def test_decorators_are_removed(self, expand):
        result = await expand('''\
            import functools

            @functools.lru_cache
            def cached():
                "use macro"
                return 1

            VALUE = cached()
        ''')
        assert "@" not in result.code.replace("@__MACRO__", "")
        assert "def cached" not in result.code
        assert len(result.code.splitlines()) == 8

    async def test_emptied_block_gets_pass(self, expand):
        result = await expand('''\
            if True:
                def inside():
                    "use macro"
                    return 5

            VALUE = inside()
        ''')
        lines = result.code.splitlines()
        assert lines[1] == "    pass"
        assert lines[2:4] == ["", ""]
        assert run_module(result.code)["VALUE"] == 5

    async def test_block_with_other_statements_is_blanked(self, expand):
        result = await expand('''\
            def wrapper():
                x = 1
                helper = lambda: ("use macro", 3)
                return x + helper()
        ''')
        lines = result.code.splitlines()
        assert lines[2] == ""
        assert "return x + (3)" in lines[3]
        assert run_module(result.code)["wrapper"]() == 4

    async def test_shared_line_becomes_pass(self, expand):
        result = await expand('''\
            A = 1; one = lambda: ("use macro", 1)
            B = one()
        ''')
        lines = result.code.splitlines()
        assert lines[0] == "A = 1; pass"
        assert run_module(result.code)["B"] == 1

    async def test_uncalled_macro_is_removed_without_running(self, expand):
        result = await expand('''\
            def never():
                "use macro"
                raise RuntimeError("should not run")

            VALUE = 1
        ''')
        assert "never" not in result.code
        assert result.macros == ["never"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 4. Without line retention
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@pytest.mark.asyncio
class TestReemit:
    async def test_unparse(self, settings, cache, write):
        settings.retain_lines = False
        engine = MacroEngine(settings, cache=cache)
        path = write("module.py", '''\
            def stamp():
                "use macro"
                return [1, 2]


            VALUE = stamp()  # comment
        ''')
        result = await engine.transform(path.read_text(), str(path))
        assert result.code == "VALUE = [1, 2]\n"

    async def test_provenance_can_be_disabled(self, settings, cache, write):
        settings.provenance_comments = False
        engine = MacroEngine(settings, cache=cache)
        path = write("module.py", '''\
            def stamp():
                "use macro"
                return 1
            VALUE = stamp()
        ''')
        result = await engine.transform(path.read_text(), str(path))
        assert result.code.splitlines()[3] == "VALUE = 1"
