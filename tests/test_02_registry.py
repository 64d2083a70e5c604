"""
Registry Test Suite
===================
Tests for:
  - Recognising the three macro spellings (def, async def, bound lambda)
  - Naming errors
  - Call-site discovery order and scope
  - Dangling references and methods
  - Cache keys

Run with:  pytest tests/test_02_registry.py -v
"""

from __future__ import annotations

import ast
import logging
import textwrap

import pytest

from macrobuild.core.errors import NamingError
from macrobuild.services.macros import MacroRegistry
from macrobuild.services.source.generator import split_lines


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def scan(text: str, path: str = "pkg/module.py"):
    source = textwrap.dedent(text)
    return MacroRegistry(path).scan(ast.parse(source), split_lines(source))


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 1. Definitions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TestDefinitions:
    def test_def(self):
        result = scan('''\
            def version():
                "use macro"
                return "1.0"
        ''')
        definition = result.definitions["version"]
        assert definition.lineno == 1
        assert definition.is_async is False
        assert definition.dialect.typed is False
        assert definition.params.args == []

    def test_async_def(self):
        result = scan('''\
            async def message():
                "use macro"
                return "hi"
        ''')
        assert result.definitions["message"].is_async is True

    def test_lambda(self):
        result = scan('''\
            import os
            url = lambda: ("use macro", "https://example.com/")
        ''')
        definition = result.definitions["url"]
        assert isinstance(definition.node, ast.FunctionDef)
        assert definition.lineno == 2
        assert isinstance(definition.removals[0], ast.Assign)
        assert isinstance(definition.node.body[-1], ast.Return)

    def test_lambda_side_effects(self):
        result = scan('''\
            pair = lambda x: ("use macro", print(x), x * 2)
        ''')
        body = result.definitions["pair"].node.body
        assert [type(stmt) for stmt in body] == [ast.Expr, ast.Return]

    def test_annotated_lambda_is_typed(self):
        result = scan('''\
            answer: int = lambda: ("use macro", 42)
        ''')
        assert result.definitions["answer"].dialect.typed is True

    def test_typed_def(self):
        result = scan('''\
            def total(a: int, b: int) -> int:
                "use macro"
                return a + b
        ''')
        assert result.definitions["total"].dialect.typed is True

    def test_directive_must_come_first(self):
        result = scan('''\
            def plain():
                x = 1
                "use macro"
                return x
        ''')
        assert not result
        assert result.definitions == {}

    def test_decorators_are_dropped_from_executable_copy(self):
        result = scan('''\
            import functools

            @functools.lru_cache
            def cached():
                "use macro"
                return 1
        ''')
        definition = result.definitions["cached"]
        assert definition.node.decorator_list == []
        assert definition.removals[0].decorator_list

    def test_nested_definition(self):
        result = scan('''\
            if True:
                def inner():
                    "use macro"
                    return 5
        ''')
        assert "inner" in result.definitions

    def test_custom_directive(self):
        source = 'def f():\n    "compile time"\n    return 1\n'
        result = MacroRegistry("m.py", directive="compile time").scan(ast.parse(source), split_lines(source))
        assert "f" in result.definitions


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 2. Naming errors
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TestNamingErrors:
    def test_immediately_invoked_lambda(self):
        with pytest.raises(NamingError, match="must have a name") as exc:
            scan('value = (lambda: ("use macro", 1))()\n', path="pkg/iife.py")
        assert exc.value.path == "pkg/iife.py"
        assert exc.value.lineno == 1
        assert str(exc.value).startswith("pkg/iife.py:1:")

    def test_tuple_target(self):
        with pytest.raises(NamingError):
            scan('a, b = lambda: ("use macro", 1), 2\n')

    def test_lambda_as_argument(self):
        with pytest.raises(NamingError):
            scan('register(lambda: ("use macro", 1))\n')

    def test_duplicate_name(self):
        with pytest.raises(NamingError, match="already defined at line 1") as exc:
            scan('''\
                def stamp():
                    "use macro"
                    return 1

                stamp = lambda: ("use macro", 2)
            ''')
        assert exc.value.macro == "stamp"
        assert exc.value.lineno == 5


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 3. Call sites
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TestCallSites:
    def test_calls_before_definition_are_found(self):
        result = scan('''\
            VALUE = stamp()

            def stamp():
                "use macro"
                return 1
        ''')
        assert [site.name for site in result.call_sites] == ["stamp"]
        assert result.call_sites[0].lineno == 1

    def test_post_order(self):
        result = scan('''\
            def inner():
                "use macro"
                return 1

            def outer(x):
                "use macro"
                return x

            RESULT = outer(inner(), key=inner())
        ''')
        assert [site.name for site in result.call_sites] == ["inner", "inner", "outer"]

    def test_args_span(self):
        result = scan('''\
            def add(a, b):
                "use macro"
                return a + b

            TOTAL = add(1, 2)
        ''')
        site = result.call_sites[0]
        assert site.args_span == ((5, 11), (5, 17))

    def test_calls_inside_macro_bodies_belong_to_the_definition(self):
        result = scan('''\
            def base():
                "use macro"
                return 1

            def derived():
                "use macro"
                return base() + 1

            VALUE = derived()
        ''')
        assert [site.name for site in result.call_sites] == ["derived"]
        assert [site.name for site in result.definitions["derived"].calls] == ["base"]
        assert result.definitions["base"].calls == []

    def test_attribute_calls_are_not_macros(self):
        result = scan('''\
            def stamp():
                "use macro"
                return 1

            VALUE = obj.stamp()
        ''')
        assert result.call_sites == []

    def test_no_macros_means_no_call_sites(self):
        result = scan("print(stamp())\n")
        assert not result
        assert result.call_sites == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 4. References and methods
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TestWarnings:
    def test_bare_reference_is_reported(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = scan('''\
                def stamp():
                    "use macro"
                    return 1

                alias = stamp
            ''')
        assert [ref.id for ref in result.references] == ["stamp"]
        assert "referenced outside a call" in caplog.text

    def test_methods_are_not_expanded(self, caplog):
        with caplog.at_level(logging.WARNING):
            result = scan('''\
                class Config:
                    def version(self):
                        "use macro"
                        return "1.0"
            ''')
        assert result.definitions == {}
        assert "methods are not expanded" in caplog.text


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# 5. Cache keys
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TestCacheKeys:
    SOURCE = '''\
        def stamp():
            "use macro"
            return 1
    '''

    def test_policies(self):
        definition = scan(self.SOURCE, path="a.py").definitions["stamp"]
        assert definition.cache_key("name") == "stamp"
        assert definition.cache_key("file") == ("a.py", "stamp")
        name, digest = definition.cache_key("content")
        assert name == "stamp"
        assert len(digest) == 64

    def test_content_key_ignores_path(self):
        first = scan(self.SOURCE, path="a.py").definitions["stamp"]
        second = scan(self.SOURCE, path="b.py").definitions["stamp"]
        assert first.cache_key("content") == second.cache_key("content")
        assert first.cache_key("file") != second.cache_key("file")
