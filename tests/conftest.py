#!/usr/bin/env python
#
#
# -----------------------------------------------------------------------------
"""
Test fixtures
=============
Every test gets its own settings copy, a private result cache and an engine
wired to both, so cached macro results never leak between tests.  Source
files are written into pytest's ``tmp_path`` so path-scoped resolution
(sibling imports, ``require``) has a real directory to work from.
"""
# -----------------------------------------------------------------------------

from __future__ import annotations

import os
import textwrap
from pathlib import Path
from typing import Awaitable, Callable

import pytest

# ── Env vars must be set before importing macrobuild modules ─────────────────
os.environ.setdefault("MACROBUILD_LOG_LEVEL",    "DEBUG")
os.environ.setdefault("MACROBUILD_CACHE_POLICY", "file")

from macrobuild.core.config import Settings, get_settings
from macrobuild.services.macros import MacroCache, MacroEngine, TransformResult


# ── Settings copy per test ────────────────────────────────────────────────────
@pytest.fixture
def settings() -> Settings:
    return get_settings().model_copy()


# ── Private result cache per test ─────────────────────────────────────────────
@pytest.fixture
def cache() -> MacroCache:
    return MacroCache()


@pytest.fixture
def engine(settings: Settings, cache: MacroCache) -> MacroEngine:
    return MacroEngine(settings, cache=cache)


# ── Source files ──────────────────────────────────────────────────────────────
@pytest.fixture
def write(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write dedented *text* to ``tmp_path / name`` and return the path."""
    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return path
    return _write


@pytest.fixture
def expand(engine: MacroEngine, write) -> Callable[..., Awaitable[TransformResult]]:
    """Write a module and run one expansion pass over it."""
    async def _expand(text: str, name: str = "module.py") -> TransformResult:
        path = write(name, text)
        return await engine.transform(path.read_text(encoding="utf-8"), str(path))
    return _expand


# ── Helpers ───────────────────────────────────────────────────────────────────

def run_module(code: str, name: str = "expanded") -> dict:
    """Execute generated code and return its namespace."""
    namespace: dict = {"__name__": name}
    exec(compile(code, f"<{name}>", "exec", dont_inherit=True), namespace)
    return namespace


# -----------------------------------------------------------------------------
