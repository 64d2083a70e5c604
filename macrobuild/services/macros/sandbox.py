"""
Sandboxed executor
==================
Runs one macro body to completion inside a fresh namespace.

The namespace holds an explicit capability table and nothing from the
engine's own globals:

  clock        now, monotonic, sleep, datetime, date, time, timedelta, timezone
  environment  environ (read-only, optionally filtered), platform
  resolution   __file__, here, require, import_module, and an ``__import__``
               that finds modules next to the macro's file first
  network      URL, QueryParams, Headers, Request, Response, Client,
               AsyncClient, FormData, fetch
  abort        timeout, Event, CancelledError
  misc         log, is_macro_context

The table limits the ambient bindings a macro is offered.  It is not a
security boundary: macro code can still reach anything through imports or
reflection.
"""

from __future__ import annotations

import ast
import asyncio
import builtins
import copy
import datetime as _datetime
import importlib
import importlib.util
import inspect
import json
import logging
import os
import platform
import time
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Mapping, Optional

import httpx
from starlette.datastructures import FormData

from macrobuild.core.config import Settings, get_settings
from macrobuild.core.errors import ExecutionError
from macrobuild.services.source.annotations import strip_annotations
from .context import MacroCallSite, MacroDefinition

logger = logging.getLogger(__name__)
macro_logger = logging.getLogger("macrobuild.macro")

_RESULT = "__macro_result__"


# ---------------------------------------------------------------------------
# Resolved awaitables
# ---------------------------------------------------------------------------

class Settled:
    """An awaitable that already holds its result."""

    __slots__ = ("value",)

    def __init__(self, value: Any) -> None:
        self.value = value

    async def _resolve(self) -> Any:
        return self.value

    def __await__(self):
        return self._resolve().__await__()

    def __repr__(self) -> str:
        return f"Settled({self.value!r})"


# ---------------------------------------------------------------------------
# Path-scoped module resolution
# ---------------------------------------------------------------------------

class ScopedImporter:
    """
    ``__import__`` replacement for the sandbox.

    A top-level ``import name`` first looks for ``name.py`` next to the
    macro's file; anything else goes through the normal import system.
    Local modules are loaded privately and never enter ``sys.modules``.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir
        self._modules: dict[Path, ModuleType] = {}

    def __call__(self, name, globals=None, locals=None, fromlist=(), level=0):
        if level == 0 and "." not in name:
            candidate = self.base_dir / f"{name}.py"
            if candidate.is_file():
                return self.load(candidate)
        return builtins.__import__(name, globals, locals, fromlist, level)

    def load(self, path: Path) -> ModuleType:
        path = path.resolve()
        module = self._modules.get(path)
        if module is None:
            spec = importlib.util.spec_from_file_location(f"__macro__.{path.stem}", path)
            if spec is None or spec.loader is None:
                raise ImportError(f"cannot load module from {path}")
            module = importlib.util.module_from_spec(spec)
            self._modules[path] = module
            spec.loader.exec_module(module)
            logger.debug("Loaded sandbox module %s", path)
        return module

    def import_module(self, name: str) -> ModuleType:
        if "." in name:
            return importlib.import_module(name)
        return self(name)

    def require(self, relpath: str) -> Any:
        """Load a JSON/TOML document or a Python module relative to the macro."""
        path = (self.base_dir / relpath).resolve()
        if path.suffix == ".json":
            return json.loads(path.read_text(encoding="utf-8"))
        if path.suffix == ".toml":
            return tomllib.loads(path.read_text(encoding="utf-8"))
        if path.is_dir():
            path = path / "__init__.py"
        return self.load(path)


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------

def _now() -> _datetime.datetime:
    return _datetime.datetime.now(tz=_datetime.timezone.utc)


async def fetch(url: str | httpx.URL, *, method: str = "GET", **kwargs) -> httpx.Response:
    """Perform one request and return the fully read response."""
    async with httpx.AsyncClient(follow_redirects=True) as client:
        return await client.request(method, url, **kwargs)


@dataclass
class SandboxCapabilities:
    path: Path
    environ: Mapping[str, str]
    importer: ScopedImporter = field(repr=False)

    @classmethod
    def for_path(cls, path: str, settings: Settings | None = None) -> "SandboxCapabilities":
        settings = settings or get_settings()
        file = Path(path).resolve()
        allowed = settings.sandbox_env_allowlist
        env = {
            key: value for key, value in os.environ.items()
            if allowed is None or key in allowed
        }
        return cls(
            path=file,
            environ=MappingProxyType(env),
            importer=ScopedImporter(file.parent),
        )

    def namespace(self) -> dict[str, Any]:
        """A fresh global namespace for one macro execution."""
        sandbox_builtins = dict(vars(builtins))
        sandbox_builtins["__import__"] = self.importer

        return {
            "__builtins__": sandbox_builtins,
            "__name__": "__macro__",
            "__file__": str(self.path),
            # ── clock ─────────────────────────────────────────────────────
            "now": _now,
            "monotonic": time.monotonic,
            "sleep": asyncio.sleep,
            "datetime": _datetime.datetime,
            "date": _datetime.date,
            "time": _datetime.time,
            "timedelta": _datetime.timedelta,
            "timezone": _datetime.timezone,
            # ── environment ───────────────────────────────────────────────
            "environ": self.environ,
            "platform": platform.platform(),
            # ── resolution relative to the macro's file ───────────────────
            "here": self.path.parent,
            "require": self.importer.require,
            "import_module": self.importer.import_module,
            # ── network-shaped constructors ───────────────────────────────
            "URL": httpx.URL,
            "QueryParams": httpx.QueryParams,
            "Headers": httpx.Headers,
            "Request": httpx.Request,
            "Response": httpx.Response,
            "Client": httpx.Client,
            "AsyncClient": httpx.AsyncClient,
            "FormData": FormData,
            "fetch": fetch,
            # ── abort signalling ──────────────────────────────────────────
            "timeout": asyncio.timeout,
            "Event": asyncio.Event,
            "CancelledError": asyncio.CancelledError,
            # ── misc ──────────────────────────────────────────────────────
            "log": macro_logger.info,
            "is_macro_context": True,
        }


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------

class SandboxExecutor:
    """
    Execute macro definitions.

    Usage::

        executor = SandboxExecutor()
        value = await executor.run(definition, "()")
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def run(
        self,
        definition: MacroDefinition,
        args_source: str = "()",
        site: Optional[MacroCallSite] = None,
    ) -> Any:
        """
        Run *definition* called with *args_source* and return its value.

        An awaitable result is driven to completion here and handed back as
        a :class:`Settled` so the serializer can keep its asynchronous shape.
        """
        namespace = SandboxCapabilities.for_path(definition.path, self.settings).namespace()

        try:
            program = self._program(definition, args_source, site)
            exec(compile(program, definition.path, "exec", dont_inherit=True), namespace)
        except Exception as exc:
            raise self._error(definition, exc) from exc

        result = namespace[_RESULT]
        if not inspect.isawaitable(result):
            logger.debug("Macro %s returned %s", definition.name, type(result).__name__)
            return result

        try:
            value = await result
        except Exception as exc:
            raise self._error(definition, exc) from exc
        logger.debug("Macro %s resolved to %s", definition.name, type(value).__name__)
        return Settled(value)

    def _program(
        self,
        definition: MacroDefinition,
        args_source: str,
        site: Optional[MacroCallSite],
    ) -> ast.Module:
        """The macro definition followed by ``__macro_result__ = name(args)``."""
        func = copy.deepcopy(definition.node)
        if definition.dialect.typed and self.settings.strip_annotations:
            strip_annotations(func)

        call = ast.parse(f"{definition.name}{args_source}", mode="eval").body
        if site is not None:
            ast.increment_lineno(call, site.lineno - 1)
        assign = ast.Assign(targets=[ast.Name(id=_RESULT, ctx=ast.Store())], value=call)
        ast.copy_location(assign, call)

        module = ast.Module(body=[func, assign], type_ignores=[])
        return ast.fix_missing_locations(module)

    @staticmethod
    def _error(definition: MacroDefinition, exc: Exception) -> ExecutionError:
        return ExecutionError(
            f"macro {definition.name!r} failed: {type(exc).__name__}: {exc}",
            path=definition.path,
            lineno=definition.lineno,
            col_offset=definition.col_offset,
            macro=definition.name,
        )
