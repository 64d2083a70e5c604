"""
Import hook
===========
Expand macros when a module is imported instead of in a separate build step.

    from macrobuild.services import importhook
    importhook.install()
    import build_info          # macros expanded on the way in

The hook is a path hook whose source loader runs the macro engine over any
module whose text contains the directive.  Such modules are always compiled
from source: cached bytecode would hold results from an earlier run.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from importlib.machinery import (
    BYTECODE_SUFFIXES,
    EXTENSION_SUFFIXES,
    SOURCE_SUFFIXES,
    ExtensionFileLoader,
    FileFinder,
    SourceFileLoader,
    SourcelessFileLoader,
)
from typing import Any, Coroutine

from macrobuild.core.config import get_settings
from .macros import MacroEngine

logger = logging.getLogger(__name__)

_engine: MacroEngine | None = None


def get_engine() -> MacroEngine:
    global _engine
    if _engine is None:
        _engine = MacroEngine()
    return _engine


def run_sync(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run *coro* to completion from synchronous code."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    # an import inside a running loop: expand on a private loop in a worker
    with ThreadPoolExecutor(max_workers=1) as pool:
        return pool.submit(asyncio.run, coro).result()


def _has_directive(text: str) -> bool:
    return get_settings().directive in text


class MacroSourceLoader(SourceFileLoader):
    """Source loader that expands macros before compiling."""

    def get_code(self, fullname):
        path = self.get_filename(fullname)
        data = self.get_data(path)
        if not _has_directive(importlib.util.decode_source(data)):
            # plain modules keep the normal bytecode cache
            return super().get_code(fullname)
        return self.source_to_code(data, path)

    def source_to_code(self, data, path, *, _optimize=-1):
        text = importlib.util.decode_source(data)
        if _has_directive(text):
            logger.debug("Expanding macros on import: %s", path)
            text = run_sync(get_engine().transform(text, path)).code
        return compile(text, path, "exec", dont_inherit=True, optimize=_optimize)


_path_hook = FileFinder.path_hook(
    (ExtensionFileLoader, EXTENSION_SUFFIXES),
    (MacroSourceLoader, SOURCE_SUFFIXES),
    (SourcelessFileLoader, BYTECODE_SUFFIXES),
)


def is_installed() -> bool:
    return _path_hook in sys.path_hooks


def install() -> None:
    if is_installed():
        return
    sys.path_hooks.insert(0, _path_hook)
    sys.path_importer_cache.clear()
    logger.debug("Macro import hook installed")


def uninstall() -> None:
    if not is_installed():
        return
    sys.path_hooks.remove(_path_hook)
    sys.path_importer_cache.clear()
    logger.debug("Macro import hook removed")
