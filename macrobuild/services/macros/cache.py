"""
MacroCache — process-wide store of serialized macro results.

A macro runs at most once per cache key for the lifetime of the process,
however many files or call sites refer to it.  Inserts are first-writer-wins
under a lock.  A computation in progress is published as a
``concurrent.futures.Future``, so callers racing for the same key wait for
it instead of running the macro twice, whether they share the owner's event
loop or run on another one (the import hook expands on a worker thread's
loop).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Future
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger(__name__)


class MacroCache:
    def __init__(self) -> None:
        self._entries: dict[Hashable, Any] = {}
        self._inflight: dict[Hashable, Future] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ lookup

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            return self._entries.get(key, default)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------ update

    def put(self, key: Hashable, value: Any) -> Any:
        """Store *value* unless *key* is already present; return the stored value."""
        with self._lock:
            return self._entries.setdefault(key, value)

    async def get_or_create(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Return the cached value for *key*, computing it with *factory* if absent.

        Usage::

            result = await macro_cache.get_or_create(key, lambda: run(definition))
        """
        with self._lock:
            if key in self._entries:
                logger.debug("Cache hit: %r", key)
                return self._entries[key]
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                # a running future cannot be cancelled by one of its waiters
                future.set_running_or_notify_cancel()
                self._inflight[key] = future

        if not owner:
            logger.debug("Waiting for in-flight computation: %r", key)
            return await asyncio.wrap_future(future)

        try:
            value = await factory()
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            raise

        with self._lock:
            value = self._entries.setdefault(key, value)
            self._inflight.pop(key, None)
        future.set_result(value)
        logger.debug("Cache store: %r", key)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._inflight.clear()


# Singleton shared across the application
macro_cache = MacroCache()
