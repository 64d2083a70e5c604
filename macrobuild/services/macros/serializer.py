"""
Structured value serializer
===========================
Turns a macro's return value into a Python expression that rebuilds it when
the generated module is imported.

  - ``None``, bools, ints, floats (``nan``/``inf`` included), complex,
    str, bytes and ``...`` become literals or builtin calls.
  - Exact ``list``, ``tuple``, ``dict``, ``set`` and ``frozenset`` become
    displays.
  - Types known to the reducer registry become constructor calls, written
    with ``__import__`` so the expression needs no import statement.
  - A list, dict or set reached more than once (shared or cyclic) is bound
    to a lambda parameter and filled in place, so identity survives::

        (lambda _0: (_0.extend([1, _0]), _0)[-1])([])

  - A pending result is awaited and re-wrapped in an already resolved
    awaitable, ``__import__('asyncio').sleep(0, result=...)``.

Anything else (functions, arbitrary objects, subclasses of the containers
above without a reducer) raises :class:`SerializationError`.
"""

from __future__ import annotations

import inspect
import logging
import math
from collections.abc import Mapping
from types import BuiltinFunctionType, FunctionType, MethodType
from typing import Any, Optional

import httpx

from macrobuild.core.errors import SerializationError
from .reducers import ReducerRegistry, Reduction, reducers as default_reducers

logger = logging.getLogger(__name__)

_SCALARS = (type(None), bool, int, float, complex, str, bytes, type(Ellipsis))
_HOISTABLE = (list, dict, set)
# decimal repr of ints is capped by sys.set_int_max_str_digits; hex is not
_LARGE_INT = 10 ** 1000


class Serializer:
    """
    Usage::

        serializer = Serializer()
        expression = await serializer.serialize(value)
    """

    def __init__(self, registry: ReducerRegistry | None = None) -> None:
        self.registry = registry or default_reducers

    async def serialize(self, value: Any) -> str:
        pending = inspect.isawaitable(value)
        if pending:
            value = await value
        await drain(value)
        expression = self.uneval(value)
        if pending:
            return f"__import__('asyncio').sleep(0, result={expression})"
        return expression

    def uneval(self, value: Any) -> str:
        try:
            return _Uneval(self.registry).run(value)
        except RecursionError as exc:
            raise SerializationError("value is nested too deeply to serialize") from exc


# ---------------------------------------------------------------------------
# Body draining
# ---------------------------------------------------------------------------

async def drain(value: Any) -> None:
    """Read the body of every httpx request/response reachable from *value*."""
    seen: set[int] = set()
    stack = [value]
    while stack:
        item = stack.pop()
        if isinstance(item, _SCALARS) or id(item) in seen:
            continue
        seen.add(id(item))

        if isinstance(item, httpx.Response):
            await _read(item, httpx.ResponseNotRead)
            try:
                stack.append(item.request)
            except RuntimeError:
                pass    # no request attached
        elif isinstance(item, httpx.Request):
            await _read(item, httpx.RequestNotRead)
        elif isinstance(item, Mapping):
            for key, val in item.items():
                stack.extend((key, val))
        elif isinstance(item, (list, tuple, set, frozenset)):
            stack.extend(item)


async def _read(message: httpx.Request | httpx.Response, not_read: type[Exception]) -> None:
    try:
        message.content
    except not_read:
        pass
    else:
        return
    try:
        if isinstance(message.stream, httpx.AsyncByteStream):
            await message.aread()
        else:
            message.read()
    except (httpx.HTTPError, httpx.StreamError) as exc:
        raise SerializationError(f"could not read {type(message).__name__} body: {exc}") from exc
    logger.debug("Drained %s body (%d bytes)", type(message).__name__, len(message.content))


# ---------------------------------------------------------------------------
# Expression builder
# ---------------------------------------------------------------------------

class _Uneval:
    """One serialization: a scan that finds shared objects, then rendering."""

    def __init__(self, registry: ReducerRegistry) -> None:
        self.registry = registry
        self.reductions: dict[int, Reduction] = {}
        self.synthetic: set[int] = set()
        self.visits: dict[int, int] = {}
        self.order: list[Any] = []
        self.hoisted: set[int] = set()
        self.names: dict[int, str] = {}
        # keeps reduction arguments alive so their ids stay unique
        self._keep: list[Any] = []

    def run(self, value: Any) -> str:
        self._scan(value, [], set())

        shared = [item for item in self.order if id(item) in self.hoisted]
        for index, item in enumerate(shared):
            self.names[id(item)] = f"_{index}"

        root = self._render(value)
        if not shared:
            return root

        params = ", ".join(self.names[id(item)] for item in shared)
        inits = ", ".join(_EMPTY[type(item)] for item in shared)
        fills = [fill for fill in (self._fill(item) for item in shared) if fill]
        if not fills:
            return f"(lambda {params}: {root})({inits})"
        body = ", ".join([*fills, root])
        return f"(lambda {params}: ({body})[-1])({inits})"

    # ------------------------------------------------------------------ scan

    def _scan(self, value: Any, path: list[Any], on_path: set[int]) -> None:
        if type(value) in _SCALARS:
            return
        key = id(value)
        if key in on_path:
            self._break_cycle(value, path)
            return

        kind = type(value)
        if kind in _HOISTABLE and key not in self.synthetic:
            count = self.visits.get(key, 0) + 1
            self.visits[key] = count
            if count > 1:
                self.hoisted.add(key)
                return
            self.order.append(value)

        path.append(value)
        on_path.add(key)
        for child in self._children(value):
            self._scan(child, path, on_path)
        on_path.discard(key)
        path.pop()

    def _break_cycle(self, target: Any, path: list[Any]) -> None:
        index = next(i for i, item in enumerate(path) if item is target)
        for item in path[index:]:
            if type(item) in _HOISTABLE and id(item) not in self.synthetic:
                self.hoisted.add(id(item))
                return
        raise SerializationError(
            f"cyclic reference through {type(target).__qualname__} cannot be serialized"
        )

    def _children(self, value: Any) -> list[Any]:
        kind = type(value)
        if kind in (list, tuple, set, frozenset):
            return list(value)
        if kind is dict:
            return [part for pair in value.items() for part in pair]
        return self._reduce(value).values

    def _reduce(self, value: Any) -> Reduction:
        reduction = self.reductions.get(id(value))
        if reduction is not None:
            return reduction

        reduction = self.registry.reduce(value)
        if reduction is None:
            raise SerializationError(_unsupported(value))
        self.reductions[id(value)] = reduction
        self._keep.append(value)
        for arg in reduction.values:
            self._keep.append(arg)
            if type(arg) in _HOISTABLE:
                self.synthetic.add(id(arg))
        return reduction

    # ---------------------------------------------------------------- render

    def _render(self, value: Any) -> str:
        kind = type(value)
        if kind in _SCALARS:
            return _scalar(value)

        name = self.names.get(id(value))
        if name is not None:
            return name

        if kind is list:
            return f"[{self._items(value)}]"
        if kind is tuple:
            if len(value) == 1:
                return f"({self._render(value[0])},)"
            return f"({self._items(value)})"
        if kind is dict:
            return f"{{{self._pairs(value)}}}"
        if kind is set:
            return f"{{{self._items(value)}}}" if value else "set()"
        if kind is frozenset:
            return f"frozenset({{{self._items(value)}}})" if value else "frozenset()"
        return self._call(self._reduce(value))

    def _fill(self, value: Any) -> Optional[str]:
        if not value:
            return None
        name = self.names[id(value)]
        kind = type(value)
        if kind is list:
            return f"{name}.extend([{self._items(value)}])"
        if kind is dict:
            return f"{name}.update({{{self._pairs(value)}}})"
        return f"{name}.update({{{self._items(value)}}})"

    def _items(self, values) -> str:
        return ", ".join(self._render(item) for item in values)

    def _pairs(self, mapping: dict) -> str:
        return ", ".join(
            f"{self._render(key)}: {self._render(val)}" for key, val in mapping.items()
        )

    def _call(self, reduction: Reduction) -> str:
        target = _target(reduction)
        if reduction.args is None:
            return target
        args = [self._render(arg) for arg in reduction.args]
        args += [f"{key}={self._render(val)}" for key, val in reduction.kwargs.items()]
        return f"{target}({', '.join(args)})"


_EMPTY = {list: "[]", dict: "{}", set: "set()"}


def _target(reduction: Reduction) -> str:
    if reduction.module == "builtins":
        return reduction.qualname
    head = reduction.qualname.split(".")[0]
    if "." in reduction.module:
        return f"__import__({reduction.module!r}, fromlist=[{head!r}]).{reduction.qualname}"
    return f"__import__({reduction.module!r}).{reduction.qualname}"


def _scalar(value: Any) -> str:
    if value is Ellipsis:
        return "..."
    if type(value) is float:
        if math.isnan(value):
            return "float('nan')"
        if math.isinf(value):
            return "float('inf')" if value > 0 else "float('-inf')"
        return repr(value)
    if type(value) is int and abs(value) >= _LARGE_INT:
        return f"int({hex(value)!r}, 16)"
    if type(value) is complex:
        return f"complex({_scalar(value.real)}, {_scalar(value.imag)})"
    return repr(value)


def _unsupported(value: Any) -> str:
    if isinstance(value, (FunctionType, BuiltinFunctionType, MethodType)):
        return f"functions cannot be serialized: {getattr(value, '__qualname__', value)!r}"
    kind = type(value)
    return f"cannot serialize value of type {kind.__module__}.{kind.__qualname__}"
