"""
Reducers
========
Reconstruction recipes for values the serializer has no literal syntax for.

A reducer maps a value to a :class:`Reduction`: an importable callable and
the arguments that rebuild an equal value.  The arguments themselves are
serialized recursively, so they may hold anything the serializer accepts.

Register with the decorator::

    @reducers.register(Money)
    def reduce_money(value):
        return Reduction.of(Money, value.amount, currency=value.currency)
"""

from __future__ import annotations

import collections
import datetime
import decimal
import enum
import fractions
import importlib
import logging
import pathlib
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx
from starlette.datastructures import FormData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reduction:
    """``module.qualname(*args, **kwargs)``; ``args=None`` means no call."""
    module: str
    qualname: str
    args: Optional[tuple] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, target: Callable, *args, **kwargs) -> "Reduction":
        return cls(target.__module__, target.__qualname__, args, kwargs)

    @property
    def values(self) -> list[Any]:
        return [*(self.args or ()), *self.kwargs.values()]


Reducer = Callable[[Any], Optional[Reduction]]


class ReducerRegistry:
    def __init__(self) -> None:
        self._reducers: dict[type, Reducer] = {}

    # ---------------------------------------------------------------- register

    def register(self, *types: type):
        """Decorator that registers a reducer for one or more types."""
        def decorator(fn: Reducer) -> Reducer:
            for cls in types:
                self._reducers[cls] = fn
                logger.debug("Registered reducer: %s.%s", cls.__module__, cls.__qualname__)
            return fn
        return decorator

    # ------------------------------------------------------------------ lookup

    def has(self, cls: type) -> bool:
        return any(base in self._reducers for base in cls.__mro__)

    def reduce(self, value: Any) -> Optional[Reduction]:
        """Reduce *value* with the reducer of the nearest type in its MRO."""
        for base in type(value).__mro__:
            reducer = self._reducers.get(base)
            if reducer is not None:
                return reducer(value)
        return None


# Singleton shared across the application
reducers = ReducerRegistry()


# ---------------------------------------------------------------------------
# httpx / starlette
# ---------------------------------------------------------------------------

# stored bodies are already decoded, so these no longer describe them
_BODY_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


def _header_items(headers: httpx.Headers, drop: set[str] = frozenset()) -> list[tuple[str, str]]:
    return [(key, value) for key, value in headers.multi_items() if key.lower() not in drop]


@reducers.register(httpx.URL)
def reduce_url(value: httpx.URL) -> Reduction:
    return Reduction.of(httpx.URL, str(value))


@reducers.register(httpx.QueryParams)
def reduce_query_params(value: httpx.QueryParams) -> Reduction:
    return Reduction.of(httpx.QueryParams, value.multi_items())


@reducers.register(httpx.Headers)
def reduce_headers(value: httpx.Headers) -> Reduction:
    return Reduction.of(httpx.Headers, _header_items(value))


@reducers.register(httpx.Request)
def reduce_request(value: httpx.Request) -> Reduction:
    return Reduction.of(
        httpx.Request,
        value.method,
        value.url,
        headers=_header_items(value.headers, _BODY_HEADERS),
        content=value.content,
    )


@reducers.register(httpx.Response)
def reduce_response(value: httpx.Response) -> Reduction:
    kwargs: dict[str, Any] = {
        "headers": _header_items(value.headers, _BODY_HEADERS),
        "content": value.content,
    }
    reason = value.extensions.get("reason_phrase")
    if reason:
        kwargs["extensions"] = {"reason_phrase": reason}
    try:
        kwargs["request"] = value.request
    except RuntimeError:
        pass    # response was built without a request
    return Reduction.of(httpx.Response, value.status_code, **kwargs)


@reducers.register(FormData)
def reduce_form_data(value: FormData) -> Reduction:
    return Reduction.of(FormData, value.multi_items())


# ---------------------------------------------------------------------------
# Standard library
# ---------------------------------------------------------------------------

@reducers.register(bytearray)
def reduce_bytearray(value: bytearray) -> Reduction:
    return Reduction("builtins", "bytearray", (bytes(value),))


@reducers.register(memoryview)
def reduce_memoryview(value: memoryview) -> Reduction:
    data = value.tobytes()
    if not value.readonly:
        return Reduction("builtins", "memoryview", (bytearray(data),))
    return Reduction("builtins", "memoryview", (data,))


@reducers.register(datetime.datetime, datetime.date, datetime.time)
def reduce_temporal(value) -> Reduction:
    cls = type(value)
    return Reduction(cls.__module__, f"{cls.__qualname__}.fromisoformat", (value.isoformat(),))


@reducers.register(datetime.timedelta)
def reduce_timedelta(value: datetime.timedelta) -> Reduction:
    return Reduction.of(datetime.timedelta, value.days, value.seconds, value.microseconds)


@reducers.register(decimal.Decimal)
def reduce_decimal(value: decimal.Decimal) -> Reduction:
    return Reduction.of(decimal.Decimal, str(value))


@reducers.register(uuid.UUID)
def reduce_uuid(value: uuid.UUID) -> Reduction:
    return Reduction.of(uuid.UUID, str(value))


@reducers.register(fractions.Fraction)
def reduce_fraction(value: fractions.Fraction) -> Reduction:
    return Reduction.of(fractions.Fraction, value.numerator, value.denominator)


@reducers.register(pathlib.PurePath)
def reduce_path(value: pathlib.PurePath) -> Reduction:
    return Reduction.of(type(value), str(value))


@reducers.register(collections.OrderedDict)
def reduce_ordered_dict(value: collections.OrderedDict) -> Reduction:
    return Reduction.of(collections.OrderedDict, list(value.items()))


@reducers.register(enum.Enum)
def reduce_enum(value: enum.Enum) -> Optional[Reduction]:
    """Members of enums that can be imported back by name."""
    cls = type(value)
    if "<locals>" in cls.__qualname__:
        return None
    try:
        module = importlib.import_module(cls.__module__)
    except ImportError:
        return None
    target: Any = module
    for part in cls.__qualname__.split("."):
        target = getattr(target, part, None)
    if target is not cls:
        return None
    return Reduction(cls.__module__, f"{cls.__qualname__}.{value.name}", None)
