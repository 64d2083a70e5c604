"""
Macro subsystem — public API.
"""

from .registry import MacroRegistry, DEFAULT_DIRECTIVE
from .engine import MacroEngine, TransformResult
from .context import Dialect, MacroCallSite, MacroDefinition, ScanResult, SerializedResult
from .cache import MacroCache, macro_cache
from .reducers import ReducerRegistry, Reduction, reducers
from .sandbox import SandboxCapabilities, SandboxExecutor, Settled
from .serializer import Serializer

__all__ = [
    "MacroRegistry",
    "DEFAULT_DIRECTIVE",
    "MacroEngine",
    "TransformResult",
    "Dialect",
    "MacroCallSite",
    "MacroDefinition",
    "ScanResult",
    "SerializedResult",
    "MacroCache",
    "macro_cache",
    "ReducerRegistry",
    "Reduction",
    "reducers",
    "SandboxCapabilities",
    "SandboxExecutor",
    "Settled",
    "Serializer",
]
