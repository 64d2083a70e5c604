"""
MacroEngine
===========
One expansion pass over one source file.

    scan      find macro definitions and the calls that use them
    execute   run each called macro once (per cache key) in the sandbox
    serialize turn each result into a rebuilding expression
    rewrite   replace every call with its expression
    strip     remove the definitions
    emit      generate code and a source map

Calls from one macro to another are expanded inside the calling macro's
body before it runs, callees first.  A macro that reaches itself through
such calls is an :class:`ExecutionError`.

A file without macro definitions is returned untouched.  Any
:class:`MacroError` aborts the pass; there is no partial output.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field, replace

from macrobuild.core.config import Settings, get_settings
from macrobuild.core.errors import ExecutionError, SerializationError
from macrobuild.services.source import GeneratorOptions, SourceMap, generate, options_for, parse
from macrobuild.services.source.generator import splice, split_lines
from .cache import MacroCache, macro_cache
from .context import MacroCallSite, MacroDefinition, ScanResult, SerializedResult
from .registry import MacroRegistry, parent_map
from .rewriter import CallSiteRewriter, DefinitionStripper
from .sandbox import SandboxExecutor
from .serializer import Serializer

logger = logging.getLogger(__name__)


@dataclass
class TransformResult:
    code: str
    source_map: SourceMap
    # names of the macros defined (and removed) in the file
    macros: list[str] = field(default_factory=list)


@dataclass
class _FilePass:
    """State shared by every expansion in one file pass."""
    source: str
    lines: list[str]
    scan: ScanResult


class MacroEngine:
    """
    Expand every macro in a Python source file.

    Usage::

        engine = MacroEngine()
        result = await engine.transform(source, "pkg/build_info.py")
    """

    def __init__(
        self,
        settings: Settings | None = None,
        cache: MacroCache | None = None,
        executor: SandboxExecutor | None = None,
        serializer: Serializer | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.cache = cache if cache is not None else macro_cache
        self.executor = executor or SandboxExecutor(self.settings)
        self.serializer = serializer or Serializer()

    # ----------------------------------------------------------------- public

    async def transform(self, source: str, path: str) -> TransformResult:
        settings = self.settings
        options = GeneratorOptions(
            retain_lines=settings.retain_lines,
            provenance=settings.provenance_comments,
            provenance_tag=settings.provenance_tag,
            source_file_name=path,
        )

        tree = parse(source, options_for(path, settings), filename=path)
        lines = split_lines(source)
        scan = MacroRegistry(path, settings.directive).scan(tree, lines)

        if not scan:
            logger.debug("No macros in %s", path)
            unchanged = generate(tree, source, [], replace(options, retain_lines=True, provenance=False))
            return TransformResult(code=unchanged.code, source_map=unchanged.source_map)

        file = _FilePass(source=source, lines=lines, scan=scan)
        rewriter = CallSiteRewriter(lines, parent_map(tree))
        for site in scan.call_sites:
            # inner macro calls in the arguments are already expanded
            site.args_source = splice(source, rewriter.edits, site.args_span)
            result = await self._expand(file, scan.definition_for(site), site)
            rewriter.expand(site, result)

        tree = rewriter.visit(tree)
        stripper = DefinitionStripper(scan.definitions.values(), lines)
        tree = ast.fix_missing_locations(stripper.visit(tree))

        generated = generate(tree, source, [*rewriter.edits, *stripper.edits], options)
        logger.info(
            "Expanded %s: %d macro(s), %d call site(s)",
            path, len(scan.definitions), len(scan.call_sites),
        )
        return TransformResult(
            code=generated.code,
            source_map=generated.source_map,
            macros=sorted(scan.definitions),
        )

    # ---------------------------------------------------------------- private

    async def _expand(
        self,
        file: _FilePass,
        definition: MacroDefinition,
        site: MacroCallSite,
        chain: tuple[str, ...] = (),
    ) -> SerializedResult:
        """Return the serialized result of *definition*, running it on a cache miss."""
        if definition.name in chain:
            cycle = " -> ".join([*chain, definition.name])
            raise ExecutionError(
                f"macro {definition.name!r} calls itself: {cycle}",
                path=definition.path,
                lineno=definition.lineno,
                col_offset=definition.col_offset,
                macro=definition.name,
            )
        key = definition.cache_key(self.settings.cache_policy)

        async def compute() -> SerializedResult:
            await self._expand_body(file, definition, (*chain, definition.name))
            logger.debug("Executing macro %s from %s", definition.name, definition.path)
            value = await self.executor.run(definition, site.args_source, site)
            try:
                expression = await self.serializer.serialize(value)
            except SerializationError as exc:
                raise SerializationError(
                    f"result of macro {definition.name!r}: {exc.message}",
                    path=definition.path,
                    lineno=definition.lineno,
                    col_offset=definition.col_offset,
                    macro=definition.name,
                ) from exc
            return SerializedResult(key=key, expression=expression, macro=definition.name)

        return await self.cache.get_or_create(key, compute)

    async def _expand_body(self, file: _FilePass, definition: MacroDefinition, chain: tuple[str, ...]) -> None:
        """Replace the macro calls in *definition*'s executable copy with their results."""
        pending = [site for site in definition.calls if not site.rewritten]
        if not pending:
            return

        rewriter = CallSiteRewriter(file.lines, parent_map(definition.node))
        for site in pending:
            site.args_source = splice(file.source, rewriter.edits, site.args_span)
            callee = file.scan.definition_for(site)
            rewriter.expand(site, await self._expand(file, callee, site, chain))

        rewriter.visit(definition.node)
        ast.fix_missing_locations(definition.node)
        logger.debug("Expanded %d macro call(s) inside %s", len(pending), definition.name)
