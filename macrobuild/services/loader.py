#!/usr/bin/env python
#
#
# -----------------------------------------------------------------------------
"""
Build loader
============
The build pipeline's entry point into macro expansion.

For every source file the pipeline loads, ``on_load`` reads the text,
expands its macros and hands back the new contents together with the loader
kind (the file extension) and the source map.

``build`` runs the loader over files and directories and writes the results
into an output directory, mirroring the input layout:

  {out_dir}/{relative path}          expanded source
  {out_dir}/{relative path}.map      source map (when enabled)

Files are processed one after another; the first failure stops the build.
"""
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterable, Optional

import aiofiles
from pydantic import BaseModel


# -----------------------------------------------------------------------------

from macrobuild.core.config import Settings, get_settings
from .macros import MacroEngine
from .source import SourceMap

logger = logging.getLogger(__name__)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Schemas
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class LoadResult(BaseModel):
    contents: str
    loader: str
    source_map: Optional[SourceMap] = None
    macros: list[str] = []


class BuildOutput(BaseModel):
    source: Path
    target: Path
    source_map: Optional[Path] = None
    macros: list[str] = []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Loader
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class MacroLoader:
    """
    Usage::

        loader = MacroLoader()
        result = await loader.on_load("pkg/build_info.py")
    """

    def __init__(self, settings: Settings | None = None, engine: MacroEngine | None = None) -> None:
        self.settings = settings or get_settings()
        self.engine = engine or MacroEngine(self.settings)
        self._filter = re.compile(self.settings.file_pattern)

    # -------------------------------------------------------------------------

    def matches(self, path: str | Path) -> bool:
        return self._filter.search(str(path)) is not None

    # -------------------------------------------------------------------------

    async def on_load(self, path: str | Path) -> LoadResult:
        path = Path(path)
        async with aiofiles.open(path, "r", encoding="utf-8", newline="") as fh:
            source = await fh.read()

        result = await self.engine.transform(source, str(path))
        return LoadResult(
            contents=result.code,
            loader=path.suffix.lstrip("."),
            source_map=result.source_map if self.settings.emit_source_maps else None,
            macros=result.macros,
        )

    # -------------------------------------------------------------------------

    async def build(self, sources: Iterable[str | Path], out_dir: str | Path) -> list[BuildOutput]:
        out_dir = Path(out_dir)
        outputs: list[BuildOutput] = []

        for source, relative in self.collect(sources):
            target = out_dir / relative
            target.parent.mkdir(parents=True, exist_ok=True)

            loaded = await self.on_load(source)
            async with aiofiles.open(target, "w", encoding="utf-8", newline="") as fh:
                await fh.write(loaded.contents)

            map_path = None
            if loaded.source_map is not None:
                map_path = target.with_name(target.name + ".map")
                loaded.source_map.file = target.name
                async with aiofiles.open(map_path, "w", encoding="utf-8") as fh:
                    await fh.write(loaded.source_map.model_dump_json())

            logger.info("Built %s -> %s", source, target)
            outputs.append(BuildOutput(
                source=source, target=target, source_map=map_path, macros=loaded.macros,
            ))

        return outputs

    # -------------------------------------------------------------------------

    def collect(self, sources: Iterable[str | Path]) -> list[tuple[Path, Path]]:
        """Return ``(file, path relative to the output directory)`` pairs."""
        found: list[tuple[Path, Path]] = []
        for source in map(Path, sources):
            if source.is_dir():
                for path in sorted(source.rglob("*")):
                    if path.is_file() and self.matches(path):
                        found.append((path, path.relative_to(source)))
            elif self.matches(source):
                found.append((source, Path(source.name)))
            else:
                logger.debug("Skipping %s (does not match %s)", source, self.settings.file_pattern)
        return found


# -----------------------------------------------------------------------------
