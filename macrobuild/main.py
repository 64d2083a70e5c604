#!/usr/bin/env python
#
#
# -----------------------------------------------------------------------------
"""
macrobuild command line
=======================

    macrobuild SRC [SRC ...] -o OUT_DIR [--cache-policy name|file|content]
                                        [--no-retain-lines] [-v] [--version]

Expands the macros of every matching file under SRC into OUT_DIR.  Without
``-o`` the expanded files are written to stdout.  A failed file pass prints
``path:line:col: message`` on stderr and exits with status 1.
"""
# -----------------------------------------------------------------------------

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from macrobuild.core.config import Settings, get_settings
from macrobuild.core.errors import MacroError
from macrobuild.services.loader import MacroLoader

logger = logging.getLogger("macrobuild")


# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog=settings.app_name,
        description="Expand build-time macros in Python sources.",
    )
    parser.add_argument(
        "sources",
        nargs="+",
        help="Source files or directories to expand.",
    )
    parser.add_argument(
        "-o", "--out-dir",
        help="Directory for the expanded files. Prints to stdout if not provided.",
    )
    parser.add_argument(
        "--cache-policy",
        choices=["name", "file", "content"],
        help="Scope of the macro result cache (default from settings).",
    )
    parser.add_argument(
        "--no-retain-lines",
        action="store_true",
        help="Re-emit the whole module instead of patching the original text.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every macro execution.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {settings.app_version}",
    )
    return parser


# -----------------------------------------------------------------------------

def settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict = {}
    if args.cache_policy:
        overrides["cache_policy"] = args.cache_policy
    if args.no_retain_lines:
        overrides["retain_lines"] = False
    if args.out_dir is None:
        overrides["emit_source_maps"] = False
    return get_settings().model_copy(update=overrides)


# -----------------------------------------------------------------------------

async def run(args: argparse.Namespace, settings: Settings) -> None:
    loader = MacroLoader(settings)
    if args.out_dir is not None:
        outputs = await loader.build(args.sources, args.out_dir)
        logger.info("Wrote %d file(s) to %s", len(outputs), args.out_dir)
        return

    for source, _relative in loader.collect(args.sources):
        result = await loader.on_load(source)
        sys.stdout.write(result.contents)


# -----------------------------------------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line interface."""
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(run(args, settings))
    except MacroError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except SyntaxError as exc:
        print(f"{exc.filename}:{exc.lineno}:{exc.offset}: {exc.msg}", file=sys.stderr)
        return 1
    except OSError as exc:
        print(f"{exc.filename or '<unknown>'}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())


# -----------------------------------------------------------------------------
