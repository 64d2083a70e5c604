#!/usr/bin/env python
#
#
# -----------------------------------------------------------------------------
"""
Build configuration.

All values can be overridden via environment variables (``MACROBUILD_*``)
or a .env file.
"""
# -----------------------------------------------------------------------------

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


# -----------------------------------------------------------------------------

CachePolicy = Literal["name", "file", "content"]


# -----------------------------------------------------------------------------

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_prefix="MACROBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ────────────────────────────────────────────────────────

    app_name: str = "macrobuild"
    app_version: str = "0.1.0"
    log_level: str = "INFO"

    # ── Expansion ──────────────────────────────────────────────────────────

    directive: str = "use macro"
    # "name"    : one result per macro name for the whole build
    # "file"    : one result per (file, name)
    # "content" : one result per distinct macro source text
    cache_policy: CachePolicy = "file"
    file_pattern: str = r"\.pyw?$"
    strip_annotations: bool = True
    type_comments: bool = False

    # ── Output ─────────────────────────────────────────────────────────────

    retain_lines: bool = True
    provenance_comments: bool = True
    provenance_tag: str = "@__MACRO__"
    emit_source_maps: bool = True

    # ── Sandbox ────────────────────────────────────────────────────────────

    # None exposes a read-only snapshot of the whole environment
    sandbox_env_allowlist: Optional[list[str]] = None


# -----------------------------------------------------------------------------

@lru_cache
def get_settings() -> Settings:
    return Settings()


# -----------------------------------------------------------------------------
