"""Interpreter options and their environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping


class ConfigError(Exception):
    """Malformed configuration value."""


@dataclass
class Options:
    while_limit: int = 10000
    tile_size: int = 32
    database_path: str = "hyperianlang.db"
    module_dir: str = field(default_factory=os.getcwd)
    http_timeout: float = 10.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Options:
        """Defaults overridden by ``HYPERIAN_*`` variables."""
        if environ is None:
            environ = os.environ
        opts = cls()
        if "HYPERIAN_WHILE_LIMIT" in environ:
            opts.while_limit = _positive_int(environ, "HYPERIAN_WHILE_LIMIT")
        if "HYPERIAN_TILE_SIZE" in environ:
            opts.tile_size = _positive_int(environ, "HYPERIAN_TILE_SIZE")
        if "HYPERIAN_DB" in environ:
            path = environ["HYPERIAN_DB"].strip()
            if path == "":
                raise ConfigError("HYPERIAN_DB must not be empty")
            opts.database_path = path
        if "HYPERIAN_MODULE_DIR" in environ:
            opts.module_dir = environ["HYPERIAN_MODULE_DIR"]
        if "HYPERIAN_HTTP_TIMEOUT" in environ:
            raw = environ["HYPERIAN_HTTP_TIMEOUT"]
            try:
                timeout = float(raw)
            except ValueError:
                raise ConfigError("HYPERIAN_HTTP_TIMEOUT: expected seconds, got '" + raw + "'") from None
            if timeout <= 0:
                raise ConfigError("HYPERIAN_HTTP_TIMEOUT must be positive")
            opts.http_timeout = timeout
        return opts


def _positive_int(environ: Mapping[str, str], key: str) -> int:
    raw = environ[key]
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(key + ": expected an integer, got '" + raw + "'") from None
    if value <= 0:
        raise ConfigError(key + " must be positive")
    return value
