"""
Run settings: CLI flag first, then environment (a .env file counts), then default.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import NamedTuple

import httpx

from rbxlx_decompiler.errors import ConfigError, InputError

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "out.rbxlx"
DEFAULT_BASE_URL = "https://oracle.mshq.dev/decompile"
DEFAULT_TIMEOUT = 60.0

ENV_KEY = "ORACLE_KEY"
ENV_BASE_URL = "ORACLE_BASE_URL"
ENV_TIMEOUT = "ORACLE_TIMEOUT"


class Settings(NamedTuple):
    input_path: Path
    output_path: Path
    key: str
    base_url: str
    timeout: float
    dry_run: bool


def _resolve_timeout(flag: float | None, environ: Mapping[str, str]) -> float:
    if flag is not None:
        value = flag
    elif environ.get(ENV_TIMEOUT):
        try:
            value = float(environ[ENV_TIMEOUT])
        except ValueError as exc:
            raise ConfigError(f"{ENV_TIMEOUT} is not a number: {environ[ENV_TIMEOUT]!r}") from exc
    else:
        value = DEFAULT_TIMEOUT
    if value <= 0:
        raise ConfigError(f"Timeout must be positive, got {value}")
    return value


def resolve_settings(args, environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from parsed CLI args. Raises ConfigError / InputError."""
    if environ is None:
        environ = os.environ

    key = args.key or environ.get(ENV_KEY)
    if not key:
        raise ConfigError(f"Oracle key not provided (use --key or set {ENV_KEY})")

    input_path = Path(args.input_file)
    if not input_path.is_file():
        raise InputError(f"Can't read the file: {input_path}")

    base_url = args.base_url or environ.get(ENV_BASE_URL) or DEFAULT_BASE_URL
    try:
        url = httpx.URL(base_url)
    except httpx.InvalidURL as exc:
        raise ConfigError(f"Invalid oracle url {base_url!r}: {exc}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"Oracle url must be an http(s) url, got {base_url!r}")
    timeout = _resolve_timeout(args.timeout, environ)

    logger.debug("Oracle endpoint %s (timeout %.1fs)", base_url, timeout)
    return Settings(
        input_path=input_path,
        output_path=Path(args.output),
        key=key,
        base_url=base_url,
        timeout=timeout,
        dry_run=args.dry_run,
    )
