"""Fallback values from the repository's .env.e2e file.

Real environment variables always win; the file only fills gaps so a local
run does not need every credential exported in the shell.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict

ENV_FILE_NAME = ".env.e2e"


def _default_env_file() -> Path:
    override = os.getenv("STACK_E2E_ENV_FILE")
    if override:
        return Path(override)
    return Path(__file__).resolve().parents[1] / ENV_FILE_NAME


def parse_env_file(path: Path) -> Dict[str, str]:
    if not path.exists():
        return {}

    values: Dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] in ('"', "'") and value[-1] == value[0]:
            value = value[1:-1]
        values[key.strip()] = value
    return values


@lru_cache(maxsize=1)
def _load_env_defaults() -> Dict[str, str]:
    return parse_env_file(_default_env_file())


def get_env(key: str, default: str | None = None) -> str | None:
    """Return an environment value, falling back to .env.e2e, then ``default``.

    Empty strings count as unset.
    """
    value = os.getenv(key)
    if value:
        return value
    value = _load_env_defaults().get(key)
    if value:
        return value
    return default


def clear_cache() -> None:
    _load_env_defaults.cache_clear()
