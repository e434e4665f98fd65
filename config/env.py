"""Dotenv loading for local runs.

Files are read in this order and never override variables already present in
the process environment:

1. the file named by ORCHESTRATOR_ENV_FILE, when set
2. <project root>/.env
3. <project root>/.env.dev, only when ORCHESTRATOR_ENV is dev/development/local

Deployed workers and web processes should get real environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

_DEV_ENV_NAMES = {"dev", "development", "local"}


def _env_files(base_dir: Path) -> list[Path]:
    files: list[Path] = []

    explicit = os.environ.get("ORCHESTRATOR_ENV_FILE")
    if explicit:
        files.append(Path(explicit))

    files.append(base_dir / ".env")

    if os.environ.get("ORCHESTRATOR_ENV", "").lower() in _DEV_ENV_NAMES:
        files.append(base_dir / ".env.dev")

    return files


def load_env(base_dir: Path | None = None) -> None:
    """Populate os.environ from dotenv files. Safe to call repeatedly.

    Args:
        base_dir: Project root. Defaults to the parent of the config package.
    """
    if base_dir is None:
        base_dir = Path(__file__).resolve().parent.parent

    for env_file in _env_files(base_dir):
        if env_file.is_file():
            load_dotenv(env_file, override=False)
