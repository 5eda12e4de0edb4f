"""
`.env` loading and project-relative paths.

The dev server, the CLI and the tests run from different working directories,
but all of them read the same `.env` (PocketBase credentials, admin token) and
resolve the same relative paths (`data/locations.sample.json`,
`.cache/treasurehunt`). Both hang off one notion of "project root":

1. `TREASUREHUNT_PROJECT_ROOT`, if set;
2. the directory of `TREASUREHUNT_ENV_FILE`, if set;
3. the nearest parent of the CWD (then of this module) holding a `.env`, a
   `.git`, or `pyproject.toml` next to `src/`;
4. the CWD.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv


def _is_root(path: Path) -> bool:
    return (
        (path / ".env").is_file()
        or (path / ".git").exists()
        or ((path / "pyproject.toml").is_file() and (path / "src").is_dir())
    )


def _search_up(start: Path) -> Path | None:
    start = start.resolve()
    return next((p for p in (start, *start.parents) if _is_root(p)), None)


def _env_file_override() -> Path | None:
    raw = os.getenv("TREASUREHUNT_ENV_FILE")
    return Path(raw).expanduser().resolve() if raw else None


@lru_cache
def get_project_root() -> Path:
    """Best-guess project root (cached for the process)."""
    override = os.getenv("TREASUREHUNT_PROJECT_ROOT")
    if override:
        return Path(override).expanduser().resolve()
    env_file = _env_file_override()
    if env_file is not None:
        return env_file.parent
    return _search_up(Path.cwd()) or _search_up(Path(__file__).parent) or Path.cwd().resolve()


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load the project's `.env` once; variables already in the environment win."""
    env_path = _env_file_override() or get_project_root() / ".env"
    if not env_path.is_file():
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def resolve_project_path(path: str | Path) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else (get_project_root() / p).resolve()
