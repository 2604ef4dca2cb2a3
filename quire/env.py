from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

WORK_DIR_ENV = "QUIRE_WORK_DIR"
TREE_DEPTH_ENV = "QUIRE_TREE_DEPTH"
LOG_LEVEL_ENV = "QUIRE_LOG_LEVEL"
DEFAULT_TREE_DEPTH = 2


def read_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value not in {None, ""}:
        return value

    file_var = os.getenv(f"{name}_FILE")
    if not file_var:
        return default

    try:
        content = Path(file_var).read_text(encoding="utf-8")
    except OSError:
        return default
    return content.rstrip("\r\n")


def work_dir_root() -> Optional[Path]:
    """Parent directory for extracted working copies, or None for the system temp dir."""
    raw = read_env(WORK_DIR_ENV)
    if not raw:
        return None
    base = Path(raw).expanduser()
    base.mkdir(parents=True, exist_ok=True)
    return base


def tree_depth() -> Optional[int]:
    raw = (read_env(TREE_DEPTH_ENV) or "").strip().lower()
    if not raw:
        return DEFAULT_TREE_DEPTH
    if raw in {"all", "0"}:
        return None
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_TREE_DEPTH
    return value if value > 0 else None


def log_level() -> str:
    return (read_env(LOG_LEVEL_ENV, "WARNING") or "WARNING").strip().upper()


def temp_dir_kwargs() -> dict[str, str]:
    root = work_dir_root()
    kwargs = {"prefix": "quire-"}
    if root is not None:
        kwargs["dir"] = str(root)
    return kwargs
