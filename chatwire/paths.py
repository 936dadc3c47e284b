# chatwire/paths.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Optional, Tuple
from .constants import DEFAULT_LOG_FILENAME, DEFAULT_SETTINGS_FILENAME

DATA_DIR_ENV = "CHATWIRE_DATA_DIR"
SETTINGS_ENV = "CHATWIRE_SETTINGS"

def default_data_dir() -> Path:
    # Local "data" folder by default; override via env CHATWIRE_DATA_DIR.
    env = os.getenv(DATA_DIR_ENV)
    if env:
        return Path(env).expanduser().resolve()
    return Path("data").resolve()

def log_paths(data_dir: Path, log_name: str = DEFAULT_LOG_FILENAME) -> Tuple[Path, Path]:
    logs_dir = data_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir, logs_dir / log_name

def settings_path(data_dir: Path, explicit: Optional[Path] = None) -> Path:
    """Settings file to load: explicit argument, then CHATWIRE_SETTINGS, then <data_dir>/settings.json."""
    if explicit:
        return Path(explicit).expanduser()
    env = os.getenv(SETTINGS_ENV)
    if env:
        return Path(env).expanduser()
    return data_dir / DEFAULT_SETTINGS_FILENAME
