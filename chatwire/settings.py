# chatwire/settings.py
from __future__ import annotations
import copy, json
from pathlib import Path
from typing import Any, Dict
from .constants import (
    SETTINGS_SCHEMA, DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT,
    CONTEXT_RESERVE_TOKENS, CONTEXT_FALLBACK_TOKENS, HOSTED_CONTEXT_TOKENS,
    METADATA_TTL_SECONDS, CHUNK_OVERLAP_TOKENS, CONNECT_TIMEOUT, READ_TIMEOUT,
    METADATA_TIMEOUT, CLAUDE_DEFAULT_MAX_TOKENS,
)

DEFAULT_SETTINGS: Dict[str, Any] = {
    "schema": SETTINGS_SCHEMA,
    "logging": {
        "level": "INFO",
        "max_bytes": DEFAULT_LOG_MAX_BYTES,
        "backup_count": DEFAULT_LOG_BACKUP_COUNT,
        "loggers": {"llm.sse": "INFO", "models": "INFO"}
    },
    "context": {
        "reserve_tokens": CONTEXT_RESERVE_TOKENS,
        "fallback_tokens": CONTEXT_FALLBACK_TOKENS,
        "hosted_tokens": HOSTED_CONTEXT_TOKENS,
        "overlap_tokens": CHUNK_OVERLAP_TOKENS,
        "metadata_ttl": METADATA_TTL_SECONDS
    },
    "http": {
        "connect_timeout": CONNECT_TIMEOUT,
        "read_timeout": READ_TIMEOUT,
        "metadata_timeout": METADATA_TIMEOUT,
        "max_workers": 4
    },
    "providers": {
        "claude_max_tokens": CLAUDE_DEFAULT_MAX_TOKENS,
        "include_metrics": True
    }
}

def _merge(a: dict, b: dict) -> None:
    # Forward-fill keys of b that a is missing
    for k, v in b.items():
        if k not in a:
            a[k] = copy.deepcopy(v)
        elif isinstance(v, dict) and isinstance(a.get(k), dict):
            _merge(a[k], v)

def load_settings(path: Path) -> dict:
    if not path.exists():
        save_settings(path, DEFAULT_SETTINGS)
        return copy.deepcopy(DEFAULT_SETTINGS)
    with path.open("r", encoding="utf-8") as f:
        cfg = json.load(f)
    merged = dict(cfg)
    _merge(merged, DEFAULT_SETTINGS)
    return merged

def save_settings(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, sort_keys=True)
    tmp.replace(path)

def section(cfg: dict, name: str) -> dict:
    """Return a settings section with defaults filled in, without touching disk."""
    out = dict(DEFAULT_SETTINGS.get(name, {}))
    out.update(cfg.get(name) or {})
    return out
