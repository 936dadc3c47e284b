# chatwire/runtime.py
from __future__ import annotations
import functools, logging, platform
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import requests

from .constants import APP_NAME, __version__
from .infra.llm.context_budget import ContextBudgetResolver
from .infra.llm.dispatcher import StreamDispatcher
from .infra.llm.ollama_registry import ModelMetadataCache, fetch_context_metadata
from .infra.llm.stream_client import StreamingChatClient
from .logging_config import init_logging
from .paths import default_data_dir, log_paths, settings_path as resolve_settings_path
from .settings import load_settings, section


@dataclass
class Runtime:
    """Application-scoped services; one per process."""
    settings: dict
    settings_path: Path
    data_dir: Path
    log_path: Path
    metadata_cache: ModelMetadataCache
    budget: ContextBudgetResolver
    client: StreamingChatClient
    dispatcher: StreamDispatcher

    def close(self) -> None:
        self.dispatcher.shutdown(wait=True)
        self.client.session.close()
        logging.getLogger("boot").info("=== %s stopped ===", APP_NAME)


def bootstrap(data_dir: Optional[Path] = None, settings_path: Optional[Path] = None,
              log_level: Optional[str] = None, also_console: bool = True,
              session: Optional[requests.Session] = None) -> Runtime:
    data_dir = Path(data_dir).expanduser().resolve() if data_dir else default_data_dir()
    logs_dir, log_path = log_paths(data_dir)
    settings_path = resolve_settings_path(data_dir, settings_path)
    cfg = load_settings(settings_path)

    lg = section(cfg, "logging")
    level = (log_level or lg["level"]).upper()
    log_path = init_logging(
        logs_dir,
        level=level,
        log_name=log_path.name,
        max_bytes=int(lg["max_bytes"]),
        backup_count=int(lg["backup_count"]),
        also_console=also_console,
        logger_levels=lg.get("loggers"),
    )
    log = logging.getLogger("boot")
    log.info("=== %s %s starting ===", APP_NAME, __version__)
    log.info("Platform: %s | Python: %s", platform.platform(), platform.python_version())
    log.info("Data dir: %s | Log file: %s", data_dir, log_path)
    log.info("Settings: %s", settings_path)

    http = section(cfg, "http")
    ctx = section(cfg, "context")
    prov = section(cfg, "providers")

    fetcher = functools.partial(fetch_context_metadata, timeout=float(http["metadata_timeout"]))
    cache = ModelMetadataCache(ttl=float(ctx["metadata_ttl"]), fetcher=fetcher)
    budget = ContextBudgetResolver.from_settings(cfg, cache)
    client = StreamingChatClient(
        session=session,
        timeout=(float(http["connect_timeout"]), float(http["read_timeout"])),
        include_metrics=bool(prov["include_metrics"]),
        claude_max_tokens=int(prov["claude_max_tokens"]),
    )
    dispatcher = StreamDispatcher(client, max_workers=int(http["max_workers"]))
    log.info("Stream dispatcher ready (%d workers)", int(http["max_workers"]))

    return Runtime(
        settings=cfg,
        settings_path=settings_path,
        data_dir=data_dir,
        log_path=log_path,
        metadata_cache=cache,
        budget=budget,
        client=client,
        dispatcher=dispatcher,
    )
