# chatwire/infra/llm/ollama_registry.py
from __future__ import annotations
import logging, re, threading, time
from typing import Any, Callable, Dict, Optional, Tuple
import requests

from chatwire.constants import DEFAULT_OLLAMA, METADATA_TTL_SECONDS, METADATA_TIMEOUT
from .base import ContextMetadata
from .errors import MetadataError

log = logging.getLogger("models")

CTX_KEYS = {
  "context_length", "num_ctx", "n_ctx", "ctx",
  "max_context_length", "max_ctx", "max_seq_len", "sequence_length",
}
CTX_LINE_RE = re.compile(
  r"\b(num_ctx|max_?ctx|n_ctx|context_length|max_seq_len|sequence_length)\D+(\d{3,7})",
  re.IGNORECASE
)
NUM_CTX_RE = re.compile(r"\bnum_ctx\s+(\d+)", re.IGNORECASE)

Fetcher = Callable[[str, str], ContextMetadata]


def _key_matches(k: Any) -> bool:
    # model_info keys are namespaced by architecture, e.g. "llama.context_length"
    return str(k).lower().rsplit(".", 1)[-1] in CTX_KEYS


def _extract_context(res: dict) -> Optional[int]:
    raw_params = res.get("parameters")
    mf = res.get("modelfile") or ""

    # 1) runtime num_ctx override (Ollama reports parameters as "key value" lines)
    if isinstance(raw_params, str):
        m = NUM_CTX_RE.search(raw_params)
        if m:
            return int(m.group(1))

    # 2) direct numeric keys in parameters/model_info/details
    for src in (raw_params, res.get("model_info"), res.get("details")):
        if isinstance(src, dict):
            for k, v in src.items():
                if _key_matches(k):
                    try:
                        return int(v)
                    except (TypeError, ValueError):
                        pass

    # 3) scan modelfile lines
    m = CTX_LINE_RE.search(mf) if isinstance(mf, str) else None
    if m:
        return int(m.group(2))
    return None


def ollama_base(endpoint: Optional[str]) -> str:
    return (endpoint or "").strip().rstrip("/") or DEFAULT_OLLAMA


def fetch_context_metadata(model: str, endpoint: Optional[str] = None,
                           timeout: float = METADATA_TIMEOUT) -> ContextMetadata:
    base = ollama_base(endpoint)
    try:
        r = requests.post(f"{base}/api/show", json={"name": model}, timeout=timeout)
        r.raise_for_status()
        res = r.json()
    except (requests.RequestException, ValueError) as e:
        raise MetadataError(f"Failed to fetch metadata for {model} at {base}: {e}") from e

    ctx = _extract_context(res) if isinstance(res, dict) else None
    if not ctx or ctx <= 0:
        raise MetadataError(f"No context size reported for {model}")
    log.info("Indexed model %s (ctx=%s)", model, ctx)
    return ContextMetadata(model=model, endpoint=base, context_size=ctx)


class ModelMetadataCache:
    """Context-size cache keyed by (model, endpoint), entries expire after `ttl` seconds.

    Owned by the application runtime and shared by every request. Lookups take
    a lock only around the map; the HTTP lookup runs outside it. A caller that
    finds another thread already probing the same key waits up to
    `inflight_wait` seconds for that result, then fetches itself.
    """

    def __init__(self, ttl: float = METADATA_TTL_SECONDS, fetcher: Optional[Fetcher] = None,
                 clock: Callable[[], float] = time.monotonic, inflight_wait: float = 5.0):
        self.ttl = ttl
        self._fetch = fetcher or fetch_context_metadata
        self._clock = clock
        self._inflight_wait = inflight_wait
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], Tuple[ContextMetadata, float]] = {}
        self._inflight: Dict[Tuple[str, str], threading.Event] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _fresh(self, key: Tuple[str, str]) -> Optional[ContextMetadata]:
        hit = self._entries.get(key)
        if hit is None:
            return None
        meta, fetched_at = hit
        if self._clock() - fetched_at < self.ttl:
            return meta
        del self._entries[key]
        return None

    def get(self, model: str, endpoint: Optional[str] = None) -> Optional[ContextMetadata]:
        with self._lock:
            return self._fresh((model, ollama_base(endpoint)))

    def get_or_fetch(self, model: str, endpoint: Optional[str] = None) -> ContextMetadata:
        key = (model, ollama_base(endpoint))
        with self._lock:
            meta = self._fresh(key)
            if meta is not None:
                return meta
            pending = self._inflight.get(key)
            if pending is None:
                pending = self._inflight[key] = threading.Event()
                owner = True
            else:
                owner = False

        if not owner:
            pending.wait(self._inflight_wait)
            with self._lock:
                meta = self._fresh(key)
            if meta is not None:
                return meta
            log.debug("Metadata for %s not ready after wait; probing again", model)
            return self._store(key, self._fetch(model, key[1]))

        try:
            return self._store(key, self._fetch(model, key[1]))
        finally:
            with self._lock:
                if self._inflight.get(key) is pending:
                    del self._inflight[key]
            pending.set()

    def _store(self, key: Tuple[str, str], meta: ContextMetadata) -> ContextMetadata:
        with self._lock:
            self._entries[key] = (meta, self._clock())
        return meta

    def invalidate(self, model: Optional[str] = None, endpoint: Optional[str] = None) -> None:
        base = ollama_base(endpoint) if endpoint is not None else None
        with self._lock:
            for key in list(self._entries):
                if (model is None or key[0] == model) and (base is None or key[1] == base):
                    del self._entries[key]
