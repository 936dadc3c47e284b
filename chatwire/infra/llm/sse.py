# chatwire/infra/llm/sse.py
"""
Incremental Server-Sent-Events framing.

The decoder knows nothing about providers: it turns an arbitrarily fragmented
byte stream into blank-line separated blocks and pulls out the `data:` (and,
for the Claude schema, `event:`) fields. Interpreting the payloads is the
normalizers' job.
"""
from __future__ import annotations
import codecs, logging
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Union

log = logging.getLogger("llm.sse")

DONE_MARKER = "[DONE]"
_DATA = "data:"
_EVENT = "event:"


@dataclass
class SSEBlock:
    data: List[str] = field(default_factory=list)
    event: Optional[str] = None


class SSEDecoder:
    def __init__(self, parse_event_field: bool = False):
        self.parse_event_field = parse_event_field
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buf = ""
        self._closed = False

    def feed(self, chunk: Union[bytes, str]) -> List[SSEBlock]:
        """Append a chunk and return every block it completed, in order."""
        if self._closed:
            raise RuntimeError("SSEDecoder is closed")
        text = self._utf8.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        if not text:
            return []
        self._buf += text
        if "\r" in self._buf:
            # a lone trailing \r may still pair with the next read's \n
            tail = "\r" if self._buf.endswith("\r") else ""
            body = self._buf[:-1] if tail else self._buf
            self._buf = body.replace("\r\n", "\n") + tail

        blocks: List[SSEBlock] = []
        while True:
            idx = self._buf.find("\n\n")
            if idx < 0:
                break
            raw, self._buf = self._buf[:idx], self._buf[idx + 2:]
            block = self._parse(raw)
            if block is not None:
                blocks.append(block)
        return blocks

    def close(self) -> None:
        """End of stream: a trailing partial block is discarded, not an error."""
        if self._closed:
            return
        self._closed = True
        self._buf += self._utf8.decode(b"", final=True)
        if self._buf.strip():
            log.debug("Discarding %d chars of incomplete SSE block", len(self._buf))
        self._buf = ""

    @property
    def pending(self) -> str:
        return self._buf

    def _parse(self, raw: str) -> Optional[SSEBlock]:
        block = SSEBlock()
        seen = False
        for line in raw.split("\n"):
            if line.startswith(_DATA):
                block.data.append(line[len(_DATA):].strip())
                seen = True
            elif self.parse_event_field and line.startswith(_EVENT):
                block.event = line[len(_EVENT):].strip()
                seen = True
        return block if seen else None


def iter_blocks(chunks: Iterable[Union[bytes, str]], parse_event_field: bool = False) -> Iterator[SSEBlock]:
    decoder = SSEDecoder(parse_event_field=parse_event_field)
    for chunk in chunks:
        yield from decoder.feed(chunk)
    decoder.close()
