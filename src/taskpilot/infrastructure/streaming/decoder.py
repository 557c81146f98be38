"""
Frame Decoder

Turns the chunked body of an agent event stream into complete, validated
protocol events.

Wire format (UTF-8 text)::

    event: status
    data: {"executionId": "exec-1", "status": "analyzing"}

    event: action
    data: {"id": "a1", "type": "writeFile", ...}

Chunks may split a character, a line or a payload anywhere. A frame is
emitted only once its ``data:`` line is complete; a trailing partial line
left when the stream ends is discarded. Malformed frames are dropped one
by one without aborting the stream, unless a ``max_malformed_frames``
limit is configured.
"""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, Mapping, Optional

import structlog
from pydantic import ValidationError

from taskpilot.core.domain.errors import ProtocolError
from taskpilot.core.domain.events import ProtocolEvent

logger = structlog.get_logger()

EVENT_PREFIX = "event:"
DATA_PREFIX = "data:"


def _field_value(line: str, prefix: str) -> str:
    value = line[len(prefix):]
    # A single space after the colon is part of the framing, not the value.
    if value.startswith(" "):
        value = value[1:]
    return value


class FrameDecoder:
    """Incremental decoder for one event stream.

    Create one decoder per stream; it keeps the partial-line buffer and
    the pending event name between chunks.

    Attributes:
        malformed_frames: Number of frames dropped as protocol violations
        skipped_frames: Number of well-formed frames with an unknown event name
    """

    def __init__(
        self,
        vocabulary: Mapping[str, type[ProtocolEvent]],
        max_malformed_frames: Optional[int] = None,
        encoding: str = "utf-8",
    ):
        """
        Args:
            vocabulary: Event name to schema for this stream
            max_malformed_frames: Malformed frames tolerated before the
                stream is treated as broken. None means unlimited.
            encoding: Text encoding of the stream
        """
        self.vocabulary = dict(vocabulary)
        self.max_malformed_frames = max_malformed_frames
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self._pending_event: Optional[str] = None
        self._closed = False
        self.malformed_frames = 0
        self.skipped_frames = 0
        self.logger = logger.bind(component="frame_decoder")

    def feed(self, chunk: bytes) -> list[ProtocolEvent]:
        """Consume one chunk and return the events it completed.

        Raises:
            ProtocolError: If the malformed-frame limit is exceeded
        """
        if self._closed:
            raise ProtocolError("Decoder already closed")

        self._buffer += self._text_decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []

        lines = self._buffer.split("\n")
        # Last element has no newline yet: keep it for the next chunk.
        self._buffer = lines.pop()

        events: list[ProtocolEvent] = []
        for line in lines:
            event = self._process_line(line.rstrip("\r"))
            if event is not None:
                events.append(event)
        return events

    def close(self) -> None:
        """Signal end of stream. Unterminated trailing data is discarded."""
        if self._closed:
            return
        self._closed = True
        self._buffer += self._text_decoder.decode(b"", final=True)
        if self._buffer.strip() or self._pending_event is not None:
            self.logger.debug(
                "decoder.partial_frame.discarded",
                pending_event=self._pending_event,
                buffered_chars=len(self._buffer),
            )
        self._buffer = ""
        self._pending_event = None

    async def decode(self, chunks: AsyncIterable[bytes]) -> AsyncIterator[ProtocolEvent]:
        """Lazily decode a whole stream, yielding events in arrival order."""
        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
        self.close()

    def _process_line(self, line: str) -> Optional[ProtocolEvent]:
        if not line or line.startswith(":"):
            return None

        if line.startswith(EVENT_PREFIX):
            self._pending_event = _field_value(line, EVENT_PREFIX).strip()
            return None

        if line.startswith(DATA_PREFIX):
            event_name = self._pending_event
            self._pending_event = None
            payload = _field_value(line, DATA_PREFIX)
            if event_name is None:
                self._malformed("data_without_event", payload=payload[:80])
                return None
            return self._build_event(event_name, payload)

        return None

    def _build_event(self, event_name: str, payload: str) -> Optional[ProtocolEvent]:
        model = self.vocabulary.get(event_name)
        if model is None:
            self.skipped_frames += 1
            self.logger.debug("decoder.frame.unknown_event", event_name=event_name)
            return None

        try:
            data = json.loads(payload) if payload.strip() else {}
        except json.JSONDecodeError as e:
            self._malformed("invalid_json", event_name=event_name, error=str(e))
            return None

        if not isinstance(data, dict):
            self._malformed("payload_not_object", event_name=event_name)
            return None

        try:
            return model.model_validate(data)
        except ValidationError as e:
            self._malformed(
                "schema_mismatch", event_name=event_name, errors=e.error_count()
            )
            return None

    def _malformed(self, reason: str, **details) -> None:
        self.malformed_frames += 1
        self.logger.warning(
            "decoder.frame.dropped",
            reason=reason,
            malformed_frames=self.malformed_frames,
            **details,
        )
        if (
            self.max_malformed_frames is not None
            and self.malformed_frames > self.max_malformed_frames
        ):
            raise ProtocolError(
                f"Too many malformed frames in event stream ({self.malformed_frames})"
            )
