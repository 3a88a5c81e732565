"""
Streaming transport for model backends.
Opens an HTTP connection, consumes a server-sent-event body as it arrives and
yields decoded JSON events. Also adapts a Bedrock response EventStream to the
same event-source contract so providers can treat both alike.
"""

import codecs
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

# Statuses worth another attempt before any byte of the body has been read
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})

_ERROR_BODY_LIMIT = 2000


class TransportError(Exception):
    """Connection or HTTP-level failure talking to a model backend."""

    def __init__(self, message: str, code: Optional[int] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.cause = cause


@dataclass(frozen=True)
class SseEvent:
    """One decoded stream event. event is the SSE event name (or chunk type)."""
    event: str
    data: Any
    raw: str


class SseLineBuffer:
    """Splits a byte stream into text lines.

    Partial lines are kept across reads and UTF-8 is decoded incrementally,
    so a multi-byte character split between two network reads is intact.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes) -> List[str]:
        self._pending += self._decoder.decode(chunk)
        if "\n" not in self._pending:
            return []
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        self._pending += self._decoder.decode(b"", final=True)
        rest, self._pending = self._pending, ""
        return [rest.rstrip("\r")] if rest.strip() else []


class SseFramer:
    """Turns SSE text lines into SseEvents.

    data: lines carry JSON, event: lines name the following data, comment
    lines and the [DONE] sentinel are skipped, and a bare JSON line without
    a data: prefix is accepted as a data line.
    """

    def __init__(self):
        self._event_name: Optional[str] = None

    def push(self, line: str) -> Optional[SseEvent]:
        if not line.strip():
            self._event_name = None
            return None
        if line.startswith(":"):
            return None
        if line.startswith("event:"):
            self._event_name = line[6:].strip()
            return None
        if line.startswith("data:"):
            payload = line[5:].strip()
        elif line.lstrip().startswith(("{", "[")):
            payload = line.strip()
        else:
            # id:, retry: and anything unrecognised
            return None

        if not payload or payload == "[DONE]":
            return None
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning(f"Skipping malformed stream event: {e}: {payload[:200]}")
            return None
        return SseEvent(event=self._event_name or "message", data=data, raw=payload)


class SseEventSource:
    """Iterable of SseEvents read from a live streaming response.

    close() may be called from any thread; a read blocked on the network then
    ends the iteration without raising.
    """

    def __init__(self, response: httpx.Response):
        self._response = response
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[SseEvent]:
        buffer = SseLineBuffer()
        framer = SseFramer()
        try:
            for chunk in self._response.iter_bytes():
                if self.closed:
                    return
                for line in buffer.feed(chunk):
                    event = framer.push(line)
                    if event is not None:
                        yield event
            if self.closed:
                return
            for line in buffer.flush():
                event = framer.push(line)
                if event is not None:
                    yield event
        except (httpx.HTTPError, httpx.StreamError) as e:
            if self.closed:
                return
            raise TransportError(f"Stream interrupted: {e}", cause=e) from e
        finally:
            self._response.close()

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        try:
            self._response.close()
        except (httpx.HTTPError, httpx.StreamError, OSError) as e:
            logger.debug(f"Ignoring error while closing stream: {e}")


class BedrockEventSource:
    """Adapts a boto3 invoke_model_with_response_stream body to SseEvents.

    Each chunk's JSON "type" becomes the event name.
    """

    def __init__(self, event_stream: Any):
        self._stream = event_stream
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[SseEvent]:
        try:
            for event in self._stream:
                if self.closed:
                    return
                chunk = event.get("chunk")
                if not chunk:
                    continue
                raw = chunk.get("bytes", b"")
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed Bedrock chunk: {e}")
                    continue
                yield SseEvent(event=data.get("type", "message") if isinstance(data, dict) else "message",
                               data=data, raw=raw)
        except ClientError as e:
            if self.closed:
                return
            error_message = e.response.get("Error", {}).get("Message", str(e))
            raise TransportError(f"Streaming error: {error_message}", cause=e) from e
        except (OSError, ValueError) as e:
            if self.closed:
                return
            raise TransportError(f"Stream interrupted: {e}", cause=e) from e

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        close = getattr(self._stream, "close", None)
        if close is not None:
            close()


def _read_error_body(response: httpx.Response) -> str:
    try:
        response.read()
        return response.text[:_ERROR_BODY_LIMIT]
    except (httpx.HTTPError, httpx.StreamError) as e:
        return f"<unreadable body: {e}>"


class SseTransport:
    """HTTP client for streaming POSTs and plain JSON GETs.

    Connection failures and retryable statuses (429/5xx) are retried before
    the first byte of the body is read. Once a stream is open nothing is
    retried.
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        connect_timeout: float = 30.0,
        write_timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        # Streaming bodies can run for minutes: reads are unbounded.
        timeout = httpx.Timeout(connect=connect_timeout, read=None, write=write_timeout, pool=connect_timeout)
        self._client = client or httpx.Client(timeout=timeout)
        self._owns_client = client is None
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    def _backoff(self, attempt: int, reason: str) -> None:
        delay = self.retry_backoff * attempt
        logger.warning(f"{reason}; retrying in {delay:.1f}s (attempt {attempt}/{self.max_retries})")
        self._sleep(delay)

    def open(self, url: str, headers: Optional[Dict[str, str]], body: Dict[str, Any]) -> SseEventSource:
        """POST body as JSON and return an event source over the response."""
        request_headers = {"Accept": "text/event-stream", **(headers or {})}
        attempt = 0
        while True:
            request = self._client.build_request("POST", url, headers=request_headers, json=body)
            try:
                response = self._client.send(request, stream=True)
            except httpx.TransportError as e:
                if attempt < self.max_retries:
                    attempt += 1
                    self._backoff(attempt, f"Connection to {url} failed: {e}")
                    continue
                raise TransportError(f"Connection failed: {e}", cause=e) from e

            if response.status_code >= 400:
                detail = _read_error_body(response)
                response.close()
                if response.status_code in RETRYABLE_STATUS and attempt < self.max_retries:
                    attempt += 1
                    self._backoff(attempt, f"HTTP {response.status_code} from {url}")
                    continue
                raise TransportError(f"HTTP {response.status_code}: {detail}", code=response.status_code)

            logger.debug(f"Stream opened: {url}")
            return SseEventSource(response)

    def get_json(self, url: str, headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self._client.get(url, headers=headers)
        except httpx.TransportError as e:
            raise TransportError(f"Connection failed: {e}", cause=e) from e
        if response.status_code >= 400:
            raise TransportError(f"HTTP {response.status_code}: {response.text[:_ERROR_BODY_LIMIT]}",
                                 code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"Invalid JSON from {url}: {e}", cause=e) from e

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
