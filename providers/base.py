"""
Provider client contract and the per-request streaming machinery shared by
every backend implementation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol

from agent.events import Completed, Delta, Error, Started, StreamEvent, Usage, is_terminal
from agent.parser import parse_response
from agent.types import ModelInfo, ParsedResponse, Request
from transport import SseEvent, TransportError

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Unknown provider kind or a failed model listing."""
    pass


class StreamListener(Protocol):
    def on_stream_started(self, request_id: str) -> None: ...

    def on_stream_partial_update(self, request_id: str, accumulated_text: str, is_thinking: bool) -> None: ...

    def on_stream_completed(self, request_id: str, response: ParsedResponse) -> None: ...

    def on_stream_error(self, request_id: str, message: str, cause: Optional[BaseException]) -> None: ...


class RequestChannel:
    """Ordered event channel for one request.

    Delivers at most one Started, then Delta/Usage events in order, then
    exactly one terminal event, which also resolves `future`. After cancel()
    every further event is dropped, the listener hears nothing more, and the
    future is cancelled.
    """

    def __init__(self, request_id: str, listener: StreamListener):
        self.request_id = request_id
        self.future: "Future[StreamEvent]" = Future()
        self._listener = listener
        # Re-entrant: listener callbacks may cancel the request they are handling
        self._lock = threading.RLock()
        self._started = False
        self._terminal: Optional[StreamEvent] = None
        self._cancelled = False
        self._source: Any = None
        self._text: List[str] = []
        self._thinking: List[str] = []
        self.usage = Usage()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._cancelled or self._terminal is not None

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def thinking(self) -> str:
        return "".join(self._thinking)

    def attach_source(self, source: Any) -> bool:
        """Bind the live event source. Returns False (and closes it) if already cancelled."""
        with self._lock:
            if not self._cancelled:
                self._source = source
                return True
        source.close()
        return False

    def publish(self, event: StreamEvent) -> bool:
        """Deliver one event to the listener. Returns False if it was dropped."""
        with self._lock:
            if self.done:
                return False
            if isinstance(event, Started):
                if self._started:
                    return False
                self._started = True
                self._listener.on_stream_started(self.request_id)
                return True

            if not self._started:
                self.publish(Started())

            if isinstance(event, Delta):
                if not event.text:
                    return False
                acc = self._thinking if event.is_thinking else self._text
                acc.append(event.text)
                self._listener.on_stream_partial_update(self.request_id, "".join(acc), event.is_thinking)
            elif isinstance(event, Usage):
                self.usage = event
            elif is_terminal(event):
                self._terminal = event
                try:
                    if isinstance(event, Completed):
                        self._listener.on_stream_completed(self.request_id, event.response)
                    else:
                        self._listener.on_stream_error(self.request_id, event.message, event.cause)
                finally:
                    self.future.set_result(event)
        return True

    def cancel(self) -> bool:
        with self._lock:
            if self.done:
                return False
            self._cancelled = True
            source, self._source = self._source, None
        if source is not None:
            source.close()
        self.future.cancel()
        logger.info(f"Request {self.request_id} cancelled")
        return True


class ActiveStreams:
    """Lock-protected map of request id to live channel."""

    def __init__(self):
        self._lock = threading.Lock()
        self._channels: Dict[str, RequestChannel] = {}

    def register(self, channel: RequestChannel) -> None:
        with self._lock:
            self._channels[channel.request_id] = channel

    def remove(self, request_id: str) -> Optional[RequestChannel]:
        with self._lock:
            return self._channels.pop(request_id, None)

    def cancel(self, request_id: str) -> bool:
        """Cancel and forget a request. Unknown ids are a no-op."""
        channel = self.remove(request_id)
        return channel.cancel() if channel is not None else False

    def cancel_all(self) -> None:
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.cancel()

    def __contains__(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)


# Converts one transport event into zero or more stream events
EventInterpreter = Callable[[SseEvent], Iterable[StreamEvent]]


def start_stream(
    request: Request,
    listener: StreamListener,
    streams: ActiveStreams,
    open_source: Callable[[], Any],
    interpret: EventInterpreter,
) -> RequestChannel:
    """Run one streaming request on a daemon thread.

    The channel is registered before the thread starts so cancel_streaming()
    can find it immediately. On a clean end of stream the accumulated visible
    text is parsed into the Completed response, together with the raw payload
    of every stream event, one per line.
    """
    channel = RequestChannel(request.request_id, listener)
    streams.register(channel)

    def _pump():
        source = None
        try:
            channel.publish(Started())
            source = open_source()
            if not channel.attach_source(source):
                return
            raw_events = []
            for sse in source:
                raw_events.append(sse.raw)
                for event in interpret(sse):
                    channel.publish(event)
                    if channel.done:
                        return
            if channel.done:
                return
            response = parse_response(channel.text, raw_response="\n".join(raw_events), thinking=channel.thinking)
            channel.publish(Completed(response))
        except TransportError as e:
            logger.error(f"Request {request.request_id} failed: {e.message}")
            channel.publish(Error(e.message, e.code, e))
        except ProviderError as e:
            logger.error(f"Request {request.request_id} failed: {e}")
            channel.publish(Error(str(e), None, e))
        except Exception as e:
            logger.exception(f"Request {request.request_id} failed")
            channel.publish(Error(str(e) or type(e).__name__, None, e))
        finally:
            streams.remove(request.request_id)
            if source is not None:
                source.close()

    thread = threading.Thread(target=_pump, name=f"stream-{request.request_id[:8]}", daemon=True)
    thread.start()
    return channel


class ProviderClient(ABC):
    """Uniform streaming contract over model backends."""

    @abstractmethod
    def send_message_streaming(self, request: Request, listener: StreamListener) -> RequestChannel:
        pass

    @abstractmethod
    def cancel_streaming(self, request_id: str) -> None:
        pass

    @abstractmethod
    def fetch_models(self) -> List[ModelInfo]:
        pass

    def close(self) -> None:
        pass
