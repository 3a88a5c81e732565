"""
Generic OpenAI-style chat completions provider (SSE over httpx).
"""

import logging
from typing import Any, Dict, Iterator, List, Optional

from agent.events import Delta, Error, StreamEvent, Usage
from agent.types import ModelInfo, Request
from transport import SseEvent, SseTransport, TransportError

from .base import ActiveStreams, ProviderClient, ProviderError, RequestChannel, StreamListener, start_stream

logger = logging.getLogger(__name__)


def build_messages(request: Request) -> List[Dict[str, str]]:
    messages = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.extend(request.messages())
    return messages


def interpret_chunk(sse: SseEvent) -> Iterator[StreamEvent]:
    """Map one chat.completion.chunk to stream events."""
    data = sse.data
    if not isinstance(data, dict):
        return
    if data.get("error"):
        err = data["error"]
        if isinstance(err, dict):
            code = err.get("code")
            yield Error(str(err.get("message", err)), code if isinstance(code, int) else None)
        else:
            yield Error(str(err))
        return
    for choice in data.get("choices") or []:
        if not isinstance(choice, dict):
            continue
        delta = choice.get("delta") or choice.get("message") or {}
        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if isinstance(reasoning, str) and reasoning:
            yield Delta(reasoning, is_thinking=True)
        content = delta.get("content")
        if isinstance(content, str) and content:
            yield Delta(content)
    usage = data.get("usage")
    if isinstance(usage, dict):
        yield Usage(input_tokens=usage.get("prompt_tokens", 0) or 0,
                    output_tokens=usage.get("completion_tokens", 0) or 0)


class OpenAICompatibleProvider(ProviderClient):
    """POSTs {model, messages, stream: true} to {base_url}/chat/completions."""

    def __init__(self, base_url: str, api_key: str = "", transport: Optional[SseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.transport = transport or SseTransport()
        self.streams = ActiveStreams()
        logger.info(f"OpenAI-compatible provider initialized: {self.base_url}")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_body(self, request: Request) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": request.model.model_id,
            "messages": build_messages(request),
            "stream": True,
        }
        if request.thinking_enabled and request.model.capabilities.supports_thinking:
            body["enable_thinking"] = True
        return body

    def send_message_streaming(self, request: Request, listener: StreamListener) -> RequestChannel:
        url = f"{self.base_url}/chat/completions"
        body = self.build_body(request)
        logger.info(f"Streaming from model: {request.model.model_id} (request {request.request_id})")
        return start_stream(
            request, listener, self.streams,
            open_source=lambda: self.transport.open(url, self._headers(), body),
            interpret=interpret_chunk,
        )

    def cancel_streaming(self, request_id: str) -> None:
        self.streams.cancel(request_id)

    def fetch_models(self) -> List[ModelInfo]:
        try:
            payload = self.transport.get_json(f"{self.base_url}/models", headers=self._headers())
        except TransportError as e:
            raise ProviderError(f"Failed to fetch models: {e.message}") from e
        entries = payload.get("data", []) if isinstance(payload, dict) else payload
        models = []
        for entry in entries or []:
            if isinstance(entry, str):
                model_id = entry
            elif isinstance(entry, dict):
                model_id = entry.get("id") or entry.get("name")
            else:
                continue
            if model_id:
                models.append(ModelInfo(model_id=str(model_id), display_name=str(model_id), provider="openai"))
        logger.info(f"Fetched {len(models)} models from {self.base_url}")
        return models

    def close(self) -> None:
        self.streams.cancel_all()
        self.transport.close()
