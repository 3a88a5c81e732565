"""
Amazon Bedrock provider.
Speaks the native Anthropic Messages protocol through boto3, including
extended thinking.
"""

import json
import logging
from typing import Any, Dict, Iterator, List

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from agent.events import Delta, Error, StreamEvent, Usage
from agent.types import ModelCapabilities, ModelInfo, Request
from config import ModelConfig, ProviderConfig
from transport import BedrockEventSource, SseEvent

from .base import ActiveStreams, ProviderClient, ProviderError, RequestChannel, StreamListener, start_stream

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "bedrock-2023-05-31"
# Room left for the visible answer when thinking is enabled
_MIN_ANSWER_TOKENS = 4000
_MIN_THINKING_BUDGET = 1024


class BedrockError(ProviderError):
    """Custom exception for Bedrock service errors"""
    pass


def _client_error_message(e: ClientError) -> str:
    return e.response.get("Error", {}).get("Message", str(e))


def anthropic_messages(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Keep user/assistant turns, merging consecutive same-role turns.

    The API rejects empty content and requires alternating roles.
    """
    merged: List[Dict[str, str]] = []
    for m in messages:
        role, content = m.get("role"), (m.get("content") or "")
        if role not in ("user", "assistant") or not content.strip():
            continue
        if merged and merged[-1]["role"] == role:
            merged[-1] = {"role": role, "content": merged[-1]["content"] + "\n\n" + content}
        else:
            merged.append({"role": role, "content": content})
    return merged


class _ChunkInterpreter:
    """Maps Anthropic stream chunks to stream events for one request."""

    def __init__(self):
        self.input_tokens = 0

    def __call__(self, sse: SseEvent) -> Iterator[StreamEvent]:
        chunk = sse.data
        if not isinstance(chunk, dict):
            return
        event_type = chunk.get("type", "")

        if event_type == "content_block_delta":
            delta = chunk.get("delta", {})
            delta_type = delta.get("type", "")
            if delta_type == "thinking_delta":
                yield Delta(delta.get("thinking", ""), is_thinking=True)
            elif delta_type == "text_delta":
                yield Delta(delta.get("text", ""))
        elif event_type == "message_start":
            usage = chunk.get("message", {}).get("usage", {})
            self.input_tokens = usage.get("input_tokens", 0)
            yield Usage(input_tokens=self.input_tokens)
        elif event_type == "message_delta":
            usage = chunk.get("usage", {})
            yield Usage(input_tokens=self.input_tokens, output_tokens=usage.get("output_tokens", 0))
        elif event_type == "error":
            err = chunk.get("error", {})
            yield Error(err.get("message", "Bedrock stream error") if isinstance(err, dict) else str(err))


class BedrockProvider(ProviderClient):
    """
    Streams Claude models on Amazon Bedrock.
    Clients may be injected; otherwise they are built from ProviderConfig.
    """

    def __init__(
        self,
        provider_config: ProviderConfig,
        model_config: ModelConfig,
        runtime_client: Any = None,
        control_client: Any = None,
    ):
        self.provider_config = provider_config
        self.model_config = model_config
        self.region = provider_config.region
        self._session = None
        self.client = runtime_client or self._create_client("bedrock-runtime")
        self._control_client = control_client
        self.streams = ActiveStreams()
        logger.info(f"BedrockProvider initialized in region: {self.region}")

    def _create_client(self, service: str) -> Any:
        """Create a boto3 client using profile, explicit keys or the default chain"""
        try:
            if self._session is None:
                session_kwargs = {"region_name": self.region}
                cfg = self.provider_config
                if cfg.has_profile():
                    session_kwargs["profile_name"] = cfg.profile_name
                elif cfg.has_explicit_credentials():
                    session_kwargs["aws_access_key_id"] = cfg.access_key_id
                    session_kwargs["aws_secret_access_key"] = cfg.secret_access_key
                    if cfg.has_session_token():
                        session_kwargs["aws_session_token"] = cfg.session_token
                self._session = boto3.Session(**session_kwargs)
            return self._session.client(service)
        except NoCredentialsError:
            raise BedrockError("AWS credentials not configured.")
        except BotoCoreError as e:
            raise BedrockError(f"Failed to initialize Bedrock client: {e}")

    def build_body(self, request: Request) -> Dict[str, Any]:
        caps = request.model.capabilities
        max_tokens = min(self.model_config.max_tokens, caps.max_output_tokens)
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": max_tokens,
            "messages": anthropic_messages(request.messages()),
        }
        if request.system_prompt:
            body["system"] = request.system_prompt

        if request.thinking_enabled and caps.supports_thinking:
            budget = min(self.model_config.thinking_budget, max_tokens - _MIN_ANSWER_TOKENS)
            body["thinking"] = {"type": "enabled", "budget_tokens": max(budget, _MIN_THINKING_BUDGET)}
            logger.info(f"Extended thinking enabled with budget: {body['thinking']['budget_tokens']} tokens")
        else:
            body["temperature"] = 1.0
        return body

    def _open(self, model_id: str, body: Dict[str, Any]) -> BedrockEventSource:
        try:
            response = self.client.invoke_model_with_response_stream(
                modelId=model_id,
                body=json.dumps(body),
                contentType="application/json",
                accept="application/json",
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            error_message = _client_error_message(e)
            logger.error(f"Bedrock API error: {error_code} - {error_message}")
            if error_code in ("ExpiredTokenException", "InvalidSignatureException"):
                raise BedrockError("AWS credentials expired. Please refresh.")
            if "thinking" in error_message.lower():
                raise BedrockError(
                    f"Thinking configuration error: {error_message}. "
                    f"Try adjusting thinking budget or disabling thinking."
                )
            raise BedrockError(f"Bedrock API error: {error_message}")
        return BedrockEventSource(response["body"])

    def send_message_streaming(self, request: Request, listener: StreamListener) -> RequestChannel:
        model_id = request.model.model_id
        body = self.build_body(request)
        logger.info(f"Streaming from model: {model_id} (request {request.request_id})")
        return start_stream(
            request, listener, self.streams,
            open_source=lambda: self._open(model_id, body),
            interpret=_ChunkInterpreter(),
        )

    def cancel_streaming(self, request_id: str) -> None:
        self.streams.cancel(request_id)

    def fetch_models(self) -> List[ModelInfo]:
        if self._control_client is None:
            self._control_client = self._create_client("bedrock")
        try:
            response = self._control_client.list_foundation_models(byOutputModality="TEXT")
        except ClientError as e:
            raise BedrockError(f"Failed to list models: {_client_error_message(e)}") from e
        models = []
        for summary in response.get("modelSummaries", []):
            if not summary.get("responseStreamingSupported", True):
                continue
            models.append(ModelInfo(
                model_id=summary["modelId"],
                display_name=summary.get("modelName", summary["modelId"]),
                provider="bedrock",
                capabilities=ModelCapabilities(),
            ))
        logger.info(f"Fetched {len(models)} Bedrock models")
        return models

    def close(self) -> None:
        self.streams.cancel_all()
