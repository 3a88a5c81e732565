"""
Model backend providers.

- base: ProviderClient contract, RequestChannel, ActiveStreams
- openai_compat: generic OpenAI-style SSE endpoints
- bedrock: Claude on Amazon Bedrock (native protocol)
- models: ModelRegistry
"""

import logging

from config import AppConfig, ModelConfig, ProviderConfig
from transport import SseTransport

from .base import ActiveStreams, ProviderClient, ProviderError, RequestChannel, StreamListener, start_stream
from .bedrock import BedrockError, BedrockProvider
from .models import ModelRegistry
from .openai_compat import OpenAICompatibleProvider

logger = logging.getLogger(__name__)


def create_provider(kind: str, provider_config: ProviderConfig, model_config: ModelConfig,
                    app_config: AppConfig) -> ProviderClient:
    """Build the provider client for a backend kind ("openai" or "bedrock")."""
    if kind == "openai":
        transport = SseTransport(
            connect_timeout=provider_config.connect_timeout,
            write_timeout=provider_config.write_timeout,
            max_retries=app_config.stream_max_retries,
            retry_backoff=app_config.stream_retry_backoff,
        )
        return OpenAICompatibleProvider(provider_config.openai_base_url, provider_config.openai_api_key, transport)
    if kind == "bedrock":
        return BedrockProvider(provider_config, model_config)
    raise ProviderError(f"Unknown provider: {kind}")


__all__ = [
    "ActiveStreams",
    "BedrockError",
    "BedrockProvider",
    "ModelRegistry",
    "OpenAICompatibleProvider",
    "ProviderClient",
    "ProviderError",
    "RequestChannel",
    "StreamListener",
    "create_provider",
    "start_stream",
]
