"""
Configuration module for Codex Agent.
Handles environment variables, provider settings, model specifications, and application settings.
"""

import os
from dataclasses import dataclass
from typing import List, Dict, Any
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class ProviderConfig:
    """Backend selection and connection settings"""
    # openai (generic OpenAI-style SSE endpoint) | bedrock (native Anthropic-on-Bedrock protocol)
    provider: str = os.getenv("CODEX_PROVIDER", "openai")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://text.pollinations.ai/openai")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")
    # Streaming bodies can run for minutes, so only connect/write are bounded.
    connect_timeout: float = float(os.getenv("CONNECT_TIMEOUT", "30"))
    write_timeout: float = float(os.getenv("WRITE_TIMEOUT", "30"))

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model-specific configuration"""
    model_id: str = os.getenv("CODEX_MODEL_ID", "qwen3-coder-plus")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "16000"))
    enable_thinking: bool = os.getenv("ENABLE_THINKING", "false").lower() == "true"
    thinking_budget: int = int(os.getenv("THINKING_BUDGET", "8000"))


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Codex Agent"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")
    # Agent mode applies proposed file changes without asking
    agent_mode: bool = os.getenv("AGENT_MODE", "false").lower() == "true"
    # Recent-message window sent to models that cannot hold multi-turn context
    history_window: int = int(os.getenv("HISTORY_WINDOW", "12"))
    # Upper bound on chained tool_result continuations per user prompt
    max_tool_continuations: int = int(os.getenv("MAX_TOOL_CONTINUATIONS", "25"))
    tool_max_workers: int = int(os.getenv("TOOL_MAX_WORKERS", "4"))
    # Stream recovery settings (applied before the first byte arrives)
    stream_max_retries: int = int(os.getenv("STREAM_MAX_RETRIES", "3"))
    stream_retry_backoff: float = float(os.getenv("STREAM_RETRY_BACKOFF", "0.5"))
    sessions_dir: str = os.getenv("SESSIONS_DIR", os.path.join(os.path.expanduser("~"), ".codex-agent", "sessions"))


# ============================================================
# Model Specifications
# single_round marks models whose backend cannot use multi-turn
# context natively; the orchestrator windows their history.
# ============================================================
AVAILABLE_MODELS: List[Dict[str, Any]] = [
    # ----- Qwen family (generic OpenAI-style endpoints) -----
    {
        "id": "qwen3-coder-plus",
        "name": "Qwen3-Coder",
        "provider": "openai",
        "context_window": 1048576,
        "max_output_tokens": 65536,
        "supports_thinking": False,
        "single_round": False,
    },
    {
        "id": "qwen3-235b-a22b",
        "name": "Qwen3-235B-A22B-2507",
        "provider": "openai",
        "context_window": 131072,
        "max_output_tokens": 81920,
        "supports_thinking": True,
        "single_round": False,
    },
    {
        "id": "qwq-32b",
        "name": "QwQ-32B",
        "provider": "openai",
        "context_window": 131072,
        "max_output_tokens": 8192,
        "supports_thinking": True,
        "single_round": False,
    },
    {
        "id": "qwen2.5-omni-7b",
        "name": "Qwen2.5-Omni-7B",
        "provider": "openai",
        "context_window": 30720,
        "max_output_tokens": 2048,
        "supports_thinking": False,
        "single_round": True,
    },
    {
        "id": "openai",
        "name": "OpenAI (free endpoint)",
        "provider": "openai",
        "context_window": 128000,
        "max_output_tokens": 8192,
        "supports_thinking": False,
        "single_round": True,
    },
    # ----- Claude on Bedrock (native protocol) -----
    {
        "id": "us.anthropic.claude-sonnet-4-5-20250929-v1:0",
        "name": "Claude Sonnet 4.5",
        "provider": "bedrock",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "supports_thinking": True,
        "single_round": False,
    },
    {
        "id": "us.anthropic.claude-haiku-4-5-20251001-v1:0",
        "name": "Claude Haiku 4.5",
        "provider": "bedrock",
        "context_window": 200000,
        "max_output_tokens": 64000,
        "supports_thinking": True,
        "single_round": False,
    },
    {
        "id": "anthropic.claude-3-5-haiku-20241022-v1:0",
        "name": "Claude 3.5 Haiku",
        "provider": "bedrock",
        "context_window": 200000,
        "max_output_tokens": 8192,
        "supports_thinking": False,
        "single_round": False,
    },
]


# Create global config instances
provider_config = ProviderConfig()
model_config = ModelConfig()
app_config = AppConfig()


def get_credentials_info() -> str:
    if provider_config.provider == "openai":
        return "Using API key" if provider_config.openai_api_key else "Using anonymous endpoint"
    if provider_config.has_profile():
        return f"Using AWS profile: {provider_config.profile_name}"
    elif provider_config.has_explicit_credentials():
        if provider_config.has_session_token():
            return "Using temporary credentials (with session token)"
        return "Using explicit credentials"
    return "Using default credential chain"
