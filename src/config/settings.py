"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings

DEFAULT_ENABLED_TOOLS = [
    "web_search_exa",
    "get_code_context_exa",
    "crawling_exa",
    "deep_researcher_start",
    "deep_researcher_check",
]


class Settings(BaseSettings):
    # Upstream credential pool
    # Comma-separated list of Exa API keys; EXA_API_KEY is the single-key fallback
    exa_api_keys: str = ""
    exa_api_key: str = ""
    key_cooldown_seconds: float = 180.0  # 3 minutes
    key_max_retries: int = 3

    # Inbound tokens
    # USER_TOKENS format: token[:owner[:expiry]], comma-separated
    user_tokens: str = ""
    mcp_auth_token: str = ""  # legacy single admin token

    # Upstream API
    upstream_base_url: str = "https://api.exa.ai"
    upstream_timeout_seconds: float = 25.0
    enabled_tools: str = ""  # Empty = default tool set

    # Durable state
    state_store_backend: str = "none"  # "none" | "json" | "dynamodb"
    state_file_path: str = "gateway-state.json"
    dynamodb_table_name: str = "exa-gateway-state"
    aws_region: str = "us-east-1"

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def api_keys_list(self) -> list[str]:
        """Parse the upstream pool, falling back to the single EXA_API_KEY."""
        keys = [k.strip() for k in self.exa_api_keys.split(",") if k.strip()]
        if not keys and self.exa_api_key.strip():
            keys = [self.exa_api_key.strip()]
        return keys

    @property
    def enabled_tools_list(self) -> list[str]:
        tools = [t.strip() for t in self.enabled_tools.split(",") if t.strip()]
        return tools or list(DEFAULT_ENABLED_TOOLS)


@lru_cache
def get_settings() -> Settings:
    return Settings()
