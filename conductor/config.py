"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Conductor configuration. All values come from environment variables."""

    # Storage
    data_dir: Path = Field(default=Path("data"))

    # Workspace text files (SOUL.md, USER.md, ...) folded into instructions
    workspace_dir: Path | None = Field(default=None)

    # HTTP surface
    api_host: str = Field(default="127.0.0.1")
    api_port: int = Field(default=8787)

    # Static API key upstream (chat completions)
    openai_api_key: str = Field(default="")
    chat_completions_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    models_url: str = Field(default="https://api.openai.com/v1/models")
    default_model: str = Field(default="gpt-4o-mini")

    # OAuth upstream (responses)
    responses_url: str = Field(default="https://chatgpt.com/backend-api/codex/responses")
    oauth_client_id: str = Field(default="app_EMoamEEZ73f0CkXaXp7hrann")
    oauth_authorize_url: str = Field(default="https://auth.openai.com/oauth/authorize")
    oauth_token_url: str = Field(default="https://auth.openai.com/oauth/token")
    oauth_redirect_uri: str = Field(default="http://localhost:1455/auth/callback")
    oauth_scope: str = Field(default="openid profile email offline_access")
    oauth_session_ttl_seconds: int = Field(default=600)

    # Embeddings (optional)
    embedding_api_url: str = Field(default="")
    embedding_api_key: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimensions: int | None = Field(default=None)

    # Turns
    turn_timeout_seconds: float = Field(default=300.0)
    escape_hatch_tool: str = Field(default="respond_to_user")

    # Context
    max_conversation_messages: int = Field(default=50)
    memory_search_top_k: int = Field(default=10)
    knowledge_limit: int = Field(default=30)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)


settings = Settings()
