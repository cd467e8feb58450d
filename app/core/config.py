from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.errors import ConfigurationError


ENV_PREFIX = "CHAT_SERVICE_"


class Settings(BaseSettings):
    """
    Application configuration settings.

    Values come from CHAT_SERVICE_* environment variables or a .env file.
    Credentials default to empty and are checked by require_credentials()
    at startup.
    """
    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        extra="ignore",
        protected_namespaces=(),
    )

    # Service Info
    service_name: str = "chat-trace-service"
    environment: str = "local"
    log_level: str = "INFO"
    debug: bool = False

    # HTTP
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    # Model service
    model_provider: Literal["openai", "azure"] = "openai"
    model_id: str = "gpt-4.1"
    openai_api_key: str = ""
    azure_openai_api_key: str = ""
    azure_openai_endpoint: str = ""
    azure_openai_api_version: str = "2024-02-15-preview"
    azure_openai_deployment_name: str = ""

    # Telemetry backend (Langfuse)
    tracing_enabled: bool = True
    langfuse_public_key: str = ""
    langfuse_secret_key: str = ""
    langfuse_host: str = "https://cloud.langfuse.com"
    langfuse_sample_rate: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    langfuse_timeout_ms: int = 5000

    # Request handling
    agent_timeout_seconds: float = 10.0
    agent_max_attempts: int = Field(default=1, ge=1)
    trace_ttl_seconds: float = 30.0
    flush_ceiling_seconds: float = 15.0
    trace_history_limit: int = 10

    def missing_credentials(self) -> List[str]:
        """Environment variable names of required credentials that are unset."""
        required = []
        if self.model_provider == "azure":
            required += [
                "azure_openai_api_key",
                "azure_openai_endpoint",
                "azure_openai_deployment_name",
            ]
        else:
            required.append("openai_api_key")
        if self.tracing_enabled:
            required += ["langfuse_public_key", "langfuse_secret_key"]

        return [f"{ENV_PREFIX}{name.upper()}" for name in required if not getattr(self, name)]

    def require_credentials(self) -> None:
        """Fail fast when a required credential is missing."""
        missing = self.missing_credentials()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )


settings = Settings()
