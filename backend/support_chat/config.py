"""Application configuration using pydantic-settings."""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SeedAgent(BaseModel):
    """An agent created at bootstrap when the directory is empty."""

    id: str
    name: str
    max_users: int = Field(default=2, ge=1, le=10)


DEFAULT_SEED_AGENTS = [
    SeedAgent(id="agent_001", name="Aatish Support"),
    SeedAgent(id="agent_002", name="Sanjay Support"),
    SeedAgent(id="agent_003", name="Ganesh Support"),
]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Support Chat"
    version: str = "1.0.0"
    environment: str = "development"
    log_level: str = "info"
    debug: bool = False

    # Storage
    storage_backend: str = "mongodb"  # "mongodb" | "memory"
    allow_memory_fallback: bool = False

    # MongoDB
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "chat_support"
    mongodb_timeout_ms: int = 5_000

    # Auth
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    token_ttl_days: int = 30
    api_key: str = ""

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Chat
    history_page_size: int = 50
    max_message_length: int = 1000
    default_agent_capacity: int = Field(default=2, ge=1, le=10)
    outbound_queue_size: int = 100
    seed_agents: list[SeedAgent] = Field(
        default_factory=lambda: list(DEFAULT_SEED_AGENTS)
    )

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def memory_fallback_enabled(self) -> bool:
        """Fallback to the in-memory store is only honoured in development."""
        return self.allow_memory_fallback and self.is_development


settings = Settings()


def get_settings() -> Settings:
    """FastAPI dependency for injecting settings."""
    return settings
