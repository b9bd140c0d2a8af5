"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BUNDLED_DATA_DIR = Path(__file__).resolve().parents[1] / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "ACM Gateway"
    debug: bool = False
    environment: str = "development"
    http_port: int = 3000

    # MLLP listener
    mllp_enabled: bool = True
    mllp_host: str = "0.0.0.0"
    mllp_port: int = 3359
    max_frame_bytes: int = 1024 * 1024     # Partial frame is dropped past this size
    persist_timeout_seconds: float = 10.0  # Upper bound for a single record insert
    session_history_size: int = 10         # Recent frames kept per connection
    nak_on_missing_segment: bool = False   # Dropped messages are acked with "ok" unless set

    # Database
    database_url: str = "sqlite+aiosqlite:///./hl7_messages.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def assemble_db_url(cls, v: str) -> str:
        """Convert plain database URLs to their async driver form."""
        if v.startswith("sqlite://"):
            v = v.replace("sqlite://", "sqlite+aiosqlite://", 1)
        elif v.startswith("postgres://"):
            v = v.replace("postgres://", "postgresql+asyncpg://", 1)
        elif v.startswith("postgresql://") and "+asyncpg" not in v:
            v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # Tables
    alarm_record_table: str = "hl7_patients"
    codesystem_table: str = "hl7_codesystem"
    default_codetag_table: str = "hl7_codesystem_300"

    # Code system bootstrap
    default_codesystem_name: str = "300"
    codesystem_document: str = "300_map.xml"
    codesystem_search_paths: list[str] = [".", str(BUNDLED_DATA_DIR)]

    def resolve_codesystem_document(self) -> Path:
        """Return the first existing candidate path for the bootstrap document."""
        candidates = [Path(p) / self.codesystem_document for p in self.codesystem_search_paths]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return candidates[0]

    # CORS - accepts comma-separated string or JSON array
    cors_origins_str: str = "http://localhost:3000,http://localhost:4200"

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        value = self.cors_origins_str
        if value.startswith("["):
            import json
            return json.loads(value)
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Metrics
    metrics_enabled: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
