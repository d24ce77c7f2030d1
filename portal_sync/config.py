from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Local mirror database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./portal_sync.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Portal Integration Settings
    # ==============================================
    # Base URL for the Portal REST API
    portal_api_base_url: str = Field(
        default="https://desarrollo.app.kove.com.py/ords/inmobiliaria_view/portal",
        alias="PORTAL_API_BASE_URL"
    )

    # Paths that differ between Portal deployments
    portal_dashboard_incidents_path: str = Field(
        default="dashboard/incidencias",
        alias="PORTAL_DASHBOARD_INCIDENTS_PATH"
    )
    portal_approvals_reservations_path: str = Field(
        default="approvals/reservations",
        alias="PORTAL_APPROVALS_RESERVATIONS_PATH"
    )

    # HTTP timeout for Portal requests
    portal_timeout_seconds: float = Field(default=20.0, alias="PORTAL_TIMEOUT_SECONDS")

    # Used when the login response omits tokenType
    portal_default_token_type: str = Field(default="Bearer", alias="PORTAL_DEFAULT_TOKEN_TYPE")

    # Identity used by the background worker to (re)acquire a Portal session
    portal_identity_email: str = Field(default="", alias="PORTAL_IDENTITY_EMAIL")

    # Enable/Disable the in-process drain loop
    portal_sync_enabled: bool = Field(default=True, alias="PORTAL_SYNC_ENABLED")

    # Worker settings
    worker_poll_interval: int = Field(default=30, alias="WORKER_POLL_INTERVAL")  # seconds

    @field_validator('portal_api_base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """The Portal base must be absolute; relative paths are resolved against it"""
        if not v.startswith(("http://", "https://")):
            raise ValueError("PORTAL_API_BASE_URL must start with http:// or https://")
        return v if v.endswith("/") else f"{v}/"

    @field_validator('portal_timeout_seconds')
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("PORTAL_TIMEOUT_SECONDS must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """
        Parse allowed origins from comma-separated string.
        Returns a list suitable for CORSMiddleware.
        """
        if not self.allowed_origins:
            return ["http://localhost:5173"]

        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)

        return origins if origins else ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
