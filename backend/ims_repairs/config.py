"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "IMS_Repairs"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str = "sqlite:///./ims_repairs.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # BOM / inventory
    # Reject parts that are not listed as compatible with the device model
    # unless the caller explicitly overrides per request.
    BOM_ENFORCE_COMPATIBILITY: bool = True

    # Rework (rejection back to an earlier status)
    REWORK_ENABLED: bool = True
    REWORK_MAX_COUNT: int = 3
    REWORK_REQUIRE_REASON: bool = True

    # Bulk operations
    BULK_OPERATIONS_ENABLED: bool = True
    BULK_MAX_BATCH_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
