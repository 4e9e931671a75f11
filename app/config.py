from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - relative SQLite file by default
    DATABASE_URL: str = "sqlite:///./db/crm.sqlite"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Origins allowed by the CORS middleware
    CORS_ORIGINS: list[str] = ["*"]

    # Pass raw driver messages through in 500 responses
    EXPOSE_STORAGE_ERRORS: bool = True

    # Insert the two demo users when the users table is empty
    SEED_DEMO_USERS: bool = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
