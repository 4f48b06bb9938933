"""
Configuration settings for the Soukhya intake service
"""
import os
from pathlib import Path
from functools import lru_cache
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application
    APP_NAME: str = "Soukhya Patient Intake"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = f"sqlite:///{BASE_DIR}/data/soukhya.db"
    SQL_DEBUG: bool = False
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10

    # File Storage
    UPLOAD_DIR: Path = BASE_DIR / "uploads"
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # 10MB
    MAX_FILE_COUNT: int = 10

    # Authentication
    REQUIRE_AUTH: bool = False
    JWT_SECRET_KEY: str = os.getenv("SECRET", "change-this-in-production-use-secrets")
    JWT_ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "soukhya-health"
    JWT_AUDIENCE: str = "soukhya-users"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Security
    ALLOWED_ORIGINS: list = ["*"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "allow"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
