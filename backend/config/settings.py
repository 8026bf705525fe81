# backend/config/settings.py
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Application Settings
    APP_NAME: str = "Sales Order Management API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Database Settings
    DATABASE_URL: str = "sqlite:///./salesorders.db"

    # JWT Settings
    JWT_SECRET_KEY: str = "jwt-secret-key-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRES: int = 86400  # 24 hours

    # Email Settings
    SMTP_SERVER: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    MAIL_FROM: Optional[str] = None

    # Pagination Settings
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # CORS Settings
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]
    CORS_ALLOW_CREDENTIALS: bool = True

    # File Upload Settings
    MAX_FILE_SIZE: int = 5 * 1024 * 1024  # 5MB
    ALLOWED_UPLOAD_TYPES: List[str] = [".pdf", ".png", ".jpg", ".jpeg", ".doc", ".docx", ".xls", ".xlsx"]
    ALLOWED_IMPORT_TYPES: List[str] = [".xlsx", ".xls", ".csv"]
    UPLOAD_DIRECTORY: str = "uploads"

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    LOG_DIRECTORY: str = "logs"
    LOG_FILE: str = "logs/app.log"

    # Locale
    DEFAULT_TIMEZONE: str = "Asia/Kolkata"

    # Notifications / realtime
    NOTIFICATION_LIST_LIMIT: int = 50
    WEBSOCKET_PATH: str = "/ws"
    CHANGE_FEED_MAX_RESTARTS: int = 5
    CHANGE_FEED_RESTART_DELAY: float = 1.0  # seconds, doubled per consecutive failure
    CHANGE_FEED_MAX_RESTART_DELAY: float = 60.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()
