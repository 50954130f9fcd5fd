from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Literal

class Settings(BaseSettings):
    APP_NAME: str = "Purchasing API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "purchasing"
    STORE_BACKEND: Literal["mongo", "memory"] = "mongo"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Receipts (the "bon" attached before review)
    UPLOAD_DIR: str = "uploads/orders"
    UPLOAD_URL_PREFIX: str = "/uploads/orders"
    MAX_RECEIPT_BYTES: int = 10 * 1024 * 1024

    # Verification claim older than this is treated as abandoned
    VERIFY_LOCK_TTL_SECONDS: int = 300

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

settings = Settings()
