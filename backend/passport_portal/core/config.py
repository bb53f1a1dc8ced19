from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Any
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


def parse_mime_types(v: Any) -> List[str]:
    """Parse allowed MIME types from string or list"""
    if isinstance(v, list):
        return [str(item).strip().lower() for item in v if str(item).strip()]
    if isinstance(v, str):
        if v.startswith('['):
            try:
                return [item.strip().lower() for item in json.loads(v)]
            except json.JSONDecodeError:
                pass
        return [mime.strip().lower() for mime in v.split(',') if mime.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Passport Portal"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    API_VERSION: str = "v1"

    CORS_ORIGINS_STR: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:5173"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        return parse_cors_origins(self.CORS_ORIGINS_STR)

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str = "sqlite+aiosqlite:///./passport_portal.db"
    DB_ECHO: bool = False

    # ==========================================
    # Authentication (tokens are issued by the identity service)
    # ==========================================
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ==========================================
    # Object Storage (AWS S3 / MinIO)
    # ==========================================
    USE_MINIO: bool = True
    MINIO_ENDPOINT: str = "localhost:9000"
    MINIO_PUBLIC_ENDPOINT: str = ""  # Browser-reachable endpoint for signed URLs
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    DOCUMENT_BUCKET: str = "passport-documents"
    STORAGE_PUBLIC_BASE_URL: str = "http://localhost:9000"
    STORAGE_MAX_RETRIES: int = 3

    # ==========================================
    # Applicant Documents
    # ==========================================
    MAX_DOCUMENT_SIZE_BYTES: int = 10 * 1024 * 1024  # 10 MiB
    ALLOWED_DOCUMENT_TYPES_STR: str = "image/jpeg,image/png,image/gif,application/pdf"
    SIGNED_URL_TTL_SECONDS: int = 3600  # 60 minutes
    SIGNED_URL_REFRESH_SECONDS: int = 2700  # 45 minutes, must stay below the TTL
    CREDENTIAL_CACHE_IDLE_SECONDS: int = 4 * 3600

    @property
    def ALLOWED_DOCUMENT_TYPES(self) -> List[str]:
        """Parse allowed MIME types from comma-separated string"""
        return parse_mime_types(self.ALLOWED_DOCUMENT_TYPES_STR)

    @field_validator("SIGNED_URL_REFRESH_SECONDS")
    @classmethod
    def refresh_shorter_than_ttl(cls, v: int, info) -> int:
        ttl = info.data.get("SIGNED_URL_TTL_SECONDS", 3600)
        if v <= 0 or v >= ttl:
            raise ValueError(
                f"SIGNED_URL_REFRESH_SECONDS ({v}) must be positive and below SIGNED_URL_TTL_SECONDS ({ttl})"
            )
        return v

    # ==========================================
    # Audit Log
    # ==========================================
    AUDIT_PAGE_SIZE: int = 20
    AUDIT_MAX_PAGE_SIZE: int = 100
    AUDIT_TIMEZONE: str = "UTC"  # Zone used to resolve "today", "this week", ...
    AUDIT_PLACEHOLDER_ENABLED: bool = True
    AUDIT_FEED_IDLE_SECONDS: int = 3600

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    def is_dev_mode(self) -> bool:
        return self.ENVIRONMENT == "development"


# Create settings instance
settings = Settings()
