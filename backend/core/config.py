from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # App settings
    APP_NAME: str = "VitaClube API"
    VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "production"

    # Security settings
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7
    EMAIL_VERIFICATION_EXPIRE_HOURS: int = 24
    PASSWORD_RESET_OTP_EXPIRE_MINUTES: int = 10

    # Admin settings: email allow-list, JSON array in the environment
    ADMIN_EMAILS: List[str] = []

    # Database settings (MySQL)
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300
    DB_POOL_TIMEOUT: int = 10
    DB_CONNECT_TIMEOUT: int = 10
    DB_PRE_PING: bool = True

    # CORS settings
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",
        "https://vitaclube.com.br",
        "https://www.vitaclube.com.br",
    ]
    FRONTEND_URL: str = "http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    LOG_TTL_DAYS: int = 7

    # Rate limiting (in-memory, per process)
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "100/15minutes"
    RATE_LIMIT_AUTH: str = "10/minute"

    # Backups and LGPD exports
    BACKUP_DIR: str = "backups"
    EXPORT_DIR: str = "exports"
    BACKUP_RETENTION_DAYS: int = 30
    AUDIT_LOG_RETENTION_DAYS: int = 365

    # SMTP / Email settings
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: str = "VitaClube"
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 15
    SMTP_DEBUG: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    def is_admin_email(self, email: str) -> bool:
        allowed = {e.strip().lower() for e in self.ADMIN_EMAILS if e and e.strip()}
        return bool(email) and email.strip().lower() in allowed

# Create settings instance
settings = Settings()

# Validate required settings
if not settings.SECRET_KEY:
    raise ValueError("SECRET_KEY environment variable is required")

if not settings.DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is required")
