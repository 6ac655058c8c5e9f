import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()

@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    # Database settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    database_busy_timeout: float = float(os.getenv("DATABASE_BUSY_TIMEOUT", "30"))

    # Loan rules
    loan_quota: int = int(os.getenv("LOAN_QUOTA", "3"))

    # Timestamps shown to clients are rendered in this fixed offset
    display_tz_offset_hours: int = int(os.getenv("DISPLAY_TZ_OFFSET_HOURS", "7"))
    display_tz_name: str = os.getenv("DISPLAY_TZ_NAME", "WIB")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "library-api")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    environment: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()
