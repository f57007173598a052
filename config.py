import os
from dataclasses import dataclass, field
from typing import List
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # API settings
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "8000"))
    cors_origins: List[str] = field(
        default_factory=lambda: [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    # Record store settings
    database_file: str = os.getenv("LIBRARY_DB_FILE", "library.db")
    store_backend: str = os.getenv("LIBRARY_STORE", "sqlite")

    # Application settings
    app_name: str = os.getenv("APP_NAME", "Lending Library")
    app_version: str = os.getenv("APP_VERSION", "1.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    debug: bool = _env_flag("DEBUG")


settings = Settings()
