"""
Configuration settings for the NVD mirror
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

NVD_API_URL_DEFAULT = "https://services.nvd.nist.gov/rest/json/cves/2.0"


class Settings(BaseSettings):
    """Mirror settings, read from the environment and .env"""

    ENVIRONMENT: str = "development"

    # NVD API 2.0
    NVD_API_URL: Optional[str] = NVD_API_URL_DEFAULT
    NVD_API_KEY: Optional[str] = None
    NVD_API_KEY_ENCRYPTED: bool = False
    NVD_RESULTS_PER_PAGE: int = 2000
    NVD_REQUEST_TIMEOUT: int = 120  # seconds per page request

    # Fernet key used to decrypt NVD_API_KEY when it is stored encrypted
    SECRET_KEY: Optional[str] = None

    # Pending writes between conversion and the database; 0 = unbounded
    MIRROR_QUEUE_MAX_SIZE: int = 0

    # Database configuration
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "vulnerability_db"
    DB_USER: str = "vuln_user"
    DB_PASSWORD: Optional[str] = None
    DB_POOL_SIZE: int = 10

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


def trim_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def resolve_api_key(settings: Settings) -> Optional[str]:
    """
    The NVD API key to authenticate with, or None.

    An encrypted key that cannot be decrypted is not fatal: the mirror then
    runs unauthenticated with the lower NVD rate limit.
    """
    api_key = trim_to_none(settings.NVD_API_KEY)
    if api_key is None or not settings.NVD_API_KEY_ENCRYPTED:
        return api_key

    try:
        fernet = Fernet(settings.SECRET_KEY.encode() if settings.SECRET_KEY else b'')
        return fernet.decrypt(api_key.encode()).decode()
    except (InvalidToken, ValueError) as e:
        logger.warning(f"⚠️ Failed to decrypt API key; Continuing without authentication: {e!r}")
        return None


settings = Settings()
