import logging
import os
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "devsecret"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.split(",") if p.strip()]


@dataclass
class Settings:
    """Runtime configuration. Build it with ``Settings.from_env()``."""

    database_url: str = "sqlite:///./tasks.db"
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    token_ttl_hours: int = 24
    cookie_name: str = "authToken"
    cookie_secure: bool = False
    upload_dir: str = "uploads"
    uploads_url_prefix: str = "/uploads"
    api_prefix: str = "/api"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])
    allowed_hosts: List[str] = field(default_factory=lambda: ["localhost", "127.0.0.1", "0.0.0.0", "testserver"])
    bcrypt_rounds: int = 10
    log_level: str = "INFO"
    repair_filename_encoding: bool = True
    enforce_attachment_ownership: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        secret = os.getenv("SECRET_KEY") or DEFAULT_SECRET_KEY
        if secret == DEFAULT_SECRET_KEY:
            logger.warning("SECRET_KEY is not set, falling back to the development secret")
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            secret_key=secret,
            algorithm=os.getenv("ALGORITHM", defaults.algorithm),
            token_ttl_hours=_env_int("TOKEN_TTL_HOURS", defaults.token_ttl_hours),
            cookie_secure=_env_bool("COOKIE_SECURE", defaults.cookie_secure),
            upload_dir=os.getenv("UPLOAD_DIR", defaults.upload_dir),
            uploads_url_prefix=os.getenv("UPLOADS_URL_PREFIX", defaults.uploads_url_prefix).rstrip("/"),
            cors_origins=_env_list("CORS_ORIGINS", defaults.cors_origins),
            allowed_hosts=_env_list("ALLOWED_HOSTS", defaults.allowed_hosts),
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", defaults.bcrypt_rounds),
            log_level=os.getenv("LOG_LEVEL", defaults.log_level),
            repair_filename_encoding=_env_bool("REPAIR_FILENAME_ENCODING", defaults.repair_filename_encoding),
            enforce_attachment_ownership=_env_bool(
                "ENFORCE_ATTACHMENT_OWNERSHIP", defaults.enforce_attachment_ownership
            ),
        )
