"""
Configuration Management

Loads monitor settings from environment variables (and a local .env file).
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent.parent / "data"
DEFAULT_DATABASE_URL = f"sqlite:///{DATA_DIR / 'practice_radar.db'}"
DEFAULT_USER_AGENT = "PracticeRadar status bot/0.4 (+contact: admin@practiceradar.example)"

MIN_RADIUS_MILES = 1
MAX_RADIUS_MILES = 30


def _env_int(environ, name, default, minimum=None):
    raw = environ.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        logger.warning(f"Invalid integer for {name}: {raw!r}, using default {default}")
        return default
    if minimum is not None and value < minimum:
        logger.warning(f"{name}={value} is below {minimum}, using {minimum}")
        return minimum
    return value


def _env_bool(environ, name, default=False):
    raw = environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def clamp_radius(radius, default=None):
    """
    Clamp a subscription radius to the supported range.

    Args:
        radius: Radius in miles (any type convertible to int)
        default (int, optional): Used when radius is missing or invalid

    Returns:
        int: Radius between 1 and 30 miles
    """
    try:
        value = int(radius)
    except (TypeError, ValueError):
        value = default if default is not None else 10
    return max(MIN_RADIUS_MILES, min(MAX_RADIUS_MILES, value))


@dataclass
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    batch_size: int = 200
    rate_min_ms: int = 800
    rate_max_ms: int = 1600
    max_concurrent_fetches: int = 4
    max_concurrency: int = 6
    cache_ttl_ms: int = 600000
    http_timeout_ms: int = 25000
    fetch_retries: int = 2
    cooldown_hours: int = 72
    include_child_only: bool = False
    default_radius: int = 25
    discovery_max_pages: int = 12
    base_url: str = "https://www.nhs.uk"
    user_agent: str = DEFAULT_USER_AGENT
    scan_interval_seconds: int = 900
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587
    sender_email: str = None
    sender_password: str = None
    log_level: str = "INFO"
    log_file: str = None

    @classmethod
    def from_env(cls, environ=None):
        """
        Build settings from environment variables.

        Args:
            environ (dict, optional): Mapping to read from (default: os.environ)

        Returns:
            Settings: Populated settings instance
        """
        env = os.environ if environ is None else environ

        rate_min = _env_int(env, "RATE_MIN_MS", 800, minimum=0)
        rate_max = _env_int(env, "RATE_MAX_MS", 1600, minimum=0)
        if rate_max < rate_min:
            logger.warning(f"RATE_MAX_MS ({rate_max}) below RATE_MIN_MS ({rate_min}), raising it")
            rate_max = rate_min

        return cls(
            database_url=env.get("DATABASE_URL") or DEFAULT_DATABASE_URL,
            batch_size=_env_int(env, "BATCH_SIZE", 200, minimum=1),
            rate_min_ms=rate_min,
            rate_max_ms=rate_max,
            max_concurrent_fetches=_env_int(env, "MAX_CONCURRENT_FETCHES", 4, minimum=1),
            max_concurrency=_env_int(env, "MAX_CONCURRENCY", 6, minimum=1),
            cache_ttl_ms=_env_int(env, "PRACTICE_CACHE_TTL_MS", 600000, minimum=0),
            http_timeout_ms=_env_int(env, "HTTP_TIMEOUT_MS", 25000, minimum=1000),
            fetch_retries=_env_int(env, "FETCH_RETRIES", 2, minimum=0),
            cooldown_hours=_env_int(env, "RESEND_COOLDOWN_HOURS", 72, minimum=0),
            include_child_only=_env_bool(env, "INCLUDE_CHILD_ONLY", False),
            default_radius=clamp_radius(_env_int(env, "SCAN_RADIUS", 25), default=25),
            discovery_max_pages=_env_int(env, "DISCOVERY_MAX_PAGES", 12, minimum=1),
            base_url=(env.get("NHS_BASE_URL") or "https://www.nhs.uk").rstrip("/"),
            user_agent=env.get("CRAWLER_USER_AGENT") or DEFAULT_USER_AGENT,
            scan_interval_seconds=_env_int(env, "SCAN_INTERVAL_SECONDS", 900, minimum=1),
            smtp_server=env.get("SMTP_SERVER", "smtp.gmail.com"),
            smtp_port=_env_int(env, "SMTP_PORT", 587, minimum=1),
            sender_email=env.get("SENDER_EMAIL"),
            sender_password=env.get("SENDER_PASSWORD"),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            log_file=env.get("LOG_FILE") or None,
        )

    @property
    def http_timeout_seconds(self):
        return self.http_timeout_ms / 1000.0

    @property
    def cache_ttl_seconds(self):
        return self.cache_ttl_ms / 1000.0


def configure_logging(settings):
    """
    Configure root logging for an entry point (CLI or daemon).
    """
    handlers = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(logging.FileHandler(settings.log_file))

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
