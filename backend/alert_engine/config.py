import logging
import logging.handlers
from pathlib import Path

from pydantic import BaseModel
from pydantic_settings import BaseSettings


class CountryCode(BaseModel):
    """An ISO calling code the SMS gateway may deliver to."""

    code: str
    name: str
    enabled: bool = True


DEFAULT_COUNTRIES = [
    CountryCode(code="+1", name="United States/Canada"),
    CountryCode(code="+44", name="United Kingdom"),
    CountryCode(code="+61", name="Australia"),
    CountryCode(code="+64", name="New Zealand"),
    CountryCode(code="+33", name="France"),
    CountryCode(code="+49", name="Germany"),
    CountryCode(code="+81", name="Japan"),
    CountryCode(code="+86", name="China", enabled=False),
    CountryCode(code="+91", name="India"),
    CountryCode(code="+55", name="Brazil"),
]


class Settings(BaseSettings):
    database_url: str = "postgresql://alerts:alerts@db:5432/alerts"
    secret_key: str = "change-me"
    redis_url: str = ""

    # HTTP surface
    cors_origins: str = "*"
    cors_allow_credentials: bool = False
    trusted_hosts: str = "*"
    rate_limit_run: str = "10/minute"

    # Alert defaults
    default_frequency_days: int = 7
    default_trigger_window_days: int = 30
    enabled_countries: list[CountryCode] = DEFAULT_COUNTRIES

    # SMS gateway
    sms_api_base_url: str = "https://rest.clicksend.com/v3"
    provider_timeout_seconds: float = 10.0
    provider_retry_backoff_seconds: float = 2.0

    # Record store supplying licenses / inventory snapshots
    record_store_url: str = ""
    record_store_api_key: str = ""
    record_store_timeout_seconds: float = 15.0

    # Background scheduler
    scheduler_enabled: bool = True
    scheduler_interval_seconds: float = 300.0
    schedule_lock_ttl_seconds: int = 600

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_max_bytes: int = 10_485_760  # 10 MB
    log_backup_count: int = 5

    model_config = {"env_file": ".env"}

    @property
    def effective_database_url(self) -> str:
        # SQLAlchemy 2 dropped the "postgres://" alias that some hosts still hand out
        if self.database_url.startswith("postgres://"):
            return "postgresql://" + self.database_url[len("postgres://") :]
        return self.database_url

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def trusted_hosts_list(self) -> list[str]:
        return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]


settings = Settings()


def setup_logging() -> None:
    """Configure application-wide logging with rotating file handlers.

    Creates three handlers:
    - Console: INFO+ with brief format (for docker compose logs)
    - app.log: DEBUG+ with detailed format, rotated at 10 MB x 5 backups
    - error.log: ERROR+ only, rotated at 10 MB x 5 backups
    """
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    # --- Console handler (brief, for Docker logs / stdout) ---
    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    ))
    root.addHandler(console)

    # --- Rotating file handler (detailed, all levels) ---
    detail_fmt = logging.Formatter(
        "%(asctime)s %(levelname)-8s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    app_handler = logging.handlers.RotatingFileHandler(
        log_dir / "app.log",
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    app_handler.setLevel(logging.DEBUG)
    app_handler.setFormatter(detail_fmt)
    root.addHandler(app_handler)

    # --- Rotating error-only file handler ---
    err_handler = logging.handlers.RotatingFileHandler(
        log_dir / "error.log",
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    err_handler.setLevel(logging.ERROR)
    err_handler.setFormatter(detail_fmt)
    root.addHandler(err_handler)

    # --- Quiet noisy third-party loggers ---
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured: level=%s, dir=%s, max=%s MB x %d backups",
        settings.log_level, log_dir, settings.log_max_bytes // 1_048_576, settings.log_backup_count,
    )
