"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from offersync.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)


@dataclass(frozen=True)
class Settings:
  """Typed settings for the offersync service."""

  environment: str
  debug: bool
  allowed_origins: tuple[str, ...]
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  gemini_api_key: str | None
  openai_api_key: str | None
  openai_base_url: str | None
  text_model: str
  fallback_text_model: str
  image_model: str
  default_ai_provider: str
  description_language: str
  provider_max_attempts: int
  provider_retry_delay_seconds: float
  provider_broad_fallback: bool
  simple_chunk_size: int
  complex_chunk_size: int
  price_poll_interval_seconds: float
  price_poll_attempts: int
  job_retention_hours: int
  job_sweep_interval_seconds: int
  max_concurrent_jobs: int
  job_shutdown_grace_seconds: float
  upload_root: str
  image_download_timeout_seconds: float
  image_download_max_bytes: int
  allegro_api_url: str
  allegro_upload_url: str
  allegro_auth_url: str
  allegro_client_id: str | None
  allegro_client_secret: str | None
  marketplace_http_timeout_seconds: float
  firebase_project_id: str | None
  firebase_service_account_json_path: str | None


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:3000",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if "*" in origins:
    raise ValueError("OFFERSYNC_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _non_negative_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value < 0:
    raise ValueError(f"{name} must be zero or a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("OFFERSYNC_ENV", "development").lower()
  debug = _parse_bool(os.getenv("OFFERSYNC_DEBUG"))

  log_max_bytes = _positive_int("OFFERSYNC_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("OFFERSYNC_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("OFFERSYNC_LOG_BACKUP_COUNT must be zero or a positive integer.")

  default_ai_provider = (os.getenv("OFFERSYNC_DEFAULT_AI_PROVIDER") or "gemini").strip().lower()
  if default_ai_provider not in {"gemini", "openai"}:
    raise ValueError("OFFERSYNC_DEFAULT_AI_PROVIDER must be 'gemini' or 'openai'.")

  # Chunk sizes stay small because each complex item fans out to several provider calls.
  simple_chunk_size = _positive_int("OFFERSYNC_SIMPLE_CHUNK_SIZE", "2")
  complex_chunk_size = _positive_int("OFFERSYNC_COMPLEX_CHUNK_SIZE", "3")

  return Settings(
    environment=environment,
    debug=debug,
    allowed_origins=_parse_origins(os.getenv("OFFERSYNC_ALLOWED_ORIGINS")),
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("OFFERSYNC_LOG_HTTP_4XX")),
    pg_dsn=_optional_str(os.getenv("OFFERSYNC_PG_DSN")),
    pg_connect_timeout=_positive_int("OFFERSYNC_PG_CONNECT_TIMEOUT", "10"),
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    openai_api_key=_optional_str(os.getenv("OPENAI_API_KEY")),
    openai_base_url=_optional_str(os.getenv("OFFERSYNC_OPENAI_BASE_URL")),
    text_model=(os.getenv("OFFERSYNC_TEXT_MODEL") or "gemini-2.5-flash").strip(),
    fallback_text_model=(os.getenv("OFFERSYNC_FALLBACK_TEXT_MODEL") or "gpt-4o-mini").strip(),
    image_model=(os.getenv("OFFERSYNC_IMAGE_MODEL") or "gemini-3-pro-image-preview").strip(),
    default_ai_provider=default_ai_provider,
    description_language=(os.getenv("OFFERSYNC_DESCRIPTION_LANGUAGE") or "Polish").strip(),
    provider_max_attempts=_positive_int("OFFERSYNC_PROVIDER_MAX_ATTEMPTS", "3"),
    provider_retry_delay_seconds=_non_negative_float("OFFERSYNC_PROVIDER_RETRY_DELAY_SECONDS", "5"),
    provider_broad_fallback=_parse_bool(os.getenv("OFFERSYNC_PROVIDER_BROAD_FALLBACK"), default=True),
    simple_chunk_size=simple_chunk_size,
    complex_chunk_size=complex_chunk_size,
    price_poll_interval_seconds=_non_negative_float("OFFERSYNC_PRICE_POLL_INTERVAL_SECONDS", "2"),
    price_poll_attempts=_positive_int("OFFERSYNC_PRICE_POLL_ATTEMPTS", "15"),
    job_retention_hours=_positive_int("OFFERSYNC_JOB_RETENTION_HOURS", "24"),
    job_sweep_interval_seconds=_positive_int("OFFERSYNC_JOB_SWEEP_INTERVAL_SECONDS", "3600"),
    max_concurrent_jobs=_positive_int("OFFERSYNC_MAX_CONCURRENT_JOBS", "4"),
    job_shutdown_grace_seconds=_non_negative_float("OFFERSYNC_JOB_SHUTDOWN_GRACE_SECONDS", "30"),
    upload_root=(os.getenv("OFFERSYNC_UPLOAD_ROOT") or ".").strip(),
    image_download_timeout_seconds=_non_negative_float("OFFERSYNC_IMAGE_DOWNLOAD_TIMEOUT_SECONDS", "60"),
    image_download_max_bytes=_positive_int("OFFERSYNC_IMAGE_DOWNLOAD_MAX_BYTES", str(50 * 1024 * 1024)),
    allegro_api_url=(os.getenv("OFFERSYNC_ALLEGRO_API_URL") or "https://api.allegro.pl").rstrip("/"),
    allegro_upload_url=(os.getenv("OFFERSYNC_ALLEGRO_UPLOAD_URL") or "https://upload.allegro.pl").rstrip("/"),
    allegro_auth_url=(os.getenv("OFFERSYNC_ALLEGRO_AUTH_URL") or "https://allegro.pl/auth/oauth/token").strip(),
    allegro_client_id=_optional_str(os.getenv("OFFERSYNC_ALLEGRO_CLIENT_ID")),
    allegro_client_secret=_optional_str(os.getenv("OFFERSYNC_ALLEGRO_CLIENT_SECRET")),
    marketplace_http_timeout_seconds=_non_negative_float("OFFERSYNC_MARKETPLACE_HTTP_TIMEOUT_SECONDS", "30"),
    firebase_project_id=_optional_str(os.getenv("OFFERSYNC_FIREBASE_PROJECT_ID")),
    firebase_service_account_json_path=_optional_str(os.getenv("OFFERSYNC_FIREBASE_SERVICE_ACCOUNT_JSON_PATH")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load only the settings required by the database layer."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("OFFERSYNC_DEBUG")), pg_dsn=_optional_str(os.getenv("OFFERSYNC_PG_DSN")), pg_connect_timeout=int(os.getenv("OFFERSYNC_PG_CONNECT_TIMEOUT", "10")))
