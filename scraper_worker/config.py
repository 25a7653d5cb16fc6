"""
Configuration for the scraper worker process.

Values come from environment variables (optionally a .env file in the project
root). Site-specific constants live in each pipeline's own config module.
"""

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from supabase import create_client, Client

PROJECT_ROOT = Path(__file__).resolve().parent.parent
LOGS_DIR = PROJECT_ROOT / "logs"

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

# Defaults
DEFAULT_POLL_INTERVAL_MS = 5000
DEFAULT_LOCK_TIMEOUT_MS = 30 * 60 * 1000  # 30 minutes
DEFAULT_STALE_CLEANUP_INTERVAL_MS = 5 * 60 * 1000  # 5 minutes
DEFAULT_GRACEFUL_SHUTDOWN_TIMEOUT_MS = 5 * 60 * 1000  # 5 minutes
DEFAULT_RESERVE_BATCH_SIZE = 5

DEFAULT_RETRY_MAX_ATTEMPTS = 5
DEFAULT_RETRY_INITIAL_DELAY_MS = 5000
DEFAULT_RETRY_MAX_DELAY_MS = 10 * 60 * 1000
DEFAULT_RETRY_BACKOFF_MULTIPLIER = 2.0
DEFAULT_RETRY_JITTER = 0.2


@dataclass
class RetrySettings:
    """Retry policy. Only max_attempts is applied; requeues wait one poll interval."""

    max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    initial_delay_ms: int = DEFAULT_RETRY_INITIAL_DELAY_MS
    max_delay_ms: int = DEFAULT_RETRY_MAX_DELAY_MS
    backoff_multiplier: float = DEFAULT_RETRY_BACKOFF_MULTIPLIER
    jitter: float = DEFAULT_RETRY_JITTER


@dataclass
class WorkerSettings:
    """Everything the worker loop and the pipelines read at runtime."""

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    worker_id: str = field(default_factory=lambda: f"worker-{socket.gethostname()}-{os.getpid()}")
    job_environment: Optional[str] = None

    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    lock_timeout_ms: int = DEFAULT_LOCK_TIMEOUT_MS
    stale_cleanup_interval_ms: int = DEFAULT_STALE_CLEANUP_INTERVAL_MS
    graceful_shutdown_timeout_ms: int = DEFAULT_GRACEFUL_SHUTDOWN_TIMEOUT_MS
    reserve_batch_size: int = DEFAULT_RESERVE_BATCH_SIZE
    retry: RetrySettings = field(default_factory=RetrySettings)

    # Browser
    headless: bool = True
    chrome_path: Optional[str] = None

    # Incolink portal credentials
    incolink_email: Optional[str] = None
    incolink_password: Optional[str] = None


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[Mapping[str, str]] = None) -> WorkerSettings:
    """
    Build WorkerSettings from environment variables.

    Args:
        env: Mapping to read from (defaults to os.environ)

    Returns:
        Populated WorkerSettings

    Raises:
        ValueError: If a numeric variable can't be parsed
    """
    if env is None:
        env = os.environ

    retry = RetrySettings(
        max_attempts=max(1, _get_int(env, "RETRY_MAX_ATTEMPTS", DEFAULT_RETRY_MAX_ATTEMPTS)),
        initial_delay_ms=_get_int(env, "RETRY_INITIAL_DELAY_MS", DEFAULT_RETRY_INITIAL_DELAY_MS),
        max_delay_ms=_get_int(env, "RETRY_MAX_DELAY_MS", DEFAULT_RETRY_MAX_DELAY_MS),
        backoff_multiplier=_get_float(env, "RETRY_BACKOFF_MULTIPLIER", DEFAULT_RETRY_BACKOFF_MULTIPLIER),
        jitter=_get_float(env, "RETRY_JITTER", DEFAULT_RETRY_JITTER),
    )

    settings = WorkerSettings(
        supabase_url=env.get("SUPABASE_URL"),
        supabase_key=env.get("SUPABASE_SERVICE_ROLE_KEY") or env.get("SUPABASE_KEY"),
        job_environment=env.get("SCRAPER_JOB_ENVIRONMENT") or None,
        poll_interval_ms=_get_int(env, "POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS),
        lock_timeout_ms=_get_int(env, "LOCK_TIMEOUT_MS", DEFAULT_LOCK_TIMEOUT_MS),
        stale_cleanup_interval_ms=_get_int(env, "STALE_CLEANUP_INTERVAL_MS", DEFAULT_STALE_CLEANUP_INTERVAL_MS),
        graceful_shutdown_timeout_ms=_get_int(
            env, "GRACEFUL_SHUTDOWN_TIMEOUT_MS", DEFAULT_GRACEFUL_SHUTDOWN_TIMEOUT_MS
        ),
        reserve_batch_size=max(1, _get_int(env, "RESERVE_BATCH_SIZE", DEFAULT_RESERVE_BATCH_SIZE)),
        retry=retry,
        headless=_get_bool(env, "HEADLESS", True),
        chrome_path=env.get("CHROME_PATH") or env.get("PLAYWRIGHT_CHROMIUM_EXECUTABLE_PATH") or None,
        incolink_email=env.get("INCOLINK_EMAIL"),
        incolink_password=env.get("INCOLINK_PASSWORD"),
    )

    if env.get("WORKER_ID"):
        settings.worker_id = env["WORKER_ID"]

    return settings


def get_supabase_client(settings: WorkerSettings) -> Client:
    """
    Create the Supabase client used for the lifetime of the process.

    Args:
        settings: Worker settings carrying the Supabase URL and key

    Returns:
        Supabase client instance

    Raises:
        ValueError: If credentials are not set
    """
    if not settings.supabase_url or not settings.supabase_key:
        raise ValueError(
            "Supabase credentials not found. Please set SUPABASE_URL and "
            "SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) environment variables."
        )

    return create_client(settings.supabase_url, settings.supabase_key)
