"""
Tests for loading worker settings from the environment
"""

import pytest

from scraper_worker.config import WorkerSettings, get_supabase_client, load_settings


def test_defaults():
    settings = load_settings({})

    assert settings.poll_interval_ms == 5000
    assert settings.lock_timeout_ms == 30 * 60 * 1000
    assert settings.stale_cleanup_interval_ms == 5 * 60 * 1000
    assert settings.graceful_shutdown_timeout_ms == 5 * 60 * 1000
    assert settings.reserve_batch_size == 5
    assert settings.retry.max_attempts == 5
    assert settings.headless is True
    assert settings.job_environment is None
    assert settings.worker_id.startswith("worker-")


def test_values_from_environment():
    settings = load_settings({
        "SUPABASE_URL": "https://example.supabase.co",
        "SUPABASE_KEY": "anon-key",
        "WORKER_ID": "railway-1",
        "SCRAPER_JOB_ENVIRONMENT": "production",
        "POLL_INTERVAL_MS": "2000",
        "RETRY_BACKOFF_MULTIPLIER": "1.5",
        "HEADLESS": "false",
        "PLAYWRIGHT_CHROMIUM_EXECUTABLE_PATH": "/usr/bin/chromium",
        "INCOLINK_EMAIL": "ops@example.com",
        "INCOLINK_PASSWORD": "secret",
    })

    assert settings.supabase_url == "https://example.supabase.co"
    assert settings.supabase_key == "anon-key"
    assert settings.worker_id == "railway-1"
    assert settings.job_environment == "production"
    assert settings.poll_interval_ms == 2000
    assert settings.retry.backoff_multiplier == 1.5
    assert settings.headless is False
    assert settings.chrome_path == "/usr/bin/chromium"
    assert settings.incolink_email == "ops@example.com"


def test_service_role_key_wins_over_anon_key():
    settings = load_settings({"SUPABASE_SERVICE_ROLE_KEY": "service", "SUPABASE_KEY": "anon"})

    assert settings.supabase_key == "service"


@pytest.mark.parametrize("name, value", [
    ("POLL_INTERVAL_MS", "soon"),
    ("LOCK_TIMEOUT_MS", "-1"),
    ("RETRY_JITTER", "lots"),
])
def test_invalid_numbers_are_rejected(name, value):
    with pytest.raises(ValueError, match=name):
        load_settings({name: value})


def test_supabase_client_requires_credentials():
    with pytest.raises(ValueError, match="Supabase credentials not found"):
        get_supabase_client(WorkerSettings())
