from __future__ import annotations

import pytest

from config import get_settings_module, load_settings


@pytest.mark.parametrize(
    "app_env, expected",
    [
        ("prod", "config.production"),
        ("Testing", "config.testing"),
        ("staging", "config.development"),
    ],
)
def test_app_env_selects_module(monkeypatch, app_env, expected):
    monkeypatch.delenv("COURSE_SYNC_SETTINGS", raising=False)
    monkeypatch.setenv("APP_ENV", app_env)
    assert get_settings_module() == expected


def test_explicit_module_wins(monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    monkeypatch.setenv("COURSE_SYNC_SETTINGS", "config.testing")

    settings = load_settings()

    assert settings.TASK_STORE == "memory"
    assert settings.DB_CONFIG["database"] == "course_sync_test"
