import importlib
import os
from types import ModuleType

_ENV_MODULES = {
    "dev": "development",
    "development": "development",
    "test": "testing",
    "testing": "testing",
    "prod": "production",
    "production": "production",
}


def get_settings_module() -> str:
    # COURSE_SYNC_SETTINGS trỏ thẳng tới một module cấu hình khác (vd. "deploy.staging")
    explicit = os.getenv("COURSE_SYNC_SETTINGS", "").strip()
    if explicit:
        return explicit

    # APP_ENV chọn module cấu hình, mặc định là development
    env = os.getenv("APP_ENV", "development").strip().lower()
    return f"config.{_ENV_MODULES.get(env, 'development')}"


def load_settings() -> ModuleType:
    return importlib.import_module(get_settings_module())
