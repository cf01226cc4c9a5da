from __future__ import annotations
import os
from pathlib import Path

class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    BASE_DIR = Path(__file__).resolve().parent
    # SQLite file in project directory
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'app.db'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # окно рефреша без planned_end и без оценки простоя
    REFRESH_DEFAULT_DOWNTIME_MINUTES = 60
    SLOT_LOOKAHEAD_DAYS = 7
    SLOT_MAX_SUGGESTIONS = 5
    # False: полная перезапись конфликтов при каждом пересчёте
    CONFLICT_PRESERVE_RESOLUTIONS = os.getenv("CONFLICT_PRESERVE_RESOLUTIONS", "0") == "1"

class DevConfig(BaseConfig):
    DEBUG = True
    SEED_TEST_DATA = True
    DEMO_ENVIRONMENTS = [
        {"name": "SIT", "instances": ["SIT-1", "SIT-2"], "components": ["app-server", "db-server"]},
        {"name": "UAT", "instances": ["UAT-1"], "components": ["app-server", "db-server", "mq"]},
    ]

class ProdConfig(BaseConfig):
    DEBUG = False
    JSON_SORT_KEYS = False
    SEED_TEST_DATA = False

class TestConfig(BaseConfig):
    TESTING = True
    SEED_TEST_DATA = False
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False}}

config_map = {
    "dev": DevConfig,
    "prod": ProdConfig,
    "test": TestConfig,
    "default": DevConfig,
}
