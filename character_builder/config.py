import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'character_builder.db'}"


def _optional_float(name: str):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return float(value)


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_TIME_LIMIT = None

    OLLAMA_BASE_URL = os.environ.get("OLLAMA_BASE_URL", "http://127.0.0.1:11434")
    # Unset means requests wait for the model without a limit.
    OLLAMA_TIMEOUT_SECONDS = _optional_float("OLLAMA_TIMEOUT_SECONDS")
    BATCH_TEST_DELAY_SECONDS = float(os.environ.get("BATCH_TEST_DELAY_SECONDS", "0.5"))
    EVALUATION_VOCABULARY_PATH = os.environ.get("EVALUATION_VOCABULARY_PATH")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    BATCH_TEST_DELAY_SECONDS = 0.0
    EVALUATION_VOCABULARY_PATH = None
