"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List

from hitarchive.config import settings_from_dict
from hitarchive.logger import get_logger, reset_logger
from hitarchive.normalize import utcnow
from hitarchive.retry import RetryExecutor
from hitarchive.storage import RecordStore

ENV_KEYS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "LLM_PROVIDER",
    "GITHUB_TOKEN",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
    "SLACK_WEBHOOK_URL",
    "IMPORT_DB_PATH",
)


@pytest.fixture(autouse=True)
def logger(tmp_path):
    """Fresh global logger writing under tmp_path, no console output."""
    reset_logger()
    instance = get_logger(log_dir=tmp_path / "logs", enable_console=False)
    yield instance
    reset_logger()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the settings read.

    Setting before deleting makes monkeypatch restore the original state,
    so values a test loads from a .env file do not leak into other tests.
    """
    for key in ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


class FakeSleep:
    """Records requested waits instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def executor(fake_sleep, logger) -> RetryExecutor:
    """Executor with the default policy and a recording sleep."""
    return RetryExecutor(name="test", sleep=fake_sleep, logger=logger)


@pytest.fixture
def store(tmp_path):
    """Record store on a temporary SQLite file."""
    with RecordStore(tmp_path / "test.db") as s:
        yield s


@pytest.fixture
def make_record():
    """Factory for incoming record dicts."""
    counter = [0]

    def _make(**overrides) -> Dict[str, Any]:
        counter[0] += 1
        record = {
            "external_id": str(counter[0]),
            "source": "github",
            "author": "octo",
            "title": f"repo-{counter[0]}",
            "popularity": 10,
            "description": "A repository",
            "url": f"https://github.com/octo/repo-{counter[0]}",
            "created_at": utcnow() - timedelta(hours=1),
        }
        record.update(overrides)
        return record

    return _make


@pytest.fixture
def config_data(tmp_path) -> Dict[str, Any]:
    return {
        "language": "en",
        "min_score": 80,
        "profile": "Python developer",
        "interests": {"high": ["agents"], "medium": ["rag"]},
        "exclude": ["crypto"],
        "sources": {
            "github": {"enabled": True, "min_stars": 10, "languages": ["python"]},
            "reddit": {"enabled": False},
        },
        "llm": {"provider": "openai"},
        "pipeline": {
            "data_dir": str(tmp_path / "data"),
            "chunk_days": 7,
        },
    }


@pytest.fixture
def settings(clean_env, config_data):
    """Settings rooted in tmp_path with no secrets in the environment."""
    return settings_from_dict(config_data)


class FakeLLM:
    """LLMClient stand-in returning queued replies (or raising queued errors)."""

    provider = "fake"

    def __init__(self, replies=None, model="fake-model", max_tokens=256):
        self.replies = list(replies or [])
        self.model = model
        self.max_tokens = max_tokens
        self.prompts: List[str] = []

    def complete(self, prompt: str, budget=None) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if self.replies else '{"score": 0.5, "matched_interest": null}'
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def fake_llm_class():
    return FakeLLM
