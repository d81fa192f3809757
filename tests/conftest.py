import dataclasses
import datetime
from collections.abc import Callable, Iterator

import pytest

from app import create_app
from config.settings import Settings, get_settings
from models import reset_engine


class FakeClock:
    """Manually advanced clock for visibility-timeout tests."""

    def __init__(self, start: datetime.datetime | None = None) -> None:
        self.now = start or datetime.datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += datetime.timedelta(seconds=seconds)


@pytest.fixture()
def base_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("JOB_QUEUE_PROVIDER", "inmemory")
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    monkeypatch.delenv("SAVE_WEBHOOK_EVENTS", raising=False)
    monkeypatch.delenv("AWS_SQS_QUEUE_URL", raising=False)
    reset_engine()
    yield
    reset_engine()


@pytest.fixture()
def make_app(base_env) -> Callable:
    def _make(**overrides):
        settings = dataclasses.replace(get_settings(), **overrides)
        application = create_app(settings)
        application.config.update(TESTING=True)
        return application

    return _make


@pytest.fixture()
def app(make_app):
    yield make_app()


@pytest.fixture()
def client(app) -> Iterator:
    with app.test_client() as client:
        yield client


@pytest.fixture()
def settings(app) -> Settings:
    return app.extensions["textjobs"]["settings"]


@pytest.fixture()
def job_queue(app):
    return app.extensions["textjobs"]["queue"]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()
