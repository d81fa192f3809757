import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "off", "no", ""}


@dataclass(frozen=True)
class Settings:
    DATABASE_URL: str | None
    AWS_ACCESS_KEY_ID: str | None
    AWS_SECRET_ACCESS_KEY: str | None
    AWS_SQS_QUEUE_URL: str | None
    JOB_QUEUE_PROVIDER: str
    JOB_QUEUE_NAME: str
    QUEUE_VISIBILITY_TIMEOUT_SECONDS: int
    JOB_POLL_INTERVAL_SECONDS: float
    WEBHOOK_SECRET: str | None
    SAVE_WEBHOOK_EVENTS: bool
    MAX_TEXT_LENGTH: int


def get_settings() -> Settings:
    return Settings(
        DATABASE_URL=os.getenv("DATABASE_URL"),
        AWS_ACCESS_KEY_ID=os.getenv("AWS_ACCESS_KEY_ID"),
        AWS_SECRET_ACCESS_KEY=os.getenv("AWS_SECRET_ACCESS_KEY"),
        AWS_SQS_QUEUE_URL=os.getenv("AWS_SQS_QUEUE_URL"),
        JOB_QUEUE_PROVIDER=os.getenv("JOB_QUEUE_PROVIDER", "inmemory").strip().lower(),
        JOB_QUEUE_NAME=os.getenv("JOB_QUEUE_NAME", "text_jobs"),
        QUEUE_VISIBILITY_TIMEOUT_SECONDS=int(os.getenv("QUEUE_VISIBILITY_TIMEOUT_SECONDS", "300")),
        JOB_POLL_INTERVAL_SECONDS=float(os.getenv("JOB_POLL_INTERVAL_SECONDS", "3.0")),
        WEBHOOK_SECRET=os.getenv("WEBHOOK_SECRET") or None,
        SAVE_WEBHOOK_EVENTS=_env_bool("SAVE_WEBHOOK_EVENTS", False),
        MAX_TEXT_LENGTH=int(os.getenv("MAX_TEXT_LENGTH", "10000")),
    )
