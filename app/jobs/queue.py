from __future__ import annotations

import datetime
import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import boto3
import psycopg
from botocore.exceptions import BotoCoreError, ClientError

import models
from config.settings import Settings

logger = logging.getLogger(__name__)

MessageId = Union[int, str]


class QueueConfigurationError(RuntimeError):
    """Raised when the job queue is not configured correctly."""


class QueueOperationError(RuntimeError):
    """Raised when an operation against the job queue fails."""


@dataclass(slots=True)
class QueueMessage:
    """One delivery of a job reference.

    ``payload`` only ever carries ``{"jobId": ...}``; the job itself lives in
    the store. ``receipt`` is what the transport needs to delete this
    particular delivery.
    """

    message_id: MessageId
    read_count: int
    enqueued_at: Optional[datetime.datetime]
    visibility_deadline: Optional[datetime.datetime]
    payload: dict[str, object] = field(default_factory=dict)
    receipt: Optional[str] = None

    @property
    def job_id(self) -> Optional[str]:
        value = self.payload.get("jobId")
        if value is None or value == "":
            return None
        return str(value)


class JobQueue:
    """At-least-once queue of job references with visibility timeouts."""

    name: str = "text_jobs"

    def enqueue(self, job_id: str) -> MessageId:
        raise NotImplementedError

    def read(self, visibility_timeout: int) -> Optional[QueueMessage]:
        """Return the next visible message and hide it for ``visibility_timeout`` seconds."""
        raise NotImplementedError

    def ack(self, message: QueueMessage) -> bool:
        """Delete a delivered message. Deleting twice is a no-op returning False."""
        raise NotImplementedError


class InMemoryQueue(JobQueue):
    """Process-local queue used by tests and single-process development."""

    def __init__(
        self,
        name: str = "text_jobs",
        *,
        clock: Callable[[], datetime.datetime] = models.utcnow,
    ) -> None:
        self.name = name
        self._clock = clock
        self._lock = threading.Lock()
        self._next_id = 1
        self._messages: dict[int, dict[str, object]] = {}

    def enqueue(self, job_id: str) -> int:
        with self._lock:
            message_id = self._next_id
            self._next_id += 1
            now = self._clock()
            self._messages[message_id] = {
                "read_count": 0,
                "enqueued_at": now,
                "visibility_deadline": now,
                "payload": {"jobId": job_id},
            }
        logger.info("Enqueued job %s on in-memory queue %s (msg_id=%s)", job_id, self.name, message_id)
        return message_id

    def read(self, visibility_timeout: int) -> Optional[QueueMessage]:
        with self._lock:
            now = self._clock()
            for message_id in sorted(self._messages):
                entry = self._messages[message_id]
                if entry["visibility_deadline"] > now:
                    continue
                entry["read_count"] = int(entry["read_count"]) + 1
                entry["visibility_deadline"] = now + datetime.timedelta(seconds=visibility_timeout)
                return QueueMessage(
                    message_id=message_id,
                    read_count=int(entry["read_count"]),
                    enqueued_at=entry["enqueued_at"],
                    visibility_deadline=entry["visibility_deadline"],
                    payload=dict(entry["payload"]),
                    receipt=str(message_id),
                )
        return None

    def ack(self, message: QueueMessage) -> bool:
        with self._lock:
            removed = self._messages.pop(int(message.message_id), None)
        if removed is None:
            logger.debug("Message %s already deleted from %s", message.message_id, self.name)
            return False
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


class DatabaseQueue(JobQueue):
    """Queue stored alongside the jobs: pgmq on PostgreSQL, a table on SQLite."""

    def __init__(
        self,
        name: str = "text_jobs",
        *,
        clock: Optional[Callable[[], datetime.datetime]] = None,
    ) -> None:
        self.name = name
        self._clock = clock

    def _now(self) -> Optional[datetime.datetime]:
        return self._clock() if self._clock else None

    def enqueue(self, job_id: str) -> int:
        try:
            message_id = models.queue_send(self.name, {"jobId": job_id}, now=self._now())
        except (sqlite3.Error, psycopg.Error) as exc:
            logger.error("Failed to enqueue job %s: %s", job_id, exc, exc_info=True)
            raise QueueOperationError(f"Failed to enqueue job {job_id}") from exc
        logger.info("Enqueued job %s on queue %s (msg_id=%s)", job_id, self.name, message_id)
        return message_id

    def read(self, visibility_timeout: int) -> Optional[QueueMessage]:
        try:
            rows = models.queue_read(self.name, visibility_timeout, 1, now=self._now())
        except (sqlite3.Error, psycopg.Error) as exc:
            logger.error("Failed to read from queue %s: %s", self.name, exc, exc_info=True)
            raise QueueOperationError(f"Failed to read from queue {self.name}") from exc
        if not rows:
            return None
        row = rows[0]
        payload = row.get("message")
        return QueueMessage(
            message_id=int(row["msg_id"]),
            read_count=int(row["read_ct"]),
            enqueued_at=row.get("enqueued_at"),
            visibility_deadline=row.get("vt"),
            payload=payload if isinstance(payload, dict) else {},
            receipt=str(row["msg_id"]),
        )

    def ack(self, message: QueueMessage) -> bool:
        try:
            deleted = models.queue_delete(self.name, int(message.message_id))
        except (sqlite3.Error, psycopg.Error) as exc:
            logger.error("Failed to delete message %s: %s", message.message_id, exc, exc_info=True)
            raise QueueOperationError(f"Failed to delete message {message.message_id}") from exc
        if not deleted:
            logger.debug("Message %s already deleted from %s", message.message_id, self.name)
        return deleted


def _make_boto_client(service_name: str, settings: Settings, region_name: Optional[str] = None):
    kwargs: dict[str, str] = {}
    if settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
        kwargs["aws_access_key_id"] = settings.AWS_ACCESS_KEY_ID
        kwargs["aws_secret_access_key"] = settings.AWS_SECRET_ACCESS_KEY

    if region_name is None and service_name == "sqs" and settings.AWS_SQS_QUEUE_URL:
        from urllib.parse import urlparse

        hostname = urlparse(settings.AWS_SQS_QUEUE_URL).hostname or ""
        hostname_parts = hostname.split(".")
        if len(hostname_parts) >= 2 and hostname_parts[0] == "sqs":
            region_name = hostname_parts[1]

    if region_name:
        kwargs["region_name"] = region_name

    return boto3.client(service_name, **kwargs)


class SQSQueue(JobQueue):
    """AWS SQS transport; visibility timeouts and redelivery are native."""

    def __init__(self, queue_url: str, *, client=None, settings: Optional[Settings] = None) -> None:
        if not queue_url or not queue_url.strip():
            raise QueueConfigurationError(
                "AWS_SQS_QUEUE_URL must be set when JOB_QUEUE_PROVIDER is 'sqs'."
            )
        self.queue_url = queue_url
        self.name = queue_url.rstrip("/").rsplit("/", 1)[-1]
        if client is None:
            if settings is None:
                raise QueueConfigurationError("Settings are required to build an SQS client.")
            client = _make_boto_client("sqs", settings)
        self._sqs = client

    def enqueue(self, job_id: str) -> str:
        message_params: dict[str, object] = {
            "QueueUrl": self.queue_url,
            "MessageBody": json.dumps({"jobId": job_id}),
        }
        if self.queue_url.endswith(".fifo"):
            message_params["MessageDeduplicationId"] = job_id
            message_params["MessageGroupId"] = "text-jobs"
        try:
            response = self._sqs.send_message(**message_params)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to enqueue job %s: %s", job_id, exc, exc_info=True)
            raise QueueOperationError(f"Failed to enqueue job {job_id}") from exc
        message_id = response.get("MessageId", "unknown")
        logger.info("Enqueued job %s to SQS (MessageId: %s, Queue: %s)", job_id, message_id, self.queue_url)
        return message_id

    def read(self, visibility_timeout: int) -> Optional[QueueMessage]:
        try:
            response = self._sqs.receive_message(
                QueueUrl=self.queue_url,
                MaxNumberOfMessages=1,
                VisibilityTimeout=int(visibility_timeout),
                AttributeNames=["ApproximateReceiveCount", "SentTimestamp"],
                WaitTimeSeconds=0,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to poll SQS for jobs: %s", exc, exc_info=True)
            raise QueueOperationError("Failed to poll SQS for jobs.") from exc

        messages = response.get("Messages")
        if not messages:
            return None

        message = messages[0]
        attributes = message.get("Attributes") or {}
        enqueued_at = None
        sent_ms = attributes.get("SentTimestamp")
        if sent_ms:
            enqueued_at = datetime.datetime.fromtimestamp(
                int(sent_ms) / 1000, tz=datetime.timezone.utc
            ).replace(tzinfo=None)
        try:
            payload = json.loads(message.get("Body") or "{}")
        except json.JSONDecodeError:
            logger.warning("SQS message %s has a non-JSON body", message.get("MessageId"))
            payload = {}

        return QueueMessage(
            message_id=message.get("MessageId", ""),
            read_count=int(attributes.get("ApproximateReceiveCount", 1)),
            enqueued_at=enqueued_at,
            visibility_deadline=models.utcnow() + datetime.timedelta(seconds=visibility_timeout),
            payload=payload if isinstance(payload, dict) else {},
            receipt=message.get("ReceiptHandle"),
        )

    def ack(self, message: QueueMessage) -> bool:
        if not message.receipt:
            logger.debug("No receipt handle provided; skipping ack.")
            return False
        try:
            self._sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=message.receipt)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in {"ReceiptHandleIsInvalid", "AWS.SimpleQueueService.NonExistentQueue"}:
                logger.debug("Message %s already deleted: %s", message.message_id, code)
                return False
            raise QueueOperationError(f"Failed to delete SQS message {message.message_id}") from exc
        except BotoCoreError as exc:
            raise QueueOperationError(f"Failed to delete SQS message {message.message_id}") from exc
        return True


def build_job_queue(settings: Settings) -> JobQueue:
    """Return the queue transport selected by ``JOB_QUEUE_PROVIDER``."""
    provider = settings.JOB_QUEUE_PROVIDER
    if provider == "inmemory":
        return InMemoryQueue(settings.JOB_QUEUE_NAME)
    if provider == "database":
        models.ensure_message_queue(settings.JOB_QUEUE_NAME)
        return DatabaseQueue(settings.JOB_QUEUE_NAME)
    if provider == "sqs":
        return SQSQueue(settings.AWS_SQS_QUEUE_URL or "", settings=settings)
    raise QueueConfigurationError(
        f"Unsupported JOB_QUEUE_PROVIDER {provider!r}; expected inmemory, database or sqs."
    )
