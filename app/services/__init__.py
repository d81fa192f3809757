"""Service layer for job submission, status lookup, notifications and text processing."""

from . import notifications, status, submission, text_processing

__all__ = [
    "notifications",
    "status",
    "submission",
    "text_processing",
]
