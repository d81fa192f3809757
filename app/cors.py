from __future__ import annotations

from flask import Flask
from flask_cors import CORS

ALLOWED_METHODS = ["GET", "OPTIONS", "PATCH", "DELETE", "POST", "PUT"]
ALLOWED_HEADERS = [
    "X-CSRF-Token",
    "X-Requested-With",
    "Accept",
    "Accept-Version",
    "Content-Length",
    "Content-MD5",
    "Content-Type",
    "Date",
    "X-Api-Version",
    "X-Webhook-Signature",
]


def init_cors(app: Flask) -> None:
    """Allow any origin, with credentials, on every endpoint.

    With credentials enabled flask-cors echoes the caller's Origin instead of
    sending ``*``, which browsers reject for credentialed requests.
    """
    CORS(
        app,
        origins="*",
        methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        supports_credentials=True,
    )
