"""Delivery of the public counting link to the responsible employee.

The messaging gateway is an external service reached through a JSON
webhook. Delivery problems are reported back as ``False`` and logged; they
never undo the transition that triggered the message.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from urllib import error, request

from flask import Flask, current_app

EXTENSION_KEY = "stock_count_notifier"

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Send text messages by POSTing ``{"phone", "message"}`` to a webhook."""

    def __init__(self, url: str, *, auth_token: str | None = None, timeout: float = 5.0):
        self.url = url
        self.auth_token = auth_token or None
        self.timeout = timeout

    def send(self, phone_number: str, message: str) -> bool:
        if not self.url:
            logger.warning("Notifier webhook is not configured; message to %s dropped", phone_number)
            return False

        body = json.dumps({"phone": phone_number, "message": message}).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        req = request.Request(self.url, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self.timeout) as response:
                status_code = response.status
        except error.URLError as exc:
            logger.warning("Notifier webhook failed for %s: %s", phone_number, exc)
            return False
        except (TimeoutError, OSError) as exc:
            logger.warning("Notifier webhook unreachable for %s: %s", phone_number, exc)
            return False

        if not 200 <= status_code < 300:
            logger.warning(
                "Notifier webhook answered %s for %s", status_code, phone_number
            )
            return False
        return True


def init_notifier(app: Flask) -> None:
    if EXTENSION_KEY in app.extensions:
        return
    app.extensions[EXTENSION_KEY] = WebhookNotifier(
        app.config.get("NOTIFIER_WEBHOOK_URL", ""),
        auth_token=app.config.get("NOTIFIER_AUTH_TOKEN"),
        timeout=float(app.config.get("NOTIFIER_TIMEOUT", 5)),
    )


def get_notifier():
    return current_app.extensions[EXTENSION_KEY]


def build_ready_message(stock_count_id: int, count_date: date | None, public_url: str) -> str:
    date_label = count_date.strftime("%d/%m/%Y") if count_date else "-"
    return (
        "*Stock count ready*\n\n"
        f"Count #{stock_count_id}\n"
        f"Date: {date_label}\n\n"
        f"Counting link:\n{public_url}\n\n"
        "*Instructions:*\n"
        "- Open the link above\n"
        "- Count the products category by category\n"
        "- Add notes when needed\n"
        "- Quantities are saved automatically"
    )
