"""Utilities for recording stock count activity."""

from __future__ import annotations

from typing import Any, Mapping

from flask import has_request_context, request
from flask_login import current_user

from countapp.extensions import db
from countapp.models import StockCountEvent


def _trimmed(value: str | None, *, limit: int) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    return value[:limit]


def resolve_client_ip() -> str | None:
    """Best effort extraction of the originating client IP address."""

    if not has_request_context():
        return None

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        parts = [part.strip() for part in forwarded_for.split(",") if part.strip()]
        if parts:
            return parts[0][:64]

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()[:64]

    remote_addr = request.remote_addr
    if remote_addr:
        return str(remote_addr)[:64]

    return None


def resolve_actor() -> str:
    """Describe who is acting: the signed-in user or the public link holder."""

    if has_request_context() and getattr(current_user, "is_authenticated", False):
        return f"user:{current_user.username}"
    client_ip = resolve_client_ip()
    return f"public:{client_ip}" if client_ip else "public"


def record_stock_count_event(
    stock_count_id: int,
    event_type: str,
    *,
    actor: str | None = None,
    details: Mapping[str, Any] | None = None,
) -> StockCountEvent:
    """Queue an audit event on the current session.

    The caller commits, so the event lands in the same transaction as the
    change it describes.
    """

    event = StockCountEvent(
        stock_count_id=stock_count_id,
        event_type=event_type,
        actor=_trimmed(actor if actor is not None else resolve_actor(), limit=255),
        details=dict(details) if details else None,
    )
    db.session.add(event)
    return event
