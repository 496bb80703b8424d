"""Stock count lifecycle: draft -> ready -> counting -> finalized.

Every transition is a conditional UPDATE on the stored status. Only the
request whose UPDATE matched a row runs the side effects (events and the
notification), so retried or concurrent calls see ``Conflict`` and change
nothing.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from flask import current_app, has_request_context, request
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from countapp.audit import record_stock_count_event
from countapp.errors import Conflict, ValidationError
from countapp.extensions import db
from countapp.models import (
    Employee,
    StockCount,
    StockCountEvent,
    StockCountStatus,
    Unit,
)
from countapp.notifier import build_ready_message, get_notifier

from . import repository
from .forms import (
    StockCountDraft,
    parse_item_updates,
    parse_order_payload,
    parse_stock_count_changes,
)
from .ordering import CountOrder, compute_order
from .reconciliation import (
    UpsertResult,
    apply_item_updates,
    count_uncounted_products,
    create_placeholder_items,
)

MIN_TOKEN_BYTES = 16

MISSING_PHONE_WARNING = (
    "The responsible employee has no phone number on file. "
    "Share the counting link manually."
)
DELIVERY_FAILED_WARNING = (
    "The counting link could not be delivered. Share it manually."
)


@dataclass(frozen=True)
class CloseResult:
    stock_count: StockCount
    public_url: str
    notification_sent: bool
    warning: str | None = None


def _status_of(stock_count: StockCount) -> str | None:
    return StockCountStatus.normalize(stock_count.status)


def _require_draft(stock_count: StockCount, action: str) -> None:
    if _status_of(stock_count) != StockCountStatus.DRAFT:
        raise Conflict(
            f"Only draft stock counts can be {action}; "
            f"this one is {stock_count.status_label.lower()}."
        )


def _validate_references(
    responsible_id: int | None = None, unit_id: int | None = None
) -> None:
    if responsible_id is not None and db.session.get(Employee, responsible_id) is None:
        raise ValidationError(f"Employee {responsible_id} does not exist.")
    if unit_id is not None and db.session.get(Unit, unit_id) is None:
        raise ValidationError(f"Unit {unit_id} does not exist.")


def generate_public_token() -> str:
    size = int(current_app.config.get("PUBLIC_TOKEN_BYTES", 24))
    return secrets.token_urlsafe(max(size, MIN_TOKEN_BYTES))


def build_public_url(public_token: str) -> str:
    base_url = (current_app.config.get("PUBLIC_BASE_URL") or "").strip()
    if not base_url and has_request_context():
        base_url = request.host_url
    path = (current_app.config.get("PUBLIC_COUNT_PATH") or "public-count").strip("/")
    return f"{base_url.rstrip('/')}/{path}/{public_token}"


def create_stock_count(draft: StockCountDraft, *, actor: str | None = None) -> StockCount:
    _validate_references(draft.responsible_id, draft.unit_id)

    stock_count = StockCount(
        date=draft.date,
        responsible_id=draft.responsible_id,
        unit_id=draft.unit_id,
        notes=draft.notes,
        status=StockCountStatus.DRAFT,
    )
    db.session.add(stock_count)
    db.session.flush()
    record_stock_count_event(
        stock_count.id,
        StockCountEvent.EVENT_CREATED,
        actor=actor,
        details={"unitId": draft.unit_id, "responsibleId": draft.responsible_id},
    )
    db.session.commit()
    current_app.logger.info(
        "Stock count %s created for unit %s", stock_count.id, stock_count.unit_id
    )
    return stock_count


def update_stock_count(
    stock_count: StockCount, data: Mapping[str, Any] | None
) -> StockCount:
    _require_draft(stock_count, "edited")
    changes = parse_stock_count_changes(data)
    _validate_references(changes.get("responsible_id"), changes.get("unit_id"))

    values = dict(changes)
    values["updated_at"] = datetime.utcnow()
    if not repository.compare_and_set_status(
        stock_count.id, StockCountStatus.DRAFT, values
    ):
        db.session.rollback()
        raise Conflict("Only draft stock counts can be edited.")
    db.session.commit()
    return stock_count


def delete_stock_count(stock_count: StockCount) -> None:
    _require_draft(stock_count, "deleted")
    stock_count_id = stock_count.id
    db.session.expunge(stock_count)
    if not repository.delete_draft_stock_count(stock_count_id):
        db.session.rollback()
        raise Conflict("Only draft stock counts can be deleted.")
    db.session.commit()
    current_app.logger.info("Stock count %s deleted", stock_count_id)


def initialize_stock_count(stock_count: StockCount, *, actor: str | None = None) -> int:
    """Create placeholder items for every product of the count's unit.

    Products that already have a row are left alone, so calling this again
    only fills in products added to the unit since.
    """

    _require_draft(stock_count, "initialized")
    stock_count_id = stock_count.id
    try:
        created = create_placeholder_items(stock_count)
        db.session.flush()
    except IntegrityError:
        # A concurrent initialize inserted some rows first.
        db.session.rollback()
        stock_count = repository.get_stock_count(stock_count_id)
        created = create_placeholder_items(stock_count)

    record_stock_count_event(
        stock_count_id,
        StockCountEvent.EVENT_INITIALIZED,
        actor=actor,
        details={"created": created},
    )
    db.session.commit()
    current_app.logger.info(
        "Stock count %s initialized with %s placeholder(s)", stock_count_id, created
    )
    return created


def remove_item(
    stock_count: StockCount, product_id: int, *, actor: str | None = None
) -> bool:
    _require_draft(stock_count, "changed")
    if repository.find_item(stock_count.id, product_id) is None:
        return False
    if not repository.delete_draft_item(stock_count.id, product_id):
        db.session.rollback()
        raise Conflict("Only draft stock counts can be changed.")
    record_stock_count_event(
        stock_count.id,
        StockCountEvent.EVENT_ITEM_REMOVED,
        actor=actor,
        details={"productId": product_id},
    )
    db.session.commit()
    return True


def _notify_responsible(stock_count: StockCount, public_url: str) -> tuple[bool, str | None]:
    responsible = stock_count.responsible
    phone_number = (responsible.whatsapp or "").strip() if responsible else ""
    if not phone_number:
        current_app.logger.warning(
            "Stock count %s: responsible has no phone number, link not sent",
            stock_count.id,
        )
        return False, MISSING_PHONE_WARNING

    message = build_ready_message(stock_count.id, stock_count.date, public_url)
    try:
        sent = bool(get_notifier().send(phone_number, message))
    except Exception:
        current_app.logger.exception(
            "Stock count %s: notifier raised while sending the link", stock_count.id
        )
        sent = False

    if not sent:
        return False, DELIVERY_FAILED_WARNING
    return True, None


def close_for_counting(stock_count: StockCount, *, actor: str | None = None) -> CloseResult:
    """Issue the public token, move the count to ready and send the link."""

    if _status_of(stock_count) != StockCountStatus.DRAFT:
        raise Conflict("This stock count has already been closed for counting.")

    stock_count_id = stock_count.id
    now = datetime.utcnow()
    won = repository.compare_and_set_status(
        stock_count_id,
        StockCountStatus.DRAFT,
        {
            "status": StockCountStatus.READY,
            # A token, once issued, is never replaced.
            "public_token": func.coalesce(StockCount.public_token, generate_public_token()),
            "closed_at": now,
            "updated_at": now,
        },
    )
    if not won:
        db.session.rollback()
        raise Conflict("This stock count has already been closed for counting.")

    record_stock_count_event(stock_count_id, StockCountEvent.EVENT_CLOSED, actor=actor)
    db.session.commit()

    stock_count = repository.get_stock_count(stock_count_id)
    public_url = build_public_url(stock_count.public_token)
    sent, warning = _notify_responsible(stock_count, public_url)

    record_stock_count_event(
        stock_count_id,
        StockCountEvent.EVENT_NOTIFICATION_SENT
        if sent
        else StockCountEvent.EVENT_NOTIFICATION_FAILED,
        actor=actor,
        details={"warning": warning} if warning else None,
    )
    db.session.commit()
    current_app.logger.info(
        "Stock count %s closed for counting (notification sent: %s)",
        stock_count_id,
        sent,
    )
    return CloseResult(
        stock_count=stock_count,
        public_url=public_url,
        notification_sent=sent,
        warning=warning,
    )


def begin_counting(stock_count: StockCount, *, actor: str | None = None) -> StockCount:
    stock_count_id = stock_count.id
    now = datetime.utcnow()
    won = repository.compare_and_set_status(
        stock_count_id,
        StockCountStatus.READY,
        {
            "status": StockCountStatus.COUNTING,
            "counting_started_at": now,
            "updated_at": now,
        },
    )
    if not won:
        db.session.rollback()
        raise Conflict("Counting has already started for this stock count.")

    record_stock_count_event(stock_count_id, StockCountEvent.EVENT_BEGUN, actor=actor)
    db.session.commit()
    current_app.logger.info("Stock count %s: counting started", stock_count_id)
    return repository.get_stock_count(stock_count_id)


def finalize_stock_count(stock_count: StockCount, *, actor: str | None = None) -> StockCount:
    stock_count_id = stock_count.id
    if _status_of(stock_count) != StockCountStatus.COUNTING:
        raise Conflict("Only stock counts being counted can be finalized.")

    uncounted = count_uncounted_products(stock_count)
    now = datetime.utcnow()
    won = repository.compare_and_set_status(
        stock_count_id,
        StockCountStatus.COUNTING,
        {
            "status": StockCountStatus.FINALIZED,
            "finalized_at": now,
            "uncounted_items": uncounted,
            "updated_at": now,
        },
    )
    if not won:
        db.session.rollback()
        raise Conflict("Only stock counts being counted can be finalized.")

    record_stock_count_event(
        stock_count_id,
        StockCountEvent.EVENT_FINALIZED,
        actor=actor,
        details={"uncountedItems": uncounted},
    )
    db.session.commit()
    current_app.logger.info(
        "Stock count %s finalized with %s uncounted product(s)", stock_count_id, uncounted
    )
    return repository.get_stock_count(stock_count_id)


def submit_counted_items(stock_count: StockCount, payload: object) -> UpsertResult:
    """Upsert quantities sent by a field device while the count is open."""

    if _status_of(stock_count) != StockCountStatus.COUNTING:
        raise Conflict("Items can only be submitted while counting is in progress.")
    updates, skipped = parse_item_updates(payload)
    return apply_item_updates(stock_count, updates, skipped=skipped)


def correct_finalized_items(
    stock_count: StockCount, payload: object, *, actor: str | None = None
) -> UpsertResult:
    if _status_of(stock_count) != StockCountStatus.FINALIZED:
        raise Conflict("Corrections are only accepted after the count is finalized.")
    updates, skipped = parse_item_updates(payload)
    return apply_item_updates(
        stock_count, updates, skipped=skipped, actor=actor, correction=True
    )


def save_order(
    stock_count: StockCount,
    data: Mapping[str, Any] | None,
    *,
    actor: str | None = None,
) -> CountOrder:
    if _status_of(stock_count) == StockCountStatus.FINALIZED:
        raise Conflict("The order of a finalized stock count cannot change.")

    category_order, product_order = parse_order_payload(data)
    stock_count_id = stock_count.id
    repository.write_order_fields(
        stock_count_id, category_order, product_order, datetime.utcnow()
    )
    record_stock_count_event(
        stock_count_id,
        StockCountEvent.EVENT_ORDER_SAVED,
        actor=actor,
        details={"categories": len(category_order)},
    )
    db.session.commit()
    return compute_order(repository.get_stock_count(stock_count_id))
