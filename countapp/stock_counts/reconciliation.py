"""Item reconciliation: placeholders, upserts and progress."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from countapp.audit import record_stock_count_event
from countapp.extensions import db
from countapp.models import StockCount, StockCountEvent, StockCountItem

from . import repository
from .forms import ItemUpdate, SkippedEntry
from .ordering import CountOrder


@dataclass
class UpsertResult:
    saved: int = 0
    created: int = 0
    skipped: list[SkippedEntry] = field(default_factory=list)
    corrections: list[dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "saved": self.saved,
            "created": self.created,
            "skipped": [entry.to_dict() for entry in self.skipped],
        }
        if self.corrections:
            payload["corrections"] = self.corrections
        return payload


@dataclass(frozen=True)
class CategoryProgress:
    name: str
    total: int
    counted: int
    complete: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "total": self.total,
            "counted": self.counted,
            "complete": self.complete,
        }


@dataclass(frozen=True)
class CountSummary:
    total_products: int
    counted_products: int

    @property
    def remaining_products(self) -> int:
        return self.total_products - self.counted_products

    def to_dict(self) -> dict[str, int]:
        return {
            "totalProducts": self.total_products,
            "countedProducts": self.counted_products,
            "remainingProducts": self.remaining_products,
        }


def create_placeholder_items(stock_count: StockCount) -> int:
    """Add one zero-quantity row per unit product that has no row yet."""

    products = repository.products_for_unit(stock_count.unit_id)
    if not products:
        return 0

    existing = {
        item.product_id
        for item in StockCountItem.query.filter_by(stock_count_id=stock_count.id).all()
    }
    system_quantities = repository.unit_stock_quantities(stock_count.unit_id)

    # Placeholders share one timestamp so they never look edited.
    now = datetime.utcnow()
    new_items = [
        StockCountItem(
            stock_count_id=stock_count.id,
            product_id=product.id,
            counted_quantity=Decimal("0"),
            system_quantity=system_quantities.get(product.id),
            created_at=now,
            updated_at=now,
        )
        for product in products
        if product.id not in existing
    ]
    db.session.add_all(new_items)
    return len(new_items)


def _format_quantity(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")


def _apply_to_row(item: StockCountItem, update: ItemUpdate, now: datetime) -> None:
    item.counted_quantity = update.counted_quantity
    if update.notes is not None:
        item.notes = update.notes
    item.updated_at = now
    if item.counted_at is None:
        item.counted_at = now


def _upsert(
    stock_count_id: int, update: ItemUpdate, *, retry: bool = True
) -> tuple[StockCountItem, Decimal | None, bool]:
    now = datetime.utcnow()
    item = repository.find_item(stock_count_id, update.product_id)
    if item is not None:
        previous = item.counted_quantity
        _apply_to_row(item, update, now)
        db.session.flush()
        return item, previous, False

    item = StockCountItem(
        stock_count_id=stock_count_id,
        product_id=update.product_id,
        created_at=now,
    )
    _apply_to_row(item, update, now)
    db.session.add(item)
    try:
        db.session.flush()
    except IntegrityError:
        # Another device inserted the same product first; update its row.
        db.session.rollback()
        if not retry:
            raise
        return _upsert(stock_count_id, update, retry=False)
    return item, None, True


def apply_item_updates(
    stock_count: StockCount,
    updates: Iterable[ItemUpdate],
    *,
    skipped: list[SkippedEntry] | None = None,
    actor: str | None = None,
    correction: bool = False,
) -> UpsertResult:
    """Upsert each submitted quantity in its own transaction.

    Rows are independent, so every update commits on its own and a failure on
    one product never discards the others. With ``correction`` set, changed
    rows are recorded as post-finalization corrections.
    """

    stock_count_id = stock_count.id
    result = UpsertResult(skipped=list(skipped or []))
    updates = list(updates)
    known_products = repository.existing_product_ids(
        [update.product_id for update in updates]
    )

    for position, update in enumerate(updates):
        if update.product_id not in known_products:
            index = update.index if update.index is not None else position
            result.skipped.append(
                SkippedEntry(index, update.product_id, "Unknown product.")
            )
            continue

        item, previous, created = _upsert(stock_count_id, update)
        changed = previous is None or Decimal(previous) != update.counted_quantity
        if correction and changed:
            entry = {
                "productId": update.product_id,
                "previousQuantity": _format_quantity(previous),
                "correctedQuantity": _format_quantity(update.counted_quantity),
            }
            result.corrections.append(entry)
            record_stock_count_event(
                stock_count_id,
                StockCountEvent.EVENT_CORRECTION,
                actor=actor,
                details=entry,
            )
        db.session.commit()
        result.saved += 1
        if created:
            result.created += 1

    if result.skipped:
        current_app.logger.info(
            "Stock count %s: skipped %s submitted item(s)",
            stock_count_id,
            len(result.skipped),
        )
    return result


def _items_by_product(stock_count_id: int) -> dict[int, StockCountItem]:
    return {item.product_id: item for item in repository.items_for_count(stock_count_id)}


def category_progress(
    stock_count: StockCount,
    order: CountOrder,
    items: dict[int, StockCountItem] | None = None,
) -> list[CategoryProgress]:
    """Per-category completion in walk order.

    A category is complete when every product in it has a counted quantity
    above zero.
    """

    if items is None:
        items = _items_by_product(stock_count.id)
    progress = []
    for category in order.categories:
        counted = 0
        for product_id in category.product_ids:
            item = items.get(product_id)
            if item is not None and item.counts_toward_completion:
                counted += 1
        total = len(category.products)
        progress.append(
            CategoryProgress(
                name=category.name,
                total=total,
                counted=counted,
                complete=total > 0 and counted == total,
            )
        )
    return progress


def summarize_count(
    stock_count: StockCount, items: dict[int, StockCountItem] | None = None
) -> CountSummary:
    if items is None:
        items = _items_by_product(stock_count.id)
    counted = sum(1 for item in items.values() if item.is_actually_counted)
    return CountSummary(total_products=len(items), counted_products=counted)


def count_uncounted_products(stock_count: StockCount) -> int:
    """Unit products without an actually-counted item."""

    counted_ids = {
        item.product_id
        for item in repository.items_for_count(stock_count.id)
        if item.is_actually_counted
    }
    return sum(
        1
        for product in repository.products_for_unit(stock_count.unit_id)
        if product.id not in counted_ids
    )
