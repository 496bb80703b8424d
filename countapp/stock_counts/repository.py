"""Persistence helpers for stock counts and their items."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import joinedload

from countapp.errors import NotFound
from countapp.extensions import db
from countapp.models import (
    Product,
    ProductCategory,
    ProductUnit,
    StockCount,
    StockCountEvent,
    StockCountItem,
    StockCountStatus,
)


def stored_status_values(status: str) -> list[str]:
    """Return the canonical status plus the legacy spellings that mean it."""

    values = [status]
    values.extend(
        alias
        for alias, canonical in StockCountStatus.LEGACY_ALIASES.items()
        if canonical == status
    )
    return values


def get_stock_count(stock_count_id: int) -> StockCount:
    stock_count = db.session.get(StockCount, stock_count_id)
    if stock_count is None:
        raise NotFound(f"Stock count {stock_count_id} was not found.")
    return stock_count


def get_stock_count_by_token(public_token: str | None) -> StockCount:
    token = (public_token or "").strip()
    if not token:
        raise NotFound("Stock count not found.")
    stock_count = StockCount.query.filter_by(public_token=token).first()
    if stock_count is None:
        raise NotFound("Stock count not found.")
    return stock_count


def list_stock_counts(status: str | None = None) -> list[StockCount]:
    query = StockCount.query.options(
        joinedload(StockCount.responsible), joinedload(StockCount.unit)
    )
    if status:
        query = query.filter(StockCount.status.in_(stored_status_values(status)))
    return query.order_by(StockCount.created_at.desc(), StockCount.id.desc()).all()


def items_for_count(stock_count_id: int) -> list[StockCountItem]:
    """Items in creation order."""

    return (
        StockCountItem.query.options(joinedload(StockCountItem.product))
        .filter_by(stock_count_id=stock_count_id)
        .order_by(StockCountItem.id)
        .all()
    )


def find_item(stock_count_id: int, product_id: int) -> StockCountItem | None:
    return StockCountItem.query.filter_by(
        stock_count_id=stock_count_id, product_id=product_id
    ).first()


def products_for_unit(unit_id: int) -> list[Product]:
    """Products associated with a unit, ordered by name."""

    return (
        Product.query.join(ProductUnit, ProductUnit.product_id == Product.id)
        .filter(ProductUnit.unit_id == unit_id)
        .order_by(Product.name, Product.id)
        .all()
    )


def unit_stock_quantities(unit_id: int) -> dict[int, Decimal | None]:
    rows = (
        db.session.query(ProductUnit.product_id, ProductUnit.stock_quantity)
        .filter(ProductUnit.unit_id == unit_id)
        .all()
    )
    return {product_id: quantity for product_id, quantity in rows}


def existing_product_ids(product_ids: list[int]) -> set[int]:
    if not product_ids:
        return set()
    rows = db.session.query(Product.id).filter(Product.id.in_(product_ids)).all()
    return {product_id for (product_id,) in rows}


def category_names_by_id() -> dict[int, str]:
    return {
        category_id: name
        for category_id, name in db.session.query(
            ProductCategory.id, ProductCategory.name
        ).all()
    }


def previous_finalized_count(stock_count: StockCount) -> StockCount | None:
    """Most recent finalized count by the same responsible with a smaller id."""

    return (
        StockCount.query.filter(
            StockCount.responsible_id == stock_count.responsible_id,
            StockCount.id < stock_count.id,
            StockCount.status.in_(stored_status_values(StockCountStatus.FINALIZED)),
        )
        .order_by(StockCount.id.desc())
        .first()
    )


def compare_and_set_status(
    stock_count_id: int,
    expected_status: str,
    values: dict[str, object],
) -> bool:
    """Apply ``values`` only while the row still holds ``expected_status``.

    Returns ``True`` when this call performed the update. The caller owns the
    surrounding transaction.
    """

    updated = (
        StockCount.query.filter(
            StockCount.id == stock_count_id,
            StockCount.status.in_(stored_status_values(expected_status)),
        )
        .update(values, synchronize_session=False)
    )
    return updated == 1


def write_order_fields(
    stock_count_id: int,
    category_order: list[str],
    product_order: dict[str, list[str]],
    updated_at,
) -> bool:
    updated = (
        StockCount.query.filter(StockCount.id == stock_count_id)
        .update(
            {
                "category_order": category_order,
                "product_order": product_order,
                "updated_at": updated_at,
            },
            synchronize_session=False,
        )
    )
    return updated == 1


def delete_draft_stock_count(stock_count_id: int) -> bool:
    """Delete a count and its rows only while it is still a draft."""

    StockCountItem.query.filter_by(stock_count_id=stock_count_id).delete(
        synchronize_session=False
    )
    StockCountEvent.query.filter_by(stock_count_id=stock_count_id).delete(
        synchronize_session=False
    )
    deleted = (
        StockCount.query.filter(
            StockCount.id == stock_count_id,
            StockCount.status.in_(stored_status_values(StockCountStatus.DRAFT)),
        )
        .delete(synchronize_session=False)
    )
    return deleted == 1


def delete_draft_item(stock_count_id: int, product_id: int) -> bool:
    """Delete one item only while its count is still a draft."""

    draft_counts = select(StockCount.id).where(
        StockCount.id == stock_count_id,
        StockCount.status.in_(stored_status_values(StockCountStatus.DRAFT)),
    )
    deleted = StockCountItem.query.filter(
        StockCountItem.stock_count_id == stock_count_id,
        StockCountItem.product_id == product_id,
        StockCountItem.stock_count_id.in_(draft_counts),
    ).delete(synchronize_session=False)
    return deleted == 1


def events_for_count(stock_count_id: int) -> list[StockCountEvent]:
    return (
        StockCountEvent.query.filter_by(stock_count_id=stock_count_id)
        .order_by(StockCountEvent.id)
        .all()
    )
