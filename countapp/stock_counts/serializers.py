"""JSON shapes returned by the stock count endpoints."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable

from countapp.models import StockCount, StockCountEvent, StockCountItem, StockCountStatus

from .disclosure import DisclosureState
from .ordering import CountOrder
from .reconciliation import CategoryProgress


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value else None


def _quantity(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(Decimal(value).normalize(), "f")


def serialize_stock_count(stock_count: StockCount, *, public: bool = False) -> dict[str, object]:
    responsible = stock_count.responsible
    unit = stock_count.unit
    payload: dict[str, object] = {
        "date": _iso(stock_count.date),
        "status": StockCountStatus.normalize(stock_count.status) or stock_count.status,
        "statusLabel": stock_count.status_label,
        "notes": stock_count.notes,
        "responsible": {
            "id": responsible.id,
            "name": responsible.full_name,
        }
        if responsible
        else None,
        "unit": {"id": unit.id, "name": unit.name} if unit else None,
        "countingStartedAt": _iso(stock_count.counting_started_at),
        "finalizedAt": _iso(stock_count.finalized_at),
        "uncountedItems": stock_count.uncounted_items,
    }
    if public:
        return payload

    payload.update(
        {
            "id": stock_count.id,
            "publicToken": stock_count.public_token,
            "categoryOrder": stock_count.category_order,
            "productOrder": stock_count.product_order,
            "closedAt": _iso(stock_count.closed_at),
            "createdAt": _iso(stock_count.created_at),
            "updatedAt": _iso(stock_count.updated_at),
        }
    )
    return payload


def serialize_item(item: StockCountItem) -> dict[str, object]:
    product = item.product
    return {
        "id": item.id,
        "productId": item.product_id,
        "productName": product.name if product else None,
        "productCode": product.code if product else None,
        "unitOfMeasure": product.unit_of_measure if product else None,
        "countedQuantity": _quantity(item.counted_quantity),
        "systemQuantity": _quantity(item.system_quantity),
        "notes": item.notes,
        "counted": item.is_actually_counted,
        "countedAt": _iso(item.counted_at),
        "updatedAt": _iso(item.updated_at),
    }


def serialize_items(items: Iterable[StockCountItem]) -> list[dict[str, object]]:
    return [serialize_item(item) for item in items]


def serialize_order(
    order: CountOrder, progress: Iterable[CategoryProgress] = ()
) -> dict[str, object]:
    progress_by_name = {entry.name: entry for entry in progress}
    categories = []
    for category in order.categories:
        entry: dict[str, object] = {
            "name": category.name,
            "products": [
                {"productId": product.product_id, "name": product.name, "code": product.code}
                for product in category.products
            ],
        }
        if category.name in progress_by_name:
            entry.update(progress_by_name[category.name].to_dict())
        categories.append(entry)
    return {
        "source": order.source,
        "previousStockCountId": order.previous_stock_count_id,
        "categoryOrder": order.category_names(),
        "productOrder": order.product_names(),
        "categories": categories,
    }


def serialize_disclosure(state: DisclosureState) -> dict[str, object]:
    return {
        "expanded": list(state.expanded),
        "nextIncomplete": state.next_incomplete,
        "allCollapsed": state.all_collapsed,
    }


def serialize_event(event: StockCountEvent) -> dict[str, object]:
    return {
        "id": event.id,
        "type": event.event_type,
        "actor": event.actor,
        "details": event.details or {},
        "createdAt": _iso(event.created_at),
    }
