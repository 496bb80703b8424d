"""Payload parsing helpers for stock count requests."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from countapp.errors import ValidationError

from .disclosure import ManualOverride

_QUANTITY_PATTERN = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")
MAX_INTEGER_DIGITS = 7
MAX_FRACTION_DIGITS = 3


@dataclass(frozen=True)
class ItemUpdate:
    product_id: int
    counted_quantity: Decimal
    notes: str | None = None
    index: int | None = None


@dataclass(frozen=True)
class SkippedEntry:
    index: int
    product_id: object
    reason: str

    def to_dict(self) -> dict[str, object]:
        return {"index": self.index, "productId": self.product_id, "reason": self.reason}


@dataclass(frozen=True)
class StockCountDraft:
    date: date
    responsible_id: int
    unit_id: int
    notes: str | None = None


def _field(data: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return None


def parse_quantity(value: object) -> Decimal | None:
    """Parse a counted quantity typed on a field device.

    ``None`` and blank strings mean "not counted yet" and return ``None``.
    Either "." or "," is accepted as the decimal separator.
    """

    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError("Quantity must be numeric.")
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValidationError("Quantity must be numeric.")

    if not text:
        return None

    if "," in text and "." in text:
        raise ValidationError("Quantity must use a single decimal separator.")
    text = text.replace(",", ".")
    if not _QUANTITY_PATTERN.match(text):
        raise ValidationError("Quantity must be a non-negative number.")

    try:
        quantity = Decimal(text)
    except InvalidOperation:
        raise ValidationError("Quantity must be numeric.")

    integer_digits = len(text.split(".", 1)[0].lstrip("0"))
    if integer_digits > MAX_INTEGER_DIGITS:
        raise ValidationError("Quantity is too large.")
    fraction = text.split(".", 1)[1] if "." in text else ""
    if len(fraction.rstrip("0")) > MAX_FRACTION_DIGITS:
        raise ValidationError(
            f"Quantity allows at most {MAX_FRACTION_DIGITS} decimal places."
        )
    return quantity


def parse_positive_int(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number.")
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number.")
    if number <= 0:
        raise ValidationError(f"{label} must be positive.")
    return number


def _clean_notes(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _item_entries(payload: object) -> list[object]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        entries = payload.get("items")
        if isinstance(entries, list):
            return entries
        if entries is None:
            return []
    raise ValidationError("Items must be submitted as a list.")


def parse_item_updates(payload: object) -> tuple[list[ItemUpdate], list[SkippedEntry]]:
    """Split a submitted batch into usable updates and skipped entries.

    A batch may mix valid data with stray input, so malformed entries are
    reported back instead of failing the request. When a product appears more
    than once the last entry wins.
    """

    updates: dict[int, ItemUpdate] = {}
    skipped: list[SkippedEntry] = []

    for index, entry in enumerate(_item_entries(payload)):
        if not isinstance(entry, Mapping):
            skipped.append(SkippedEntry(index, None, "Entry must be an object."))
            continue

        raw_product_id = _field(entry, "productId", "product_id")
        try:
            product_id = parse_positive_int(raw_product_id, "Product id")
        except ValidationError as exc:
            skipped.append(SkippedEntry(index, raw_product_id, exc.message))
            continue

        try:
            quantity = parse_quantity(_field(entry, "countedQuantity", "counted_quantity"))
        except ValidationError as exc:
            skipped.append(SkippedEntry(index, product_id, exc.message))
            continue
        if quantity is None:
            skipped.append(SkippedEntry(index, product_id, "Quantity is empty."))
            continue

        updates.pop(product_id, None)
        updates[product_id] = ItemUpdate(
            product_id=product_id,
            counted_quantity=quantity,
            notes=_clean_notes(entry.get("notes")),
            index=index,
        )

    return list(updates.values()), skipped


def parse_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        raise ValidationError("Date is required.")
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValidationError("Date must be in YYYY-MM-DD format.")


def parse_stock_count_payload(data: Mapping[str, Any] | None) -> StockCountDraft:
    data = data or {}
    missing = [
        label
        for label, names in (
            ("date", ("date",)),
            ("responsibleId", ("responsibleId", "responsible_id")),
            ("unitId", ("unitId", "unit_id")),
        )
        if _field(data, *names) in (None, "")
    ]
    if missing:
        raise ValidationError(
            "Missing required fields: " + ", ".join(missing) + ".",
            details={"missing": missing},
        )

    return StockCountDraft(
        date=parse_date(data.get("date")),
        responsible_id=parse_positive_int(
            _field(data, "responsibleId", "responsible_id"), "Responsible id"
        ),
        unit_id=parse_positive_int(_field(data, "unitId", "unit_id"), "Unit id"),
        notes=_clean_notes(data.get("notes")),
    )


def parse_stock_count_changes(data: Mapping[str, Any] | None) -> dict[str, object]:
    """Header fields present in a partial update."""

    data = data or {}
    changes: dict[str, object] = {}
    if "date" in data:
        changes["date"] = parse_date(data["date"])
    responsible = _field(data, "responsibleId", "responsible_id")
    if responsible is not None:
        changes["responsible_id"] = parse_positive_int(responsible, "Responsible id")
    unit = _field(data, "unitId", "unit_id")
    if unit is not None:
        changes["unit_id"] = parse_positive_int(unit, "Unit id")
    if "notes" in data:
        changes["notes"] = _clean_notes(data["notes"])
    if not changes:
        raise ValidationError("No changes were submitted.")
    return changes


def parse_order_payload(
    data: Mapping[str, Any] | None,
) -> tuple[list[str], dict[str, list[str]]]:
    data = data or {}
    category_order = _field(data, "categoryOrder", "category_order")
    product_order = _field(data, "productOrder", "product_order")

    if not isinstance(category_order, list) or not all(
        isinstance(name, str) for name in category_order
    ):
        raise ValidationError("categoryOrder must be a list of category names.")
    if product_order is None:
        product_order = {}
    if not isinstance(product_order, Mapping):
        raise ValidationError("productOrder must map category names to product names.")

    cleaned_products: dict[str, list[str]] = {}
    for category, names in product_order.items():
        if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
            raise ValidationError(
                f"productOrder entry for {category!r} must be a list of product names."
            )
        cleaned_products[str(category)] = list(dict.fromkeys(names))

    return list(dict.fromkeys(category_order)), cleaned_products


def parse_disclosure_overrides(data: Mapping[str, Any] | None) -> list[ManualOverride]:
    """Manual expand/collapse actions the field client still remembers."""

    data = data or {}
    raw_overrides = data.get("overrides") or []
    if not isinstance(raw_overrides, list):
        raise ValidationError("overrides must be a list.")

    overrides = []
    for entry in raw_overrides:
        if not isinstance(entry, Mapping) or not isinstance(entry.get("category"), str):
            raise ValidationError("Each override needs a category name.")
        completed = _field(entry, "completedAtOverride", "completed_at_override") or []
        if not isinstance(completed, list):
            raise ValidationError("completedAtOverride must be a list of category names.")
        overrides.append(
            ManualOverride(
                category=entry["category"],
                expanded=bool(entry.get("expanded")),
                completed_at_override=frozenset(str(name) for name in completed),
            )
        )
    return overrides


def parse_optional_product_id(value: object) -> int | None:
    if value in (None, ""):
        return None
    return parse_positive_int(value, "Product id")
