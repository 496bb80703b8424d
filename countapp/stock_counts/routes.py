"""Back-office endpoints for stock counts."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from countapp.auth import privileged_session_guard
from countapp.errors import ValidationError
from countapp.models import StockCountStatus

from . import repository, services
from .forms import parse_positive_int, parse_stock_count_payload
from .ordering import compute_order, previous_order_hint
from .reconciliation import category_progress, summarize_count
from .serializers import (
    serialize_event,
    serialize_items,
    serialize_order,
    serialize_stock_count,
)

bp = Blueprint("stock_counts", __name__, url_prefix="/api/stock-counts")

bp.before_request(privileged_session_guard())


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


@bp.get("/")
def list_counts():
    status = (request.args.get("status") or "").strip() or None
    if status is not None:
        canonical = StockCountStatus.normalize(status)
        if canonical is None:
            raise ValidationError(
                f"Unknown status {status!r}.",
                details={"allowed": StockCountStatus.ALL_STATUSES},
            )
        status = canonical
    counts = repository.list_stock_counts(status)
    return jsonify({"stockCounts": [serialize_stock_count(count) for count in counts]})


@bp.post("/")
def create_count():
    draft = parse_stock_count_payload(_json_body())
    stock_count = services.create_stock_count(draft)
    return jsonify({"stockCount": serialize_stock_count(stock_count)}), 201


@bp.get("/<int:stock_count_id>")
def detail(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    return jsonify(
        {
            "stockCount": serialize_stock_count(stock_count),
            "summary": summarize_count(stock_count).to_dict(),
        }
    )


@bp.patch("/<int:stock_count_id>")
def edit(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    stock_count = services.update_stock_count(stock_count, _json_body())
    return jsonify({"stockCount": serialize_stock_count(stock_count)})


@bp.delete("/<int:stock_count_id>")
def delete(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    services.delete_stock_count(stock_count)
    return jsonify({"deleted": True, "id": stock_count_id})


@bp.post("/<int:stock_count_id>/initialize")
def initialize(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    created = services.initialize_stock_count(stock_count)
    items = repository.items_for_count(stock_count_id)
    return jsonify({"created": created, "items": serialize_items(items)})


@bp.get("/<int:stock_count_id>/items")
def list_items(stock_count_id: int):
    repository.get_stock_count(stock_count_id)
    items = repository.items_for_count(stock_count_id)
    return jsonify({"items": serialize_items(items)})


@bp.delete("/<int:stock_count_id>/items/<product_id>")
def remove_item(stock_count_id: int, product_id: str):
    stock_count = repository.get_stock_count(stock_count_id)
    product_id_value = parse_positive_int(product_id, "Product id")
    removed = services.remove_item(stock_count, product_id_value)
    return jsonify({"removed": removed, "productId": product_id_value})


@bp.post("/<int:stock_count_id>/close")
def close(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    result = services.close_for_counting(stock_count)
    return jsonify(
        {
            "stockCount": serialize_stock_count(result.stock_count),
            "publicToken": result.stock_count.public_token,
            "publicUrl": result.public_url,
            "notification": {
                "sent": result.notification_sent,
                "warning": result.warning,
            },
        }
    )


@bp.post("/<int:stock_count_id>/finalize")
def finalize(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    stock_count = services.finalize_stock_count(stock_count)
    return jsonify({"stockCount": serialize_stock_count(stock_count)})


@bp.put("/<int:stock_count_id>/items")
def correct_items(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    payload = request.get_json(silent=True)
    result = services.correct_finalized_items(
        stock_count, payload if payload is not None else {}
    )
    return jsonify(result.to_dict())


@bp.get("/<int:stock_count_id>/order")
def order(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    count_order = compute_order(stock_count)
    progress = category_progress(stock_count, count_order)
    return jsonify({"order": serialize_order(count_order, progress)})


@bp.post("/<int:stock_count_id>/order")
def save_order(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    count_order = services.save_order(stock_count, _json_body())
    return jsonify({"order": serialize_order(count_order)})


@bp.get("/<int:stock_count_id>/previous-order")
def previous_order(stock_count_id: int):
    stock_count = repository.get_stock_count(stock_count_id)
    return jsonify(previous_order_hint(stock_count).to_dict())


@bp.get("/<int:stock_count_id>/events")
def events(stock_count_id: int):
    repository.get_stock_count(stock_count_id)
    return jsonify(
        {
            "events": [
                serialize_event(event)
                for event in repository.events_for_count(stock_count_id)
            ]
        }
    )
