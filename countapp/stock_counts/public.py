"""Token-based access for field devices.

The shareable link carries only the opaque public token. Every public
handler goes through :func:`public_count_required`, which resolves the token
to its count and rejects operations the count's status does not allow.
"""

from __future__ import annotations

from functools import wraps

from flask import Blueprint, current_app, jsonify, request

from countapp.errors import Conflict
from countapp.models import StockCount, StockCountStatus

from . import repository, services
from .disclosure import derive_disclosure, next_focus
from .forms import parse_disclosure_overrides, parse_optional_product_id
from .ordering import compute_order
from .reconciliation import category_progress, summarize_count
from .serializers import (
    serialize_disclosure,
    serialize_items,
    serialize_order,
    serialize_stock_count,
)


class PublicOperation:
    VIEW = "view"
    VIEW_ITEMS = "view_items"
    BEGIN = "begin"
    SUBMIT_ITEMS = "submit_items"
    FINISH = "finish"


PERMITTED_OPERATIONS = {
    StockCountStatus.DRAFT: frozenset(),
    StockCountStatus.READY: frozenset(
        {PublicOperation.VIEW, PublicOperation.VIEW_ITEMS, PublicOperation.BEGIN}
    ),
    StockCountStatus.COUNTING: frozenset(
        {
            PublicOperation.VIEW,
            PublicOperation.VIEW_ITEMS,
            PublicOperation.SUBMIT_ITEMS,
            PublicOperation.FINISH,
        }
    ),
    StockCountStatus.FINALIZED: frozenset(
        {PublicOperation.VIEW, PublicOperation.VIEW_ITEMS}
    ),
}

_CONFLICT_MESSAGES = {
    PublicOperation.BEGIN: "Counting has already started for this stock count.",
    PublicOperation.SUBMIT_ITEMS: "Items can only be submitted while counting is in progress.",
    PublicOperation.FINISH: "Only stock counts being counted can be finished.",
}


def permitted_operations(stock_count: StockCount) -> frozenset[str]:
    status = StockCountStatus.normalize(stock_count.status)
    return PERMITTED_OPERATIONS.get(status, frozenset())


def resolve_public_count(public_token: str | None, operation: str) -> StockCount:
    stock_count = repository.get_stock_count_by_token(public_token)
    if operation not in permitted_operations(stock_count):
        raise Conflict(
            _CONFLICT_MESSAGES.get(
                operation, "This stock count is not available for counting."
            )
        )
    return stock_count


def public_count_required(operation: str):
    """Resolve ``token`` from the URL and pass the count to the view."""

    def decorator(view):
        @wraps(view)
        def wrapped(token, *args, **kwargs):
            stock_count = resolve_public_count(token, operation)
            return view(stock_count, *args, **kwargs)

        return wrapped

    return decorator


bp = Blueprint("public_stock_counts", __name__, url_prefix="/api/public/stock-counts")


def _public_view_payload(stock_count: StockCount) -> dict[str, object]:
    order = compute_order(stock_count)
    items = {item.product_id: item for item in repository.items_for_count(stock_count.id)}
    progress = category_progress(stock_count, order, items)
    completion = {entry.name: entry.complete for entry in progress}
    return {
        "stockCount": serialize_stock_count(stock_count, public=True),
        "permittedOperations": sorted(permitted_operations(stock_count)),
        "summary": summarize_count(stock_count, items).to_dict(),
        "order": serialize_order(order, progress),
        "disclosure": serialize_disclosure(
            derive_disclosure(order.category_names(), completion)
        ),
    }


@bp.get("/<token>")
@public_count_required(PublicOperation.VIEW)
def view_count(stock_count: StockCount):
    return jsonify(_public_view_payload(stock_count))


@bp.get("/<token>/items")
@public_count_required(PublicOperation.VIEW_ITEMS)
def list_items(stock_count: StockCount):
    return jsonify({"items": serialize_items(repository.items_for_count(stock_count.id))})


@bp.route("/<token>/session", methods=["GET", "POST"])
@public_count_required(PublicOperation.VIEW)
def counting_session(stock_count: StockCount):
    """Disclosure state and next focus for the field client.

    ``POST`` carries the client's manual overrides and current field; ``GET``
    answers for the default state.
    """

    if request.method == "POST":
        data = request.get_json(silent=True) or {}
        overrides = parse_disclosure_overrides(data)
        current_product_id = parse_optional_product_id(
            data.get("currentProductId", data.get("current_product_id"))
        )
    else:
        overrides = []
        current_product_id = parse_optional_product_id(
            request.args.get("currentProductId")
        )

    order = compute_order(stock_count)
    progress = category_progress(stock_count, order)
    completion = {entry.name: entry.complete for entry in progress}
    state = derive_disclosure(order.category_names(), completion, overrides)
    layout = [(category.name, category.product_ids) for category in order.categories]

    return jsonify(
        {
            "disclosure": serialize_disclosure(state),
            "categories": [entry.to_dict() for entry in progress],
            "nextFocusProductId": next_focus(layout, state, current_product_id),
            "autoAdvanceDelayMs": current_app.config.get("STOCK_COUNT_AUTO_ADVANCE_MS", 1000),
        }
    )


@bp.post("/<token>/begin")
@public_count_required(PublicOperation.BEGIN)
def begin(stock_count: StockCount):
    stock_count = services.begin_counting(stock_count)
    return jsonify({"stockCount": serialize_stock_count(stock_count, public=True)})


@bp.route("/<token>/items", methods=["PUT", "POST"])
@public_count_required(PublicOperation.SUBMIT_ITEMS)
def submit_items(stock_count: StockCount):
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    result = services.submit_counted_items(stock_count, payload)
    return jsonify(result.to_dict())


@bp.post("/<token>/finish")
@public_count_required(PublicOperation.FINISH)
def finish(stock_count: StockCount):
    stock_count = services.finalize_stock_count(stock_count)
    return jsonify({"stockCount": serialize_stock_count(stock_count, public=True)})


def public_link_view(token: str):
    """Target of the shareable link; answers with the public view."""

    stock_count = resolve_public_count(token, PublicOperation.VIEW)
    return jsonify(_public_view_payload(stock_count))
