from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from countapp.errors import StockCountError
from countapp.extensions import db

bp = Blueprint("errors", __name__)


@bp.app_errorhandler(StockCountError)
def handle_stock_count_error(error: StockCountError):
    if error.status_code >= 500:
        current_app.logger.error("%s %s failed: %s", request.method, request.path, error.message)
    return jsonify(error.to_dict()), error.status_code


@bp.app_errorhandler(HTTPException)
def handle_http_exception(error: HTTPException):
    return (
        jsonify(
            {
                "error": (error.name or "error").lower().replace(" ", "_"),
                "message": error.description or error.name,
                "retryable": False,
            }
        ),
        error.code or 500,
    )


@bp.app_errorhandler(Exception)
def handle_exception(error: Exception):
    db.session.rollback()
    current_app.logger.exception("Unhandled exception", exc_info=error)
    return (
        jsonify(
            {
                "error": "internal_error",
                "message": "Something went wrong. Please try again.",
                "retryable": True,
            }
        ),
        500,
    )
