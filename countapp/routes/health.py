from __future__ import annotations

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from countapp.extensions import db

bp = Blueprint("health", __name__, url_prefix="/health")


@bp.get("/")
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Health check could not reach the database: %s", exc)
        return jsonify({"status": "degraded", "database": False, "error": str(exc)}), 503
    return jsonify({"status": "ok", "database": True})
