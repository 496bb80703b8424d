from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_user, logout_user

from countapp.auth import login_required_json
from countapp.errors import Unauthorized, ValidationError
from countapp.models import User

bp = Blueprint("auth", __name__, url_prefix="/auth")


def _credentials() -> tuple[str, str]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = request.form
    username = (data.get("username") or "").strip()
    password = (data.get("password") or "").strip()
    if not username or not password:
        raise ValidationError("Username and password are required.")
    return username, password


@bp.post("/login")
def login():
    username, password = _credentials()
    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        current_app.logger.warning("Failed login attempt for %s", username)
        raise Unauthorized("Invalid credentials.")
    login_user(user)
    current_app.logger.info("User %s logged in", user.username)
    return jsonify({"user": {"id": user.id, "username": user.username}})


@bp.post("/logout")
@login_required_json
def logout():
    username = current_user.username
    logout_user()
    current_app.logger.info("User %s logged out", username)
    return jsonify({"loggedOut": True})


@bp.get("/me")
@login_required_json
def me():
    return jsonify({"user": {"id": current_user.id, "username": current_user.username}})
