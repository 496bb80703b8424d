from functools import wraps

from flask_login import current_user

from countapp.errors import Unauthorized


def login_required_json(f):
    """Decorator that answers 401 JSON instead of redirecting to a login page."""

    @wraps(f)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            raise Unauthorized()
        return f(*args, **kwargs)

    return wrapped


def privileged_session_guard():
    """Return a ``before_request`` handler that requires a signed-in user."""

    def handler():
        if not current_user.is_authenticated:
            raise Unauthorized()
        return None

    return handler
