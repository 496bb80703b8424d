from flask import Flask, current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from config import Config

from . import models  # ensure models are registered with SQLAlchemy
from .errors import Unauthorized
from .extensions import db, login_manager
from .notifier import init_notifier
from .routes import auth as auth_routes
from .routes import errors as error_routes
from .routes import health as health_routes
from .stock_counts import bp as stock_counts_bp
from .stock_counts import public_bp, register_cli
from .stock_counts.public import public_link_view
from .utils.logging import assign_request_id, configure_logging, echo_request_id


def _ensure_superuser_account(admin_username: str, admin_password: str) -> None:
    """Create or update the default administrative user."""

    if not admin_username:
        return

    for attempt in range(3):
        try:
            user = models.User.query.filter_by(username=admin_username).first()
            if user is None:
                user = models.User(username=admin_username)
                db.session.add(user)

            if admin_password:
                user.set_password(admin_password)

            db.session.commit()
            return
        except IntegrityError:
            db.session.rollback()
            if attempt == 2:
                raise


def _ping_database() -> None:
    """Raise :class:`OperationalError` when the configured database is unreachable."""

    with db.engine.connect() as connection:
        connection.execute(text("SELECT 1"))


def create_app(config_override=None):
    app = Flask(__name__)

    # load configuration from environment variables
    app.config.from_object(Config)
    if config_override:
        app.config.update(config_override)

    app.config.setdefault("DATABASE_AVAILABLE", True)
    app.config.setdefault("DATABASE_ERROR", None)

    database_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
    if database_uri.startswith("sqlite:///:memory:"):
        engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_options.setdefault("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine_options.setdefault("poolclass", StaticPool)

    configure_logging(app)

    db.init_app(app)
    login_manager.init_app(app)
    init_notifier(app)

    @login_manager.user_loader
    def load_user(user_id: str):
        if not user_id:
            return None
        try:
            return db.session.get(models.User, int(user_id))
        except (TypeError, ValueError):
            return None
        except OperationalError:
            current_app.logger.warning(
                "Skipped user lookup during login_manager load because the database is unavailable."
            )
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        raise Unauthorized()

    database_available = True
    database_error_message: str | None = None

    with app.app_context():
        try:
            _ping_database()
        except OperationalError as exc:
            database_available = False
            root_cause = getattr(exc, "orig", exc)
            details = str(root_cause).strip()
            database_error_message = (
                "Unable to connect to the configured database. Start the "
                "database service or update the DB_URL setting, then restart."
            )
            if details:
                database_error_message += f" (Error: {details})"
            current_app.logger.error(
                "Database connection unavailable during startup%s",
                f": {details}" if details else "",
                exc_info=current_app.debug,
            )
            db.session.remove()
            db.engine.dispose()
        else:
            try:
                db.create_all()
                _ensure_superuser_account(
                    app.config.get("ADMIN_USER", "superuser"),
                    app.config.get("ADMIN_PASSWORD", "change_me"),
                )
            except SQLAlchemyError:
                database_available = False
                database_error_message = (
                    "The database schema could not be initialized. Review the logs "
                    "for details and run the migrations once resolved."
                )
                current_app.logger.exception("Database initialization error")
                db.session.remove()

    app.config["DATABASE_AVAILABLE"] = database_available
    app.config["DATABASE_ERROR"] = database_error_message

    app.before_request(assign_request_id)
    app.after_request(echo_request_id)

    app.register_blueprint(error_routes.bp)
    app.register_blueprint(auth_routes.bp)
    app.register_blueprint(health_routes.bp)
    app.register_blueprint(stock_counts_bp)
    app.register_blueprint(public_bp)

    public_path = (app.config.get("PUBLIC_COUNT_PATH") or "public-count").strip("/")
    app.add_url_rule(
        f"/{public_path}/<token>", "public_count_link", public_link_view
    )

    register_cli(app)

    return app
