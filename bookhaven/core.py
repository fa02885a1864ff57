# core.py
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from werkzeug.exceptions import HTTPException
from datetime import datetime, timezone
from decimal import Decimal
import atexit
import os

import structlog

from bookhaven.errors import BookHavenError
from bookhaven.log import configure_logging

# --- DB handle (imported by models and blueprints) ---
db = SQLAlchemy()

logger = structlog.get_logger(__name__)

# --- Constants shared across blueprints ---
CATEGORY_ORDER = ["Fiction", "Non-Fiction", "Children's"]
ROLE_USER = "User"
ROLE_STAFF = "Staff"
ROLE_ADMIN = "Admin"
STAFF_ROLES = (ROLE_STAFF, ROLE_ADMIN)


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def env_int(name, default):
    return int(os.environ.get(name, default))


def env_flag(name, default):
    return os.environ.get(name, "1" if default else "0").lower() in ("1", "true", "yes", "on")


def seed_if_empty():
    """Seed initial books and a staff account on first run."""
    from bookhaven.models import Book, User

    if Book.query.count() == 0:
        books = [
            {"title": "Where the Wild Things Are", "author": "Maurice Sendak", "isbn": "9780060254926",
             "category": "Children's", "price": Decimal("7.99"), "publication_year": 1963},
            {"title": "The Phantom Tollbooth", "author": "Norton Juster", "isbn": "9780394820378",
             "category": "Fiction", "price": Decimal("8.99"), "publication_year": 1961},
            {"title": "Coraline", "author": "Neil Gaiman", "isbn": "9780380807345",
             "category": "Fiction", "price": Decimal("8.99"), "publication_year": 2002},
            {"title": "Sapiens", "author": "Yuval Noah Harari", "isbn": "9780062316097",
             "category": "Non-Fiction", "price": Decimal("9.99"), "publication_year": 2011},
        ]
        for b in books:
            db.session.add(Book(**b))

    admin_email = os.environ.get("ADMIN_EMAIL", "admin@bookhaven.local")
    if User.query.filter_by(email=admin_email).first() is None:
        admin = User(username="admin", email=admin_email, role=ROLE_ADMIN)
        admin.set_password(os.environ.get("ADMIN_PASSWORD", "admin123"))
        db.session.add(admin)
    db.session.commit()


def register_error_handlers(app):
    @app.errorhandler(BookHavenError)
    def handle_bookhaven_error(err):
        return jsonify({"message": err.user_message}), err.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(err):
        return jsonify({"message": err.description}), err.code

    @app.errorhandler(Exception)
    def handle_unexpected(err):
        logger.exception("unhandled_error", error_type=type(err).__name__)
        db.session.rollback()
        return jsonify({"message": "An unexpected error occurred."}), 500


def start_background_tasks(app):
    from bookhaven.outbox import drain
    from bookhaven.sweeper import PeriodicTask, sweep_expired_sales

    tasks = [
        PeriodicTask(
            app,
            "sale_expiry_sweeper",
            sweep_expired_sales,
            interval=app.config["SALE_SWEEP_INTERVAL_SECONDS"],
            error_backoff=app.config["SALE_SWEEP_ERROR_BACKOFF_SECONDS"],
        ),
        PeriodicTask(
            app,
            "outbox_drain",
            drain,
            interval=app.config["OUTBOX_DRAIN_INTERVAL_SECONDS"],
            error_backoff=app.config["SALE_SWEEP_ERROR_BACKOFF_SECONDS"],
        ),
    ]
    for task in tasks:
        task.start()
        atexit.register(task.stop)
    app.extensions["bookhaven.tasks"] = tasks
    return tasks


def create_app(test_config=None):
    app = Flask(__name__)

    # --- Config ---
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DB_PATH = os.path.join(BASE_DIR, "bookhaven.db")
    app.config.update(
        SECRET_KEY=os.environ.get("SECRET_KEY", "dev-secret-change-me"),
        SQLALCHEMY_DATABASE_URI=os.environ.get("DATABASE_URL", f"sqlite:///{DB_PATH}"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        TOKEN_MAX_AGE_SECONDS=env_int("TOKEN_MAX_AGE_SECONDS", 60 * 60 * 24),
        MAIL_SERVER=os.environ.get("MAIL_SERVER"),
        MAIL_PORT=env_int("MAIL_PORT", 465),
        MAIL_USERNAME=os.environ.get("MAIL_USERNAME"),
        MAIL_PASSWORD=os.environ.get("MAIL_PASSWORD"),
        MAIL_SENDER=os.environ.get("MAIL_SENDER", "Book Haven <noreply@bookhaven.local>"),
        MAIL_USE_SSL=env_flag("MAIL_USE_SSL", True),
        MAIL_TIMEOUT_SECONDS=env_int("MAIL_TIMEOUT_SECONDS", 10),
        SALE_SWEEP_INTERVAL_SECONDS=env_int("SALE_SWEEP_INTERVAL_SECONDS", 3600),
        SALE_SWEEP_BATCH_SIZE=env_int("SALE_SWEEP_BATCH_SIZE", 100),
        SALE_SWEEP_ERROR_BACKOFF_SECONDS=env_int("SALE_SWEEP_ERROR_BACKOFF_SECONDS", 30),
        OUTBOX_DRAIN_INTERVAL_SECONDS=env_int("OUTBOX_DRAIN_INTERVAL_SECONDS", 60),
        OUTBOX_MAX_ATTEMPTS=env_int("OUTBOX_MAX_ATTEMPTS", 5),
        CLAIM_CODE_MAX_ATTEMPTS=5,
        BACKGROUND_TASKS_ENABLED=env_flag("BACKGROUND_TASKS_ENABLED", True),
        SEED_DATA=env_flag("SEED_DATA", True),
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO"),
        LOG_JSON=env_flag("LOG_JSON", True),
        LOG_CONFIGURE=True,
    )
    if test_config:
        app.config.update(test_config)

    if app.config["LOG_CONFIGURE"]:
        configure_logging(log_level=app.config["LOG_LEVEL"], json_format=app.config["LOG_JSON"])

    db.init_app(app)

    # Delivery gateways (tests swap these for fakes)
    from bookhaven.gateways import NotificationHub, SmtpMailer
    app.extensions["bookhaven.mailer"] = SmtpMailer.from_config(app.config)
    app.extensions["bookhaven.hub"] = NotificationHub()

    # Register blueprints (import inside to avoid circular imports)
    from bookhaven.account import auth_bp, notifications_bp
    from bookhaven.admin import admin_bp
    from bookhaven.orders import orders_bp
    from bookhaven.shop import shop_bp
    app.register_blueprint(shop_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(notifications_bp, url_prefix="/notifications")
    app.register_blueprint(orders_bp, url_prefix="/orders")
    app.register_blueprint(admin_bp, url_prefix="/admin")

    register_error_handlers(app)

    from bookhaven.commands import register_commands
    register_commands(app)

    # Ensure tables exist at startup
    with app.app_context():
        from bookhaven import models  # noqa: F401
        db.create_all()
        if app.config["SEED_DATA"]:
            seed_if_empty()

    if app.config["BACKGROUND_TASKS_ENABLED"]:
        start_background_tasks(app)

    logger.info("app_created", database=app.config["SQLALCHEMY_DATABASE_URI"].split(":", 1)[0])
    return app


# Local dev entrypoint
if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
