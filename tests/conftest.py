"""Shared pytest fixtures.

Every test gets a fresh in-memory database with background tasks off
and a recording mailer in place of SMTP.
"""

import sys
from datetime import timedelta
from decimal import Decimal

import pytest
import structlog

from bookhaven import create_app, db
from bookhaven.auth import issue_token
from bookhaven.core import utcnow, ROLE_ADMIN, ROLE_STAFF, ROLE_USER
from bookhaven.errors import DeliveryError
from bookhaven.models import Book, CartLine, Order, User


class RecordingMailer:
    """Stands in for SmtpMailer; flip ``fail`` to simulate an outage."""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to, subject, html_body):
        if self.fail:
            raise DeliveryError("Email could not be sent.")
        self.sent.append({"to": to, "subject": subject, "html": html_body})


@pytest.fixture(autouse=True)
def configure_structlog_for_tests():
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def app():
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "SEED_DATA": False,
        "BACKGROUND_TASKS_ENABLED": False,
        "LOG_CONFIGURE": False,
    })
    app.extensions["bookhaven.mailer"] = RecordingMailer()
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def mailer(app):
    return app.extensions["bookhaven.mailer"]


@pytest.fixture
def hub(app):
    return app.extensions["bookhaven.hub"]


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make_user(role=ROLE_USER, password="secret123"):
        counter["n"] += 1
        n = counter["n"]
        user = User(username=f"user{n}", email=f"user{n}@example.com", role=role)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def staff(make_user):
    return make_user(role=ROLE_STAFF)


@pytest.fixture
def admin(make_user):
    return make_user(role=ROLE_ADMIN)


@pytest.fixture
def make_book(app):
    def _make_book(price="20.00", title="Dune", **fields):
        fields.setdefault("category", "Fiction")
        book = Book(
            title=title,
            author="Frank Herbert",
            isbn="9780441013593",
            price=Decimal(price),
            publication_year=1965,
            **fields,
        )
        db.session.add(book)
        db.session.commit()
        return book

    return _make_book


@pytest.fixture
def book(make_book):
    return make_book()


@pytest.fixture
def on_sale():
    """Sale fields for a window around now."""
    def _on_sale(percent="25", start_offset=-1, end_offset=1):
        now = utcnow()
        return {
            "is_on_sale": True,
            "discount_percentage": Decimal(percent),
            "sale_start_date": now + timedelta(days=start_offset),
            "sale_end_date": now + timedelta(days=end_offset),
        }

    return _on_sale


@pytest.fixture
def add_to_cart(app):
    def _add_to_cart(user, book, quantity=1):
        line = CartLine(user_id=user.id, book_id=book.id, quantity=quantity)
        db.session.add(line)
        db.session.commit()
        return line

    return _add_to_cart


@pytest.fixture
def purchased_history(app, make_book):
    """Give ``user`` ``count`` approved orders for other books."""
    def _purchased_history(user, count):
        for i in range(count):
            other = make_book(title=f"History {i}")
            db.session.add(Order(
                user_id=user.id,
                book_id=other.id,
                quantity=1,
                claim_code=f"HISTORY{i:05d}",
                discount_percentage=Decimal("0"),
                is_purchased=True,
            ))
        db.session.commit()

    return _purchased_history


@pytest.fixture
def auth_header(app):
    def _auth_header(user):
        return {"Authorization": f"Bearer {issue_token(user)}"}

    return _auth_header
