import threading
from decimal import Decimal

import pytest

from bookhaven.core import db
from bookhaven.models import Book
from bookhaven.sweeper import PeriodicTask, sweep_expired_sales


@pytest.fixture
def expired(on_sale):
    return on_sale("40", start_offset=-10, end_offset=-1)


def test_sweep_clears_expired_sale(make_book, expired):
    book = make_book(**expired)
    assert sweep_expired_sales() == 1

    book = db.session.get(Book, book.id)
    assert book.is_on_sale is False
    assert book.discount_percentage == 0
    assert book.sale_start_date is None
    assert book.sale_end_date is None


def test_second_sweep_is_a_no_op(make_book, expired):
    make_book(**expired)
    sweep_expired_sales()
    assert sweep_expired_sales() == 0


def test_sweep_leaves_running_sales_alone(make_book, on_sale):
    book = make_book(**on_sale("15"))
    assert sweep_expired_sales() == 0
    assert db.session.get(Book, book.id).discount_percentage == Decimal("15")


def test_sweep_works_through_several_batches(make_book, expired):
    for i in range(5):
        make_book(title=f"Book {i}", **expired)
    assert sweep_expired_sales(batch_size=2) == 5
    assert Book.query.filter_by(is_on_sale=True).count() == 0


def test_clear_sale_is_idempotent(book):
    book.clear_sale()
    book.clear_sale()
    db.session.commit()
    assert book.is_on_sale is False


def test_catalog_read_does_not_write_expired_sale(client, make_book, expired):
    book = make_book(price="10.00", **expired)
    data = client.get(f"/books/{book.id}").get_json()

    assert data["isOnSale"] is False
    assert data["currentPrice"] == "10.00"
    # only the sweeper clears the stored fields
    db.session.expire_all()
    assert db.session.get(Book, book.id).is_on_sale is True


def test_periodic_task_keeps_going_after_a_failure(app):
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database is locked")

    task = PeriodicTask(app, "flaky", flaky, interval=3600, error_backoff=0)
    assert task.run_once() is False
    assert task.run_once() is True
    assert len(calls) == 2


def test_periodic_task_stops_on_request(app):
    ran = threading.Event()
    task = PeriodicTask(app, "sweeper", ran.set, interval=3600)
    task.start()
    assert ran.wait(5)
    assert task.running
    task.stop(timeout=5)
    assert not task.running


def test_periodic_loop_backs_off_and_carries_on_after_a_failure(app):
    calls = []
    recovered = threading.Event()

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database is locked")
        recovered.set()

    task = PeriodicTask(app, "flaky", flaky, interval=3600, error_backoff=0)
    task.start()
    try:
        assert recovered.wait(5)
    finally:
        task.stop(timeout=5)
    assert len(calls) == 2
    assert not task.running
