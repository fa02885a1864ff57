# sweeper.py - the sale expiry sweeper and its periodic runner

import threading

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
import structlog

from bookhaven.core import db, utcnow
from bookhaven.models import Book

logger = structlog.get_logger(__name__)


def sweep_expired_sales(batch_size=None, now=None):
    """Clear the sale fields of every book whose sale has ended.

    Works in batches, one commit each. Clearing is idempotent, so
    running concurrently with an admin edit or a second sweeper is safe.
    Returns the number of books cleared.
    """
    batch_size = batch_size or current_app.config["SALE_SWEEP_BATCH_SIZE"]
    now = now or utcnow()
    cleared = 0
    while True:
        batch = (
            Book.query.filter(Book.is_on_sale.is_(True), Book.sale_end_date < now)
            .order_by(Book.id)
            .limit(batch_size)
            .all()
        )
        if not batch:
            break
        for book in batch:
            book.clear_sale()
        try:
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        cleared += len(batch)
        if len(batch) < batch_size:
            break

    if cleared:
        logger.info("sale_sweep_cleared", count=cleared)
    else:
        logger.debug("sale_sweep_nothing_expired")
    return cleared


class PeriodicTask:
    """Runs ``func`` inside an app context every ``interval`` seconds.

    A failing run is logged and retried after ``error_backoff`` seconds;
    it never ends the loop. :meth:`stop` wakes the thread and lets it
    exit after the current run.
    """

    def __init__(self, app, name, func, interval, error_backoff=30):
        self.app = app
        self.name = name
        self.func = func
        self.interval = interval
        self.error_backoff = error_backoff
        self._stop_event = threading.Event()
        self._thread = None

    @property
    def running(self):
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout=5):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def run_once(self):
        """Returns True when the run succeeded."""
        try:
            with self.app.app_context():
                self.func()
        except Exception:
            logger.exception("periodic_task_failed", task=self.name)
            return False
        return True

    def run(self):
        logger.info("periodic_task_started", task=self.name, interval=self.interval)
        while not self._stop_event.is_set():
            delay = self.interval if self.run_once() else self.error_backoff
            self._stop_event.wait(delay)
        logger.info("periodic_task_stopped", task=self.name)
