import queue

import pytest

from bookhaven import lifecycle, outbox
from bookhaven.core import db
from bookhaven.errors import DeliveryError
from bookhaven.gateways import NotificationHub, SmtpMailer
from bookhaven.models import OutboxEvent, OUTBOX_FAILED, OUTBOX_PENDING, OUTBOX_SENT


def email_event(to="reader@example.com"):
    event = outbox.record(outbox.ORDER_CONFIRMATION_EMAIL, {"to": to, "subject": "Hi", "html": "<p>Hi</p>"})
    db.session.commit()
    return event


def test_drain_retries_after_outage(mailer):
    mailer.fail = True
    event = email_event()
    assert outbox.dispatch(event) is False
    assert event.status == OUTBOX_PENDING

    mailer.fail = False
    assert outbox.drain() == 1
    assert db.session.get(OutboxEvent, event.id).status == OUTBOX_SENT
    assert mailer.sent[0]["to"] == "reader@example.com"
    assert outbox.drain() == 0


def test_event_is_abandoned_after_max_attempts(app, mailer):
    app.config["OUTBOX_MAX_ATTEMPTS"] = 2
    mailer.fail = True
    event = email_event()
    outbox.drain()
    outbox.drain()
    event = db.session.get(OutboxEvent, event.id)
    assert event.status == OUTBOX_FAILED
    assert event.attempts == 2
    assert event.last_error == "Email could not be sent."
    assert outbox.drain() == 0


def test_unexpected_handler_error_is_contained(mailer, monkeypatch):
    def explode(to, subject, html_body):
        raise RuntimeError("boom")

    monkeypatch.setattr(mailer, "send", explode)
    event = email_event()
    assert outbox.dispatch(event) is False
    assert "RuntimeError" in event.last_error


def test_pending_confirmation_is_sent_by_drain(user, book, add_to_cart, mailer):
    mailer.fail = True
    add_to_cart(user, book)
    lifecycle.add_to_order(user.id, book.id)
    assert mailer.sent == []

    mailer.fail = False
    assert outbox.drain() == 1
    assert mailer.sent[0]["subject"] == "Book Haven order confirmation"


def test_hub_fans_out_and_drops_when_full():
    hub = NotificationHub(max_queue_size=1)
    first, second = hub.subscribe(7), hub.subscribe(7)
    assert hub.publish(7, {"id": 1}) == 2
    assert hub.publish(7, {"id": 2}) == 0
    assert first.get_nowait() == {"id": 1}
    with pytest.raises(queue.Empty):
        first.get_nowait()

    hub.unsubscribe(7, first)
    hub.unsubscribe(7, second)
    assert hub.subscriber_count(7) == 0
    assert hub.publish(7, {"id": 3}) == 0


def test_unconfigured_mailer_raises_delivery_error():
    mailer = SmtpMailer(server=None, port=465)
    with pytest.raises(DeliveryError):
        mailer.send("reader@example.com", "Hi", "<p>Hi</p>")


def test_mailer_needs_a_recipient():
    with pytest.raises(DeliveryError):
        SmtpMailer(server="smtp.example.com", port=465).send("", "Hi", "<p>Hi</p>")
