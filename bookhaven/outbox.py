# outbox.py - transactional outbox for email and real-time notifications
# Events are added to the caller's session and commit together with the
# state change that caused them. Delivery happens afterwards, inline for
# a fast response and again from the background drain for anything that
# failed.

from flask import current_app
import structlog

from bookhaven.core import db, utcnow
from bookhaven.errors import DeliveryError
from bookhaven.models import OutboxEvent, OUTBOX_PENDING, OUTBOX_SENT, OUTBOX_FAILED

logger = structlog.get_logger(__name__)

ORDER_CONFIRMATION_EMAIL = "order_confirmation_email"
ORDER_APPROVED_EMAIL = "order_approved_email"
ORDER_NOTIFICATION = "order_notification"


def record(kind, payload):
    event = OutboxEvent(kind=kind, payload=payload, status=OUTBOX_PENDING)
    db.session.add(event)
    return event


def _send_email(payload):
    mailer = current_app.extensions["bookhaven.mailer"]
    mailer.send(payload["to"], payload["subject"], payload["html"])


def _publish_notification(payload):
    hub = current_app.extensions["bookhaven.hub"]
    hub.publish(payload["user_id"], payload["notification"])


HANDLERS = {
    ORDER_CONFIRMATION_EMAIL: _send_email,
    ORDER_APPROVED_EMAIL: _send_email,
    ORDER_NOTIFICATION: _publish_notification,
}


def dispatch(event):
    """Deliver one event. Returns True when it was sent.

    Failures are recorded on the event and logged; they never raise.
    """
    max_attempts = current_app.config["OUTBOX_MAX_ATTEMPTS"]
    handler = HANDLERS.get(event.kind)
    event.attempts += 1
    try:
        if handler is None:
            raise DeliveryError("Unknown event kind.", internal_details=f"kind={event.kind}")
        handler(event.payload)
    except DeliveryError as exc:
        event.last_error = exc.user_message
        logger.warning("outbox_dispatch_failed", event_id=event.id, kind=event.kind,
                       attempts=event.attempts, error=exc.user_message)
    except Exception as exc:
        event.last_error = f"{type(exc).__name__}: {exc}"[:500]
        logger.exception("outbox_dispatch_error", event_id=event.id, kind=event.kind,
                         attempts=event.attempts)
    else:
        event.status = OUTBOX_SENT
        event.sent_at = utcnow()
        event.last_error = None
        logger.info("outbox_dispatched", event_id=event.id, kind=event.kind)

    if event.status != OUTBOX_SENT and event.attempts >= max_attempts:
        event.status = OUTBOX_FAILED
        logger.error("outbox_event_abandoned", event_id=event.id, kind=event.kind)
    db.session.commit()
    return event.status == OUTBOX_SENT


def dispatch_all(events):
    """Dispatch freshly committed events; returns ``{kind: sent}``."""
    return {event.kind: dispatch(event) for event in events}


def drain(limit=100):
    """Dispatch pending events oldest first. Returns the number sent."""
    pending = (
        OutboxEvent.query.filter_by(status=OUTBOX_PENDING)
        .order_by(OutboxEvent.id)
        .limit(limit)
        .all()
    )
    sent = sum(1 for event in pending if dispatch(event))
    if pending:
        logger.info("outbox_drained", pending=len(pending), sent=sent)
    return sent
