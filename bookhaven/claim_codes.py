# claim_codes.py - pickup codes shown at the counter
import uuid

import structlog
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt

from bookhaven.core import db
from bookhaven.errors import ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

CLAIM_CODE_LENGTH = 12
CLAIM_CODE_MAX_LENGTH = 64


class ClaimCodeCollision(Exception):
    """A freshly generated code was already stored on another order."""


def generate():
    """12 uppercase hex characters from a random 128-bit UUID."""
    return uuid.uuid4().hex[:CLAIM_CODE_LENGTH].upper()


def is_taken(code, exclude_order_id=None):
    from bookhaven.models import Order

    query = Order.query.filter(Order.claim_code == code)
    if exclude_order_id is not None:
        query = query.filter(Order.id != exclude_order_id)
    return db.session.query(query.exists()).scalar()


def _log_collision(retry_state):
    logger.warning("claim_code_collision", attempt=retry_state.attempt_number)


def collision_retry(max_attempts=5):
    """Retry policy for inserts that draw a new code on every attempt.

    Only ClaimCodeCollision is retried; once ``max_attempts`` are used
    up the last collision is re-raised.
    """
    return Retrying(
        retry=retry_if_exception_type(ClaimCodeCollision),
        stop=stop_after_attempt(max_attempts),
        before_sleep=_log_collision,
        reraise=True,
    )


def update_claim_code(order_id, new_code):
    """Replace an order's claim code with a staff-supplied value."""
    from bookhaven.models import Order

    new_code = (new_code or "").strip()
    if len(new_code) < CLAIM_CODE_LENGTH:
        raise ValidationError(f"Claim code must be at least {CLAIM_CODE_LENGTH} characters.")
    if len(new_code) > CLAIM_CODE_MAX_LENGTH:
        raise ValidationError(f"Claim code must be at most {CLAIM_CODE_MAX_LENGTH} characters.")
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found.")
    if is_taken(new_code, exclude_order_id=order.id):
        raise ConflictError("Claim code is already in use.")
    order.claim_code = new_code
    return order
