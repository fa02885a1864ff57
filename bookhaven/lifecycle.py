# lifecycle.py - order state changes and read projections
#
# An order is born from one active cart line and moves through:
#
#     Pending --approve--> Purchased
#     Pending --cancel--> Pending (quantity - 1) ... --> Cancelled at 0
#     Pending --remove--> deleted
#
# Purchased orders only accept claim code corrections. Cancelled orders
# cannot be approved. Every state change commits in one transaction
# together with its outbox events; email and push delivery run after the
# commit and never change the outcome.

from flask import current_app
from markupsafe import escape
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import structlog

from bookhaven import claim_codes, outbox
from bookhaven.core import db
from bookhaven.discounts import (
    as_percent, combined_discount, discounted_total, next_purchase_preview, sale_discount,
)
from bookhaven.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from bookhaven.models import Book, CartLine, Notification, Order, User, CART_ACTIVE

logger = structlog.get_logger(__name__)


# --- Helpers ---
def purchased_count(user_id):
    return Order.query.filter_by(user_id=user_id, is_purchased=True).count()


def active_cart_line(user_id, book_id):
    return CartLine.query.filter_by(user_id=user_id, book_id=book_id, status=CART_ACTIVE).first()


def _order_exists(user_id, book_id):
    return db.session.query(
        Order.query.filter_by(user_id=user_id, book_id=book_id).exists()
    ).scalar()


def _owned_order(order_id, user_id):
    order = db.session.get(Order, order_id)
    if order is None or order.user_id != user_id:
        raise NotFoundError("Order not found.")
    return order


def _commit(action, **context):
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError(
            "The order could not be saved. Please try again later.",
            internal_details=f"{action} {context}: {type(exc).__name__}: {exc}",
        ) from exc


def _deliver(events):
    """Best-effort delivery after commit. Returns ``{kind: sent}``."""
    try:
        return outbox.dispatch_all(events)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("outbox_inline_dispatch_failed")
        return {event.kind: False for event in events}


def _order_email(user, book, quantity, discount, claim_code, heading, note):
    unit, total = discounted_total(book.price, quantity, discount)
    return f"""
<h2>{escape(heading)}</h2>
<p>Hello {escape(user.username)},</p>
<p>{escape(note)}</p>
<table>
  <tr><th>Book</th><th>Quantity</th><th>Discount</th><th>Unit price</th><th>Total</th></tr>
  <tr>
    <td>{escape(book.title)} by {escape(book.author)}</td>
    <td>{quantity}</td>
    <td>{as_percent(discount)}%</td>
    <td>${unit}</td>
    <td>${total}</td>
  </tr>
</table>
<p>Your claim code: <strong>{escape(claim_code)}</strong></p>
<p>Thank you for shopping with Book Haven.</p>
"""


def _insert_order(user, book, line, purchases):
    """One attempt at writing the order, its cart update and outbox event.

    The unique constraints decide: a duplicate (user, book) becomes a
    400 conflict, a taken claim code raises ClaimCodeCollision so the
    caller can retry with a fresh one.
    """
    quantity = line.quantity
    discount = combined_discount(purchases, quantity, sale_discount(book))
    code = claim_codes.generate()
    order = Order(
        user_id=user.id,
        book_id=book.id,
        quantity=quantity,
        claim_code=code,
        discount_percentage=discount,
    )
    db.session.add(order)
    line.remove()
    event = outbox.record(outbox.ORDER_CONFIRMATION_EMAIL, {
        "to": user.email,
        "subject": "Book Haven order confirmation",
        "html": _order_email(user, book, quantity, discount, code,
                             "Order confirmation",
                             "Your order has been placed. Show the claim code below at the counter."),
    })
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        if _order_exists(user.id, book.id):
            raise ConflictError("Book already in order.", status_code=400) from exc
        if claim_codes.is_taken(code):
            raise claim_codes.ClaimCodeCollision(code) from exc
        raise PersistenceError(
            "The order could not be saved. Please try again later.",
            internal_details=f"add_to_order: {exc}",
        ) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError(
            "The order could not be saved. Please try again later.",
            internal_details=f"add_to_order: {type(exc).__name__}: {exc}",
        ) from exc
    return order, event, discount


# --- Operations ---
def add_to_order(user_id, book_id):
    """Turn the user's active cart line for ``book_id`` into an order."""
    if not isinstance(book_id, int) or isinstance(book_id, bool) or book_id <= 0:
        raise ValidationError("Invalid book id.")
    book = db.session.get(Book, book_id)
    if book is None:
        raise NotFoundError("Book not found.")
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found.")
    if _order_exists(user_id, book_id):
        raise ConflictError("Book already in order.", status_code=400)
    line = active_cart_line(user_id, book_id)
    if line is None:
        raise ValidationError("Book is not in your cart.")

    purchases = purchased_count(user_id)
    max_attempts = current_app.config["CLAIM_CODE_MAX_ATTEMPTS"]
    try:
        for attempt in claim_codes.collision_retry(max_attempts):
            with attempt:
                order, event, discount = _insert_order(user, book, line, purchases)
    except claim_codes.ClaimCodeCollision as exc:
        raise ConflictError(
            "Could not issue a claim code, please try again.",
            internal_details=f"{max_attempts} consecutive claim code collisions",
        ) from exc

    logger.info("order_created", order_id=order.id, user_id=user_id, book_id=book_id,
                quantity=order.quantity, discount=str(discount))

    sent = _deliver([event])
    if sent.get(outbox.ORDER_CONFIRMATION_EMAIL):
        message = "Book added to order. A confirmation email has been sent."
    else:
        message = "Book added to order, but the confirmation email could not be sent."

    return {
        "message": message,
        "order": order,
        "discount_percentage": float(as_percent(order.discount)),
        "total_orders": Order.query.filter_by(user_id=user_id).count(),
        "current_order_book_count": order.quantity,
    }


def approve_order(claim_code):
    """Staff confirms an in-store pickup by claim code."""
    claim_code = (claim_code or "").strip()
    if not claim_code:
        raise ValidationError("Claim code is required.")
    order = Order.query.filter_by(claim_code=claim_code).first()
    if order is None:
        raise NotFoundError("Invalid claim code.")
    if order.is_purchased:
        raise ConflictError("Order has already been purchased.", status_code=400)
    if order.is_cancelled:
        raise ConflictError("Cancelled orders cannot be approved.", status_code=400)

    # guarded update: a concurrent approval or cancellation loses here
    updated = (
        Order.query.filter_by(id=order.id, is_purchased=False, is_cancelled=False)
        .update({"is_purchased": True}, synchronize_session="fetch")
    )
    if updated == 0:
        db.session.rollback()
        raise ConflictError("Order can no longer be approved.", status_code=400)

    book = order.book
    user = order.user
    notification = Notification(
        user_id=order.user_id,
        message=f"Your order for '{book.title}' (claim code {order.claim_code}) has been approved. Enjoy your book!",
    )
    db.session.add(notification)
    try:
        db.session.flush()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("The order could not be saved. Please try again later.",
                               internal_details=f"approve_order: {exc}") from exc
    events = [
        outbox.record(outbox.ORDER_NOTIFICATION, {
            "user_id": order.user_id,
            "notification": notification.to_dict(),
        }),
        outbox.record(outbox.ORDER_APPROVED_EMAIL, {
            "to": user.email,
            "subject": "Your Book Haven order is complete",
            "html": _order_email(user, book, order.quantity, order.discount, order.claim_code,
                                 "Purchase confirmed",
                                 "Your order has been collected and marked as purchased."),
        }),
    ]
    _commit("approve_order", order_id=order.id)
    logger.info("order_approved", order_id=order.id, user_id=order.user_id)

    sent = _deliver(events)
    failed = [kind for kind, ok in sent.items() if not ok]
    message = "Order approved."
    if outbox.ORDER_NOTIFICATION in failed:
        message += " The user could not be notified right now."
    if outbox.ORDER_APPROVED_EMAIL in failed:
        message += " The confirmation email could not be sent."
    return {"message": message, "order": order}


def cancel_order(order_id, user_id):
    """Give back one copy; the order is cancelled once none are left."""
    order = _owned_order(order_id, user_id)
    if order.is_cancelled:
        raise ConflictError("Order is already cancelled.")
    if order.is_purchased:
        raise ConflictError("Purchased orders cannot be cancelled.")

    # guarded update: an approval committed since the checks above wins
    updated = (
        Order.query.filter_by(id=order.id, is_purchased=False, is_cancelled=False)
        .filter(Order.quantity > 0)
        .update({"quantity": Order.quantity - 1}, synchronize_session="fetch")
    )
    if updated == 0:
        db.session.rollback()
        raise ConflictError("Order can no longer be cancelled.")

    db.session.refresh(order)
    if order.quantity == 0:
        order.is_cancelled = True
    _commit("cancel_order", order_id=order.id)
    logger.info("order_cancelled_one", order_id=order.id, quantity=order.quantity,
                cancelled=order.is_cancelled)
    return order.quantity


def remove_from_order(order_id, user_id):
    order = _owned_order(order_id, user_id)
    if order.is_cancelled:
        raise ConflictError("Cancelled orders cannot be removed.")
    if order.is_purchased:
        raise ConflictError("Purchased orders cannot be removed.")
    deleted = (
        Order.query.filter_by(id=order.id, is_purchased=False, is_cancelled=False)
        .delete(synchronize_session="fetch")
    )
    if deleted == 0:
        db.session.rollback()
        raise ConflictError("Order can no longer be removed.")
    _commit("remove_from_order", order_id=order_id)
    logger.info("order_removed", order_id=order_id, user_id=user_id)


def change_claim_code(order_id, new_code):
    order = claim_codes.update_claim_code(order_id, new_code)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Claim code is already in use.") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("The order could not be saved. Please try again later.",
                               internal_details=f"change_claim_code: {exc}") from exc
    logger.info("claim_code_updated", order_id=order.id)
    return order


# --- Read projections ---
def user_orders(user_id):
    return (
        Order.query.filter_by(user_id=user_id)
        .order_by(Order.date_added.desc(), Order.id.desc())
        .all()
    )


def user_orders_with_discount(user_id):
    purchases = purchased_count(user_id)
    return {
        "orders": user_orders(user_id),
        "purchased_count": purchases,
        "next_discount_percentage": float(as_percent(next_purchase_preview(purchases))),
    }


def all_orders():
    return Order.query.order_by(Order.date_added.desc(), Order.id.desc()).all()


def orders_for_user(user_id):
    if db.session.get(User, user_id) is None:
        raise NotFoundError("User not found.")
    return user_orders(user_id)
