# shop.py - storefront: catalog, cart and contact form
from flask import Blueprint, g, jsonify, request
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
import structlog

from bookhaven.auth import login_required
from bookhaven.core import db, CATEGORY_ORDER
from bookhaven.errors import ConflictError, NotFoundError
from bookhaven.models import Book, CartLine, ContactMessage, CART_ACTIVE, CART_REMOVED
from bookhaven.schemas import CartAddIn, ContactIn, QuantityIn, parse_body

logger = structlog.get_logger(__name__)

shop_bp = Blueprint("shop", __name__)


# --- Helpers (storefront-specific) ---
def get_book(book_id):
    book = db.session.get(Book, book_id)
    if book is None:
        raise NotFoundError("Book not found.")
    return book


def cart_line(user_id, book_id, status=CART_ACTIVE):
    return (
        CartLine.query.filter_by(user_id=user_id, book_id=book_id, status=status)
        .order_by(CartLine.date_added.desc(), CartLine.id.desc())
        .first()
    )


# --- Routes: Catalog ---
# Read paths report the effective sale state without writing; expired
# sale fields are cleared by the sweeper only.
@shop_bp.route("/books")
def list_books():
    query = Book.query
    category = request.args.get("category", "").strip()
    if category:
        query = query.filter(func.lower(Book.category) == category.lower())
    q = request.args.get("q", "").strip()
    if q:
        like = f"%{q.lower()}%"
        query = query.filter(
            func.lower(Book.title).like(like)
            | func.lower(Book.author).like(like)
            | func.lower(Book.isbn).like(like)
        )
    books = query.order_by(Book.category, Book.title).all()
    return jsonify([b.to_dict() for b in books])


@shop_bp.route("/books/<int:book_id>")
def book_detail(book_id):
    return jsonify(get_book(book_id).to_dict())


@shop_bp.route("/categories")
def categories():
    return jsonify(CATEGORY_ORDER)


# --- Routes: Cart ---
@shop_bp.route("/cart")
@login_required
def cart_view():
    lines = (
        CartLine.query.filter_by(user_id=g.user_id, status=CART_ACTIVE)
        .order_by(CartLine.date_added)
        .all()
    )
    return jsonify([line.to_dict() for line in lines])


@shop_bp.route("/cart", methods=["POST"])
@login_required
def add_to_cart():
    body = parse_body(CartAddIn)
    book = get_book(body.book_id)
    line = cart_line(g.user_id, book.id)
    if line is not None:
        line.quantity += body.quantity
        message = "Quantity updated in cart"
    else:
        db.session.add(CartLine(user_id=g.user_id, book_id=book.id, quantity=body.quantity))
        message = "Book added to cart"
    try:
        db.session.commit()
    except IntegrityError as exc:
        # a concurrent add created the active line first
        db.session.rollback()
        raise ConflictError("Book is already in your cart, please retry.") from exc
    logger.info("cart_updated", user_id=g.user_id, book_id=book.id, quantity=body.quantity)
    return jsonify({"message": message})


@shop_bp.route("/cart/<int:book_id>", methods=["PATCH"])
@login_required
def update_quantity(book_id):
    body = parse_body(QuantityIn)
    line = cart_line(g.user_id, book_id)
    if line is None:
        raise NotFoundError("Book not in cart.")
    line.quantity = body.quantity
    db.session.commit()
    return jsonify({"message": "Quantity updated", "quantity": line.quantity})


@shop_bp.route("/cart/<int:book_id>/remove", methods=["PATCH"])
@login_required
def remove(book_id):
    line = cart_line(g.user_id, book_id)
    if line is None:
        raise NotFoundError("Book not in cart.")
    line.remove()
    db.session.commit()
    return jsonify({"message": "Book marked as removed from cart"})


@shop_bp.route("/cart/<int:book_id>/restore", methods=["PATCH"])
@login_required
def restore(book_id):
    if cart_line(g.user_id, book_id) is not None:
        raise ConflictError("Book is already in your cart.")
    line = cart_line(g.user_id, book_id, status=CART_REMOVED)
    if line is None:
        raise NotFoundError("Removed book not found in cart.")
    line.restore()
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Book is already in your cart.") from exc
    return jsonify({"message": "Book restored to cart", "quantity": line.quantity})


# --- Routes: Contact ---
@shop_bp.route("/contact", methods=["POST"])
def contact():
    body = parse_body(ContactIn)
    db.session.add(ContactMessage(
        name=body.name,
        email=body.email,
        subject=body.subject,
        message=body.message,
    ))
    db.session.commit()
    logger.info("contact_submitted", subject=body.subject)
    return jsonify({"message": "Contact form submitted successfully"}), 201
