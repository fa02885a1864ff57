# admin.py - catalog administration (Admin role)
from flask import Blueprint, jsonify
import structlog

from bookhaven.auth import roles_required
from bookhaven.core import db, CATEGORY_ORDER, ROLE_ADMIN
from bookhaven.errors import ConflictError, ValidationError
from bookhaven.models import Book, CartLine, Order
from bookhaven.schemas import BookIn, BookUpdate, SaleIn, parse_body
from bookhaven.shop import get_book
from bookhaven.sweeper import sweep_expired_sales

logger = structlog.get_logger(__name__)

admin_bp = Blueprint("admin", __name__)

admin_required = roles_required(ROLE_ADMIN)


def check_category(category):
    if category not in CATEGORY_ORDER:
        raise ValidationError(f"Category must be one of: {', '.join(CATEGORY_ORDER)}.")


@admin_bp.route("/books", methods=["POST"])
@admin_required
def create_book():
    body = parse_body(BookIn)
    check_category(body.category)
    book = Book(**body.model_dump())
    db.session.add(book)
    db.session.commit()
    logger.info("book_created", book_id=book.id)
    return jsonify(book.to_dict()), 201


@admin_bp.route("/books/<int:book_id>", methods=["PUT"])
@admin_required
def update_book(book_id):
    book = get_book(book_id)
    changes = parse_body(BookUpdate).model_dump(exclude_unset=True)
    if "category" in changes:
        check_category(changes["category"])
    for field, value in changes.items():
        if value is None and field not in ("description", "image_path"):
            raise ValidationError(f"Invalid {field}: must not be null")
        setattr(book, field, value)
    db.session.commit()
    logger.info("book_updated", book_id=book.id, fields=sorted(changes))
    return jsonify(book.to_dict())


@admin_bp.route("/books/<int:book_id>", methods=["DELETE"])
@admin_required
def delete_book(book_id):
    book = get_book(book_id)
    if Order.query.filter_by(book_id=book.id).first() is not None:
        raise ConflictError("Books with orders cannot be deleted.")
    CartLine.query.filter_by(book_id=book.id).delete()
    db.session.delete(book)
    db.session.commit()
    logger.info("book_deleted", book_id=book_id)
    return jsonify({"message": "Book deleted."})


@admin_bp.route("/books/<int:book_id>/sale", methods=["PUT"])
@admin_required
def set_sale(book_id):
    book = get_book(book_id)
    body = parse_body(SaleIn)
    book.is_on_sale = True
    book.discount_percentage = body.discount_percentage
    book.sale_start_date = body.sale_start_date
    book.sale_end_date = body.sale_end_date
    db.session.commit()
    logger.info("sale_set", book_id=book.id, discount=str(body.discount_percentage),
                ends=body.sale_end_date.isoformat())
    return jsonify(book.to_dict())


@admin_bp.route("/books/<int:book_id>/sale", methods=["DELETE"])
@admin_required
def clear_sale(book_id):
    book = get_book(book_id)
    book.clear_sale()
    db.session.commit()
    logger.info("sale_cleared", book_id=book.id)
    return jsonify(book.to_dict())


@admin_bp.route("/sales/sweep", methods=["POST"])
@admin_required
def sweep_sales():
    return jsonify({"cleared": sweep_expired_sales()})
