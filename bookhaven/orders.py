# orders.py - order routes
from flask import Blueprint, g, jsonify

from bookhaven import lifecycle
from bookhaven.auth import login_required, roles_required
from bookhaven.core import STAFF_ROLES
from bookhaven.schemas import ApproveIn, ClaimCodeUpdateIn, OrderIn, parse_body

orders_bp = Blueprint("orders", __name__)

staff_required = roles_required(*STAFF_ROLES)


@orders_bp.route("", methods=["POST"])
@login_required
def add_to_order():
    body = parse_body(OrderIn)
    result = lifecycle.add_to_order(g.user_id, body.book_id)
    return jsonify({
        "message": result["message"],
        "discountPercentage": result["discount_percentage"],
        "totalOrders": result["total_orders"],
        "currentOrderBookCount": result["current_order_book_count"],
        "order": result["order"].to_dict(),
    }), 201


@orders_bp.route("/approve", methods=["POST"])
@staff_required
def approve():
    body = parse_body(ApproveIn)
    result = lifecycle.approve_order(body.claim_code)
    return jsonify({"message": result["message"], "order": result["order"].to_dict()})


@orders_bp.route("/<int:order_id>/cancel", methods=["PATCH"])
@login_required
def cancel(order_id):
    quantity = lifecycle.cancel_order(order_id, g.user_id)
    if quantity == 0:
        message = "Order cancelled."
    else:
        message = "One copy cancelled."
    return jsonify({"message": message, "quantity": quantity})


@orders_bp.route("/<int:order_id>", methods=["DELETE"])
@login_required
def remove(order_id):
    lifecycle.remove_from_order(order_id, g.user_id)
    return jsonify({"message": "Book removed from order"})


@orders_bp.route("")
@login_required
def my_orders():
    return jsonify([o.to_dict() for o in lifecycle.user_orders(g.user_id)])


@orders_bp.route("/with-discount")
@login_required
def my_orders_with_discount():
    result = lifecycle.user_orders_with_discount(g.user_id)
    return jsonify({
        "orders": [o.to_dict() for o in result["orders"]],
        "purchasedCount": result["purchased_count"],
        "nextDiscountPercentage": result["next_discount_percentage"],
    })


@orders_bp.route("/all")
@staff_required
def all_orders():
    return jsonify([o.to_dict() for o in lifecycle.all_orders()])


@orders_bp.route("/user/<int:user_id>")
@staff_required
def user_orders(user_id):
    return jsonify([o.to_dict() for o in lifecycle.orders_for_user(user_id)])


@orders_bp.route("/update-claim-code", methods=["POST"])
@staff_required
def update_claim_code():
    body = parse_body(ClaimCodeUpdateIn)
    order = lifecycle.change_claim_code(body.order_id, body.new_claim_code)
    return jsonify({"message": "Claim code updated.", "order": order.to_dict()})
