# account.py - registration, login, profile and notifications
import json
import queue

from flask import Blueprint, Response, current_app, g, jsonify, stream_with_context
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
import structlog

from bookhaven.auth import issue_token, login_required
from bookhaven.core import db
from bookhaven.errors import AuthError, ConflictError, NotFoundError
from bookhaven.lifecycle import user_orders
from bookhaven.models import Notification, User
from bookhaven.schemas import LoginIn, RegisterIn, UsernameIn, parse_body

logger = structlog.get_logger(__name__)

auth_bp = Blueprint("auth", __name__)
notifications_bp = Blueprint("notifications", __name__)

STREAM_KEEPALIVE_SECONDS = 15


# --- Routes: Auth ---
@auth_bp.route("/register", methods=["POST"])
def register():
    body = parse_body(RegisterIn)
    email = body.email.lower()
    clash = User.query.filter(
        or_(func.lower(User.username) == body.username.lower(), User.email == email)
    ).first()
    if clash:
        raise ConflictError("Username or email already taken.")
    user = User(username=body.username, email=email)
    user.set_password(body.password)
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Username or email already taken.") from exc
    logger.info("user_registered", user_id=user.id)
    return jsonify({"message": "User registered successfully", "userId": user.id}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    body = parse_body(LoginIn)
    user = User.query.filter_by(email=body.email.lower()).first()
    if user is None or not user.check_password(body.password):
        raise AuthError("Invalid email or password.")
    return jsonify({"token": issue_token(user), "role": user.role})


@auth_bp.route("/profile")
@login_required
def profile():
    user = db.session.get(User, g.user_id)
    if user is None:
        raise NotFoundError("User not found.")
    data = user.to_dict()
    data["orders"] = [o.to_dict() for o in user_orders(user.id)]
    return jsonify(data)


@auth_bp.route("/profile/username", methods=["PUT"])
@login_required
def update_username():
    body = parse_body(UsernameIn)
    user = db.session.get(User, g.user_id)
    if user is None:
        raise NotFoundError("User not found.")
    clash = User.query.filter(
        func.lower(User.username) == body.username.lower(), User.id != user.id
    ).first()
    if clash:
        raise ConflictError("Username already taken.")
    user.username = body.username
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Username already taken.") from exc
    logger.info("username_updated", user_id=user.id)
    return jsonify({"message": "Username updated successfully.", "username": user.username})


# --- Routes: Notifications ---
@notifications_bp.route("")
@login_required
def list_notifications():
    items = (
        Notification.query.filter_by(user_id=g.user_id)
        .order_by(Notification.timestamp.desc(), Notification.id.desc())
        .all()
    )
    return jsonify([n.to_dict() for n in items])


@notifications_bp.route("/<int:notification_id>/read", methods=["PATCH"])
@login_required
def mark_read(notification_id):
    notification = db.session.get(Notification, notification_id)
    if notification is None or notification.user_id != g.user_id:
        raise NotFoundError("Notification not found.")
    notification.is_read = True
    db.session.commit()
    return jsonify(notification.to_dict())


@notifications_bp.route("/stream")
@login_required
def stream():
    hub = current_app.extensions["bookhaven.hub"]
    user_id = g.user_id
    q = hub.subscribe(user_id)

    def events():
        try:
            while True:
                try:
                    payload = q.get(timeout=STREAM_KEEPALIVE_SECONDS)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                yield f"event: notification\ndata: {json.dumps(payload)}\n\n"
        finally:
            hub.unsubscribe(user_id, q)

    return Response(stream_with_context(events()), mimetype="text/event-stream",
                    headers={"Cache-Control": "no-cache"})
