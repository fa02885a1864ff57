# auth.py - bearer tokens and role checks
from functools import wraps

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from bookhaven.errors import AuthError, ForbiddenError

TOKEN_SALT = "bookhaven-auth"


def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user):
    return _serializer().dumps({"sub": user.id, "role": user.role})


def decode_token(token):
    """Return the token's claims or raise AuthError."""
    max_age = current_app.config["TOKEN_MAX_AGE_SECONDS"]
    try:
        claims = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        raise AuthError("Token has expired.")
    except BadSignature:
        raise AuthError("User not authenticated or invalid token.")
    if not isinstance(claims, dict) or not isinstance(claims.get("sub"), int):
        raise AuthError("User not authenticated or invalid token.")
    return claims


def token_from_request():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    # EventSource clients cannot set headers
    return request.args.get("access_token")


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        token = token_from_request()
        if not token:
            raise AuthError("User not authenticated or invalid token.")
        claims = decode_token(token)
        g.user_id = claims["sub"]
        g.role = claims.get("role")
        return view(*args, **kwargs)
    return wrapped


def roles_required(*roles):
    def decorator(view):
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            if g.role not in roles:
                raise ForbiddenError("You do not have permission to perform this action.")
            return view(*args, **kwargs)
        return wrapped
    return decorator
