# errors.py - exception hierarchy for Book Haven
# Every error carries a user_message that is safe to return to the
# client. Technical details go to the log only.

import structlog

logger = structlog.get_logger(__name__)


class BookHavenError(Exception):
    """Base exception for the backend.

    Args:
        user_message: Safe message for the response body.
        internal_details: Optional details, logged but never returned.
        status_code: Overrides the class default HTTP status.
    """

    status_code = 500

    def __init__(self, user_message, *, internal_details=None, status_code=None):
        super().__init__(user_message)
        self.user_message = user_message
        if status_code is not None:
            self.status_code = status_code
        if internal_details:
            logger.error(
                "bookhaven_error",
                error_type=self.__class__.__name__,
                user_message=user_message,
                internal_details=internal_details,
            )


class ValidationError(BookHavenError):
    """Malformed or missing input."""

    status_code = 400


class NotFoundError(BookHavenError):
    status_code = 404


class ConflictError(BookHavenError):
    """The request clashes with current state (duplicates, wrong order state)."""

    status_code = 409


class AuthError(BookHavenError):
    status_code = 401


class ForbiddenError(BookHavenError):
    status_code = 403


class PersistenceError(BookHavenError):
    """A commit failed and the transaction was rolled back."""

    status_code = 500


class DeliveryError(BookHavenError):
    """Email or push delivery failed. Never propagated to HTTP callers."""

    status_code = 502
