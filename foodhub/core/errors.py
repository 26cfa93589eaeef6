"""
Domain Error Taxonomy

Every failure a core operation can report is a subclass of FoodhubError.
Each class carries the HTTP status it maps to at the API boundary, a stable
machine-readable error code and a public message. Extra context for the
client (offending dish ids, allowed transitions...) goes into `details`.

Token-related failures deliberately share one generic public message so the
API never reveals whether a user, email or token exists.

Author: Khalil Bannouri
Version: 1.0.0
"""

from typing import Any, Optional


GENERIC_TOKEN_MESSAGE = "Invalid or expired refresh token"


class FoodhubError(Exception):
    """Base class for all domain failures."""

    status_code: int = 500
    error_code: str = "internal_error"
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON error envelope."""
        return {
            "success": False,
            "error": self.message,
            "code": self.error_code,
            **self.details,
        }


# =============================================================================
# 404
# =============================================================================

class NotFoundError(FoodhubError):
    status_code = 404
    error_code = "not_found"
    default_message = "Resource not found"


# =============================================================================
# 400 - STATE CONFLICTS
# =============================================================================

class StateConflictError(FoodhubError):
    status_code = 400
    error_code = "state_conflict"
    default_message = "The request conflicts with the current state"


class RestaurantInactiveError(StateConflictError):
    error_code = "restaurant_inactive"
    default_message = "Restaurant is not active"


class InvalidItemsError(StateConflictError):
    error_code = "invalid_items"
    default_message = "One or more dishes not found or do not belong to this restaurant"


class DishUnavailableError(StateConflictError):
    error_code = "dish_unavailable"
    default_message = "One or more dishes are not available"

    def __init__(self, dishes: list[dict[str, Any]]):
        super().__init__(details={"unavailable_dishes": dishes})
        self.dishes = dishes


class BelowMinimumOrderError(StateConflictError):
    error_code = "below_minimum_order"

    def __init__(self, minimum_order, subtotal):
        super().__init__(
            message=f"Minimum order amount is {minimum_order}. Current subtotal: {subtotal}",
            details={
                "minimum_order": str(minimum_order),
                "subtotal": str(subtotal),
            },
        )
        self.minimum_order = minimum_order
        self.subtotal = subtotal


class IllegalTransitionError(StateConflictError):
    error_code = "illegal_transition"

    def __init__(self, current: str, requested: str, allowed: list[str]):
        allowed_text = ", ".join(allowed) if allowed else "none"
        super().__init__(
            message=(
                f"Cannot transition from {current} to {requested}. "
                f"Valid transitions: {allowed_text}"
            ),
            details={"allowed_transitions": allowed},
        )
        self.current = current
        self.requested = requested
        self.allowed = allowed


class CredentialRequiredError(FoodhubError):
    status_code = 400
    error_code = "credential_required"
    default_message = "User must have either a password or googleId"


# =============================================================================
# 401 - AUTHENTICATION
# =============================================================================

class AuthenticationError(FoodhubError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication required"


class InvalidTokenError(AuthenticationError):
    error_code = "invalid_token"
    default_message = GENERIC_TOKEN_MESSAGE


class TokenNotFoundError(AuthenticationError):
    error_code = "invalid_token"
    default_message = GENERIC_TOKEN_MESSAGE


class TokenExpiredError(AuthenticationError):
    error_code = "invalid_token"
    default_message = GENERIC_TOKEN_MESSAGE


class SecurityAlertError(AuthenticationError):
    """Raised when an already-rotated refresh token is presented again."""
    error_code = "session_revoked"
    default_message = (
        "Refresh token has been revoked. For security reasons, all sessions "
        "have been invalidated. Please login again."
    )


class InvalidCredentialsError(AuthenticationError):
    error_code = "invalid_credentials"
    default_message = "Invalid email or password"


# =============================================================================
# 403 / 409
# =============================================================================

class ForbiddenError(FoodhubError):
    status_code = 403
    error_code = "forbidden"
    default_message = "Access denied"


class AccountDisabledError(ForbiddenError):
    error_code = "account_disabled"
    default_message = "Account is disabled. Please contact support."


class ConflictError(FoodhubError):
    status_code = 409
    error_code = "conflict"
    default_message = "Resource already exists"
