"""Domain error taxonomy.

Every error a request can surface derives from EriggaError and carries a
stable machine-readable code plus the HTTP status the API boundary maps it
to. ConfigurationError is the exception: it is raised only while the app is
being built and aborts startup.
"""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected at process startup."""


class EriggaError(Exception):
    """Base class for recoverable domain errors."""

    code = "ERROR"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class SelfVoteError(EriggaError):
    code = "SELF_VOTE"
    default_message = "You cannot vote on your own post."


class InsufficientFundsError(EriggaError):
    code = "INSUFFICIENT_FUNDS"
    default_message = "Not enough Erigga Coins."


class AlreadyProcessingError(EriggaError):
    """Lost a race against a concurrent write on the same (voter, post) pair."""

    code = "ALREADY_PROCESSING"
    status_code = 409
    default_message = "This request is already being processed. Please retry."


AlreadyVotedConflict = AlreadyProcessingError


class NotFoundError(EriggaError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found"


class ValidationFailedError(EriggaError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class PaymentVerificationError(EriggaError):
    code = "PAYMENT_FAILED"
    default_message = "Payment verification failed"


class PaymentGatewayError(EriggaError):
    code = "VERIFICATION_ERROR"
    status_code = 502
    default_message = "Unable to verify payment with the payment gateway"


# ---------------------------------------------------------------------------
# Sessions and tokens
# ---------------------------------------------------------------------------


class InvalidSessionError(EriggaError):
    code = "INVALID_SESSION"
    status_code = 401
    default_message = "Invalid session"


class SessionExpiredError(EriggaError):
    code = "SESSION_EXPIRED"
    status_code = 401
    default_message = "Session expired"


class TokenInvalidError(EriggaError):
    code = "TOKEN_INVALID"
    status_code = 401
    default_message = "Invalid token"


class TokenExpiredError(EriggaError):
    code = "TOKEN_EXPIRED"
    status_code = 401
    default_message = "Token has expired"


class TokenMalformedError(EriggaError):
    code = "TOKEN_MALFORMED"
    status_code = 401
    default_message = "Malformed token"


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class InvalidCredentialsError(EriggaError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid email or password"


class AccountInactiveError(EriggaError):
    code = "ACCOUNT_INACTIVE"
    status_code = 403
    default_message = "Account is inactive"


class AccountBannedError(EriggaError):
    code = "ACCOUNT_BANNED"
    status_code = 403
    default_message = "Account is banned"


class AccountLockedError(EriggaError):
    code = "ACCOUNT_LOCKED"
    status_code = 423
    default_message = "Account is temporarily locked"


class PermissionDeniedError(EriggaError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "You do not have permission to perform this action"


class IdentityProviderError(EriggaError):
    code = "AUTH_PROVIDER_UNAVAILABLE"
    status_code = 503
    default_message = "Sign-in is temporarily unavailable"
