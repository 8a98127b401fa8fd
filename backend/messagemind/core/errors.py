"""Client-visible errors.

Services raise APIError subclasses; ``main.api_error_handler`` renders
them as ``{"error": {"code", "message", "details"?}}`` with the class's
HTTP status. Each subclass fixes its ``code`` and ``status_code``.
"""


class APIError(Exception):
    """Base for errors that reach the client.

    Attributes:
        code: Machine-readable code (e.g. "NOT_FOUND").
        message: Human-readable message.
        status_code: HTTP status.
        details: Extra structured context, if any.
    """

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
        *,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details
        if code is not None:
            self.code = code


# =============================================================================
# 4xx: request problems
# =============================================================================


class ValidationError(APIError):
    """Malformed or unsupported request, rejected before any charge."""

    code = "VALIDATION_ERROR"
    status_code = 400


class InputTooLargeError(APIError):
    """Effective input length (images count as fixed characters) over the cap."""

    code = "INPUT_TOO_LARGE"
    status_code = 413

    def __init__(self, max_chars: int, actual_chars: int) -> None:
        super().__init__(
            f"Input exceeds maximum of {max_chars} characters. Please shorten your input.",
            [{"max_chars": max_chars, "actual_chars": actual_chars}],
        )


class UnauthorizedError(APIError):
    code = "UNAUTHORIZED"
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(APIError):
    code = "FORBIDDEN"
    status_code = 403


class UpgradeRequiredError(ForbiddenError):
    """The account's tier does not include ``feature`` (deep mode, images...)."""

    code = "UPGRADE_REQUIRED"

    def __init__(self, tier: str, feature: str, message: str) -> None:
        super().__init__(message, [{"tier": tier, "feature": feature}])


class AccountDeactivatedError(ForbiddenError):
    code = "ACCOUNT_DEACTIVATED"

    def __init__(self) -> None:
        super().__init__("This account has been deactivated")


class NotFoundError(APIError):
    """Missing resource, or one owned by another account (never distinguished)."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            super().__init__(f"{resource} with id '{resource_id}' not found")
        else:
            super().__init__(f"{resource} not found")


class ConflictError(APIError):
    """409 with a caller-chosen code (ACCOUNT_EXISTS, IDEMPOTENCY_CONFLICT...)."""

    status_code = 409

    def __init__(self, code: str, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message, details, code=code)


# =============================================================================
# 402: payment required
# =============================================================================


class InsufficientCreditsError(APIError):
    """Reserving ``credits_needed`` would drive the balance negative.

    Args:
        credits_remaining: Balance when the reserve failed.
        credits_needed: Nominal charge for the request.
        breakdown: Cost breakdown, included for client display.
    """

    code = "INSUFFICIENT_CREDITS"
    status_code = 402

    def __init__(
        self,
        credits_remaining: int,
        credits_needed: int,
        breakdown: dict | None = None,
    ) -> None:
        detail: dict = {
            "credits_remaining": credits_remaining,
            "credits_needed": credits_needed,
        }
        if breakdown is not None:
            detail["breakdown"] = breakdown
        super().__init__("Not enough credits to perform this analysis", [detail])
        self.credits_remaining = credits_remaining
        self.credits_needed = credits_needed


class QuotaExhaustedError(APIError):
    """Free tier's monthly analysis count is used up (a counter, not a balance)."""

    code = "FREE_QUOTA_EXHAUSTED"
    status_code = 402

    def __init__(self, monthly_limit: int, used: int) -> None:
        super().__init__(
            "Your free monthly analysis has been used. Upgrade to continue.",
            [{"monthly_limit": monthly_limit, "used": used}],
        )


# =============================================================================
# 5xx: upstream and storage failures
# =============================================================================


class AIProviderError(APIError):
    """Generic failure reported for an analysis the provider could not complete.

    Provider internals are logged only; clients always see this message.
    """

    code = "AI_PROCESSING_FAILED"
    status_code = 502

    def __init__(self, message: str = "Analysis processing failed") -> None:
        super().__init__(message)


class PersistenceError(APIError):
    """The store rejected a write; any compensating refund has already run."""

    code = "PERSISTENCE_ERROR"
    status_code = 503

    def __init__(self, message: str = "Could not save the analysis request") -> None:
        super().__init__(message)
