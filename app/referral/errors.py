"""
Error taxonomy for the referral engine.

Four categories, each mapped to one HTTP status by app.main:
- InvalidRequest: missing or malformed input (no retry)
- NotFoundError: referenced entity absent (no retry)
- StateConflict: wrong lifecycle state (caller must not retry blindly)
- ExternalServiceError: transfer service / SMTP unreachable (safe to retry,
  no local state was changed)
"""


class ReferralError(Exception):
    status_code = 500
    default_message = "Referral engine error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class InvalidRequest(ReferralError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(ReferralError):
    status_code = 404
    default_message = "Not found"


class StateConflict(ReferralError):
    status_code = 400
    default_message = "Operation not allowed in current state"


class ExternalServiceError(ReferralError):
    status_code = 502
    default_message = "External service unavailable"


# ---------- Code registry ----------


class DuplicateCode(StateConflict):
    default_message = "Code already exists. Please choose another one."


class GenerationExhausted(StateConflict):
    default_message = "Failed to generate unique code. Try again."


class CodeNotFound(NotFoundError):
    default_message = "Code not found"


class CodeNotActive(StateConflict):
    default_message = "Code is not active"


class CodeNotYetValid(StateConflict):
    default_message = "Code is not valid yet"


class CodeExpired(StateConflict):
    default_message = "Code has expired"


class UsageLimitReached(StateConflict):
    default_message = "Code usage limit reached"


class CodeHasHistory(StateConflict):
    default_message = "Code has redemption history; deactivate it instead"


class CodeInUse(StateConflict):
    default_message = "Code is the referrer's current code; deactivate it instead"


# ---------- Redemption ----------


class UserNotFound(NotFoundError):
    default_message = "User not found"


class AlreadyRedeemed(StateConflict):
    default_message = "User already used this code"


# ---------- Referrers / applications ----------


class ReferrerNotFound(NotFoundError):
    default_message = "Referrer not found"


class AlreadyApplied(StateConflict):
    default_message = "You already have a pending or approved profile."


class ReferrerHasHistory(StateConflict):
    default_message = "Referrer has redemption or payout history"


# ---------- Payouts ----------


class AccountMismatch(InvalidRequest):
    default_message = "Connected account ID mismatch"


class NoBalance(StateConflict):
    default_message = "No balance available for payout"


class RequestNotFound(NotFoundError):
    default_message = "Request not found"


class NotPending(StateConflict):
    default_message = "Request already processed"


class TransferFailed(ExternalServiceError):
    default_message = "Funds transfer failed"
