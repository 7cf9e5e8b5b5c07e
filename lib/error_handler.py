from typing import Optional
import logging

logger = logging.getLogger(__name__)

class AppError(Exception):
    status_code = 500
    # Marker persisted on the inbound message row, None when nothing is recorded
    error_marker: Optional[str] = None

    def __init__(self, message: str, status_code: Optional[int] = None, user_message: Optional[str] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.user_message = user_message or "An error occurred. Please try again later."
        super().__init__(self.message)

class ValidationError(AppError):
    status_code = 400

class PayloadTooLargeError(ValidationError):
    error_marker = 'message too long'

    def __init__(self, message: str, inbound=None):
        super().__init__(message)
        self.inbound = inbound

class SignatureError(AppError):
    status_code = 401

class StateError(AppError):
    status_code = 403

class PhoneNotVerifiedError(StateError):
    error_marker = 'phone not verified'

class SubscriptionRequiredError(StateError):
    error_marker = 'no active subscription'

    def __init__(self, message: str, email: Optional[str] = None):
        super().__init__(message)
        self.email = email

class NotFoundError(AppError):
    status_code = 404
    error_marker = 'user not found'

class DataIntegrityError(AppError):
    status_code = 409
    error_marker = 'ambiguous phone number'

class RateLimitError(AppError):
    status_code = 429
    error_marker = 'rate limit exceeded'

    def __init__(self, message: str, blocked_until: Optional[str] = None):
        super().__init__(message)
        self.blocked_until = blocked_until

class TransientError(AppError):
    """Failure of a best-effort side effect (photo fetch, outbound SMS)."""

class CryptoError(AppError):
    pass

class VerificationError(AppError):
    """Opt-in handshake driven from a state that does not allow it"""

class ErrorHandler:
    @staticmethod
    def handle_app_error(error: AppError) -> dict:
        if error.status_code >= 500:
            logger.error(f"Webhook error: {error.message}")
        else:
            logger.warning(f"Webhook rejected ({error.status_code}): {error.message}")
        return {'status': 'error', 'error': error.message}

    @staticmethod
    def handle_unexpected_error(error: Exception) -> dict:
        logger.error(f"Unexpected webhook error: {str(error)}", exc_info=True)
        return {'status': 'error', 'error': 'internal error'}

    @staticmethod
    def handle_transient_error(error: Exception, context: str) -> None:
        logger.error(f"{context} failed: {str(error)}")
