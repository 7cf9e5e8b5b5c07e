import logging
from enum import Enum
from typing import Any, Dict, Optional

from api.services.storage import PROCESSING_FAILED
from lib.error_handler import PhoneNotVerifiedError, VerificationError
from lib.models import InboundMessage, UserProfile

logger = logging.getLogger(__name__)

OPT_IN_KEYWORD = 'YES'

class VerificationState(str, Enum):
    UNVERIFIED = 'unverified'
    VERIFIED = 'verified'

def state_of(profile: UserProfile) -> VerificationState:
    return VerificationState.VERIFIED if profile.verified else VerificationState.UNVERIFIED

def is_opt_in(body: str) -> bool:
    return (body or '').strip().upper() == OPT_IN_KEYWORD

class VerificationService:
    """The one-time "reply YES" handshake that precedes any journaling"""

    def __init__(self, user_service, storage_service, sms_service):
        self.users = user_service
        self.storage = storage_service
        self.sms = sms_service

    def handle(
        self,
        profile: UserProfile,
        inbound: InboundMessage,
        entry_date: str,
        claimed: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Advance the handshake for an unverified sender.

        Returns 'verified' after a successful opt-in, or 'duplicate' when the
        same opt-in was already recorded. Any other body is rejected. The
        message row stays unprocessed until the profile flag is written, so a
        failed opt-in can be picked up again by a provider retry.
        """
        if state_of(profile) is VerificationState.VERIFIED:
            raise VerificationError(f"Profile {profile.id} is already verified")

        if not is_opt_in(inbound.body):
            raise PhoneNotVerifiedError("Phone not verified; reply YES to opt in")

        row = claimed or self.storage.record_message(
            inbound,
            user_id=profile.id,
            entry_date=entry_date,
        )
        if row is None:
            return 'duplicate'

        try:
            self.users.mark_verified(profile.id)
        except Exception:
            self.storage.mark_failed(row['id'], PROCESSING_FAILED)
            raise

        self.storage.mark_processed(row['id'])
        self.sms.send_instruction(inbound.from_phone)
        return 'verified'
