import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Optional

from api.payload import normalize
from api.services.journal import local_today
from api.services.storage import PROCESSING_FAILED
from lib.config import Settings
from lib.error_handler import (
    AppError,
    DataIntegrityError,
    ErrorHandler,
    NotFoundError,
    PayloadTooLargeError,
    PhoneNotVerifiedError,
    RateLimitError,
    SignatureError,
    SubscriptionRequiredError,
    ValidationError,
)
from lib.models import InboundMessage, UserProfile
from lib.phone import mask_phone, rate_limit_identifier
from lib.signature import validate_signature

logger = logging.getLogger(__name__)

@dataclass
class WebhookResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)

DUPLICATE = WebhookResult(200, {'status': 'duplicate'})

class SMSHandler:
    """Runs one Surge webhook delivery through the inbound pipeline.

    signature -> payload -> dedup -> rate limit -> sender lookup, then either
    the opt-in handshake or subscription gate -> journal entry -> photos,
    finishing with a best-effort reply. Holds no per-request state.
    """

    def __init__(
        self,
        settings: Settings,
        storage_service,
        rate_limiter,
        user_service,
        verification_service,
        access_service,
        journal_service,
        attachment_service,
        sms_service,
        milestone_service=None,
    ):
        self.settings = settings
        self.storage = storage_service
        self.rate_limiter = rate_limiter
        self.users = user_service
        self.verification = verification_service
        self.access = access_service
        self.journal = journal_service
        self.attachments = attachment_service
        self.sms = sms_service
        self.milestones = milestone_service

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        """Authenticate, parse and process a webhook call"""
        if not validate_signature(
            raw_body,
            signature,
            self.settings.surge_webhook_secret,
            tolerance=self.settings.signature_tolerance_seconds
        ):
            error = SignatureError("invalid signature")
            return WebhookResult(error.status_code, ErrorHandler.handle_app_error(error))

        try:
            data = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Webhook body is not valid JSON")
            return WebhookResult(400, {'status': 'error', 'error': 'invalid JSON'})

        try:
            normalized = normalize(data, self.settings.max_body_length)
        except PayloadTooLargeError as e:
            return self._reject_oversized(e)
        except ValidationError as e:
            return WebhookResult(e.status_code, ErrorHandler.handle_app_error(e))

        if normalized.ignored:
            return WebhookResult(200, {'status': 'ignored', 'reason': normalized.ignored_reason})

        try:
            return self.handle_message(normalized.message)
        except AppError as e:
            return WebhookResult(e.status_code, ErrorHandler.handle_app_error(e))
        except Exception as e:
            return WebhookResult(500, ErrorHandler.handle_unexpected_error(e))

    def handle_message(self, inbound: InboundMessage) -> WebhookResult:
        logger.info(f"Processing message {inbound.message_id} from {mask_phone(inbound.from_phone)}")

        claimed = None
        existing = self.storage.find_message(inbound.message_id)
        if existing is not None:
            if not self.storage.is_retryable(existing):
                logger.info(f"Duplicate message {inbound.message_id}, skipping")
                return DUPLICATE
            claimed = self.storage.claim_retry(existing)
            if claimed is None:
                return DUPLICATE
            logger.info(f"Retrying previously failed message {inbound.message_id}")

        try:
            self.rate_limiter.check_limit(rate_limit_identifier(inbound.from_phone))
            profile = self.users.resolve(inbound.from_phone)
        except (RateLimitError, NotFoundError, DataIntegrityError) as e:
            return self._reject(inbound, e, claimed=claimed)

        entry_date = local_today(profile.timezone)

        if not profile.verified:
            try:
                outcome = self.verification.handle(
                    profile,
                    inbound,
                    entry_date.isoformat(),
                    claimed=claimed
                )
            except PhoneNotVerifiedError as e:
                return self._reject(inbound, e, profile=profile, entry_date=entry_date, claimed=claimed)
            return WebhookResult(200, {'status': outcome})

        try:
            self.access.check(profile)
        except SubscriptionRequiredError as e:
            result = self._reject(inbound, e, profile=profile, entry_date=entry_date, claimed=claimed)
            if result is not DUPLICATE:
                self.access.send_reminder(inbound.from_phone, e.email)
            return result

        return self._journal(profile, inbound, entry_date, claimed)

    def _journal(
        self,
        profile: UserProfile,
        inbound: InboundMessage,
        entry_date: date,
        claimed: Optional[Dict[str, Any]] = None,
    ) -> WebhookResult:
        row = claimed or self.storage.record_message(
            inbound,
            user_id=profile.id,
            entry_date=entry_date.isoformat()
        )
        if row is None:
            return DUPLICATE

        try:
            result = self.journal.append(profile.id, entry_date, inbound.body)
        except Exception:
            self.storage.mark_failed(row['id'], PROCESSING_FAILED)
            raise

        if inbound.has_attachments:
            self.attachments.ingest(profile.id, result.entry_id, inbound.attachments)

        self.storage.mark_processed(row['id'], result.entry_id)
        logger.info(f"Message {inbound.message_id} journaled to entry {result.entry_id}")

        self.sms.send_confirmation(inbound.from_phone)
        if result.created and self.milestones is not None:
            self.milestones.check(profile.id, inbound.from_phone, entry_date)

        return WebhookResult(200, {'status': 'processed', 'entry_id': result.entry_id})

    def _reject(
        self,
        inbound: InboundMessage,
        error: AppError,
        profile: Optional[UserProfile] = None,
        entry_date: Optional[date] = None,
        claimed: Optional[Dict[str, Any]] = None,
    ) -> WebhookResult:
        """Persist the message with the error marker, then answer with the error status"""
        if claimed is not None:
            self.storage.mark_failed(claimed['id'], error.error_marker)
        else:
            row = self.storage.record_message(
                inbound,
                user_id=profile.id if profile else None,
                error=error.error_marker,
                entry_date=entry_date.isoformat() if entry_date else None,
            )
            if row is None:
                return DUPLICATE
        return WebhookResult(error.status_code, ErrorHandler.handle_app_error(error))

    def _reject_oversized(self, error: PayloadTooLargeError) -> WebhookResult:
        inbound = error.inbound
        if inbound is not None and self.storage.find_message(inbound.message_id) is None:
            try:
                self.storage.record_message(inbound, error=error.error_marker)
            except Exception as e:
                logger.error(f"Failed to record oversized message: {str(e)}")
        return WebhookResult(error.status_code, ErrorHandler.handle_app_error(error))
