import json
import logging
from datetime import datetime
from typing import Optional

from lib.config import Settings
from lib.database import first_row
from lib.error_handler import SubscriptionRequiredError
from lib.models import SUBSCRIBERS_TABLE, SubscriptionState, UserProfile

logger = logging.getLogger(__name__)

class AccessService:
    """Subscription/trial gate in front of the journal"""

    def __init__(self, supabase_client, settings: Settings, sms_service):
        self.supabase = supabase_client
        self.settings = settings
        self.sms = sms_service

    def get_subscription(self, user_id: str) -> Optional[SubscriptionState]:
        result = self.supabase.table(SUBSCRIBERS_TABLE) \
            .select('user_id, email, subscribed, is_trial, trial_end') \
            .eq('user_id', user_id) \
            .limit(1) \
            .execute()
        row = first_row(result)
        return SubscriptionState(**row) if row else None

    def check(self, profile: UserProfile, now: Optional[datetime] = None) -> SubscriptionState:
        subscription = self.get_subscription(profile.id)
        if subscription is not None and subscription.has_access(now):
            return subscription

        logger.info(f"User {profile.id} has no active subscription or trial")
        raise SubscriptionRequiredError(
            "No active subscription",
            email=subscription.email if subscription else None
        )

    def send_reminder(self, phone: str, email: Optional[str]) -> None:
        """Billing nudge; the checkout link is generated off the request path"""
        self.sms.send_billing_reminder(phone, lambda: self.checkout_url(email))

    def checkout_url(self, email: Optional[str]) -> str:
        """Ask the billing function for a checkout link, falling back to the upgrade page"""
        if not email:
            return self.settings.upgrade_url
        try:
            response = self.supabase.functions.invoke(
                self.settings.checkout_function,
                invoke_options={'body': {'email': email}}
            )
            if isinstance(response, (bytes, str)):
                response = json.loads(response)
            url = response.get('url') if isinstance(response, dict) else None
        except Exception as e:
            logger.error(f"Error creating checkout URL: {str(e)}")
            return self.settings.upgrade_url

        if not url:
            logger.warning("Billing function returned no checkout URL; using fallback")
            return self.settings.upgrade_url
        return url
