import logging

from lib.database import rows
from lib.error_handler import DataIntegrityError, NotFoundError
from lib.models import PROFILES_TABLE, UserProfile
from lib.phone import mask_phone, phone_candidates

logger = logging.getLogger(__name__)

class UserService:
    def __init__(self, supabase_client):
        self.supabase = supabase_client

    def resolve(self, phone: str) -> UserProfile:
        """Find the single profile registered under any formatting of this number"""
        candidates = phone_candidates(phone)
        result = self.supabase.table(PROFILES_TABLE) \
            .select('id, phone_number, phone_verified, timezone') \
            .in_('phone_number', candidates) \
            .execute()

        profiles = {row['id']: row for row in rows(result)}
        if not profiles:
            logger.info(f"No user found for phone {mask_phone(phone)}")
            raise NotFoundError("User not found")
        if len(profiles) > 1:
            logger.error(
                f"Phone {mask_phone(phone)} matches {len(profiles)} profiles: {sorted(profiles)}"
            )
            raise DataIntegrityError("Phone number matches more than one account")

        return UserProfile(**next(iter(profiles.values())))

    def mark_verified(self, user_id: str) -> None:
        self.supabase.table(PROFILES_TABLE) \
            .update({'phone_verified': True}) \
            .eq('id', user_id) \
            .execute()
        logger.info(f"Phone verified for user {user_id}")
