import logging
from datetime import datetime, timedelta
from typing import Optional

from postgrest.exceptions import APIError

from lib.database import first_row, is_unique_violation, rows
from lib.error_handler import RateLimitError
from lib.models import RATE_LIMITS_TABLE, RateLimitRecord, utc_now
from lib.phone import mask_phone

logger = logging.getLogger(__name__)

WEBHOOK_ENDPOINT = 'sms_webhook'

class RateLimiter:
    """Fixed-window counter per (identifier, endpoint) kept in the database.

    Every transition is a conditional update on the values that were read, so
    two webhook workers racing on the same sender cannot both slip under the
    limit. A write that loses the race re-reads and tries again.
    """

    MAX_CONTENTION_RETRIES = 5

    def __init__(self, supabase_client, max_attempts: int = 10, window_minutes: int = 15):
        self.supabase = supabase_client
        self.max_attempts = max_attempts
        self.window = timedelta(minutes=window_minutes)

    def check_limit(self, identifier: str, endpoint: str = WEBHOOK_ENDPOINT, now: Optional[datetime] = None) -> None:
        """Count one attempt, raising RateLimitError when the window is exhausted"""
        now = now or utc_now()
        for _ in range(self.MAX_CONTENTION_RETRIES):
            row = self._fetch(identifier, endpoint)
            if row is None:
                if self._create(identifier, endpoint, now):
                    return
                continue

            record = RateLimitRecord(**row)
            if now - record.window_start >= self.window:
                if self._swap(row, {'attempt_count': 1, 'window_start': now.isoformat(), 'blocked_until': None}):
                    return
                continue

            if record.attempt_count >= self.max_attempts:
                blocked_until = (record.window_start + self.window).isoformat()
                self._mark_blocked(identifier, endpoint, blocked_until)
                logger.warning(f"Rate limit exceeded for {mask_phone(identifier)} on {endpoint}")
                raise RateLimitError("Too many messages, please slow down", blocked_until=blocked_until)

            if self._swap(row, {'attempt_count': record.attempt_count + 1}):
                return

        logger.error(f"Rate limiter contention for {mask_phone(identifier)}; rejecting")
        raise RateLimitError("Too many concurrent messages")

    def _table(self):
        return self.supabase.table(RATE_LIMITS_TABLE)

    def _fetch(self, identifier: str, endpoint: str):
        result = self._table().select('*') \
            .eq('identifier', identifier) \
            .eq('endpoint', endpoint) \
            .limit(1) \
            .execute()
        return first_row(result)

    def _create(self, identifier: str, endpoint: str, now: datetime) -> bool:
        try:
            self._table().insert({
                'identifier': identifier,
                'endpoint': endpoint,
                'attempt_count': 1,
                'window_start': now.isoformat(),
                'blocked_until': None,
            }).execute()
            return True
        except APIError as e:
            if is_unique_violation(e):
                return False
            raise

    def _swap(self, row: dict, changes: dict) -> bool:
        """Apply changes only if the counter still holds the values we read"""
        result = self._table().update(changes) \
            .eq('identifier', row['identifier']) \
            .eq('endpoint', row['endpoint']) \
            .eq('attempt_count', row['attempt_count']) \
            .eq('window_start', row['window_start']) \
            .execute()
        return bool(rows(result))

    def _mark_blocked(self, identifier: str, endpoint: str, blocked_until: str) -> None:
        self._table().update({'blocked_until': blocked_until}) \
            .eq('identifier', identifier) \
            .eq('endpoint', endpoint) \
            .execute()
