import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from postgrest.exceptions import APIError

from lib import encryption
from lib.database import first_row, is_unique_violation, rows
from lib.error_handler import AppError
from lib.models import ENTRIES_TABLE, EntrySource, utc_now

logger = logging.getLogger(__name__)

ENTRY_SEPARATOR = '\n\n'

@dataclass
class AggregationResult:
    entry_id: str
    created: bool

def local_today(timezone_name: Optional[str], now: Optional[datetime] = None) -> date:
    """Calendar day in the user's timezone; unknown zones fall back to UTC"""
    now = now or utc_now()
    try:
        tz = ZoneInfo(timezone_name or 'UTC')
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {timezone_name!r}, using UTC")
        tz = ZoneInfo('UTC')
    return now.astimezone(tz).date()

def entry_title(entry_date: date) -> str:
    return f"Journal Entry - {entry_date:%B} {entry_date.day}, {entry_date.year}"

class JournalService:
    """Owns SMS entry content: one entry per user per day, appended in commit order.

    The append is a read-modify-write on ciphertext, so it cannot be pushed
    down into SQL. Instead each write is conditional on what was read: a new
    entry relies on the (user_id, entry_date) unique index for sms entries,
    and an append only applies if updated_at is unchanged. The loser of a
    race re-reads and applies its text on top of the winner's.
    """

    def __init__(self, supabase_client, max_attempts: int = 5):
        self.supabase = supabase_client
        self.max_attempts = max_attempts
        self.entries_table = ENTRIES_TABLE

    def find_sms_entry(self, user_id: str, entry_date: date) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(self.entries_table) \
            .select('id, content, updated_at') \
            .eq('user_id', user_id) \
            .eq('entry_date', entry_date.isoformat()) \
            .eq('source', EntrySource.SMS.value) \
            .limit(1) \
            .execute()
        return first_row(result)

    def append(self, user_id: str, entry_date: date, body: str) -> AggregationResult:
        """Create today's entry or append body to it, returning the entry id"""
        for attempt in range(1, self.max_attempts + 1):
            existing = self.find_sms_entry(user_id, entry_date)

            if existing is None:
                entry_id = self._create(user_id, entry_date, body)
                if entry_id is not None:
                    logger.info(f"Created new entry {entry_id}")
                    return AggregationResult(entry_id=entry_id, created=True)
            else:
                if not body.strip():
                    # Photo-only message: nothing to append
                    return AggregationResult(entry_id=existing['id'], created=False)
                if self._append_to(existing, user_id, body):
                    logger.info(f"Updated existing entry {existing['id']}")
                    return AggregationResult(entry_id=existing['id'], created=False)

            logger.info(f"Concurrent write on entry for {user_id}/{entry_date}, retrying (attempt {attempt})")

        raise AppError(
            f"Could not write journal entry after {self.max_attempts} attempts",
            status_code=500
        )

    def _create(self, user_id: str, entry_date: date, body: str) -> Optional[str]:
        now = utc_now().isoformat()
        try:
            result = self.supabase.table(self.entries_table).insert({
                'user_id': user_id,
                'content': encryption.encrypt(body, user_id),
                'title': encryption.encrypt(entry_title(entry_date), user_id),
                'source': EntrySource.SMS.value,
                'entry_date': entry_date.isoformat(),
                'tags': [],
                'created_at': now,
                'updated_at': now,
            }).execute()
        except APIError as e:
            if is_unique_violation(e):
                return None
            logger.error(f"Error creating journal entry: {str(e)}")
            raise
        row = first_row(result)
        if row is None:
            raise AppError("Journal entry insert returned no row", status_code=500)
        return row['id']

    def _append_to(self, existing: Dict[str, Any], user_id: str, body: str) -> bool:
        current = encryption.decrypt_or_passthrough(existing.get('content') or '', user_id)
        updated = f"{current}{ENTRY_SEPARATOR}{body}" if current else body

        query = self.supabase.table(self.entries_table) \
            .update({
                'content': encryption.encrypt(updated, user_id),
                'updated_at': utc_now().isoformat(),
            }) \
            .eq('id', existing['id'])
        if existing.get('updated_at') is None:
            query = query.is_('updated_at', 'null')
        else:
            query = query.eq('updated_at', existing['updated_at'])
        return bool(rows(query.execute()))

    def entry_dates(self, user_id: str):
        """Distinct SMS and web entry dates for the user, newest first"""
        result = self.supabase.table(self.entries_table) \
            .select('entry_date') \
            .eq('user_id', user_id) \
            .order('entry_date', desc=True) \
            .execute()
        seen = []
        for row in rows(result):
            value = date.fromisoformat(str(row['entry_date'])[:10])
            if value not in seen:
                seen.append(value)
        return seen
