import logging
from datetime import datetime
from typing import Any, Dict, Optional

from postgrest.exceptions import APIError

from lib import encryption
from lib.database import first_row, is_unique_violation, rows
from lib.models import ENTRIES_TABLE, MESSAGES_TABLE, InboundMessage, message_row

logger = logging.getLogger(__name__)

PROCESSING_FAILED = 'processing failed'

class StorageService:
    """Inbound message log: dedup lookups and the per-message audit row"""

    def __init__(self, supabase_client):
        self.supabase = supabase_client
        self.messages_table = MESSAGES_TABLE
        logger.info("Storage service initialized")

    def find_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(self.messages_table) \
            .select('id, processed, entry_id, error_message') \
            .eq('surge_message_id', message_id) \
            .limit(1) \
            .execute()
        return first_row(result)

    def record_message(
        self,
        inbound: InboundMessage,
        user_id: Optional[str] = None,
        processed: bool = False,
        error: Optional[str] = None,
        entry_date: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Insert the audit row for a message.

        Returns None when another delivery of the same provider message id
        already claimed the row. Content is encrypted once the owning user
        is known; rows for unresolved senders keep plaintext for operators.
        """
        content = inbound.body
        if user_id:
            content = encryption.encrypt(inbound.body, user_id)

        fields = {
            'user_id': user_id,
            'message_content': content,
            'processed': processed,
            'error_message': error,
        }
        if entry_date:
            fields['entry_date'] = entry_date

        try:
            result = self.supabase.table(self.messages_table) \
                .insert(message_row(inbound, **fields)) \
                .execute()
        except APIError as e:
            if is_unique_violation(e):
                logger.info(f"Message {inbound.message_id} already recorded")
                return None
            logger.error(f"Failed to store SMS message: {str(e)}")
            raise

        row = first_row(result)
        if error:
            logger.info(f"Stored message {inbound.message_id} with error: {error}")
        return row

    def mark_processed(self, row_id: str, entry_id: Optional[str] = None) -> None:
        changes = {'processed': True}
        if entry_id:
            changes['entry_id'] = entry_id
        self.supabase.table(self.messages_table) \
            .update(changes) \
            .eq('id', row_id) \
            .execute()

    def mark_failed(self, row_id: str, error: str) -> None:
        """Leave the row unprocessed with the reason, for operator follow-up"""
        try:
            self.supabase.table(self.messages_table) \
                .update({'error_message': error}) \
                .eq('id', row_id) \
                .execute()
        except APIError as e:
            logger.error(f"Failed to record error on message {row_id}: {str(e)}")

    def processing_stats(self, since: datetime) -> Dict[str, Any]:
        """Counts used by the status endpoint"""
        messages = rows(
            self.supabase.table(self.messages_table)
            .select('processed, error_message, received_at')
            .gte('received_at', since.isoformat())
            .execute()
        )
        entries = rows(
            self.supabase.table(ENTRIES_TABLE)
            .select('id')
            .eq('source', 'sms')
            .gte('created_at', since.isoformat())
            .execute()
        )
        total = len(messages)
        unprocessed = sum(1 for m in messages if not m.get('processed'))
        errors = sum(1 for m in messages if m.get('error_message'))
        return {
            'total': total,
            'unprocessed': unprocessed,
            'errors': errors,
            'processed_rate': round((total - unprocessed) / total * 100, 1) if total else None,
            'sms_entries': len(entries),
        }

    def is_retryable(self, row: Dict[str, Any]) -> bool:
        """A delivery that failed mid-processing may be taken over by a provider retry"""
        return not row.get('processed') and row.get('error_message') == PROCESSING_FAILED

    def claim_retry(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Take ownership of a failed row; None if another retry got there first"""
        result = self.supabase.table(self.messages_table) \
            .update({'error_message': None}) \
            .eq('id', row['id']) \
            .eq('error_message', PROCESSING_FAILED) \
            .execute()
        return first_row(result)
