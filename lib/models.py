from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

MESSAGES_TABLE = 'sms_messages'
ENTRIES_TABLE = 'journal_entries'
PHOTOS_TABLE = 'journal_photos'
PROFILES_TABLE = 'profiles'
SUBSCRIBERS_TABLE = 'subscribers'
RATE_LIMITS_TABLE = 'rate_limits'

class EntrySource(str, Enum):
    WEB = 'web'
    SMS = 'sms'

class AttachmentDescriptor(BaseModel):
    """Attachment as described by the provider payload"""
    model_config = ConfigDict(extra='ignore')

    type: Optional[str] = None
    url: Optional[str] = None
    content_type: Optional[str] = None
    file_name: Optional[str] = None

    @property
    def is_image(self) -> bool:
        kind = (self.type or self.content_type or '').lower()
        return kind == 'image' or kind.startswith('image/')

class InboundMessage(BaseModel):
    """Canonical message produced from either payload shape"""
    event_type: str
    message_id: str
    body: str = ''
    from_phone: str
    conversation_id: Optional[str] = None
    attachments: List[AttachmentDescriptor] = Field(default_factory=list)

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

class UserProfile(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    phone_number: Optional[str] = None
    phone_verified: Optional[bool] = False
    timezone: Optional[str] = None

    @property
    def verified(self) -> bool:
        return bool(self.phone_verified)

class SubscriptionState(BaseModel):
    model_config = ConfigDict(extra='ignore')

    user_id: Optional[str] = None
    email: Optional[str] = None
    subscribed: bool = False
    is_trial: bool = False
    trial_end: Optional[datetime] = None

    def has_access(self, now: Optional[datetime] = None) -> bool:
        if self.subscribed:
            return True
        if not self.is_trial or self.trial_end is None:
            return False
        now = now or datetime.now(timezone.utc)
        trial_end = self.trial_end
        if trial_end.tzinfo is None:
            trial_end = trial_end.replace(tzinfo=timezone.utc)
        return trial_end > now

class Attachment(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: Optional[str] = None
    entry_id: str
    file_path: str
    file_name: str
    file_size: int
    mime_type: str

class RateLimitRecord(BaseModel):
    model_config = ConfigDict(extra='ignore')

    identifier: str
    endpoint: str
    attempt_count: int = 0
    window_start: datetime
    blocked_until: Optional[datetime] = None

    @field_validator('window_start', 'blocked_until')
    @classmethod
    def _assume_utc(cls, value):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def message_row(inbound: InboundMessage, **fields: Any) -> Dict[str, Any]:
    """Build an sms_messages row for an inbound message"""
    now = utc_now()
    row = {
        'surge_message_id': inbound.message_id,
        'phone_number': inbound.from_phone,
        'message_content': inbound.body,
        'attachments': [a.model_dump(exclude_none=True) for a in inbound.attachments],
        'entry_date': now.date().isoformat(),
        'received_at': now.isoformat(),
        'processed': False,
    }
    row.update(fields)
    return row
