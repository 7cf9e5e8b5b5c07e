"""Reconcile the two Surge webhook payload shapes into one InboundMessage.

Surge delivers ``{event, properties}``; older webhook subscriptions send
``{type, data}``. Both are parsed into a model once, here, and nothing
downstream looks at the raw payload again.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from lib.error_handler import PayloadTooLargeError, ValidationError
from lib.models import AttachmentDescriptor, InboundMessage

logger = logging.getLogger(__name__)

MESSAGE_RECEIVED = 'message.received'
MAX_MESSAGE_ID_LENGTH = 100
MAX_PHONE_LENGTH = 20
MAX_BODY_LENGTH = 10_000

class _Loose(BaseModel):
    model_config = ConfigDict(extra='ignore')

class Contact(_Loose):
    phone_number: Optional[str] = None

class Conversation(_Loose):
    id: Optional[str] = None
    contact: Optional[Contact] = None

class NewProperties(_Loose):
    id: Optional[str] = None
    content: Optional[str] = None
    contact: Optional[Contact] = None
    conversation: Optional[Conversation] = None
    attachments: Optional[List[AttachmentDescriptor]] = None

class NewFormat(_Loose):
    event: str
    properties: NewProperties

    def to_inbound(self) -> InboundMessage:
        props = self.properties
        return InboundMessage.model_construct(
            event_type=self.event,
            message_id=props.id or '',
            body=props.content or '',
            from_phone=(props.contact.phone_number if props.contact else None) or '',
            conversation_id=props.conversation.id if props.conversation else None,
            attachments=props.attachments or [],
        )

class LegacyData(_Loose):
    id: Optional[str] = None
    body: Optional[str] = None
    conversation: Optional[Conversation] = None
    attachments: Optional[List[AttachmentDescriptor]] = None

class LegacyFormat(_Loose):
    type: str
    data: LegacyData

    def to_inbound(self) -> InboundMessage:
        data = self.data
        conversation = data.conversation
        contact = conversation.contact if conversation else None
        return InboundMessage.model_construct(
            event_type=self.type,
            message_id=data.id or '',
            body=data.body or '',
            from_phone=(contact.phone_number if contact else None) or '',
            conversation_id=conversation.id if conversation else None,
            attachments=data.attachments or [],
        )

Payload = Union[NewFormat, LegacyFormat]

@dataclass
class NormalizedPayload:
    """Either a message to process or a reason to ignore the delivery"""
    message: Optional[InboundMessage] = None
    ignored_reason: Optional[str] = None

    @property
    def ignored(self) -> bool:
        return self.message is None

def detect_shape(data: Dict[str, Any]) -> Optional[Tuple[Type[BaseModel], Any]]:
    """Return the payload model and the raw event type, or None for unknown shapes"""
    if not isinstance(data, dict):
        raise ValidationError("Payload must be a JSON object")
    if 'event' in data and 'properties' in data:
        return NewFormat, data.get('event')
    if 'type' in data and 'data' in data:
        return LegacyFormat, data.get('type')
    return None

def parse_payload(data: Dict[str, Any], model: Type[BaseModel]) -> Payload:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed payload: {e.error_count()} invalid field(s)")

def validate_message(message: InboundMessage, max_body_length: int = MAX_BODY_LENGTH) -> InboundMessage:
    if not message.message_id:
        raise ValidationError("Missing message id")
    if len(message.message_id) > MAX_MESSAGE_ID_LENGTH:
        raise ValidationError("Message id too long")
    if not message.from_phone:
        raise ValidationError("Missing sender phone number")
    if len(message.from_phone) > MAX_PHONE_LENGTH:
        raise ValidationError("Phone number too long")
    if not message.body.strip() and not message.attachments:
        raise ValidationError("Message has no content")
    if len(message.body) > max_body_length:
        truncated = message.model_copy(update={'body': message.body[:max_body_length]})
        raise PayloadTooLargeError(
            f"Message body exceeds {max_body_length} characters",
            inbound=truncated
        )
    return message

def normalize(data: Dict[str, Any], max_body_length: int = MAX_BODY_LENGTH) -> NormalizedPayload:
    shape = detect_shape(data)
    if shape is None:
        logger.info("Ignoring webhook with unrecognized shape")
        return NormalizedPayload(ignored_reason='unrecognized payload')

    model, event_type = shape
    if event_type != MESSAGE_RECEIVED:
        logger.info(f"Ignoring non-message event: {event_type}")
        return NormalizedPayload(ignored_reason=f"event {event_type}")

    message = parse_payload(data, model).to_inbound()
    return NormalizedPayload(message=validate_message(message, max_body_length))
