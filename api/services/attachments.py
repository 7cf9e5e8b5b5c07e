import logging
import time
from typing import List, Optional

import requests

from lib.config import Settings
from lib.database import first_row
from lib.error_handler import ErrorHandler, TransientError
from lib.models import PHOTOS_TABLE, Attachment, AttachmentDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = 'image/jpeg'

class AttachmentService:
    """Copies photo attachments into storage and links them to an entry"""

    def __init__(self, supabase_client, settings: Settings, session: Optional[requests.Session] = None):
        self.supabase = supabase_client
        self.settings = settings
        self.session = session or requests.Session()
        self.bucket = settings.photo_bucket

    def ingest(self, user_id: str, entry_id: str, attachments: List[AttachmentDescriptor]) -> List[Attachment]:
        """Store every photo that can be fetched. One failure never affects the others."""
        stored = []
        for index, descriptor in enumerate(attachments):
            if not descriptor.is_image:
                logger.info(f"Skipping non-image attachment of type {descriptor.type or descriptor.content_type}")
                continue
            if not descriptor.url or not descriptor.url.startswith(('http://', 'https://')):
                logger.info("Skipping attachment without a fetchable URL")
                continue
            try:
                stored.append(self._ingest_one(user_id, entry_id, descriptor, index))
            except TransientError as e:
                ErrorHandler.handle_transient_error(e, f"Photo attachment {index}")
        if attachments:
            logger.info(f"Stored {len(stored)} of {len(attachments)} attachments for entry {entry_id}")
        return stored

    def _ingest_one(self, user_id: str, entry_id: str, descriptor: AttachmentDescriptor, index: int) -> Attachment:
        data, mime_type = self._download(descriptor)
        extension = self._get_extension_from_content_type(mime_type)
        stamp = int(time.time() * 1000)
        path = f"{user_id}/{entry_id}/{stamp}-{index}.{extension}"

        try:
            self.supabase.storage.from_(self.bucket).upload(
                path=path,
                file=data,
                file_options={'content-type': mime_type}
            )
        except Exception as e:
            raise TransientError(f"Upload of {path} failed: {str(e)}")

        attachment = Attachment(
            entry_id=entry_id,
            file_path=path,
            file_name=descriptor.file_name or f"sms_photo_{stamp}.{extension}",
            file_size=len(data),
            mime_type=mime_type,
        )
        try:
            result = self.supabase.table(PHOTOS_TABLE) \
                .insert(attachment.model_dump(exclude_none=True)) \
                .execute()
            row = first_row(result)
        except Exception as e:
            raise TransientError(f"Saving photo record for {path} failed: {str(e)}")

        if row:
            attachment.id = row.get('id')
        logger.info(f"Photo uploaded and saved: {path}")
        return attachment

    def _download(self, descriptor: AttachmentDescriptor):
        limit = self.settings.max_attachment_bytes
        try:
            response = self.session.get(
                descriptor.url,
                timeout=self.settings.http_timeout_seconds,
                stream=True
            )
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Failed to download attachment: {str(e)}")

        try:
            response.raise_for_status()
            declared = response.headers.get('Content-Length')
            if declared and declared.isdigit() and int(declared) > limit:
                raise TransientError(f"Attachment too large ({declared} bytes)")
            data = bytearray()
            for chunk in response.iter_content(chunk_size=64 * 1024):
                data.extend(chunk)
                if len(data) > limit:
                    raise TransientError(f"Attachment exceeds {limit} bytes")
        except requests.exceptions.RequestException as e:
            raise TransientError(f"Failed to download attachment: {str(e)}")
        finally:
            response.close()

        if not data:
            raise TransientError("Downloaded attachment is empty")
        data = bytes(data)

        content_type = (response.headers.get('Content-Type') or '').split(';')[0].strip().lower()
        if not content_type.startswith('image/'):
            content_type = (descriptor.content_type or '').lower()
        mime_type = content_type if content_type.startswith('image/') else DEFAULT_MIME_TYPE
        return data, mime_type

    def _get_extension_from_content_type(self, content_type: str) -> str:
        content_type_map = {
            'image/jpeg': 'jpg',
            'image/jpg': 'jpg',
            'image/png': 'png',
            'image/gif': 'gif',
            'image/webp': 'webp',
            'image/heic': 'heic',
            'image/heif': 'heif',
        }
        return content_type_map.get(content_type, 'jpg')
