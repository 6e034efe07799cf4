import logging
import uuid
from pathlib import Path
from typing import Protocol

from recruitment.config import settings
from recruitment.schemas import Attachment, UploadedFile

logger = logging.getLogger(__name__)

# Files are served statically at /uploads/{storageName}
UPLOADS_URL_PREFIX = "/uploads"


class AttachmentStore(Protocol):
    def store(self, field_id: str, upload: UploadedFile) -> Attachment: ...

    def delete(self, attachment: Attachment) -> None: ...


class LocalAttachmentStore:
    """Keeps attachment bytes on local disk under UPLOAD_DIR."""

    def __init__(self, upload_dir: str = settings.UPLOAD_DIR):
        self.upload_dir = Path(upload_dir)

    def store(self, field_id: str, upload: UploadedFile) -> Attachment:
        self.upload_dir.mkdir(parents=True, exist_ok=True)

        # Generate a unique filename to avoid conflicts
        file_extension = Path(upload.filename).suffix if upload.filename else ""
        unique_filename = f"{uuid.uuid4().hex}{file_extension}"
        file_path = self.upload_dir / unique_filename

        try:
            file_path.write_bytes(upload.content)
        except OSError:
            # Clean up partial file on error
            file_path.unlink(missing_ok=True)
            raise

        logger.info(f"Stored attachment {unique_filename} ({upload.sizeBytes} bytes) for field {field_id}")
        return Attachment(
            fieldId=field_id,
            originalName=upload.filename or "unknown",
            storageName=unique_filename,
            sizeBytes=upload.sizeBytes,
            contentType=upload.contentType,
            url=f"{UPLOADS_URL_PREFIX}/{unique_filename}",
        )

    def delete(self, attachment: Attachment) -> None:
        file_path = self.upload_dir / Path(attachment.storageName).name
        if not file_path.exists():
            # already deleted or never existed
            return
        file_path.unlink()
        logger.info(f"Deleted attachment {attachment.storageName}")


attachment_store = LocalAttachmentStore()


def get_attachment_store() -> AttachmentStore:
    return attachment_store
