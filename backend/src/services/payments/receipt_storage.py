"""
Payment receipt file storage.

Receipts are written under the configured storage directory with a generated
name. The payment records keep only the public URL path returned by ``save``.
"""

import os
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from src.core.config import get_settings
from src.core.logging import get_logger
from src.database.models.payment import ReceiptType
from src.services.errors import ValidationError

logger = get_logger(__name__)

CONTENT_TYPES: dict[str, tuple[ReceiptType, str]] = {
    "image/jpeg": (ReceiptType.IMAGE, ".jpg"),
    "image/jpg": (ReceiptType.IMAGE, ".jpg"),
    "image/png": (ReceiptType.IMAGE, ".png"),
    "image/webp": (ReceiptType.IMAGE, ".webp"),
    "image/heic": (ReceiptType.IMAGE, ".heic"),
    "application/pdf": (ReceiptType.PDF, ".pdf"),
}


def receipt_type_for(content_type: Optional[str]) -> Optional[ReceiptType]:
    """Receipt type implied by an upload's content type, if accepted."""
    entry = CONTENT_TYPES.get((content_type or "").lower())
    return entry[0] if entry else None


class ReceiptStorage:
    """
    Stores receipt uploads on the local filesystem.

    Attributes:
        directory: Where receipt files are written
        url_prefix: Public path prefix of stored receipts
        max_size: Largest accepted upload in bytes
    """

    def __init__(
        self,
        directory: Optional[str] = None,
        url_prefix: Optional[str] = None,
        max_size: Optional[int] = None,
    ):
        settings = get_settings()
        self.directory = Path(directory or settings.receipt_storage_dir)
        self.url_prefix = url_prefix or settings.receipt_url_prefix
        self.max_size = max_size or settings.max_receipt_size_bytes

    def validate(self, content: bytes, content_type: Optional[str]) -> ReceiptType:
        """
        Check an upload before it is stored.

        Raises:
            ValidationError: If the upload is empty, too large, or not an image or PDF
        """
        if not content:
            raise ValidationError("Receipt file is empty", field="receipt")
        if len(content) > self.max_size:
            raise ValidationError(
                f"Receipt file exceeds {self.max_size} bytes",
                field="receipt",
                size=len(content),
            )
        receipt_type = receipt_type_for(content_type)
        if receipt_type is None:
            raise ValidationError(
                "Receipt must be an image or a PDF",
                field="receipt",
                content_type=content_type,
            )
        return receipt_type

    async def save(
        self,
        content: bytes,
        filename: Optional[str],
        content_type: Optional[str],
    ) -> str:
        """
        Write a receipt and return its public URL path.

        Raises:
            ValidationError: If the upload is rejected by ``validate``
        """
        self.validate(content, content_type)
        _, extension = CONTENT_TYPES[content_type.lower()]
        name = f"{uuid.uuid4().hex}{extension}"

        await aiofiles.os.makedirs(self.directory, exist_ok=True)
        async with aiofiles.open(self.directory / name, "wb") as f:
            await f.write(content)

        url = f"{self.url_prefix}/{name}"
        logger.info(
            "Receipt stored",
            receipt_url=url,
            size=len(content),
            content_type=content_type,
            original_filename=filename,
        )
        return url

    async def delete(self, url: Optional[str]) -> bool:
        """
        Remove a stored receipt, ignoring failures.

        Returns:
            True if a file was removed
        """
        if not url or not url.startswith(f"{self.url_prefix}/"):
            return False

        name = os.path.basename(url)
        try:
            await aiofiles.os.remove(self.directory / name)
        except OSError as e:
            logger.warning(
                "Failed to delete receipt file",
                receipt_url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        logger.info("Receipt deleted", receipt_url=url)
        return True
