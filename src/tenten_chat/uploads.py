"""Pending attachments and the upload collaborator contract."""

from __future__ import annotations

import logging
import mimetypes
import time
import uuid
from pathlib import Path
from typing import Protocol

from tenten_chat.errors import UploadError
from tenten_chat.types import PendingAttachment

_logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class Uploader(Protocol):
    """Stores an image somewhere publicly reachable and returns its reference."""

    async def upload(self, path: Path) -> PendingAttachment: ...


def storage_name(filename: str, now: float | None = None) -> str:
    """Unique object name that keeps the original extension."""
    ts = int((now if now is not None else time.time()) * 1000)
    ext = Path(filename).suffix.lstrip(".") or "bin"
    return f"{ts}-{uuid.uuid4().hex[:10]}.{ext}"


def validate_image(filename: str, size: int, content_type: str | None = None) -> None:
    """Raise ``UploadError`` unless the file is an image of at most 10 MB."""
    content_type = content_type or mimetypes.guess_type(filename)[0] or ""
    if not content_type.startswith("image/"):
        raise UploadError(f"{filename}: please upload an image file")
    if size > MAX_UPLOAD_BYTES:
        raise UploadError(f"{filename}: please upload an image smaller than 10MB")


def attachment_from_url(url: str, name: str | None = None, size: int = 0) -> PendingAttachment:
    """Reference an image that is already hosted."""
    return PendingAttachment(
        id=url,
        url=url,
        name=name or url.rsplit("/", 1)[-1] or url,
        size=size,
    )


class PendingAttachments:
    """Uploaded-but-unsent images, consumed on submission."""

    def __init__(self) -> None:
        self._items: list[PendingAttachment] = []

    def add(self, attachment: PendingAttachment) -> None:
        self._items.append(attachment)

    def remove(self, attachment_id: str) -> None:
        self._items = [a for a in self._items if a.id != attachment_id]

    def take(self) -> tuple[PendingAttachment, ...]:
        """Return all pending attachments and clear the list."""
        items, self._items = tuple(self._items), []
        return items

    def __len__(self) -> int:
        return len(self._items)

    async def upload(self, uploader: Uploader, path: Path) -> PendingAttachment | None:
        """Validate and upload *path*; failures are logged and return None."""
        try:
            validate_image(path.name, path.stat().st_size)
            attachment = await uploader.upload(path)
        except (UploadError, OSError) as e:
            _logger.warning("Upload failed: %s", e)
            return None
        self.add(attachment)
        return attachment
