import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from app.errors import InvalidInput, MessagingError

logger = logging.getLogger(__name__)

VOICE_MIME_TYPES = {
    "audio/mpeg",   # mp3
    "audio/mp4",    # m4a
    "audio/m4a",
    "audio/x-m4a",
    "audio/aac",
    "audio/wav",
    "audio/webm",
    "audio/ogg",
    "video/mp4",
}

IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

CHUNK_SIZE = 1024 * 1024


class PayloadTooLarge(MessagingError):
    status_code = 413
    code = "payload_too_large"


@dataclass
class StoredFile:
    path: str
    original_filename: str
    size: int
    mime_type: str


class LocalFileStore:
    """Uploads on local disk under ``root/<subdir>/<uuid><ext>``."""

    def __init__(self, root: str):
        self.root = Path(root)

    def ensure_dir(self, subdir: str = "") -> Path:
        path = self.root / subdir if subdir else self.root
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def save(
        self,
        upload: UploadFile,
        allowed_types: set[str],
        max_bytes: int,
        subdir: str = "",
    ) -> StoredFile:
        content_type = upload.content_type or ""
        if content_type not in allowed_types:
            raise InvalidInput(f"File type not allowed: {content_type or 'unknown'}")

        ext = Path(upload.filename or "").suffix.lower()
        final_path = self.ensure_dir(subdir) / f"{uuid.uuid4()}{ext}"

        total = 0
        with final_path.open("wb") as handle:
            while True:
                chunk = await upload.read(CHUNK_SIZE)
                if not chunk:
                    break
                total += len(chunk)
                if total > max_bytes:
                    handle.close()
                    os.remove(final_path)
                    raise PayloadTooLarge(f"File exceeds the {max_bytes // (1024 * 1024)} MB limit")
                handle.write(chunk)
        await upload.close()

        if total == 0:
            os.remove(final_path)
            raise InvalidInput("Uploaded file is empty")

        return StoredFile(
            path=str(final_path),
            original_filename=upload.filename or final_path.name,
            size=total,
            mime_type=content_type,
        )

    async def unlink(self, path: Optional[str]) -> bool:
        """Remove a stored file. Failures are logged, never raised."""
        if not path:
            return False
        try:
            await asyncio.to_thread(Path(path).unlink, missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to remove file {path}: {e}")
            return False
        return True

    async def unlink_many(self, paths) -> None:
        for path in paths:
            await self.unlink(path)

    def exists(self, path: Optional[str]) -> bool:
        return bool(path) and Path(path).is_file()
