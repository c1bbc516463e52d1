# petcare/services/storage.py
"""Local disk storage for medical record and chat attachments, served under /uploads."""
import logging
import os
import uuid
from pathlib import Path
from typing import Iterable, List

from fastapi import UploadFile

from ..config import get_settings
from ..exceptions import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "application/pdf": ".pdf",
}
URL_PREFIX = "/uploads/"
ATTACHMENT_FOLDER = "medical-records"


def upload_root() -> Path:
    return Path(get_settings().upload_dir)


def _validate(files: List[UploadFile]):
    settings = get_settings()
    if not files:
        raise ValidationError("No files uploaded")
    if len(files) > settings.max_upload_files:
        raise ValidationError(f"A maximum of {settings.max_upload_files} files can be uploaded at once")
    for upload in files:
        if upload.content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError("Invalid file type. Only images and PDFs allowed.")


async def save_attachments(files: List[UploadFile], folder: str = ATTACHMENT_FOLDER) -> List[str]:
    """Write uploads to disk and return their public URLs; nothing is kept if any file is rejected."""
    _validate(files)
    max_bytes = get_settings().max_upload_bytes

    payloads = []
    for upload in files:
        content = await upload.read(max_bytes + 1)
        if len(content) > max_bytes:
            raise ValidationError(f"{upload.filename} exceeds the {max_bytes // (1024 * 1024)}MB limit")
        payloads.append((ALLOWED_CONTENT_TYPES[upload.content_type], content))

    target_dir = upload_root() / folder
    os.makedirs(target_dir, exist_ok=True)

    urls = []
    for extension, content in payloads:
        name = f"{uuid.uuid4().hex}{extension}"
        with open(target_dir / name, "wb") as f:
            f.write(content)
        urls.append(f"{URL_PREFIX}{folder}/{name}")
    logger.info(f"Stored {len(urls)} attachment(s) in {target_dir}")
    return urls


def delete_attachments(urls: Iterable[str]) -> int:
    """Remove stored files for the given URLs. URLs outside the upload area are ignored."""
    root = upload_root().resolve()
    removed = 0
    for url in urls:
        if not url or not url.startswith(URL_PREFIX):
            continue
        path = (root / url[len(URL_PREFIX):]).resolve()
        if root not in path.parents:
            logger.warning(f"Refusing to delete attachment outside upload dir: {url}")
            continue
        try:
            path.unlink()
            removed += 1
        except FileNotFoundError:
            logger.info(f"Attachment already removed: {url}")
        except OSError as e:
            logger.error(f"Failed to delete attachment {url}: {e}")
    return removed
