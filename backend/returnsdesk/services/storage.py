import logging
import uuid
from io import BytesIO
from pathlib import Path
from typing import Tuple

from PIL import Image, UnidentifiedImageError
from fastapi import UploadFile

from returnsdesk.core.config import settings
from returnsdesk.core.errors import InvalidInput

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPES = ("image/png", "image/jpeg", "image/webp", "image/gif")
_PIL_FORMAT_MIME = {"PNG": "image/png", "JPEG": "image/jpeg", "WEBP": "image/webp", "GIF": "image/gif"}


def _detect_image_mime(content: bytes) -> str | None:
    try:
        with Image.open(BytesIO(content)) as img:
            return _PIL_FORMAT_MIME.get((img.format or "").upper())
    except (UnidentifiedImageError, OSError):
        return None


def save_upload(
    file: UploadFile,
    subdir: str,
    allowed_content_types: tuple[str, ...] = IMAGE_CONTENT_TYPES,
    max_bytes: int | None = None,
) -> Tuple[str, str]:
    """Store an uploaded image under ``media_root/subdir`` and return its ``/media/...`` reference."""
    base_root = Path(settings.media_root).resolve()
    dest_root = (base_root / subdir).resolve()
    try:
        dest_root.relative_to(base_root)
    except ValueError:
        raise InvalidInput("Invalid upload destination")
    dest_root.mkdir(parents=True, exist_ok=True)

    limit = settings.return_image_max_bytes if max_bytes is None else max_bytes
    content = file.file.read(limit + 1)
    if len(content) > limit:
        raise InvalidInput("File too large")
    if not file.content_type or file.content_type not in allowed_content_types:
        raise InvalidInput("Invalid file type")
    sniffed = _detect_image_mime(content)
    if not sniffed or sniffed not in allowed_content_types:
        raise InvalidInput("Invalid file type")

    suffix = Path(file.filename or "").suffix.lower() or ".bin"
    destination = dest_root / f"{uuid.uuid4().hex}{suffix}"
    destination.write_bytes(content)
    logger.info("upload_saved", extra={"path": destination.name, "bytes": len(content)})

    rel_path = destination.relative_to(base_root).as_posix()
    return f"/media/{rel_path}", destination.name


def delete_file(reference: str) -> None:
    if not reference.startswith("/media/"):
        return
    path = Path(settings.media_root) / reference.removeprefix("/media/")
    if path.exists():
        path.unlink()


def public_url(reference: str) -> str:
    """Resolve a stored ``/media/...`` reference against the configured base URL."""
    if reference.startswith(("http://", "https://")):
        return reference
    return f"{settings.media_base_url.rstrip('/')}/{reference.lstrip('/')}"
