import os
import uuid
import shutil
import logging
import mimetypes
from contextlib import contextmanager
from pathlib import Path
from fastapi import UploadFile, HTTPException, status

from farmhub.errors import validation_error

logger = logging.getLogger(__name__)

# ======================================================
# GLOBAL UPLOAD RULES (SINGLE SOURCE OF TRUTH)
# ======================================================

PUBLIC_DIR = Path(os.getenv("PUBLIC_DIR", "public"))

PRODUCT_IMAGES = "productImages"
USER_IMAGES = "userImage"
STORY_IMAGES = "success_stories"
COMMUNITY_FILES = "communityfiles"

ALLOWED_FOLDERS = {
    PRODUCT_IMAGES,
    USER_IMAGES,
    STORY_IMAGES,
    COMMUNITY_FILES,
}

IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

ATTACHMENT_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif",
    ".pdf", ".doc", ".docx", ".txt",
    ".mp4", ".avi", ".mov",
    ".mp3", ".wav",
}

MAX_IMAGE_SIZE = 5 * 1024 * 1024        # 5MB
MAX_ATTACHMENT_SIZE = 10 * 1024 * 1024  # 10MB


def ensure_upload_dirs() -> None:
    for folder in ALLOWED_FOLDERS:
        (PUBLIC_DIR / folder).mkdir(parents=True, exist_ok=True)


def _file_size(file: UploadFile) -> int:
    file.file.seek(0, 2)
    size = file.file.tell()
    file.file.seek(0)
    return size


def _extension(file: UploadFile) -> str:
    return Path(file.filename or "").suffix.lower()


def file_type_for(mime_type: str) -> str:
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    return "document"


# ======================================================
# VALIDATION
# ======================================================

def validate_image(file: UploadFile, field: str = "image", max_size: int = MAX_IMAGE_SIZE) -> int:
    content_type = (file.content_type or "").lower().strip()
    if content_type not in IMAGE_TYPES:
        raise validation_error(
            field,
            f"Unsupported image type '{content_type}'. Allowed: JPEG, PNG, WebP, GIF.",
        )

    size = _file_size(file)
    if size == 0:
        raise validation_error(field, "Uploaded file is empty")
    if size > max_size:
        raise validation_error(
            field,
            f"Image must not be larger than {max_size // (1024 * 1024)}MB",
        )
    return size


def validate_attachment(file: UploadFile, field: str = "attachments") -> int:
    ext = _extension(file)
    if ext not in ATTACHMENT_EXTENSIONS:
        raise validation_error(
            field,
            f"File '{file.filename}' must be one of: "
            + ", ".join(sorted(e.lstrip(".") for e in ATTACHMENT_EXTENSIONS)),
        )

    size = _file_size(file)
    if size > MAX_ATTACHMENT_SIZE:
        raise validation_error(
            field,
            f"File '{file.filename}' must not be larger than 10MB",
        )
    return size


def guess_mime_type(file: UploadFile) -> str:
    content_type = (file.content_type or "").lower().strip()
    if content_type and content_type != "application/octet-stream":
        return content_type
    guessed, _ = mimetypes.guess_type(file.filename or "")
    return guessed or "application/octet-stream"


# ======================================================
# STORAGE
# ======================================================

def save_upload(file: UploadFile, folder: str) -> str:
    """
    Copies the upload into PUBLIC_DIR/<folder> under a unique name and
    returns the path relative to PUBLIC_DIR (what the API stores and returns).
    """

    if folder not in ALLOWED_FOLDERS:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Invalid upload destination: '{folder}'",
        )

    ext = _extension(file) or IMAGE_TYPES.get((file.content_type or "").lower(), "")
    filename = f"{uuid.uuid4().hex}{ext}"

    target_dir = PUBLIC_DIR / folder
    target_dir.mkdir(parents=True, exist_ok=True)

    try:
        file.file.seek(0)
        with open(target_dir / filename, "wb") as buffer:
            shutil.copyfileobj(file.file, buffer)
    except OSError:
        logger.exception("Upload write failed | folder=%s | filename=%s", folder, file.filename)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store uploaded file",
        )

    relative = f"{folder}/{filename}"
    logger.info("Upload stored | path=%s | original=%s", relative, file.filename)
    return relative


def delete_upload(relative_path: str | None) -> None:
    """Best effort: a missing or locked file never blocks the request."""
    if not relative_path:
        return

    path = (PUBLIC_DIR / relative_path).resolve()
    root = PUBLIC_DIR.resolve()
    if root not in path.parents:
        logger.warning("Refusing to delete outside public dir | path=%s", relative_path)
        return

    try:
        if path.is_file():
            path.unlink()
    except OSError as e:
        logger.warning("Failed to delete upload | path=%s | error=%s", relative_path, str(e))


@contextmanager
def discard_on_failure():
    """
    Yields a list the caller appends stored paths to. If the block raises
    (a later upload in a batch, or the commit), those files are removed
    before the error propagates, so no file outlives its row.
    """
    stored: list[str] = []
    try:
        yield stored
    except Exception:
        if stored:
            logger.warning("Discarding uploads after failed write | paths=%s", stored)
        for path in stored:
            delete_upload(path)
        raise
