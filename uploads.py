import logging
import os
import secrets
import time

from fastapi import HTTPException, UploadFile

import config

logger = logging.getLogger(__name__)


def allowed_types(raw: str) -> tuple[set, set]:
    """Split ALLOWED_FILE_TYPES into (mime types, extensions); empty means the image defaults."""
    items = [item.strip().lower() for item in raw.split(",") if item.strip()]
    if not items:
        return set(config.DEFAULT_MIME_TYPES), set(config.DEFAULT_EXTENSIONS)
    mime_types, extensions = set(), set()
    for item in items:
        if "/" in item:
            mime_types.add(item)
        else:
            extensions.add(item if item.startswith(".") else f".{item}")
    return mime_types, extensions


def save_upload(file: UploadFile, field: str = "image") -> str:
    """Validate and store an uploaded file, returning its public /uploads URL."""
    mime_types, extensions = allowed_types(config.ALLOWED_FILE_TYPES)
    ext = os.path.splitext(file.filename or "")[1].lower()
    mime = (file.content_type or "").lower()
    if (extensions and ext not in extensions) or (mime_types and mime not in mime_types):
        raise HTTPException(status_code=400, detail="File type is not allowed")

    content = file.file.read(config.MAX_FILE_SIZE + 1)
    if len(content) > config.MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {config.MAX_FILE_SIZE} bytes")
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")

    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    filename = f"{field}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"
    with open(os.path.join(config.UPLOAD_DIR, filename), "wb") as f:
        f.write(content)
    logger.info(f"Stored upload {filename} ({len(content)} bytes)")
    return f"/uploads/{filename}"
