"""
Local storage for uploaded images.

Files are written below ``<MEDIA_ROOT>/uploads/<folder>/`` and referenced in
documents by their path relative to ``MEDIA_ROOT`` (``uploads/<folder>/<name>``),
which is also the URL path they are served from.
"""
import logging
import os
import random
import shutil
import time
from typing import Optional

from fastapi import HTTPException, Request, UploadFile

from config import ALLOWED_IMAGE_TYPES, MAX_UPLOAD_SIZE, MEDIA_ROOT

logger = logging.getLogger(__name__)

UPLOAD_FOLDERS = ("categories", "products", "payment-proofs")


def uploads_root() -> str:
    return os.path.join(MEDIA_ROOT, "uploads")


def ensure_upload_dirs():
    for folder in UPLOAD_FOLDERS:
        os.makedirs(os.path.join(uploads_root(), folder), exist_ok=True)


def _file_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    file.file.seek(0, os.SEEK_END)
    size = file.file.tell()
    file.file.seek(0)
    return size


def save_upload(file: Optional[UploadFile], folder: str = "general") -> Optional[str]:
    if file is None or not file.filename:
        return None

    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Please upload an image (JPEG, PNG, GIF, WEBP)",
        )
    if _file_size(file) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size is {MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
        )

    upload_dir = os.path.join(uploads_root(), folder)
    os.makedirs(upload_dir, exist_ok=True)

    extension = os.path.splitext(file.filename)[1].lower()
    file_name = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}{extension}"
    with open(os.path.join(upload_dir, file_name), "wb") as out:
        shutil.copyfileobj(file.file, out)

    return f"uploads/{folder}/{file_name}"


def delete_file(relative_path: Optional[str]):
    if not relative_path:
        return
    full_path = os.path.join(MEDIA_ROOT, relative_path)
    if os.path.exists(full_path):
        try:
            os.remove(full_path)
            logger.info("Deleted file %s", relative_path)
        except OSError as e:
            logger.error("Error deleting file %s: %s", relative_path, e)


def absolute_url(request: Request, relative_path: Optional[str]) -> Optional[str]:
    if not relative_path:
        return None
    return f"{str(request.base_url).rstrip('/')}/{relative_path}"


def with_image_url(request: Request, doc: dict, field: str = "image") -> dict:
    doc[field] = absolute_url(request, doc.get(field))
    return doc
