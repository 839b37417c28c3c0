import os
import secrets
import time
from pathlib import Path
from fastapi import APIRouter, Depends, File, UploadFile, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool
import logging

from ember_society.core.config import get_settings
from ember_society.models.user import User
from ember_society.routers.auth import get_current_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/upload", tags=["upload"])

SUPPORTED_MEDIA_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "video/mp4",
    "video/webm",
    "video/ogg",
}


def _stored_name(original: str) -> str:
    stem, ext = os.path.splitext(os.path.basename(original or "upload"))
    stem = "".join(c for c in stem if c.isalnum() or c in "-_") or "upload"
    return f"{stem}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext.lower()}"


@router.post("")
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
):
    settings = get_settings()
    base_content_type = (file.content_type or "").split(";")[0].strip()
    if base_content_type not in SUPPORTED_MEDIA_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Only images and videos are allowed.",
        )

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large (max {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB)",
        )

    upload_dir = Path(settings.UPLOAD_DIR)
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = _stored_name(file.filename)
    await run_in_threadpool((upload_dir / filename).write_bytes, data)

    logger.info(f"User {current_user.id} uploaded {filename} ({base_content_type}, {len(data)} bytes)")
    return {
        "url": str(request.base_url).rstrip("/") + f"/uploads/{filename}",
        "filename": filename,
        "mimetype": base_content_type,
        "size": len(data),
    }
