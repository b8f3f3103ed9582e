import base64
import binascii
import os
from typing import Optional, Tuple
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.errors import InvalidRequest, NotFound
from db.database import get_async_session
from db.image import Image

router = APIRouter()

EXT_TO_CONTENT_TYPE = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

MIN_IMAGE_BYTES = 100


def check_image(data: bytes, filename: Optional[str], content_type: Optional[str]) -> str:
    """Validate an uploaded image and return the content type to store it under."""
    content_type = (content_type or "").strip().lower()
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
    if content_type and content_type != "application/octet-stream" and not content_type.startswith("image/"):
        raise InvalidRequest("File must be an image")
    if (not content_type or content_type == "application/octet-stream") and ext and ext not in EXT_TO_CONTENT_TYPE:
        raise InvalidRequest("File must be an image")

    if len(data) < MIN_IMAGE_BYTES:
        raise InvalidRequest("Image file appears to be corrupted or too small")
    if len(data) > settings.max_image_bytes:
        raise InvalidRequest(f"Image size must be less than {settings.max_image_bytes // (1024 * 1024)}MB")

    if not content_type or content_type == "application/octet-stream":
        content_type = EXT_TO_CONTENT_TYPE.get(ext, "image/jpeg")
    return content_type


def decode_base64_image(payload: str) -> Tuple[bytes, str]:
    """Decode a base64 image, with or without a `data:<type>;base64,` prefix."""
    content_type = "image/jpeg"
    if "," in payload:
        prefix, payload = payload.split(",", 1)
        if prefix.startswith("data:") and ";" in prefix:
            content_type = prefix.split(";")[0].replace("data:", "").strip() or content_type
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequest("image_base64 is not valid base64") from e
    return data, check_image(data, None, content_type)


@router.get("/serve/{image_id}", response_class=Response)
async def serve_image(
    image_id: UUID,
    db: AsyncSession = Depends(get_async_session),
):
    """Serve image binary by id. No auth required so img src works."""
    result = await db.execute(select(Image).where(Image.id == image_id))
    row = result.scalar_one_or_none()
    if not row:
        raise NotFound("Image not found")
    return Response(content=bytes(row.data), media_type=row.content_type)
