from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response
import logging

from marketindex.core.config import settings
from marketindex.core.storage import MediaCategory, MediaStorage
from marketindex.deps import get_current_user, get_media_storage
from marketindex.modules.user_management.models.user import User

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/{category}", response_model=dict)
async def upload_media(
    category: MediaCategory,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    storage: MediaStorage = Depends(get_media_storage),
):
    """Upload an asset into the caller's namespace and return its media ref"""
    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty upload")
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.MAX_UPLOAD_SIZE} bytes",
        )

    logger.info(f"📥 [UPLOAD] {file.filename} ({len(content)} bytes) into {category.value} for {current_user.id}")
    media_ref = storage.bind_media(content, current_user.id, category, content_type=file.content_type)
    return {"media_ref": media_ref, "url": storage.resolve(media_ref)}

@router.get("/{media_ref:path}")
def serve_media(media_ref: str, storage: MediaStorage = Depends(get_media_storage)):
    content, content_type = storage.open_media(media_ref)
    return Response(
        content=content,
        media_type=content_type,
        headers={"Cache-Control": "private, max-age=3600"},
    )
