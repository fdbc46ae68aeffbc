"""Image staging routes."""

from fastapi import APIRouter, Depends, File, UploadFile, status

from ..media.image_store import ImageStore
from .schemas import ImageUploadResponse
from .state import get_image_store

router = APIRouter(prefix="/api/images", tags=["images"])


@router.post("", response_model=ImageUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    file: UploadFile = File(...),
    store: ImageStore = Depends(get_image_store),
) -> ImageUploadResponse:
    image_id = await store.stage_upload(file)
    return ImageUploadResponse(image_id=image_id)
