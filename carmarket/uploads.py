# carmarket/uploads.py
import logging
from typing import List

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from .config import config
from .models import Agency
from .routes_agency import require_approved_agency

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/uploads", tags=["uploads"])

ALLOWED_IMAGE_EXTS = {"jpg", "jpeg", "png", "webp"}
MAX_FILES = 10

cloudinary.config(
    cloud_name=config.CLOUDINARY_CLOUD_NAME,
    api_key=config.CLOUDINARY_API_KEY,
    api_secret=config.CLOUDINARY_API_SECRET,
    secure=True,
)


def file_ext(name: str) -> str:
    name = name or ""
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower().strip()


@router.post("/car-images")
def upload_car_images(
    files: List[UploadFile] = File(...),
    agency: Agency = Depends(require_approved_agency),
):
    if not config.CLOUDINARY_CLOUD_NAME:
        raise HTTPException(status_code=503, detail="Image uploads are not configured")
    if len(files) > MAX_FILES:
        raise HTTPException(status_code=400, detail=f"At most {MAX_FILES} images per upload")
    for f in files:
        if file_ext(f.filename) not in ALLOWED_IMAGE_EXTS:
            raise HTTPException(status_code=400, detail=f"Unsupported file type: {f.filename}")

    urls = []
    for f in files:
        try:
            up = cloudinary.uploader.upload(
                f.file,
                folder=f"carmarket/cars/{agency.id}",
                resource_type="image",
                transformation=[{"quality": "auto:good"}],
            )
        except cloudinary.exceptions.Error as e:
            logger.error("cloudinary upload failed for agency id=%s: %s", agency.id, e)
            raise HTTPException(status_code=502, detail="Image upload failed")
        url = (up or {}).get("secure_url") or (up or {}).get("url")
        if url:
            urls.append(url)

    return {"success": True, "urls": urls}
