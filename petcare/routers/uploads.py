# petcare/routers/uploads.py
from typing import List

from fastapi import APIRouter, Depends, File, UploadFile, status

from .. import security
from ..permissions import Action, Principal
from ..services import storage

router = APIRouter(
    prefix="/uploads",
    tags=["Uploads"],
    responses={404: {"description": "Not found"}},
)


@router.post("/attachments", status_code=status.HTTP_201_CREATED)
async def upload_attachments(
    files: List[UploadFile] = File(...),
    principal: Principal = Depends(security.require_capability(Action.upload_attachment)),
):
    """Store medical record attachments (images or PDFs) and return their URLs."""
    urls = await storage.save_attachments(files)
    return {"message": "Files uploaded successfully", "count": len(urls), "urls": urls}
