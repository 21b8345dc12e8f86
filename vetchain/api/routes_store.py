"""
Content Store API Routes

Server-side proxy to the pinning service, so the pinning credentials
never reach the browser.
"""

from typing import Any, Optional

from fastapi import APIRouter, Body, File, HTTPException, Request, UploadFile
from pydantic import BaseModel

from ..config import uri_for_cid


router = APIRouter(prefix="/api/ipfs", tags=["Content Store"])


class PinResponse(BaseModel):
    cid: str
    uri: str


def get_store(request: Request):
    """Get content store from app state."""
    return request.app.state.runtime.store


@router.post("/upload", response_model=PinResponse)
async def upload_file(request: Request, file: Optional[UploadFile] = File(None)):
    """
    Pin an uploaded file.

    Returns 400 if no file was sent.
    """
    if file is None:
        raise HTTPException(status_code=400, detail="No file provided")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    cid = await get_store(request).put_bytes(
        content,
        filename=file.filename or "file",
        content_type=file.content_type or "application/octet-stream",
    )
    return PinResponse(cid=cid, uri=uri_for_cid(cid))


@router.post("/json", response_model=PinResponse)
async def upload_json(request: Request, document: dict[str, Any] = Body(...)):
    """Pin a JSON document."""
    cid = await get_store(request).put_json(document)
    return PinResponse(cid=cid, uri=uri_for_cid(cid))
