"""Serves product files behind signed, expiring URLs."""

from fastapi import APIRouter, Query
from fastapi.responses import FileResponse

from storefront.core.exceptions import ForbiddenError, NotFoundError
from storefront.services.storage_service import get_storage

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/{file_path:path}")
async def serve_file(
    file_path: str,
    expires: int = Query(...),
    signature: str = Query(...),
):
    storage = get_storage()
    if not storage.verify_signature(file_path, expires, signature):
        raise ForbiddenError("Invalid or expired download link")
    path = storage.open_path(file_path)
    if path is None:
        raise NotFoundError("File not found")
    return FileResponse(str(path), filename=path.name)
