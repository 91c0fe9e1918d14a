from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import FileResponse, Response

from garage_backend.deps import get_attachment_store
from garage_backend.domain.storage_paths import PUBLIC_URL_MARKER, parse_object_path
from garage_backend.integrations.storage.attachment_store import AttachmentStore
from garage_backend.integrations.storage.local_storage import LocalObjectStorage
from garage_backend.integrations.storage.object_storage import ObjectNotFoundError

router = APIRouter()


@router.get(PUBLIC_URL_MARKER + "{path:path}", include_in_schema=False)
async def download_public_object(
    path: str,
    store: AttachmentStore = Depends(get_attachment_store),
) -> Response:
    # Only canonical attachment paths are served; anything else looks missing.
    parsed = parse_object_path(path)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="object not found")

    key = parsed.encode()
    media_type = mimetypes.guess_type(parsed.name)[0] or "application/octet-stream"

    storage = store.storage
    if isinstance(storage, LocalObjectStorage):
        file_path = storage.resolve_path(key)
        if not file_path.is_file():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="object not found")
        return FileResponse(file_path, media_type=media_type)

    try:
        data = await store.read(key)
    except ObjectNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="object not found"
        ) from None
    return Response(content=data, media_type=media_type)
