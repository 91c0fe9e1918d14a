from __future__ import annotations

import logging

from garage_backend.domain.results import RemoveOutcome, StoredObject
from garage_backend.domain.storage_paths import (
    build_object_path,
    parse_object_path,
    path_from_url,
    public_url_for,
    random_object_name,
)
from garage_backend.errors import StorageError, ValidationError

from .object_storage import ObjectNotFoundError, ObjectStorage

logger = logging.getLogger(__name__)


class AttachmentStore:
    """Attachment blobs under the canonical maintenance layout.

    Removal is keyed by path and idempotent: removing a missing object reports
    ``RemoveOutcome.NOT_FOUND`` instead of failing, so deletions can be retried.
    """

    def __init__(self, *, storage: ObjectStorage, public_base_url: str) -> None:
        self._storage = storage
        self._public_base_url = public_base_url

    @property
    def storage(self) -> ObjectStorage:
        return self._storage

    def url_for(self, path: str) -> str:
        return public_url_for(self._public_base_url, path)

    @staticmethod
    def path_from_url(url: str) -> str | None:
        return path_from_url(url)

    async def put(
        self,
        *,
        owner_id: int,
        vehicle_id: str,
        maintenance_id: str | None,
        data: bytes,
        mime_type: str | None,
        filename: str | None = None,
    ) -> StoredObject:
        try:
            path = build_object_path(
                owner_id=owner_id,
                vehicle_id=vehicle_id,
                maintenance_id=maintenance_id,
                name=random_object_name(filename=filename, mime_type=mime_type),
            )
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        try:
            await self._storage.put_bytes(path, data, content_type=mime_type)
        except Exception as exc:
            raise StorageError(f"upload failed for {path}") from exc

        logger.info("stored attachment object path=%s size=%s", path, len(data))
        return StoredObject(url=self.url_for(path), path=path)

    async def remove(self, path: str) -> RemoveOutcome:
        if parse_object_path(path) is None:
            raise ValidationError(f"not a canonical attachment path: {path!r}")

        try:
            existed = await self._storage.delete(path)
        except Exception as exc:
            raise StorageError(f"removal failed for {path}") from exc

        if not existed:
            logger.info("attachment object already absent path=%s", path)
            return RemoveOutcome.NOT_FOUND
        logger.info("removed attachment object path=%s", path)
        return RemoveOutcome.REMOVED

    async def read(self, path: str) -> bytes:
        """Object bytes. Raises ``ObjectNotFoundError`` when nothing is stored at ``path``."""
        if parse_object_path(path) is None:
            raise ValidationError(f"not a canonical attachment path: {path!r}")
        try:
            return await self._storage.get_bytes(path)
        except ObjectNotFoundError:
            raise
        except Exception as exc:
            raise StorageError(f"read failed for {path}") from exc
