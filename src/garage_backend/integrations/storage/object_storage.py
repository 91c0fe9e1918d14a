from __future__ import annotations

from typing import Protocol

from garage_backend.config import settings


class ObjectStorage(Protocol):
    async def put_bytes(
        self, key: str, data: bytes, *, content_type: str | None = None
    ) -> None: ...

    async def get_bytes(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> bool:
        """Delete ``key``; returns False when nothing was stored there."""
        ...


class ObjectNotFoundError(LookupError):
    pass


def get_object_storage() -> ObjectStorage:
    backend = settings.storage_backend
    if backend == "auto":
        backend = "s3" if settings.s3_configured() else "local"

    if backend == "s3":
        from .s3_storage import S3ObjectStorage

        return S3ObjectStorage(
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            force_path_style=settings.s3_force_path_style,
        )

    if backend == "supabase":
        from .supabase_storage import SupabaseObjectStorage

        return SupabaseObjectStorage(
            base_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            timeout_seconds=settings.supabase_request_timeout_seconds,
        )

    from .local_storage import LocalObjectStorage

    return LocalObjectStorage(root_dir=settings.attachments_local_dir)
