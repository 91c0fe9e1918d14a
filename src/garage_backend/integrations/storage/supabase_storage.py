"""Supabase Storage REST backend.

The first segment of a storage key names the bucket, so
``{base_url}/storage/v1/object/public/{key}`` is the object's public URL.
"""

from __future__ import annotations

import httpx

from .object_storage import ObjectNotFoundError


class SupabaseStorageError(RuntimeError):
    pass


def _split_bucket(key: str) -> tuple[str, str]:
    bucket, sep, name = key.partition("/")
    if not sep or not bucket or not name:
        raise ValueError("storage key must be '{bucket}/{object path}'")
    return bucket, name


class SupabaseObjectStorage:
    def __init__(
        self,
        *,
        base_url: str,
        service_key: str,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key.strip()
        self._timeout = timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self._service_key:
            raise SupabaseStorageError("SUPABASE_SERVICE_KEY is empty")
        return {
            "Authorization": f"Bearer {self._service_key}",
            "apikey": self._service_key,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        bucket, name = _split_bucket(key)
        url = f"{self._base_url}/storage/v1/object/{bucket}/{name}"
        headers = self._headers()
        headers["x-upsert"] = "true"
        headers["Content-Type"] = content_type or "application/octet-stream"
        async with self._client() as client:
            resp = await client.post(url, headers=headers, content=data)
        if 200 <= resp.status_code < 300:
            return
        raise SupabaseStorageError(f"Upload failed. {resp.status_code} {resp.text}")

    async def get_bytes(self, key: str) -> bytes:
        bucket, name = _split_bucket(key)
        url = f"{self._base_url}/storage/v1/object/{bucket}/{name}"
        async with self._client() as client:
            resp = await client.get(url, headers=self._headers())
        if resp.status_code == 404:
            raise ObjectNotFoundError(key)
        if 200 <= resp.status_code < 300:
            return resp.content
        raise SupabaseStorageError(f"Download failed. {resp.status_code} {resp.text}")

    async def delete(self, key: str) -> bool:
        bucket, name = _split_bucket(key)
        url = f"{self._base_url}/storage/v1/object/{bucket}"
        async with self._client() as client:
            resp = await client.request(
                "DELETE", url, headers=self._headers(), json={"prefixes": [name]}
            )
        if resp.status_code == 404:
            return False
        if 200 <= resp.status_code < 300:
            data = resp.json()
            # The API lists the objects it actually removed.
            return isinstance(data, list) and len(data) > 0
        raise SupabaseStorageError(f"Delete failed. {resp.status_code} {resp.text}")
