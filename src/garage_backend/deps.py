from __future__ import annotations

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from garage_backend.config import settings
from garage_backend.db import get_session
from garage_backend.integrations.storage.attachment_store import AttachmentStore
from garage_backend.integrations.storage.object_storage import ObjectStorage, get_object_storage
from garage_backend.models import User
from garage_backend.repositories.attachment_ledger import AttachmentLedger
from garage_backend.repositories.maintenance_repo import MaintenanceRepository
from garage_backend.services.lifecycle_coordinator import LifecycleCoordinator

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    # Dedicated session so the lifecycle services own the request-scoped one.
    session: AsyncSession = Depends(get_session, use_cache=False),
) -> User:
    raw_token = creds.credentials if creds is not None else None
    if not raw_token or not raw_token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing token")

    token = raw_token.strip()
    user = (await session.exec(select(User).where(User.api_token == token))).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="user disabled")
    if user.id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user missing id"
        )
    return user


async def get_owner_id(user: User = Depends(get_current_user)) -> int:
    if user.id is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="user missing id"
        )
    return int(user.id)


def get_attachment_store(
    storage: ObjectStorage = Depends(get_object_storage),
) -> AttachmentStore:
    return AttachmentStore(storage=storage, public_base_url=settings.storage_public_base_url)


def get_coordinator(
    session: AsyncSession = Depends(get_session),
    store: AttachmentStore = Depends(get_attachment_store),
) -> LifecycleCoordinator:
    return LifecycleCoordinator(
        store=store,
        records=MaintenanceRepository(session),
        ledger=AttachmentLedger(session),
        max_upload_bytes=int(settings.attachments_max_size_bytes),
        upload_concurrency=int(settings.attachments_upload_concurrency),
    )
