from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import date

import anyio
import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel.ext.asyncio.session import AsyncSession

from garage_backend.db import session_scope
from garage_backend.domain.results import RemoveOutcome, StagedFile
from garage_backend.errors import LedgerError, NotFoundError, StorageError, ValidationError
from garage_backend.integrations.storage.attachment_store import AttachmentStore
from garage_backend.models import Maintenance, MaintenanceFile, User
from garage_backend.repositories.attachment_ledger import AttachmentLedger
from garage_backend.repositories.maintenance_repo import MaintenanceRepository
from garage_backend.services.lifecycle_coordinator import LifecycleCoordinator, UploadInput

_FAIL = b"FAIL"


class _MemoryStorage:
    """In-memory object storage with switchable failures."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.delete_calls: list[str] = []
        self.fail_delete: set[str] = set()
        self.fail_all_deletes = False
        self.active = 0
        self.max_active = 0
        self.put_delay = 0.0

    async def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        _ = content_type
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.put_delay:
                await anyio.sleep(self.put_delay)
            if data == _FAIL:
                raise OSError("upload rejected")
            self.objects[key] = data
        finally:
            self.active -= 1

    async def get_bytes(self, key: str) -> bytes:
        return self.objects[key]

    async def delete(self, key: str) -> bool:
        self.delete_calls.append(key)
        if self.fail_all_deletes or key in self.fail_delete:
            raise OSError("storage unavailable")
        return self.objects.pop(key, None) is not None


class _FlakyLedger(AttachmentLedger):
    def __init__(self, session) -> None:  # type: ignore[no-untyped-def]
        super().__init__(session)
        self.fail_urls: set[str] = set()

    async def add(self, *, maintenance_id, owner_id, url, uploaded_at=None):  # type: ignore[no-untyped-def,override]
        if url in self.fail_urls:
            raise LedgerError(f"could not register attachment {url}")
        return await super().add(
            maintenance_id=maintenance_id, owner_id=owner_id, url=url, uploaded_at=uploaded_at
        )


@dataclass
class _Env:
    coordinator: LifecycleCoordinator
    session: AsyncSession
    storage: _MemoryStorage
    store: AttachmentStore
    records: MaintenanceRepository
    ledger: _FlakyLedger
    alice: int
    bob: int


@pytest.fixture
async def env(anyio_backend: object) -> AsyncGenerator[_Env, None]:
    _ = anyio_backend
    async with session_scope() as session:
        a = User(username="alice", api_token="tok-a")
        b = User(username="bob", api_token="tok-b")
        session.add(a)
        session.add(b)
        await session.commit()
        await session.refresh(a)
        await session.refresh(b)
        assert a.id is not None and b.id is not None

        storage = _MemoryStorage()
        store = AttachmentStore(storage=storage, public_base_url="http://test")
        records = MaintenanceRepository(session)
        ledger = _FlakyLedger(session)
        coordinator = LifecycleCoordinator(
            store=store,
            records=records,
            ledger=ledger,
            max_upload_bytes=1024,
            upload_concurrency=2,
        )
        yield _Env(
            coordinator=coordinator,
            session=session,
            storage=storage,
            store=store,
            records=records,
            ledger=ledger,
            alice=int(a.id),
            bob=int(b.id),
        )


def _fields(**overrides: object) -> dict[str, object]:
    fields: dict[str, object] = {
        "title": "Oil change",
        "maintenance_type": "oil",
        "date_performed": date(2026, 3, 1),
    }
    fields.update(overrides)
    return fields


async def _stage(
    env: _Env,
    *payloads: bytes,
    vehicle_id: str = "car-1",
    maintenance_id: str | None = None,
) -> list[StagedFile]:
    batch = await env.coordinator.stage_uploads(
        owner_id=env.alice,
        vehicle_id=vehicle_id,
        maintenance_id=maintenance_id,
        files=[
            UploadInput(data=p, mime_type="image/jpeg", filename=f"photo{i}.jpg")
            for i, p in enumerate(payloads)
        ],
    )
    return batch.staged


async def _rows(env: _Env, record: Maintenance) -> list[MaintenanceFile]:
    return await env.ledger.list_for_maintenance(maintenance_id=record.id, owner_id=env.alice)


def _fail_commits(monkeypatch: pytest.MonkeyPatch, session: AsyncSession, *numbers: int) -> None:
    """Make the given session commits (1-based, counted from now) fail like a locked database."""
    real_commit = session.commit
    calls = 0

    async def commit() -> None:
        nonlocal calls
        calls += 1
        if calls in numbers:
            raise OperationalError("COMMIT", {}, Exception("database is locked"))
        await real_commit()

    monkeypatch.setattr(session, "commit", commit)


# -- staging ---------------------------------------------------------------


@pytest.mark.anyio
async def test_stage_uploads_reports_partial_failure(env: _Env):
    batch = await env.coordinator.stage_uploads(
        owner_id=env.alice,
        vehicle_id="car-1",
        maintenance_id=None,
        files=[
            UploadInput(data=b"one", mime_type="image/jpeg", filename="one.jpg"),
            UploadInput(data=_FAIL, mime_type="image/jpeg", filename="two.jpg"),
        ],
    )

    assert len(batch.staged) == 1
    assert batch.staged[0].path.startswith(f"maintenance/{env.alice}/car-1/")
    assert batch.staged[0].path in env.storage.objects
    pf = batch.partial_failure
    assert pf is not None
    assert pf.succeeded == [batch.staged[0].url]
    assert [f.ref for f in pf.failed] == ["two.jpg"]


@pytest.mark.anyio
async def test_stage_uploads_all_failed_raises_storage_error(env: _Env):
    with pytest.raises(StorageError):
        await _stage(env, _FAIL, _FAIL)


@pytest.mark.anyio
async def test_stage_uploads_validates_before_uploading(env: _Env):
    with pytest.raises(ValidationError):
        await _stage(env, b"ok", b"")
    with pytest.raises(ValidationError):
        await _stage(env, b"ok", b"x" * 2048)
    with pytest.raises(ValidationError):
        await _stage(env)
    assert env.storage.objects == {}


@pytest.mark.anyio
async def test_stage_uploads_caps_concurrency(env: _Env):
    env.storage.put_delay = 0.01
    staged = await _stage(env, b"1", b"2", b"3", b"4", b"5")

    assert len(staged) == 5
    assert env.storage.max_active <= 2
    stamps = [s.uploaded_at for s in staged]
    assert stamps == sorted(stamps)
    assert len(set(stamps)) == 5


@pytest.mark.anyio
async def test_stage_uploads_for_foreign_record_is_not_found(env: _Env):
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields()
    )
    with pytest.raises(NotFoundError):
        await env.coordinator.stage_uploads(
            owner_id=env.bob,
            vehicle_id="car-1",
            maintenance_id=created.record.id,
            files=[UploadInput(data=b"x", mime_type=None)],
        )
    with pytest.raises(NotFoundError):
        await _stage(env, b"x", vehicle_id="car-2", maintenance_id=created.record.id)


@pytest.mark.anyio
async def test_discard_staged_removes_unregistered_object(env: _Env):
    (staged,) = await _stage(env, b"x")

    assert await env.coordinator.discard_staged(owner_id=env.alice, url=staged.url) is (
        RemoveOutcome.REMOVED
    )
    assert staged.path not in env.storage.objects
    assert await env.coordinator.discard_staged(owner_id=env.alice, url=staged.url) is (
        RemoveOutcome.NOT_FOUND
    )


@pytest.mark.anyio
async def test_discard_staged_refuses_foreign_and_registered_urls(env: _Env):
    (staged,) = await _stage(env, b"x")
    with pytest.raises(ValidationError):
        await env.coordinator.discard_staged(owner_id=env.bob, url=staged.url)
    with pytest.raises(ValidationError):
        await env.coordinator.discard_staged(owner_id=env.alice, url="https://elsewhere/a.jpg")

    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields()
    )
    (attached,) = await _stage(env, b"y", maintenance_id=created.record.id)
    await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={},
        desired_attachments=[attached],
    )
    with pytest.raises(ValidationError):
        await env.coordinator.discard_staged(owner_id=env.alice, url=attached.url)
    assert attached.path in env.storage.objects


# -- create ----------------------------------------------------------------


@pytest.mark.anyio
async def test_create_with_two_staged_photos_lists_them_in_upload_order(env: _Env):
    staged = await _stage(env, b"photo-1", b"photo-2")

    result = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=staged
    )

    assert result.partial_failure is None
    assert result.record.title == "Oil change"
    assert result.record.maintenance_type == "oil"
    rows = await _rows(env, result.record)
    assert [r.file_url for r in rows] == [s.url for s in staged]
    assert all(r.maintenance_id == result.record.id for r in rows)
    assert all(r.user_id == env.alice for r in rows)


@pytest.mark.anyio
async def test_create_with_n_staged_files_yields_n_rows(env: _Env):
    staged = await _stage(env, b"1", b"2", b"3", b"4")
    # Plain URLs are accepted too; duplicates register once.
    refs = [s.url for s in staged] + [staged[0].url]

    result = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=refs
    )

    assert len(result.attachments) == 4
    assert len(await _rows(env, result.record)) == 4


@pytest.mark.anyio
async def test_create_validation_fails_before_any_remote_call(env: _Env):
    (staged,) = await _stage(env, b"x")
    deletes_before = list(env.storage.delete_calls)

    with pytest.raises(ValidationError):
        await env.coordinator.create_with_attachments(
            owner_id=env.alice, vehicle_id="car-1", fields=_fields(title="  "), staged=[staged]
        )
    with pytest.raises(ValidationError):
        await env.coordinator.create_with_attachments(
            owner_id=env.alice,
            vehicle_id="car-1",
            fields=_fields(receipt_url="http://test/legacy.jpg"),
        )
    with pytest.raises(ValidationError):
        await env.coordinator.create_with_attachments(
            owner_id=env.alice, vehicle_id="car-1", fields=_fields(cost=-1)
        )

    assert await env.records.list_for_vehicle(owner_id=env.alice, vehicle_id="car-1") == []
    assert env.storage.delete_calls == deletes_before


@pytest.mark.anyio
async def test_create_rejects_attachments_of_other_owner_or_vehicle(env: _Env):
    (other_vehicle,) = await _stage(env, b"x", vehicle_id="car-2")
    foreign = await env.store.put(
        owner_id=env.bob, vehicle_id="car-1", maintenance_id=None, data=b"x", mime_type=None
    )

    for ref in (other_vehicle.url, foreign.url, "https://example.com/a.jpg"):
        with pytest.raises(ValidationError):
            await env.coordinator.create_with_attachments(
                owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[ref]
            )
    assert await env.records.list_for_vehicle(owner_id=env.alice, vehicle_id="car-1") == []


@pytest.mark.anyio
async def test_create_keeps_record_when_registration_fails(env: _Env):
    ok, bad = await _stage(env, b"ok", b"bad")
    env.ledger.fail_urls.add(bad.url)

    result = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[ok, bad]
    )

    pf = result.partial_failure
    assert pf is not None
    assert pf.succeeded == [ok.url]
    assert [f.ref for f in pf.failed] == [bad.url]
    # Neither the record nor the uploaded object is rolled back.
    assert await env.records.get(owner_id=env.alice, maintenance_id=result.record.id) is not None
    assert bad.path in env.storage.objects
    assert [r.file_url for r in await _rows(env, result.record)] == [ok.url]


@pytest.mark.anyio
async def test_create_reports_partial_failure_when_ledger_commit_fails(
    env: _Env, monkeypatch: pytest.MonkeyPatch
):
    bad, ok = await _stage(env, b"bad", b"ok")
    # Commit 1 creates the record, commit 2 registers ``bad``.
    _fail_commits(monkeypatch, env.session, 2)

    result = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[bad, ok]
    )

    assert result.record.title == "Oil change"
    pf = result.partial_failure
    assert pf is not None
    assert pf.succeeded == [ok.url]
    assert [f.ref for f in pf.failed] == [bad.url]
    assert [r.file_url for r in await _rows(env, result.record)] == [ok.url]
    assert bad.path in env.storage.objects


# -- update ----------------------------------------------------------------


@pytest.mark.anyio
async def test_update_replacing_zero_files_with_one_and_setting_cost(env: _Env):
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields()
    )
    assert created.record.cost is None
    (new,) = await _stage(env, b"receipt", maintenance_id=created.record.id)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"cost": 450},
        desired_attachments=[new],
    )

    assert result.fields_applied is True
    assert result.partial_failure is None
    assert result.record.cost == 450
    assert [r.file_url for r in await _rows(env, created.record)] == [new.url]


@pytest.mark.anyio
async def test_update_remove_a_add_b(env: _Env):
    (a,) = await _stage(env, b"a")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a]
    )
    (b,) = await _stage(env, b"b", maintenance_id=created.record.id)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"title": "Oil + filter"},
        desired_attachments=[b.url],
    )

    assert result.fields_applied is True
    assert result.record.title == "Oil + filter"
    assert [r.url for r in result.removed] == [a.url]
    assert a.path not in env.storage.objects
    urls = [r.file_url for r in await _rows(env, created.record)]
    assert a.url not in urls
    assert b.url in urls


@pytest.mark.anyio
async def test_update_storage_failure_on_removal_keeps_fields_but_unlinks(env: _Env):
    (a,) = await _stage(env, b"a")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(cost=10.0), staged=[a]
    )
    (b,) = await _stage(env, b"b", maintenance_id=created.record.id)
    env.storage.fail_delete.add(a.path)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"title": "Changed", "cost": 99.0},
        desired_attachments=[b],
    )

    assert result.fields_applied is False
    assert result.orphaned_paths == [a.path]
    urls = [r.file_url for r in await _rows(env, created.record)]
    assert a.url not in urls
    assert b.url in urls

    record = await env.coordinator.get_record(
        owner_id=env.alice, maintenance_id=created.record.id
    )
    assert record.title == "Oil change"
    assert record.cost == 10.0


@pytest.mark.anyio
async def test_update_registration_failure_withholds_fields(env: _Env):
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields()
    )
    (b,) = await _stage(env, b"b")
    env.ledger.fail_urls.add(b.url)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"title": "Changed"},
        desired_attachments=[b],
    )

    assert result.fields_applied is False
    pf = result.partial_failure
    assert pf is not None
    assert [f.ref for f in pf.failed] == [b.url]
    assert result.record.title == "Oil change"


@pytest.mark.anyio
async def test_update_withholds_fields_when_registration_commit_fails(
    env: _Env, monkeypatch: pytest.MonkeyPatch
):
    (a,) = await _stage(env, b"a")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a]
    )
    (b,) = await _stage(env, b"b", maintenance_id=created.record.id)
    _fail_commits(monkeypatch, env.session, 1)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"title": "Changed"},
        desired_attachments=[a.url, b],
    )

    assert result.fields_applied is False
    assert result.record.title == "Oil change"
    pf = result.partial_failure
    assert pf is not None
    assert pf.succeeded == [a.url]
    assert [f.ref for f in pf.failed] == [b.url]
    assert [r.file_url for r in await _rows(env, created.record)] == [a.url]


@pytest.mark.anyio
async def test_update_keeps_row_when_unlink_commit_fails(
    env: _Env, monkeypatch: pytest.MonkeyPatch
):
    (a,) = await _stage(env, b"a")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(cost=10.0), staged=[a]
    )
    (b,) = await _stage(env, b"b", maintenance_id=created.record.id)
    # Commit 1 unlinks ``a``, commit 2 registers ``b``.
    _fail_commits(monkeypatch, env.session, 1)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"cost": 99.0},
        desired_attachments=[b],
    )

    assert result.fields_applied is False
    assert result.removed == []
    assert result.record.cost == 10.0
    pf = result.partial_failure
    assert pf is not None
    assert pf.succeeded == [b.url]
    assert [f.ref for f in pf.failed] == [a.url]
    urls = {r.file_url for r in await _rows(env, created.record)}
    assert urls == {a.url, b.url}


@pytest.mark.anyio
async def test_update_without_attachment_set_leaves_ledger_untouched(env: _Env):
    (a,) = await _stage(env, b"a")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a]
    )

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"mileage": 50000, "technician": "  Sam  "},
    )

    assert result.record.mileage == 50000
    assert result.record.technician == "Sam"
    assert [r.file_url for r in result.attachments] == [a.url]
    assert env.storage.delete_calls == []


@pytest.mark.anyio
async def test_update_of_foreign_record_is_not_found(env: _Env):
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields()
    )
    with pytest.raises(NotFoundError):
        await env.coordinator.update_with_attachments(
            owner_id=env.bob, maintenance_id=created.record.id, changes={"title": "mine"}
        )
    with pytest.raises(ValidationError):
        await env.coordinator.update_with_attachments(
            owner_id=env.alice, maintenance_id=created.record.id, changes={"title": ""}
        )


@pytest.mark.anyio
async def test_remove_attachment_unlinks_even_if_storage_fails(env: _Env):
    a, b = await _stage(env, b"a", b"b")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a, b]
    )
    row_a, row_b = created.attachments
    env.storage.fail_delete.add(b.path)

    removed = await env.coordinator.remove_attachment(
        owner_id=env.alice, maintenance_id=created.record.id, row_id=row_a.id
    )
    assert removed.path == a.path
    assert a.path not in env.storage.objects

    await env.coordinator.remove_attachment(
        owner_id=env.alice, maintenance_id=created.record.id, row_id=row_b.id
    )
    assert b.path in env.storage.objects
    assert await _rows(env, created.record) == []

    with pytest.raises(NotFoundError):
        await env.coordinator.remove_attachment(
            owner_id=env.alice, maintenance_id=created.record.id, row_id=row_a.id
        )


# -- delete ----------------------------------------------------------------


@pytest.mark.anyio
async def test_delete_cascades_and_skips_malformed_urls(env: _Env):
    a, b = await _stage(env, b"a", b"b")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a, b]
    )
    await env.ledger.add(
        maintenance_id=created.record.id, owner_id=env.alice, url="::not-a-storage-url::"
    )
    assert len(await _rows(env, created.record)) == 3

    result = await env.coordinator.delete_with_attachments(
        owner_id=env.alice, maintenance_id=created.record.id
    )

    assert sorted(env.storage.delete_calls) == sorted([a.path, b.path])
    assert result.skipped_urls == ["::not-a-storage-url::"]
    assert sorted(result.removed_paths) == sorted([a.path, b.path])
    assert await _rows(env, created.record) == []
    assert await env.records.get(owner_id=env.alice, maintenance_id=created.record.id) is None


@pytest.mark.anyio
async def test_delete_succeeds_when_every_storage_removal_fails(env: _Env):
    staged = await _stage(env, b"a", b"b", b"c")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=staged
    )
    env.storage.fail_all_deletes = True

    result = await env.coordinator.delete_with_attachments(
        owner_id=env.alice, maintenance_id=created.record.id
    )

    assert len(env.storage.delete_calls) == 3
    assert sorted(result.orphaned_paths) == sorted(s.path for s in staged)
    assert await _rows(env, created.record) == []
    with pytest.raises(NotFoundError):
        await env.coordinator.get_record(owner_id=env.alice, maintenance_id=created.record.id)


@pytest.mark.anyio
async def test_delete_removes_ledger_rows_when_bulk_unlink_fails(
    env: _Env, monkeypatch: pytest.MonkeyPatch
):
    a, b = await _stage(env, b"a", b"b")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a, b]
    )
    maintenance_id = created.record.id

    async def remove_all_for_maintenance(**_: object) -> list[object]:
        raise LedgerError("ledger unavailable")

    monkeypatch.setattr(env.ledger, "remove_all_for_maintenance", remove_all_for_maintenance)

    result = await env.coordinator.delete_with_attachments(
        owner_id=env.alice, maintenance_id=maintenance_id
    )

    assert sorted(result.removed_paths) == sorted([a.path, b.path])
    assert await env.ledger.list_for_maintenance(
        maintenance_id=maintenance_id, owner_id=env.alice
    ) == []
    assert await env.records.get(owner_id=env.alice, maintenance_id=maintenance_id) is None


@pytest.mark.anyio
async def test_delete_succeeds_when_bulk_unlink_commit_fails(
    env: _Env, monkeypatch: pytest.MonkeyPatch
):
    a, b = await _stage(env, b"a", b"b")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a, b]
    )
    maintenance_id = created.record.id
    # Commit 1 is the bulk unlink, commit 2 deletes the record.
    _fail_commits(monkeypatch, env.session, 1)

    await env.coordinator.delete_with_attachments(owner_id=env.alice, maintenance_id=maintenance_id)

    assert await env.ledger.list_for_maintenance(
        maintenance_id=maintenance_id, owner_id=env.alice
    ) == []
    with pytest.raises(NotFoundError):
        await env.coordinator.get_record(owner_id=env.alice, maintenance_id=maintenance_id)


@pytest.mark.anyio
async def test_delete_of_foreign_record_is_not_found(env: _Env):
    (a,) = await _stage(env, b"a")
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields(), staged=[a]
    )

    with pytest.raises(NotFoundError):
        await env.coordinator.delete_with_attachments(
            owner_id=env.bob, maintenance_id=created.record.id
        )
    assert env.storage.delete_calls == []
    assert len(await _rows(env, created.record)) == 1


# -- legacy field ----------------------------------------------------------


async def _legacy_record(env: _Env) -> tuple[Maintenance, str, str]:
    created = await env.coordinator.create_with_attachments(
        owner_id=env.alice, vehicle_id="car-1", fields=_fields()
    )
    stored = await env.store.put(
        owner_id=env.alice,
        vehicle_id="car-1",
        maintenance_id=created.record.id,
        data=b"old receipt",
        mime_type="image/jpeg",
    )
    # Records written before the ledger existed carry their file here.
    record = await env.records.update(
        owner_id=env.alice,
        maintenance_id=created.record.id,
        changes={"receipt_url": stored.url},
    )
    assert record is not None
    return record, stored.url, stored.path


@pytest.mark.anyio
async def test_legacy_field_shows_as_virtual_attachment(env: _Env):
    record, url, _ = await _legacy_record(env)

    views = await env.coordinator.list_attachments(owner_id=env.alice, maintenance_id=record.id)
    assert len(views) == 1
    assert views[0].id is None
    assert views[0].url == url
    assert views[0].removable is False
    assert views[0].legacy is True


@pytest.mark.anyio
async def test_keeping_the_virtual_entry_does_not_register_it(env: _Env):
    record, url, path = await _legacy_record(env)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice,
        maintenance_id=record.id,
        changes={},
        desired_attachments=[url],
    )

    assert result.attachments == []
    assert path in env.storage.objects
    assert result.record.receipt_url == url


@pytest.mark.anyio
async def test_clearing_legacy_field_removes_its_object(env: _Env):
    record, _, path = await _legacy_record(env)

    result = await env.coordinator.update_with_attachments(
        owner_id=env.alice, maintenance_id=record.id, changes={"receipt_url": None}
    )

    assert result.fields_applied is True
    assert result.record.receipt_url is None
    assert path not in env.storage.objects
    assert await env.coordinator.list_attachments(owner_id=env.alice, maintenance_id=record.id) == []


@pytest.mark.anyio
async def test_legacy_field_cannot_be_written(env: _Env):
    record, _, _ = await _legacy_record(env)
    with pytest.raises(ValidationError):
        await env.coordinator.update_with_attachments(
            owner_id=env.alice,
            maintenance_id=record.id,
            changes={"receipt_url": "http://test/other.jpg"},
        )
