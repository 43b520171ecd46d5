"""
Tests for recording retention
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from meetflow.database.crud import TOMBSTONE_FILE_NAME
from meetflow.database.models import CallRecording
from meetflow.errors import StorageError
from meetflow.utils.helpers import utc_now


async def store_recording(session, storage, world, call_id, deadline, stored=True):
    path = f"{world.rep_id}/{world.campaign_id}/{call_id}.mp3"
    recording = CallRecording(
        sales_rep_id=world.rep_id,
        campaign_id=world.campaign_id,
        storage_path=path if stored else None,
        file_name=f"{call_id}.mp3",
        transcription="Transcript text",
        dialer_provider="aircall",
        dialer_call_id=call_id,
        retention_deadline=deadline,
    )
    session.add(recording)
    await session.commit()
    if stored:
        storage.objects[path] = b"audio"
    return recording.id, path


async def load(db, recording_id):
    async with db.get_session() as s:
        result = await s.execute(select(CallRecording).where(CallRecording.id == recording_id))
        return result.scalar_one()


class TestRetentionCleanup:

    @pytest.mark.asyncio
    async def test_purges_expired_only(self, app, db, session, storage, world):
        now = utc_now()
        expired_id, expired_path = await store_recording(session, storage, world, "old", now - timedelta(days=1))
        fresh_id, fresh_path = await store_recording(session, storage, world, "new", now + timedelta(days=10))

        result = await app.state.retention.cleanup_expired()

        assert result == {"deleted": 1, "errors": 0}
        assert expired_path not in storage.objects
        assert fresh_path in storage.objects

        expired = await load(db, expired_id)
        assert expired.storage_path is None
        assert expired.transcription is None
        assert expired.file_name == TOMBSTONE_FILE_NAME
        # Audit metadata survives the purge
        assert expired.dialer_call_id == "old"

        fresh = await load(db, fresh_id)
        assert fresh.storage_path == fresh_path

    @pytest.mark.asyncio
    async def test_second_run_is_noop(self, app, session, storage, world):
        await store_recording(session, storage, world, "old", utc_now() - timedelta(days=1))

        await app.state.retention.cleanup_expired()
        result = await app.state.retention.cleanup_expired()

        assert result == {"deleted": 0, "errors": 0}

    @pytest.mark.asyncio
    async def test_unconfirmed_delete_keeps_row(self, app, db, session, storage, world):
        recording_id, path = await store_recording(session, storage, world, "old", utc_now() - timedelta(days=1))
        storage.unconfirmed.add(path)

        result = await app.state.retention.cleanup_expired()

        assert result == {"deleted": 0, "errors": 1}
        assert (await load(db, recording_id)).storage_path == path

    @pytest.mark.asyncio
    async def test_failed_batch_does_not_stop_run(self, app, session, storage, world, monkeypatch):
        now = utc_now()
        for index in range(3):
            await store_recording(session, storage, world, f"old-{index}", now - timedelta(days=1, minutes=index))

        real_delete_many = storage.delete_many
        batches = []

        async def fail_first_batch(paths):
            batches.append(list(paths))
            if len(batches) == 1:
                raise StorageError("Storage unavailable", stage="retention")
            return await real_delete_many(paths)

        monkeypatch.setattr(storage, "delete_many", fail_first_batch)
        result = await app.state.retention.cleanup_expired()

        # retention_batch_size is 2 in tests
        assert [len(batch) for batch in batches] == [2, 1]
        assert result == {"deleted": 1, "errors": 2}

    @pytest.mark.asyncio
    async def test_expiration_stats(self, app, session, storage, world):
        now = utc_now()
        await store_recording(session, storage, world, "expired", now - timedelta(days=1))
        await store_recording(session, storage, world, "soon", now + timedelta(days=3))
        await store_recording(session, storage, world, "later", now + timedelta(days=20))
        await store_recording(session, storage, world, "purged", now - timedelta(days=5), stored=False)

        stats = await app.state.retention.expiration_stats()

        assert stats == {"total": 3, "expiring_soon": 1, "expired": 1}
