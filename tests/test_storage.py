"""
Tests for recording storage backends
"""

import json
import os
from unittest.mock import patch

import httpx
import pytest

from meetflow.errors import StorageError
from meetflow.storage.recordings import (
    LocalRecordingStorage, SupabaseRecordingStorage, build_storage, recording_path
)


@pytest.fixture
def supabase_settings(settings):
    return settings.model_copy(update={
        "storage_backend": "supabase",
        "supabase_url": "https://project.supabase.test/",
        "supabase_service_key": "service-key",
        "recordings_bucket": "call-recordings",
    })


def supabase(settings, handler):
    return SupabaseRecordingStorage(settings, transport=httpx.MockTransport(handler))


def test_recording_path_escapes_call_id():
    assert recording_path("rep", "camp", "abc/../1 2", "wav") == "rep/camp/abc%2F..%2F1%202.wav"


def test_recording_paths_do_not_collide():
    call_ids = ["a/b", "a_b", "a%2Fb", "a b", "a+b"]
    paths = {recording_path("rep", "camp", call_id) for call_id in call_ids}
    assert len(paths) == len(call_ids)


class TestLocalStorage:

    @pytest.mark.asyncio
    async def test_upload_is_create_once(self, tmp_path, security):
        storage = LocalRecordingStorage(str(tmp_path), security)

        assert await storage.upload("rep/camp/call.mp3", b"first", "audio/mpeg")
        assert not await storage.upload("rep/camp/call.mp3", b"second", "audio/mpeg")
        assert await storage.download("rep/camp/call.mp3") == b"first"

    @pytest.mark.asyncio
    async def test_missing_file_counts_as_deleted(self, tmp_path, security):
        storage = LocalRecordingStorage(str(tmp_path), security)
        await storage.upload("rep/camp/a.mp3", b"a", "audio/mpeg")

        confirmed = await storage.delete_many(["rep/camp/a.mp3", "rep/camp/never.mp3"])

        assert confirmed == {"rep/camp/a.mp3", "rep/camp/never.mp3"}
        assert not (tmp_path / "rep/camp/a.mp3").exists()

    @pytest.mark.asyncio
    async def test_delete_runs_in_worker_thread(self, tmp_path, security):
        storage = LocalRecordingStorage(str(tmp_path), security)
        await storage.upload("rep/camp/a.mp3", b"a", "audio/mpeg")
        offloaded = []

        async def to_thread(func, *args):
            offloaded.append(func)
            return func(*args)

        with patch("meetflow.storage.recordings.asyncio.to_thread", side_effect=to_thread):
            confirmed = await storage.delete_many(["rep/camp/a.mp3"])

        assert confirmed == {"rep/camp/a.mp3"}
        assert os.remove in offloaded

    @pytest.mark.asyncio
    async def test_path_escape_rejected(self, tmp_path, security):
        storage = LocalRecordingStorage(str(tmp_path / "root"), security)

        with pytest.raises(StorageError):
            await storage.upload("../outside.mp3", b"x", "audio/mpeg")


class TestSupabaseStorage:

    def test_requires_credentials(self, settings):
        with pytest.raises(ValueError):
            SupabaseRecordingStorage(settings.model_copy(update={"supabase_service_key": None}))

    def test_build_storage_selects_backend(self, settings, supabase_settings, security):
        assert isinstance(build_storage(settings.model_copy(update={"storage_backend": "local"}), security),
                          LocalRecordingStorage)
        assert isinstance(build_storage(supabase_settings, security), SupabaseRecordingStorage)

    @pytest.mark.asyncio
    async def test_upload_without_upsert(self, supabase_settings):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"Key": "call-recordings/rep/camp/call.mp3"})

        created = await supabase(supabase_settings, handler).upload("rep/camp/call.mp3", b"audio", "audio/mpeg")

        assert created
        request = seen[0]
        assert request.url.path == "/storage/v1/object/call-recordings/rep/camp/call.mp3"
        assert request.headers["x-upsert"] == "false"
        assert request.headers["Authorization"] == "Bearer service-key"
        assert request.content == b"audio"

    @pytest.mark.asyncio
    async def test_duplicate_upload_is_not_created(self, supabase_settings):
        def handler(request):
            return httpx.Response(400, json={"error": "Duplicate", "message": "The resource already exists"})

        assert not await supabase(supabase_settings, handler).upload("rep/camp/call.mp3", b"audio", "audio/mpeg")

    @pytest.mark.asyncio
    async def test_upload_rejected(self, supabase_settings):
        def handler(request):
            return httpx.Response(403, text="forbidden")

        with pytest.raises(StorageError):
            await supabase(supabase_settings, handler).upload("rep/camp/call.mp3", b"audio", "audio/mpeg")

    @pytest.mark.asyncio
    async def test_upload_server_error_is_retryable(self, supabase_settings):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(httpx.HTTPStatusError):
            await supabase(supabase_settings, handler).upload("rep/camp/call.mp3", b"audio", "audio/mpeg")

    @pytest.mark.asyncio
    async def test_delete_confirms_only_returned_names(self, supabase_settings):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=[{"name": "rep/camp/a.mp3"}])

        confirmed = await supabase(supabase_settings, handler).delete_many(["rep/camp/a.mp3", "rep/camp/b.mp3"])

        assert confirmed == {"rep/camp/a.mp3"}
        assert bodies == [{"prefixes": ["rep/camp/a.mp3", "rep/camp/b.mp3"]}]

    @pytest.mark.asyncio
    async def test_delete_failure_raises(self, supabase_settings):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(StorageError):
            await supabase(supabase_settings, handler).delete_many(["rep/camp/a.mp3"])

    @pytest.mark.asyncio
    async def test_signed_url(self, supabase_settings):
        def handler(request):
            assert json.loads(request.content) == {"expiresIn": 300}
            return httpx.Response(200, json={"signedURL": "/object/sign/call-recordings/rep/camp/a.mp3?token=t"})

        url = await supabase(supabase_settings, handler).create_signed_url("rep/camp/a.mp3", 300)

        assert url == "https://project.supabase.test/storage/v1/object/sign/call-recordings/rep/camp/a.mp3?token=t"
