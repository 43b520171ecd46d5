"""
Tests for the dialer webhook endpoint
"""

import json

import pytest
from sqlalchemy import func, select

from meetflow.database.models import CallRecording, DialerIntegration, Lead, OutreachAttempt

from .conftest import sign, webhook_body


async def post_webhook(client, body, signature=None):
    headers = {"Content-Type": "application/json"}
    if signature is not None:
        headers["X-Signature"] = signature
    return await client.post("/api/webhooks/dialer", content=body, headers=headers)


async def count(db, model):
    async with db.get_session() as s:
        return await s.scalar(select(func.count(model.id)))


class TestDialerWebhook:

    @pytest.mark.asyncio
    async def test_status_endpoint(self, client):
        response = await client.get("/api/webhooks/dialer")

        assert response.status_code == 200
        assert "aircall" in response.json()["supported_providers"]

    @pytest.mark.asyncio
    async def test_imports_recording(self, client, db, storage, world):
        body = webhook_body()
        response = await post_webhook(client, body, sign(body))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "Call recording imported successfully"
        assert len(storage.objects) == 1

        async with db.get_session() as s:
            attempt = (await s.execute(select(OutreachAttempt))).scalar_one()
            lead = await s.get(Lead, attempt.lead_id)
            integration = await s.get(DialerIntegration, world.integration_id)

        assert str(attempt.call_recording_id) == data["recording_id"]
        assert attempt.attempt_status == "connected"
        assert attempt.notes == "Auto-imported from aircall"
        assert lead.email == "dana@example.com"
        assert lead.phone == "+15550001111"
        assert integration.last_sync_at is not None

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, client, db, storage, world, provider_requests):
        body = webhook_body()
        first = await post_webhook(client, body, sign(body))
        second = await post_webhook(client, body, sign(body))

        assert second.status_code == 200
        assert second.json()["recording_id"] == first.json()["recording_id"]
        assert second.json()["message"] == "Call recording already imported"
        assert len(provider_requests) == 1
        assert await count(db, CallRecording) == 1
        assert await count(db, OutreachAttempt) == 1

    @pytest.mark.asyncio
    async def test_zero_duration_is_no_answer(self, client, db, world):
        body = webhook_body(duration=0)
        await post_webhook(client, body, sign(body))

        async with db.get_session() as s:
            attempt = (await s.execute(select(OutreachAttempt))).scalar_one()
        assert attempt.attempt_status == "no_answer"

    @pytest.mark.asyncio
    async def test_event_without_recording_skipped(self, client, db, world):
        body = webhook_body(event_type="call.started")
        response = await post_webhook(client, body, sign(body))

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Event skipped"}
        assert await count(db, CallRecording) == 0

    @pytest.mark.asyncio
    async def test_skipped_event_without_call_id(self, client, db, world):
        body = json.dumps({
            "provider": "aircall",
            "event_type": "call.started",
            "call_data": {"user_id": "acct-1"},
        }).encode()
        response = await post_webhook(client, body, sign(body))

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Event skipped"}
        assert await count(db, CallRecording) == 0

    @pytest.mark.asyncio
    async def test_bad_signature(self, client, db, world):
        body = webhook_body()
        response = await post_webhook(client, body, sign(body, "not-the-secret"))

        assert response.status_code == 401
        assert response.json()["error"]["code"] == 401
        assert await count(db, CallRecording) == 0

    @pytest.mark.asyncio
    async def test_unknown_integration(self, client, world):
        body = webhook_body(user_id="acct-unknown")
        response = await post_webhook(client, body, sign(body))

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_body(self, client, world):
        response = await post_webhook(client, b"{not json", "sig")

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rep_without_campaign(self, client, world):
        body = webhook_body(user_id="acct-idle")
        response = await post_webhook(client, body, sign(body))

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "No active campaign found"

    @pytest.mark.asyncio
    async def test_download_failure_is_opaque(self, client, db, storage, world):
        body = webhook_body(recording_url="https://provider.test/recordings/missing.mp3")
        response = await post_webhook(client, body, sign(body))

        assert response.status_code == 500
        assert response.json()["error"]["message"] == "Failed to acquire recording"
        assert storage.objects == {}
        assert await count(db, CallRecording) == 0
