"""
Shared test fixtures
"""

import hashlib
import hmac
import json
from types import SimpleNamespace
from typing import Dict, Iterable, List, Set
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
from cryptography.fernet import Fernet

from meetflow.config import Settings
from meetflow.database.models import (
    ApplicationStatus, Campaign, CampaignApplication, Company, DialerIntegration, SalesRep
)
from meetflow.errors import StorageError
from meetflow.main import create_app
from meetflow.storage.recordings import RecordingStorage
from meetflow.utils.security import SecurityManager

AUDIO_BYTES = b"ID3" + b"\x00" * 512
WEBHOOK_SECRET = "whsec-test"
PROVIDER_TOKEN = "provider-token"
CRITERIA = ["Budget confirmed", "Decision maker present", "Timeline within 90 days"]


class InMemoryStorage(RecordingStorage):
    """Dict-backed storage double"""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.unconfirmed: Set[str] = set()
        self.fail_upload = False
        self.deleted: List[str] = []

    async def upload(self, path: str, data: bytes, content_type: str) -> bool:
        if self.fail_upload:
            raise StorageError("Upload refused", stage="upload", path=path)
        if path in self.objects:
            return False
        self.objects[path] = data
        return True

    async def download(self, path: str) -> bytes:
        if path not in self.objects:
            raise StorageError("Object missing", stage="download", path=path)
        return self.objects[path]

    async def delete_many(self, paths: Iterable[str]) -> Set[str]:
        confirmed = set()
        for path in paths:
            if path in self.unconfirmed:
                continue
            self.objects.pop(path, None)
            self.deleted.append(path)
            confirmed.add(path)
        return confirmed

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        return f"https://storage.test/{path}?expires_in={expires_in}"


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Hex HMAC-SHA256 the way aircall signs webhooks"""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_body(call_id: str = "call-1", event_type: str = "call.ended", **call_data) -> bytes:
    data = {
        "id": call_id,
        "user_id": "acct-1",
        "recording_url": "https://provider.test/recordings/call-1.mp3",
        "duration": 185,
        "direction": "outbound",
        "to": "+15550001111",
        "contact_name": "Dana Smith",
        "contact_email": "dana@example.com",
    }
    data.update(call_data)
    return json.dumps({"provider": "aircall", "event_type": event_type, "call_data": data}).encode()


def completion(payload) -> SimpleNamespace:
    """Chat completion shaped like the OpenAI SDK response"""
    content = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def settings():
    """Settings for an in-memory database and fast retries"""
    return Settings(
        environment="testing",
        secret_key="test-secret-key",
        encryption_key=Fernet.generate_key().decode(),
        database_url="sqlite+aiosqlite:///:memory:",
        cron_secret="cron-test-secret",
        http_max_retries=1,
        http_retry_delay_seconds=0,
        max_recording_bytes=64 * 1024,
        recording_retention_days=30,
        retention_batch_size=2,
    )


@pytest.fixture
def security(settings):
    return SecurityManager(settings)


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def provider_requests():
    """Requests seen by the fake provider"""
    return []


@pytest.fixture
def provider_transport(provider_requests):
    """Provider recording host serving a small mp3"""

    def handler(request: httpx.Request) -> httpx.Response:
        provider_requests.append(request)
        if request.url.path.endswith("missing.mp3"):
            return httpx.Response(404)
        return httpx.Response(200, content=AUDIO_BYTES, headers={"content-type": "audio/mpeg"})

    return httpx.MockTransport(handler)


@pytest.fixture
def openai_client():
    """OpenAI client mock"""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=completion({
        "criterion_0_score": 90,
        "criterion_1_score": 40,
        "criterion_2_score": 100,
        "confidence": 0.9,
        "reasoning": "Budget and timeline were explicit",
    }))
    return client


@pytest.fixture
def app(settings, storage, openai_client, provider_transport):
    return create_app(
        settings,
        storage=storage,
        openai_client=openai_client,
        http_transport=provider_transport,
    )


@pytest_asyncio.fixture
async def db(app):
    """Database of the app under test, tables created"""
    await app.state.db.init_database()
    yield app.state.db
    await app.state.db.close()


@pytest_asyncio.fixture
async def session(db):
    async with db.get_session() as s:
        yield s


@pytest_asyncio.fixture
async def client(app, db):
    """HTTP client bound to the app"""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


@pytest.fixture
def auth(security):
    """Bearer headers for a role"""

    def _headers(role: str, user_id: str) -> Dict[str, str]:
        token = security.create_access_token({"sub": user_id, "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture
async def world(db, security):
    """Company, approved rep, campaign and an aircall integration"""
    async with db.get_session() as s:
        company = Company(user_id="company-user", company_name="Acme Corp")
        other_company = Company(user_id="other-company-user", company_name="Globex")
        rep = SalesRep(user_id="sdr-user")
        idle_rep = SalesRep(user_id="idle-sdr-user")
        s.add_all([company, other_company, rep, idle_rep])
        await s.flush()

        campaign = Campaign(
            company_id=company.id,
            title="Q4 outbound",
            icp_description="Mid-market SaaS",
            meeting_criteria=list(CRITERIA),
        )
        s.add(campaign)
        await s.flush()

        s.add(CampaignApplication(
            campaign_id=campaign.id,
            sales_rep_id=rep.id,
            status=ApplicationStatus.APPROVED.value,
        ))
        integration = DialerIntegration(
            sales_rep_id=rep.id,
            dialer_provider="aircall",
            provider_account_id="acct-1",
            webhook_secret=WEBHOOK_SECRET,
            access_token_encrypted=security.encrypt_data(PROVIDER_TOKEN),
        )
        idle_integration = DialerIntegration(
            sales_rep_id=idle_rep.id,
            dialer_provider="aircall",
            provider_account_id="acct-idle",
            webhook_secret=WEBHOOK_SECRET,
        )
        s.add_all([integration, idle_integration])
        await s.flush()

        return SimpleNamespace(
            company_id=company.id,
            other_company_id=other_company.id,
            rep_id=rep.id,
            idle_rep_id=idle_rep.id,
            campaign_id=campaign.id,
            integration_id=integration.id,
        )
