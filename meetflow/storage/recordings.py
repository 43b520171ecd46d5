"""
Object storage for call recordings
Local filesystem backend for development, Supabase Storage REST backend for production
"""

import asyncio
import os
import time
from pathlib import Path
from typing import Iterable, Optional, Set
from urllib.parse import quote, urlencode

import httpx
import structlog

from ..config import Settings
from ..errors import StorageError
from ..utils.security import SecurityManager

logger = structlog.get_logger("meetflow.storage")


def recording_path(sales_rep_id, campaign_id, call_id: str, extension: str = "mp3") -> str:
    """One object per provider call, namespaced by rep and campaign"""
    safe_call_id = quote(str(call_id), safe="")
    return f"{sales_rep_id}/{campaign_id}/{safe_call_id}.{extension}"


class RecordingStorage:
    """Storage backend interface"""

    async def upload(self, path: str, data: bytes, content_type: str) -> bool:
        """Store bytes at path. Returns False when the object already existed."""
        raise NotImplementedError

    async def download(self, path: str) -> bytes:
        raise NotImplementedError

    async def delete_many(self, paths: Iterable[str]) -> Set[str]:
        """Delete objects, returning the paths confirmed gone"""
        raise NotImplementedError

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        raise NotImplementedError

    async def delete(self, path: str) -> bool:
        return path in await self.delete_many([path])


class LocalRecordingStorage(RecordingStorage):
    """Filesystem backend; signed URLs are served by the recordings router"""

    def __init__(self, root: str, security: SecurityManager, url_prefix: str = "/api/recordings/files"):
        self.root = Path(root)
        self.security = security
        self.url_prefix = url_prefix

    def _resolve(self, path: str) -> Path:
        full = (self.root / path).resolve()
        if self.root.resolve() not in full.parents:
            raise StorageError("Path escapes storage root", stage="storage", path=path)
        return full

    async def upload(self, path: str, data: bytes, content_type: str) -> bool:
        full = self._resolve(path)

        def _write() -> bool:
            full.parent.mkdir(parents=True, exist_ok=True)
            try:
                with open(full, "xb") as fh:
                    fh.write(data)
            except FileExistsError:
                return False
            return True

        try:
            return await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Local upload failed: {e}", stage="upload", path=path) from e

    async def download(self, path: str) -> bytes:
        full = self._resolve(path)
        try:
            return await asyncio.to_thread(full.read_bytes)
        except OSError as e:
            raise StorageError(f"Local download failed: {e}", stage="download", path=path) from e

    async def delete_many(self, paths: Iterable[str]) -> Set[str]:
        deleted = set()
        for path in paths:
            try:
                await asyncio.to_thread(os.remove, self._resolve(path))
                deleted.add(path)
            except FileNotFoundError:
                # Already gone satisfies the invariant
                deleted.add(path)
            except (OSError, StorageError) as e:
                logger.error("Local delete failed", path=path, error=str(e))
        return deleted

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        expires_at = int(time.time()) + expires_in
        token = self.security.sign_storage_path(path, expires_at)
        query = urlencode({"expires": expires_at, "token": token})
        return f"{self.url_prefix}/{quote(path)}?{query}"

    def file_for(self, path: str) -> Path:
        return self._resolve(path)


class SupabaseRecordingStorage(RecordingStorage):
    """Supabase Storage REST API client"""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not settings.supabase_url or not settings.supabase_service_key:
            raise ValueError("Supabase storage requires supabase_url and supabase_service_key")
        self.base_url = settings.supabase_url.rstrip("/") + "/storage/v1"
        self.bucket = settings.recordings_bucket
        self.timeout = settings.http_timeout_seconds
        self.headers = {
            "Authorization": f"Bearer {settings.supabase_service_key}",
            "apikey": settings.supabase_service_key,
        }
        self.transport = transport

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/object/{self.bucket}/{quote(path)}"

    @staticmethod
    def _is_duplicate(response: httpx.Response) -> bool:
        if response.status_code == 409:
            return True
        return response.status_code == 400 and (
            "Duplicate" in response.text or "already exists" in response.text
        )

    async def upload(self, path: str, data: bytes, content_type: str) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                self._object_url(path),
                content=data,
                headers={
                    **self.headers,
                    "Content-Type": content_type,
                    "Cache-Control": "3600",
                    "x-upsert": "false",
                },
            )

        if self._is_duplicate(response):
            logger.info("Recording object already exists", path=path)
            return False
        if response.status_code >= 500 or response.status_code == 429:
            # Retryable by the caller
            response.raise_for_status()
        if response.is_error:
            raise StorageError(
                f"Supabase upload failed with {response.status_code}",
                stage="upload",
                path=path,
            )
        return True

    async def download(self, path: str) -> bytes:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.get(self._object_url(path), headers=self.headers)
        if response.is_error:
            raise StorageError(
                f"Supabase download failed with {response.status_code}",
                stage="download",
                path=path,
            )
        return response.content

    async def delete_many(self, paths: Iterable[str]) -> Set[str]:
        paths = list(paths)
        if not paths:
            return set()

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.request(
                "DELETE",
                f"{self.base_url}/object/{self.bucket}",
                json={"prefixes": paths},
                headers=self.headers,
            )
        if response.is_error:
            raise StorageError(
                f"Supabase delete failed with {response.status_code}",
                stage="retention",
                count=len(paths),
            )

        removed = {item.get("name") for item in response.json() or [] if isinstance(item, dict)}
        return {path for path in paths if path in removed}

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                f"{self.base_url}/object/sign/{self.bucket}/{quote(path)}",
                json={"expiresIn": expires_in},
                headers=self.headers,
            )
        if response.is_error:
            raise StorageError(
                f"Supabase signing failed with {response.status_code}",
                stage="sign",
                path=path,
            )
        signed = response.json().get("signedURL") or response.json().get("signedUrl")
        if not signed:
            raise StorageError("Supabase returned no signed URL", stage="sign", path=path)
        return f"{self.base_url}{signed}"


def build_storage(settings: Settings, security: SecurityManager) -> RecordingStorage:
    """Construct the configured storage backend"""
    if settings.storage_backend == "supabase":
        return SupabaseRecordingStorage(settings)
    return LocalRecordingStorage(settings.local_storage_path, security)
