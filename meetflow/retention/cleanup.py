"""
Recording retention cleanup
Purges expired recording objects and redacts their rows, keeping the audit metadata
"""

from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

import httpx
import structlog

from ..config import Settings
from ..database.crud import RecordingCRUD
from ..database.init_db import DatabaseManager
from ..errors import RetentionError, StorageError
from ..storage.recordings import RecordingStorage
from ..utils.helpers import batch_items, utc_now

logger = structlog.get_logger("meetflow.retention")


class RetentionScheduler:
    """Deletes recordings past their retention deadline"""

    def __init__(self, settings: Settings, db: DatabaseManager, storage: RecordingStorage):
        self.settings = settings
        self.db = db
        self.storage = storage

    async def cleanup_expired(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Purge every expired recording still holding a storage object.

        A row is redacted only after the storage backend confirms its object
        is gone; anything else counts as an error and is retried on the next
        run. Running again with nothing expired is a no-op.
        """
        now = now or utc_now()

        async with self.db.get_session() as session:
            expired = await RecordingCRUD.get_expired(session, now)

        if not expired:
            logger.info("Retention cleanup found nothing to purge")
            return {"deleted": 0, "errors": 0}

        ids_by_path: Dict[str, List] = defaultdict(list)
        for recording_id, storage_path in expired:
            ids_by_path[storage_path].append(recording_id)

        deleted = 0
        failures: List[RetentionError] = []
        for batch in batch_items(list(ids_by_path), self.settings.retention_batch_size):
            try:
                confirmed = await self.storage.delete_many(batch)
            except (StorageError, httpx.HTTPError) as e:
                logger.error("Retention batch failed", batch_size=len(batch), error=str(e))
                failures.extend(self._failure(path, ids_by_path[path], str(e)) for path in batch)
                continue

            redact_ids = [rid for path in batch if path in confirmed for rid in ids_by_path[path]]
            failures.extend(
                self._failure(path, ids_by_path[path], "Object not confirmed deleted")
                for path in batch if path not in confirmed
            )

            if redact_ids:
                async with self.db.get_session() as session:
                    deleted += await RecordingCRUD.redact(session, redact_ids)

        for failure in failures:
            logger.warning("Recording not purged", **failure.to_log())

        errors = sum(len(failure.context["recording_ids"]) for failure in failures)
        logger.info("Retention cleanup finished", deleted=deleted, errors=errors, expired=len(expired))
        return {"deleted": deleted, "errors": errors}

    @staticmethod
    def _failure(path: str, recording_ids: List, reason: str) -> RetentionError:
        return RetentionError(
            reason,
            stage="retention",
            storage_path=path,
            recording_ids=[str(rid) for rid in recording_ids],
        )

    async def expiration_stats(self, now: Optional[datetime] = None) -> Dict[str, int]:
        async with self.db.get_session() as session:
            return await RecordingCRUD.expiration_stats(session, now)

    async def run_daily(self) -> None:
        """Scheduler entry point"""
        result = await self.cleanup_expired()
        stats = await self.expiration_stats()
        logger.info("Daily retention run", **result, **stats)
