"""
Scheduled job triggers for external cron
"""

import hmac
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request

from ...config import Settings
from ...errors import AuthenticationError
from ...utils.helpers import utc_now
from ..deps import bearer_token, get_app_settings

logger = structlog.get_logger("meetflow.web.cron")

router = APIRouter(prefix="/api/cron", tags=["cron"])


async def verify_cron_secret(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_app_settings)
) -> None:
    """Bearer CRON_SECRET; an unset secret rejects every call"""
    token = bearer_token(authorization)
    if not settings.cron_secret or not token:
        raise AuthenticationError("Cron secret missing", stage="retention")
    if not hmac.compare_digest(token.encode(), settings.cron_secret.encode()):
        raise AuthenticationError("Cron secret mismatch", stage="retention")


@router.api_route("/retention", methods=["GET", "POST"], dependencies=[Depends(verify_cron_secret)])
async def run_retention(request: Request):
    """Purge recordings past their retention deadline"""
    result = await request.app.state.retention.cleanup_expired()
    return {
        "success": True,
        "deleted": result["deleted"],
        "errors": result["errors"],
        "timestamp": utc_now().isoformat(),
    }


@router.get("/retention/stats", dependencies=[Depends(verify_cron_secret)])
async def retention_stats(request: Request):
    stats = await request.app.state.retention.expiration_stats()
    return {**stats, "timestamp": utc_now().isoformat()}
