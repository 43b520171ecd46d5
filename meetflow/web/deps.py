"""
FastAPI dependencies
Components live on app.state; callers authenticate with a bearer JWT
"""

from dataclasses import dataclass
from typing import AsyncIterator, Optional

import structlog
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..database.crud import ActorCRUD
from ..database.models import CallRecording, Meeting
from ..errors import AuthenticationError, AuthorizationError
from ..utils.security import SecurityManager

logger = structlog.get_logger("meetflow.web.deps")

ROLES = ("admin", "company", "sdr")


@dataclass
class Actor:
    """Authenticated caller"""
    user_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_security(request: Request) -> SecurityManager:
    return request.app.state.security


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.db.get_session() as session:
        yield session


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_actor(
    authorization: Optional[str] = Header(None),
    security: SecurityManager = Depends(get_security)
) -> Actor:
    """Decode the caller's JWT into an Actor"""
    token = bearer_token(authorization)
    if not token:
        raise AuthenticationError("Missing bearer token", stage="auth")

    claims = security.verify_token(token)
    if not claims or not claims.get("sub") or claims.get("role") not in ROLES:
        raise AuthenticationError("Invalid bearer token", stage="auth")

    return Actor(user_id=str(claims["sub"]), role=claims["role"])


def require_roles(*roles: str):
    """Dependency factory restricting an endpoint to the given roles"""

    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise AuthorizationError(
                "Role not permitted for this action",
                stage="auth",
                role=actor.role,
                user_id=actor.user_id,
            )
        return actor

    return dependency


def company_owns(actor: Actor, campaign) -> bool:
    company = campaign.company if campaign is not None else None
    return actor.role == "company" and company is not None and company.user_id == actor.user_id


async def rep_owns(session: AsyncSession, actor: Actor, sales_rep_id) -> bool:
    if actor.role != "sdr":
        return False
    rep = await ActorCRUD.get_sales_rep_by_user(session, actor.user_id)
    return rep is not None and rep.id == sales_rep_id


async def authorize_meeting(session: AsyncSession, actor: Actor, meeting: Meeting) -> None:
    """Admin, the owning company, or the rep who booked the meeting"""
    if actor.is_admin or company_owns(actor, meeting.campaign):
        return
    if await rep_owns(session, actor, meeting.sales_rep_id):
        return
    raise AuthorizationError(
        "Not allowed to access this meeting",
        stage="auth",
        user_id=actor.user_id,
        meeting_id=str(meeting.id),
    )


async def authorize_recording(session: AsyncSession, actor: Actor, recording: CallRecording) -> None:
    """Admin, the owning company, or the uploading rep"""
    if actor.is_admin or company_owns(actor, recording.campaign):
        return
    if await rep_owns(session, actor, recording.sales_rep_id):
        return
    raise AuthorizationError(
        "Not allowed to access this recording",
        stage="auth",
        user_id=actor.user_id,
        call_recording_id=str(recording.id),
    )
