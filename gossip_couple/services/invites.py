"""
Invite Manager

How the second member joins a couple:
1. P1 gets (or creates) an invite link: {origin}/invite?token=<token>
2. Anyone holding the link can validate it (public, safe fields only)
3. The signed-in invitee consumes it: their profile joins the couple as P2

DESIGN DECISION: Runs with the service-role repository and checks the
caller's role itself, since an invitee has no couple yet and row-level
policies would hide the invite from them.

Tokens come from secrets.token_urlsafe.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from pydantic import BaseModel

from gossip_couple.audit.logger import AuditLogger
from gossip_couple.models.entities import InviteStatus, MemberRole
from gossip_couple.models.rows import InviteRow
from gossip_couple.services.repository.interface import CoupleRepository, Table

logger = structlog.get_logger(__name__)


DEFAULT_COUPLE_NAME = "Novo Casal"
DEFAULT_INVITER_NAME = "Seu Parceiro"


class InviteError(Exception):
    """Base exception for invite operations."""
    pass


class InviteNotAllowedError(InviteError):
    """Only a P1 member who already has a couple can issue invites."""
    pass


class InvalidInviteError(InviteError):
    """Unknown, already accepted or expired token."""
    pass


class InviteLink(BaseModel):
    token: str
    url: str


class InviteValidation(BaseModel):
    valid: bool
    couple_name: Optional[str] = None
    inviter_name: Optional[str] = None
    message: Optional[str] = None


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_live(invite: InviteRow, now: Optional[datetime] = None) -> bool:
    """Pending and not yet expired. An invite without expiry never expires."""
    if invite.status != InviteStatus.PENDING.value:
        return False
    expires = _parse_timestamp(invite.expires_at)
    return expires is None or expires > (now or datetime.now(timezone.utc))


def invite_url(origin: str, token: str) -> str:
    return f"{origin or ''}/invite?token={token}"


class InviteManager:
    """
    Issue, validate and consume couple invites.

    Args:
        repository: service-role repository
        ttl_days: days until a new invite expires
    """

    def __init__(
        self,
        repository: CoupleRepository,
        ttl_days: int = 7,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._repository = repository
        self._ttl_days = ttl_days
        self._audit = audit_logger or AuditLogger()

    async def _require_p1_couple(self, user_id: str) -> str:
        profile = await self._repository.select_one(Table.PROFILES, {"id": user_id})
        if not profile or profile.get("role") != MemberRole.P1.value or not profile.get("couple_id"):
            raise InviteNotAllowedError("Only P1 users with a couple can manage invites")
        return profile["couple_id"]

    async def _live_invites(self, filters: dict) -> list[InviteRow]:
        rows = await self._repository.select(
            Table.INVITES,
            {**filters, "status": InviteStatus.PENDING.value},
            order_by="created_at",
            descending=True,
        )
        invites = [InviteRow.decode(r) for r in rows]
        return [i for i in invites if is_live(i)]

    async def get_active_invite(self, user_id: str, origin: str = "") -> InviteLink:
        """Return the newest live invite for the user's couple, creating one if none."""
        couple_id = await self._require_p1_couple(user_id)
        live = await self._live_invites({"couple_id": couple_id})
        if live:
            return InviteLink(token=live[0].token, url=invite_url(origin, live[0].token))
        return await self._issue(couple_id, user_id, origin, email=None)

    async def create_invite(
        self,
        user_id: str,
        origin: str = "",
        email: Optional[str] = None,
    ) -> InviteLink:
        """Always issue a fresh invite."""
        couple_id = await self._require_p1_couple(user_id)
        return await self._issue(couple_id, user_id, origin, email)

    async def _issue(
        self,
        couple_id: str,
        user_id: str,
        origin: str,
        email: Optional[str],
    ) -> InviteLink:
        token = secrets.token_urlsafe(24)
        expires_at = datetime.now(timezone.utc) + timedelta(days=self._ttl_days)
        await self._repository.insert(Table.INVITES, {
            "couple_id": couple_id,
            "created_by": user_id,
            "token": token,
            "email": email,
            "status": InviteStatus.PENDING.value,
            "expires_at": expires_at.isoformat(),
        })
        await self._audit.log_invite_created(couple_id, user_id)
        return InviteLink(token=token, url=invite_url(origin, token))

    async def validate_invite(self, token: Optional[str]) -> InviteValidation:
        """
        Public check of an invite token.

        Never raises for a bad token; returns valid=False instead.
        """
        if not token:
            return InviteValidation(valid=False, message="Missing token")
        live = await self._live_invites({"token": token})
        if not live:
            return InviteValidation(valid=False, message="Invalid or expired invite")

        invite = live[0]
        couple = await self._repository.select_one(Table.COUPLES, {"id": invite.couple_id})
        inviter = None
        if invite.created_by:
            inviter = await self._repository.select_one(Table.PROFILES, {"id": invite.created_by})
        return InviteValidation(
            valid=True,
            couple_name=(couple or {}).get("name") or DEFAULT_COUPLE_NAME,
            inviter_name=(inviter or {}).get("full_name") or DEFAULT_INVITER_NAME,
        )

    async def join_couple(self, user_id: str, token: str) -> str:
        """
        Consume an invite: the user joins its couple as P2.

        The joiner is sent back through onboarding. Returns the couple id.

        Raises:
            InvalidInviteError
        """
        live = await self._live_invites({"token": token})
        if not live:
            raise InvalidInviteError("Invalid invite")
        invite = live[0]

        await self._repository.update(
            Table.PROFILES,
            {"id": user_id},
            {
                "couple_id": invite.couple_id,
                "role": MemberRole.P2.value,
                "onboarding_completed": False,
            },
        )
        await self._repository.update(
            Table.INVITES,
            {"token": token},
            {"status": InviteStatus.ACCEPTED.value},
        )
        logger.info("invite_accepted", couple_id=invite.couple_id, user_id=user_id)
        await self._audit.log_couple_joined(invite.couple_id, user_id)
        return invite.couple_id
