"""
Application Context

DESIGN DECISION: Session, profile and couple live in one explicitly
constructed object that is passed to whatever needs them, instead of
process-wide state.

Initialization order is fixed: session -> profile -> couple. The attached
sync store is rescoped whenever the couple changes, and sign_out() closes
it before the identity is cleared, so no event from the previous identity
can land after sign-out.
"""

from typing import Optional

import structlog

from gossip_couple.auth.session import AuthIdentity, AuthService
from gossip_couple.models.entities import (
    Couple,
    CoupleProfile,
    MemberRole,
    Profile,
    RiskTolerance,
    UserDetail,
)
from gossip_couple.services.repository.interface import CoupleRepository, Table
from gossip_couple.sync.mappers import map_couple, map_profile
from gossip_couple.sync.store import SyncStore

logger = structlog.get_logger(__name__)


class OwnershipError(Exception):
    """Attempt to edit a profile or connection owned by the other member."""
    pass


class MissingScopeError(Exception):
    """An operation needs an authenticated identity or a couple scope."""
    pass


def _detail(profile: Optional[Profile]) -> UserDetail:
    if profile is None:
        return UserDetail()
    return UserDetail(
        name=profile.name or "",
        email=profile.email or "",
        monthly_income=str(profile.monthly_income),
        income_receipt_date=str(profile.income_receipt_date or ""),
    )


class AppContext:
    """
    Who is signed in, their profile, and their couple.

    Usage:
        context = AppContext(auth_service, repository, sync_store)
        await context.initialize()
        if context.subscription_active: ...
        await context.sign_out()
    """

    def __init__(
        self,
        auth: AuthService,
        repository: CoupleRepository,
        sync_store: Optional[SyncStore] = None,
    ):
        self._auth = auth
        self._repository = repository
        self._sync_store = sync_store
        self.identity: Optional[AuthIdentity] = None
        self.profile: Optional[Profile] = None
        self.couple: Optional[Couple] = None
        self.loading = True

    # -------------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------------

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.user_id if self.identity else None

    @property
    def couple_id(self) -> Optional[str]:
        return self.profile.couple_id if self.profile else None

    @property
    def is_p1(self) -> bool:
        return bool(self.profile and self.profile.role == MemberRole.P1)

    @property
    def is_p2(self) -> bool:
        return bool(self.profile and self.profile.role == MemberRole.P2)

    @property
    def subscription_active(self) -> bool:
        return bool(self.couple and self.couple.subscription_active)

    @property
    def onboarding_completed(self) -> bool:
        return bool(self.profile and self.profile.onboarding_completed)

    @property
    def sync_store(self) -> Optional[SyncStore]:
        return self._sync_store

    def require_user_id(self) -> str:
        if not self.user_id:
            raise MissingScopeError("No authenticated user")
        return self.user_id

    def require_couple_id(self) -> str:
        if not self.couple_id:
            raise MissingScopeError("User is not linked to a couple")
        return self.couple_id

    def ensure_can_edit(self, owner_user_id: str) -> None:
        """Reject edits to a profile or calendar connection owned by someone else."""
        if owner_user_id != self.require_user_id():
            raise OwnershipError("You can only edit your own profile and connections")

    def ensure_in_couple(self, couple_id: str) -> None:
        """Reject edits to a couple the signed-in member does not belong to."""
        if couple_id != self.require_couple_id():
            raise OwnershipError("You can only edit your own couple")

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> "AppContext":
        """Load session, then profile, then couple, then scope the sync store."""
        self.loading = True
        try:
            self.identity = await self._auth.get_session()
            if self.identity:
                await self.refresh_profile()
            else:
                self.profile = None
                self.couple = None
                await self._rescope()
        finally:
            self.loading = False
        return self

    async def sign_in(self, email: str, password: str) -> AuthIdentity:
        self.identity = await self._auth.sign_in(email, password)
        await self.refresh_profile()
        return self.identity

    async def sign_up(self, email: str, password: str) -> AuthIdentity:
        self.identity = await self._auth.sign_up(email, password)
        await self.refresh_profile()
        return self.identity

    async def refresh_profile(self) -> None:
        """Re-read the profile and couple rows, rescoping the sync store if needed."""
        user_id = self.require_user_id()
        try:
            row = await self._repository.select_one(Table.PROFILES, {"id": user_id})
            self.profile = map_profile(row) if row else None
            self.couple = None
            if self.profile and self.profile.couple_id:
                couple_row = await self._repository.select_one(
                    Table.COUPLES, {"id": self.profile.couple_id}
                )
                self.couple = map_couple(couple_row) if couple_row else None
        except Exception as e:
            logger.warning("profile_fetch_failed", user_id=user_id, error=str(e))
            self.profile = None
            self.couple = None
        await self._rescope()

    async def load_couple_profile(self) -> CoupleProfile:
        """
        Both members plus the couple's shared preferences.

        The couple row is re-read, since onboarding and settings write the
        name and risk profile after the context was initialized. Risk comes
        from the couple, then P1's legacy profile column, then medium.
        """
        couple_id = self.require_couple_id()
        couple_row = await self._repository.select_one(Table.COUPLES, {"id": couple_id})
        if couple_row:
            self.couple = map_couple(couple_row)
        rows = await self._repository.select(Table.PROFILES, {"couple_id": couple_id})
        members = [map_profile(r) for r in rows]
        p1 = next((m for m in members if m.role == MemberRole.P1), None)
        p2 = next((m for m in members if m.role == MemberRole.P2), None)
        risk = (
            (self.couple.risk_profile if self.couple else None)
            or (p1.risk_profile if p1 else None)
            or RiskTolerance.MEDIUM
        )
        return CoupleProfile(
            user1=_detail(p1),
            user2=_detail(p2),
            couple_name=(self.couple.name if self.couple and self.couple.name else ""),
            risk_tolerance=risk,
        )

    async def sign_out(self) -> None:
        """Close the sync store, then drop the identity."""
        if self._sync_store is not None:
            await self._sync_store.close()
        try:
            await self._auth.sign_out()
        finally:
            self.identity = None
            self.profile = None
            self.couple = None

    async def _rescope(self) -> None:
        if self._sync_store is not None:
            await self._sync_store.rescope(self.couple_id)
