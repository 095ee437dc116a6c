"""
Account Settings

Edits made from the settings screen after onboarding:
1. A member's own profile (name, income, receipt day)
2. The couple's shared name and risk profile
3. Disconnecting the member's own Google Calendar

CRITICAL BOUNDARY: Ownership is checked against the AppContext before
anything is written. A member can never edit the other member's profile
or calendar connection, nor a couple they are not part of.
"""

from typing import Optional

import structlog
from pydantic import BaseModel

from gossip_couple.audit.logger import AuditLogger
from gossip_couple.auth.context import AppContext
from gossip_couple.models.entities import RiskTolerance
from gossip_couple.onboarding import parse_income, parse_receipt_day
from gossip_couple.services.repository.interface import CoupleRepository, Table

logger = structlog.get_logger(__name__)


class ProfileUpdate(BaseModel):
    """Fields left as None are not touched. Numbers stay as typed text."""
    name: Optional[str] = None
    monthly_income: Optional[str] = None
    income_receipt_date: Optional[str] = None


class CoupleUpdate(BaseModel):
    name: Optional[str] = None
    risk_tolerance: Optional[RiskTolerance] = None


class AccountSettingsService:
    """
    Args:
        context: the signed-in member's context, used for ownership checks
        repository: repository for profiles, couples and user_integrations
    """

    def __init__(
        self,
        context: AppContext,
        repository: CoupleRepository,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._context = context
        self._repository = repository
        self._audit = audit_logger or AuditLogger()

    async def update_profile(self, user_id: str, update: ProfileUpdate) -> list[dict]:
        """
        Update the member's own profile.

        Raises:
            OwnershipError: user_id is not the signed-in member
            ValueError: income or receipt day does not parse
        """
        self._context.ensure_can_edit(user_id)

        changes: dict = {}
        if update.name is not None:
            changes["full_name"] = update.name
        if update.monthly_income is not None:
            changes["monthly_income"] = parse_income(update.monthly_income)
        if update.income_receipt_date is not None:
            changes["income_receipt_day"] = parse_receipt_day(update.income_receipt_date)
        if not changes:
            return []

        rows = await self._repository.update(Table.PROFILES, {"id": user_id}, changes)
        await self._audit.log_record_saved(self._context.couple_id, Table.PROFILES.value, user_id)
        await self._context.refresh_profile()
        return rows

    async def update_couple(self, couple_id: str, update: CoupleUpdate) -> list[dict]:
        """
        Update the couple's name and risk profile.

        Raises:
            OwnershipError: the member does not belong to couple_id
            MissingScopeError: the member has no couple
        """
        self._context.ensure_in_couple(couple_id)

        changes: dict = {}
        if update.name is not None:
            changes["name"] = update.name
        if update.risk_tolerance is not None:
            changes["financial_risk_profile"] = update.risk_tolerance.value
        if not changes:
            return []

        rows = await self._repository.update(Table.COUPLES, {"id": couple_id}, changes)
        await self._audit.log_record_saved(couple_id, Table.COUPLES.value, couple_id)
        await self._context.refresh_profile()
        return rows

    async def disconnect_calendar(self, user_id: str) -> bool:
        """
        Forget the member's stored Google refresh token.

        Access is not revoked on Google's side. Returns False when there
        was nothing to disconnect.

        Raises:
            OwnershipError: user_id is not the signed-in member
        """
        self._context.ensure_can_edit(user_id)
        rows = await self._repository.update(
            Table.USER_INTEGRATIONS,
            {"user_id": user_id},
            {"google_refresh_token": None},
        )
        logger.info("calendar_disconnected", user_id=user_id, had_connection=bool(rows))
        return bool(rows)
