"""
Onboarding

Two pieces:
1. A resumable draft of the wizard (current step + partial answers),
   persisted to a small JSON file so an interrupted onboarding picks up
   where it stopped.
2. The final save, run as a saga because it touches storage, the profile,
   the couple and possibly an invite, with no atomic commit across them.

DESIGN DECISION: The draft carries a schema version. A draft written with
a different version is discarded on load instead of being half-applied.
It is also cleared once the save saga completes.

For P2 the join step runs before the profile update, because joining
resets onboarding_completed and the profile update is what sets it.
"""

import base64
import binascii
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional, Union

import structlog
from pydantic import BaseModel, Field, ValidationError

from gossip_couple.audit.logger import AuditLogger
from gossip_couple.models.entities import MemberRole, RiskTolerance
from gossip_couple.services.avatars import AvatarService
from gossip_couple.services.invites import InviteManager
from gossip_couple.services.repository.interface import CoupleRepository, Table
from gossip_couple.services.saga import Saga, SagaStep

logger = structlog.get_logger(__name__)


DRAFT_KEY = "gossip_onboarding_backup"

UPLOAD_AVATAR = "upload_avatar"
JOIN_COUPLE = "join_couple"
UPDATE_PROFILE = "update_profile"
UPDATE_COUPLE = "update_couple"


class OnboardingAnswers(BaseModel):
    """What the wizard collects. Numeric answers stay as typed text."""
    user_name: str = ""
    couple_name: Optional[str] = None
    monthly_income: str = ""
    income_receipt_date: str = ""
    risk_profile: RiskTolerance = RiskTolerance.MEDIUM
    calendar_connected: bool = False
    profile_image: Optional[str] = None


class OnboardingDraft(BaseModel):
    step: int = Field(default=1, ge=1)
    answers: OnboardingAnswers = Field(default_factory=OnboardingAnswers)
    schema_version: int = 1


class DraftStore:
    """
    JSON-file persistence for one onboarding draft.

    The file holds {"gossip_onboarding_backup": <draft>}.
    """

    def __init__(self, path: Union[str, Path], schema_version: int = 1):
        self._path = Path(path)
        self.schema_version = schema_version

    def save(self, draft: OnboardingDraft) -> None:
        draft = draft.model_copy(update={"schema_version": self.schema_version})
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps({DRAFT_KEY: draft.model_dump(mode="json")}),
            encoding="utf-8",
        )

    def load(self) -> Optional[OnboardingDraft]:
        """The saved draft, or None when absent, unreadable or from another schema version."""
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            draft = OnboardingDraft.model_validate(raw[DRAFT_KEY])
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning("onboarding_draft_unreadable", path=str(self._path), error=str(e))
            return None
        if draft.schema_version != self.schema_version:
            logger.info(
                "onboarding_draft_invalidated",
                found=draft.schema_version,
                expected=self.schema_version,
            )
            self.clear()
            return None
        return draft

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)


def decode_data_url(reference: str) -> Optional[tuple[bytes, str]]:
    """Split a base64 data URL into (bytes, content type). None if it isn't one."""
    if not reference.startswith("data:") or "," not in reference:
        return None
    header, payload = reference.split(",", 1)
    if ";base64" not in header:
        return None
    content_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    try:
        return base64.b64decode(payload, validate=True), content_type
    except (binascii.Error, ValueError):
        return None


def parse_income(text: str) -> float:
    try:
        value = Decimal((text or "0").replace(",", "."))
    except InvalidOperation:
        raise ValueError(f"Monthly income is not a number: {text!r}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Monthly income out of range: {text!r}")
    return float(value)


def parse_receipt_day(text: str) -> int:
    try:
        day = int(text or "1")
    except ValueError:
        raise ValueError(f"Income receipt day is not a number: {text!r}")
    if not 1 <= day <= 31:
        raise ValueError(f"Income receipt day out of range: {day}")
    return day


class OnboardingSaveSaga(Saga):
    """
    Persist finished onboarding answers.

    Raises ValueError on construction when the income or receipt day
    does not parse.

    Steps, in order, each only when it applies:
    - upload_avatar: data-URL images go to storage; on failure the raw
      reference is kept
    - join_couple (P2 with an invite token)
    - update_profile: name, income, receipt day, avatar, completed flag
    - update_couple (P1 with a couple name): name and risk profile
    """

    name = "onboarding_save"

    def __init__(
        self,
        user_id: str,
        role: MemberRole,
        answers: OnboardingAnswers,
        repository: CoupleRepository,
        avatars: Optional[AvatarService] = None,
        invites: Optional[InviteManager] = None,
        invite_token: Optional[str] = None,
        draft_store: Optional[DraftStore] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.user_id = user_id
        self.role = role
        self.answers = answers
        self.avatar_url = answers.profile_image
        # Parsed before any step runs, so bad answers write nothing.
        self.monthly_income = parse_income(answers.monthly_income)
        self.income_receipt_day = parse_receipt_day(answers.income_receipt_date)
        self._repository = repository
        self._avatars = avatars
        self._invites = invites
        self._invite_token = invite_token
        self._draft_store = draft_store

        steps = []
        if answers.profile_image:
            steps.append(SagaStep(UPLOAD_AVATAR, self._upload_avatar))
        if role == MemberRole.P2 and invite_token:
            steps.append(SagaStep(JOIN_COUPLE, self._join_couple))
        steps.append(SagaStep(UPDATE_PROFILE, self._update_profile))
        if role == MemberRole.P1 and answers.couple_name:
            steps.append(SagaStep(UPDATE_COUPLE, self._update_couple))
        super().__init__(steps, audit_logger=audit_logger)

    async def _upload_avatar(self) -> Optional[str]:
        decoded = decode_data_url(self.answers.profile_image or "")
        if decoded is None or self._avatars is None:
            return self.avatar_url
        data, content_type = decoded
        url = await self._avatars.upload(self.user_id, data, content_type)
        if url:
            self.avatar_url = url
        return self.avatar_url

    async def _join_couple(self) -> str:
        if self._invites is None:
            raise RuntimeError("No invite manager configured")
        return await self._invites.join_couple(self.user_id, self._invite_token)

    async def _update_profile(self) -> list[dict]:
        return await self._repository.update(
            Table.PROFILES,
            {"id": self.user_id},
            {
                "full_name": self.answers.user_name,
                "monthly_income": self.monthly_income,
                "income_receipt_day": self.income_receipt_day,
                "avatar_url": self.avatar_url,
                "onboarding_completed": True,
            },
        )

    async def _update_couple(self) -> Optional[list[dict]]:
        profile = await self._repository.select_one(Table.PROFILES, {"id": self.user_id})
        couple_id = (profile or {}).get("couple_id")
        if not couple_id:
            logger.info("onboarding_couple_update_skipped", user_id=self.user_id)
            return None
        return await self._repository.update(
            Table.COUPLES,
            {"id": couple_id},
            {
                "name": self.answers.couple_name,
                "financial_risk_profile": self.answers.risk_profile.value,
            },
        )

    async def run(self) -> "OnboardingSaveSaga":
        await super().run()
        if self._draft_store is not None:
            self._draft_store.clear()
        return self
