"""
Tests for the onboarding draft and the onboarding save saga.
"""

import asyncio
import base64
import json

import pytest

from gossip_couple.auth.context import AppContext
from gossip_couple.auth.session import AuthService
from gossip_couple.models.entities import MemberRole, RiskTolerance
from gossip_couple.onboarding import (
    DRAFT_KEY,
    JOIN_COUPLE,
    UPDATE_COUPLE,
    UPDATE_PROFILE,
    UPLOAD_AVATAR,
    DraftStore,
    OnboardingAnswers,
    OnboardingDraft,
    OnboardingSaveSaga,
    decode_data_url,
)
from gossip_couple.services.avatars import AvatarService
from gossip_couple.services.invites import InviteManager
from gossip_couple.services.repository import InMemoryBackend
from gossip_couple.services.repository.interface import Table
from gossip_couple.services.saga import SagaStepError

from conftest import COUPLE_ID, USER_ID, FakeBucket, FakeGoTrue, FakeStorage, make_user


PNG_DATA_URL = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()


def answers(**overrides):
    values = {
        "user_name": "Ana",
        "couple_name": "Ana & Bia",
        "monthly_income": "5000,50",
        "income_receipt_date": "5",
        "risk_profile": RiskTolerance.HIGH,
    }
    values.update(overrides)
    return OnboardingAnswers(**values)


def profile(backend, user_id):
    return next(p for p in backend.rows(Table.PROFILES) if p["id"] == user_id)


class TestDraftStore:
    """Tests for the resumable onboarding draft."""

    def test_save_and_restore(self, tmp_path):
        """Test a saved draft is restored with its step and answers."""
        store = DraftStore(tmp_path / "draft.json")
        store.save(OnboardingDraft(step=3, answers=answers()))

        restored = store.load()
        assert restored.step == 3
        assert restored.answers.user_name == "Ana"
        assert DRAFT_KEY in json.loads((tmp_path / "draft.json").read_text())

    def test_missing_draft(self, tmp_path):
        """Test no file means no draft."""
        assert DraftStore(tmp_path / "none.json").load() is None

    def test_version_mismatch_discards(self, tmp_path):
        """Test a draft from another schema version is discarded and removed."""
        path = tmp_path / "draft.json"
        DraftStore(path, schema_version=1).save(OnboardingDraft(step=2))

        assert DraftStore(path, schema_version=2).load() is None
        assert not path.exists()

    def test_unreadable_draft(self, tmp_path):
        """Test a corrupt file is ignored."""
        path = tmp_path / "draft.json"
        path.write_text("{not json")
        assert DraftStore(path).load() is None

    def test_clear(self, tmp_path):
        """Test clear removes the draft and tolerates a missing file."""
        store = DraftStore(tmp_path / "draft.json")
        store.save(OnboardingDraft())
        store.clear()
        store.clear()
        assert store.load() is None


class TestDecodeDataUrl:
    """Tests for inline image decoding."""

    def test_png_data_url(self):
        """Test a base64 data URL decodes to bytes and content type."""
        data, content_type = decode_data_url(PNG_DATA_URL)
        assert data == b"\x89PNG fake"
        assert content_type == "image/png"

    @pytest.mark.parametrize("reference", [
        "https://cdn.example.com/a.png",
        "data:image/png,rawtext",
        "data:image/png;base64,@@@",
    ])
    def test_not_decodable(self, reference):
        """Test plain URLs and malformed data URLs are left alone."""
        assert decode_data_url(reference) is None


class TestOnboardingSaveSaga:
    """Tests for persisting finished onboarding answers."""

    def test_p1_save(self, tmp_path):
        """Test P1 uploads the avatar, updates profile and couple, then clears the draft."""
        backend = InMemoryBackend(seed={
            "profiles": [{"id": "p1", "couple_id": COUPLE_ID, "role": "P1"}],
            "couples": [{"id": COUPLE_ID, "name": "My Couple"}],
        })
        draft_store = DraftStore(tmp_path / "draft.json")
        draft_store.save(OnboardingDraft(step=4, answers=answers(profile_image=PNG_DATA_URL)))
        saga = OnboardingSaveSaga(
            "p1",
            MemberRole.P1,
            answers(profile_image=PNG_DATA_URL),
            backend,
            avatars=AvatarService(FakeStorage(FakeBucket())),
            draft_store=draft_store,
        )

        asyncio.run(saga.run())

        row = profile(backend, "p1")
        couple = backend.rows(Table.COUPLES)[0]
        assert saga.step_names == [UPLOAD_AVATAR, UPDATE_PROFILE, UPDATE_COUPLE]
        assert row["full_name"] == "Ana"
        assert row["monthly_income"] == 5000.5
        assert row["income_receipt_day"] == 5
        assert row["onboarding_completed"] is True
        assert row["avatar_url"].startswith("https://cdn.example.com/avatars/p1-")
        assert couple["name"] == "Ana & Bia"
        assert couple["financial_risk_profile"] == "high"
        assert draft_store.load() is None

    def test_chosen_risk_reaches_couple_profile(self):
        """Test the risk picked during onboarding is what the household view reports."""
        backend = InMemoryBackend(seed={
            "profiles": [{"id": USER_ID, "couple_id": COUPLE_ID, "role": "P1"}],
            "couples": [{"id": COUPLE_ID, "name": "My Couple"}],
        })
        context = AppContext(AuthService(FakeGoTrue(session_user=make_user())), backend)

        async def scenario():
            await context.initialize()
            await OnboardingSaveSaga(
                USER_ID, MemberRole.P1, answers(risk_profile=RiskTolerance.LOW), backend
            ).run()
            return await context.load_couple_profile()

        household = asyncio.run(scenario())
        assert household.risk_tolerance == RiskTolerance.LOW
        assert household.couple_name == "Ana & Bia"

    def test_p2_join_before_profile_update(self):
        """Test P2 joins first, so onboarding ends up completed."""
        backend = InMemoryBackend(seed={
            "profiles": [
                {"id": "p1", "couple_id": COUPLE_ID, "role": "P1"},
                {"id": "p2"},
            ],
            "invites": [{"couple_id": COUPLE_ID, "token": "tok", "status": "pending", "created_by": "p1"}],
        })
        saga = OnboardingSaveSaga(
            "p2",
            MemberRole.P2,
            answers(couple_name=None),
            backend,
            invites=InviteManager(backend),
            invite_token="tok",
        )

        asyncio.run(saga.run())

        row = profile(backend, "p2")
        assert saga.step_names == [JOIN_COUPLE, UPDATE_PROFILE]
        assert row["couple_id"] == COUPLE_ID
        assert row["role"] == "P2"
        assert row["onboarding_completed"] is True

    def test_avatar_failure_keeps_reference(self):
        """Test a failed upload keeps the raw image reference."""
        backend = InMemoryBackend(seed={"profiles": [{"id": "p1"}]})
        saga = OnboardingSaveSaga(
            "p1",
            MemberRole.P1,
            answers(couple_name=None, profile_image=PNG_DATA_URL),
            backend,
            avatars=AvatarService(FakeStorage(FakeBucket(fail=True))),
        )
        asyncio.run(saga.run())
        assert profile(backend, "p1")["avatar_url"] == PNG_DATA_URL

    def test_invalid_receipt_day_rejected(self, tmp_path):
        """Test a bad receipt day is rejected up front and keeps the draft."""
        backend = InMemoryBackend(seed={"profiles": [{"id": "p1"}]})
        draft_store = DraftStore(tmp_path / "draft.json")
        draft_store.save(OnboardingDraft(step=4))

        with pytest.raises(ValueError, match="receipt day"):
            OnboardingSaveSaga(
                "p1", MemberRole.P1, answers(income_receipt_date="40"), backend, draft_store=draft_store
            )

        assert profile(backend, "p1").get("onboarding_completed") is None
        assert draft_store.load() is not None

    @pytest.mark.parametrize("income", ["abc", "-10", "NaN"])
    def test_bad_income_writes_nothing(self, income):
        """Test a bad income leaves the invitee outside the couple and the invite unused."""
        backend = InMemoryBackend(seed={
            "profiles": [
                {"id": "p1", "couple_id": COUPLE_ID, "role": "P1"},
                {"id": "p2"},
            ],
            "invites": [{"couple_id": COUPLE_ID, "token": "tok", "status": "pending", "created_by": "p1"}],
        })

        with pytest.raises(ValueError, match="Monthly income"):
            OnboardingSaveSaga(
                "p2",
                MemberRole.P2,
                answers(couple_name=None, monthly_income=income, profile_image=PNG_DATA_URL),
                backend,
                avatars=AvatarService(FakeStorage(FakeBucket())),
                invites=InviteManager(backend),
                invite_token="tok",
            )

        assert profile(backend, "p2") == {"id": "p2"}
        assert backend.rows(Table.INVITES)[0]["status"] == "pending"

    def test_failed_step_keeps_draft(self, tmp_path):
        """Test a failing step stops the saga and the draft survives for a retry."""
        backend = InMemoryBackend(seed={"profiles": [{"id": "p2"}]})
        draft_store = DraftStore(tmp_path / "draft.json")
        draft_store.save(OnboardingDraft(step=4))
        saga = OnboardingSaveSaga(
            "p2",
            MemberRole.P2,
            answers(couple_name=None),
            backend,
            invites=InviteManager(backend),
            invite_token="missing",
            draft_store=draft_store,
        )

        with pytest.raises(SagaStepError) as exc:
            asyncio.run(saga.run())

        assert exc.value.step == JOIN_COUPLE
        assert saga.completed_steps == []
        assert profile(backend, "p2").get("onboarding_completed") is None
        assert draft_store.load() is not None

    def test_couple_update_skipped_without_couple(self):
        """Test P1 without a couple yet skips the couple update."""
        backend = InMemoryBackend(seed={"profiles": [{"id": "p1"}]})
        saga = OnboardingSaveSaga("p1", MemberRole.P1, answers(), backend)
        asyncio.run(saga.run())
        assert saga.done
        assert backend.rows(Table.COUPLES) == []
