"""
Main Orchestrator for Gossip Couple

Ties the components together and defines the end-to-end flows:
1. Chat (utterance -> dispatcher -> tool callbacks -> reply)
2. Component wiring from settings (backend, assistant, integrations)

DESIGN DECISION: The orchestrator enforces the boundaries:
- The assistant only reads the sync snapshot and writes through callbacks
- A turn that is still running blocks a new turn in the same chat
- Missing integration config disables that integration, not the app

This is the "glue" that keeps the system usable even when individual
integrations are down or unconfigured.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

import structlog
from pydantic import BaseModel, Field

from gossip_couple.agents import (
    AssistantCallbacks,
    AssistantDispatcher,
    AssistantReply,
    GeminiCompletionClient,
    InvestmentAdvisor,
    TurnInProgressError,
)
from gossip_couple.audit import AuditLogger
from gossip_couple.auth import AppContext, AuthService
from gossip_couple.config import get_settings
from gossip_couple.models.entities import CoupleProfile, SyncSnapshot
from gossip_couple.onboarding import DraftStore
from gossip_couple.services.account_settings import AccountSettingsService
from gossip_couple.services.avatars import AvatarService
from gossip_couple.services.calendar import GoogleCalendarService
from gossip_couple.services.invites import InviteManager
from gossip_couple.services.mutations import MutationService
from gossip_couple.services.payments import PaymentService
from gossip_couple.services.portfolio import PortfolioPriceUpdater
from gossip_couple.services.repository import InMemoryBackend
from gossip_couple.services.repository.supabase_backend import (
    SupabaseBackend,
    create_supabase_client,
)
from gossip_couple.sync import SyncStore

logger = structlog.get_logger(__name__)


GREETING = (
    "Olá! Sou seu assistente financeiro pessoal. Posso ajudar a gerenciar "
    "despesas, metas ou agendar compromissos no Google Calendar. Como posso ajudar hoje?"
)
CONNECTION_ERROR_MESSAGE = "Desculpe, tive um problema ao conectar. Tente novamente."


class ChatMessage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    role: str
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ChatSession:
    """
    One assistant conversation for the signed-in member.

    Flow:
    1. User message is appended to the history
    2. Dispatcher runs the turn against the current sync snapshot
    3. Reply (or the connection-error message) is appended

    The history opens with a fixed greeting.
    """

    def __init__(
        self,
        dispatcher: AssistantDispatcher,
        context: AppContext,
        callbacks: AssistantCallbacks,
        profile: Optional[CoupleProfile] = None,
        conversation_id: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._dispatcher = dispatcher
        self._audit = audit_logger
        self._context = context
        self._callbacks = callbacks
        self.profile = profile
        self.conversation_id = conversation_id or str(uuid4())
        self.messages: list[ChatMessage] = [ChatMessage(role="model", text=GREETING)]

    def _snapshot(self) -> SyncSnapshot:
        store = self._context.sync_store
        return store.snapshot if store is not None else SyncSnapshot()

    async def send(self, text: str) -> ChatMessage:
        """
        Send a user message and return the model's reply message.

        Raises:
            TurnInProgressError: the previous message is still being handled
        """
        self.messages.append(ChatMessage(role="user", text=text))
        try:
            reply: AssistantReply = await self._dispatcher.converse(
                text,
                self._context.couple_id,
                self._snapshot(),
                self._callbacks,
                profile=self.profile,
                conversation_id=self.conversation_id,
            )
            answer = ChatMessage(role="model", text=reply.text)
        except TurnInProgressError:
            self.messages.pop()
            raise
        except Exception as e:
            logger.error("chat_turn_failed", conversation_id=self.conversation_id, error=str(e))
            if self._audit:
                await self._audit.log_error(
                    "chat_turn_failed",
                    str(e),
                    details={"conversation_id": self.conversation_id, "couple_id": self._context.couple_id},
                )
            answer = ChatMessage(role="model", text=CONNECTION_ERROR_MESSAGE)
        self.messages.append(answer)
        return answer


class AppComponents:
    """
    Everything a host process needs, built once from settings.

    Integrations whose configuration is missing are None.
    """

    def __init__(
        self,
        repository,
        audit_logger: AuditLogger,
        sync_store: SyncStore,
        dispatcher: Optional[AssistantDispatcher] = None,
        advisor: Optional[InvestmentAdvisor] = None,
        auth: Optional[AuthService] = None,
        calendar: Optional[GoogleCalendarService] = None,
        payments: Optional[PaymentService] = None,
        invites: Optional[InviteManager] = None,
        avatars: Optional[AvatarService] = None,
        portfolio: Optional[PortfolioPriceUpdater] = None,
        draft_store: Optional[DraftStore] = None,
    ):
        self.repository = repository
        self.audit_logger = audit_logger
        self.sync_store = sync_store
        self.dispatcher = dispatcher
        self.advisor = advisor
        self.auth = auth
        self.calendar = calendar
        self.payments = payments
        self.invites = invites
        self.avatars = avatars
        self.portfolio = portfolio
        self.draft_store = draft_store

    def app_context(self) -> AppContext:
        if self.auth is None:
            raise RuntimeError("Authentication is not configured")
        return AppContext(self.auth, self.repository, self.sync_store)

    def mutations_for(self, context: AppContext) -> MutationService:
        return MutationService(
            self.repository,
            context.require_couple_id(),
            context.user_id,
            calendar=self.calendar,
            audit_logger=self.audit_logger,
            couple_name=(context.couple.name if context.couple and context.couple.name else ""),
        )

    def account_settings_for(self, context: AppContext) -> AccountSettingsService:
        return AccountSettingsService(context, self.repository, audit_logger=self.audit_logger)

    def chat_session(
        self,
        context: AppContext,
        profile: Optional[CoupleProfile] = None,
    ) -> ChatSession:
        if self.dispatcher is None:
            raise RuntimeError("The assistant is not configured")
        return ChatSession(
            self.dispatcher,
            context,
            self.mutations_for(context).callbacks(),
            profile=profile,
            audit_logger=self.audit_logger,
        )


async def create_app_components(use_backend: bool = True) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_backend: Whether to connect to Supabase.
                    Set to False to run against the in-memory backend.
    """
    settings = get_settings()
    app_settings = settings.app
    repository = None
    admin_repository = None
    auth = None
    avatars = None

    if use_backend:
        try:
            client = await create_supabase_client()
            repository = SupabaseBackend(client)
            avatars = AvatarService(client.storage, settings.supabase.avatars_bucket)
            admin_auth = None
            try:
                admin_client = await create_supabase_client(use_service_role=True)
                admin_repository = SupabaseBackend(admin_client)
                admin_auth = admin_client.auth
            except Exception as e:
                logger.warning("service_role_unavailable", error=str(e))
            auth = AuthService(client.auth, admin_auth)
        except Exception as e:
            # Backend not configured - continue in memory
            logger.warning("backend_not_configured", error=str(e))
            repository = None

    if repository is None:
        repository = InMemoryBackend()
    admin_repository = admin_repository or repository

    audit_logger = AuditLogger(repository)
    sync_store = SyncStore(repository, audit_logger)

    dispatcher = None
    advisor = None
    portfolio = None
    try:
        gemini = settings.gemini
        completion = GeminiCompletionClient(gemini)
        advisor = InvestmentAdvisor(
            completion,
            temperature=gemini.advisor_temperature,
            timeout_seconds=gemini.request_timeout_seconds,
        )
        dispatcher = AssistantDispatcher(
            completion,
            advisor=advisor,
            audit_logger=audit_logger,
            timeout_seconds=gemini.request_timeout_seconds,
            temperature=gemini.agent_temperature,
            recent_limit=app_settings.recent_transactions_in_context,
            goal_deadline_days=app_settings.goal_default_deadline_days,
        )
        portfolio = PortfolioPriceUpdater(
            admin_repository,
            completion,
            alert_threshold_percent=app_settings.price_alert_threshold_percent,
            audit_logger=audit_logger,
        )
    except Exception as e:
        logger.warning("assistant_not_configured", error=str(e))

    calendar = None
    try:
        calendar = GoogleCalendarService(admin_repository, settings.google_calendar)
    except Exception as e:
        logger.warning("calendar_not_configured", error=str(e))

    payments = None
    try:
        payments = PaymentService(
            admin_repository,
            auth=auth,
            audit_logger=audit_logger,
            settings=settings.stripe,
        )
    except Exception as e:
        logger.warning("payments_not_configured", error=str(e))

    return AppComponents(
        repository=repository,
        audit_logger=audit_logger,
        sync_store=sync_store,
        dispatcher=dispatcher,
        advisor=advisor,
        auth=auth,
        calendar=calendar,
        payments=payments,
        invites=InviteManager(admin_repository, app_settings.invite_ttl_days, audit_logger),
        avatars=avatars,
        portfolio=portfolio,
        draft_store=DraftStore(
            app_settings.onboarding_draft_path,
            app_settings.onboarding_schema_version,
        ),
    )
