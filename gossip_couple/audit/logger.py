"""
Audit Logger

DESIGN DECISION: Every significant action in the system is logged.
This provides:
1. Traceability of assistant actions taken on the couple's behalf
2. Debugging capability for sync and saga failures
3. A durable trail of partially-applied writes

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from gossip_couple.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from gossip_couple.services.repository.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit_events table (when a storage backend is configured)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("gossip_couple.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_sync_initialized(self, couple_id: str, counts: dict[str, int]) -> None:
        await self.log(AuditEventBuilder.sync_initialized(couple_id, counts))

    async def log_sync_failed(self, couple_id: str, error_message: str) -> None:
        await self.log(AuditEventBuilder.sync_failed(couple_id, error_message))

    async def log_sync_rescoped(
        self,
        old_couple_id: Optional[str],
        new_couple_id: Optional[str],
    ) -> None:
        await self.log(AuditEventBuilder.sync_rescoped(old_couple_id, new_couple_id))

    async def log_sync_closed(self, couple_id: Optional[str]) -> None:
        await self.log(AuditEventBuilder.sync_closed(couple_id))

    async def log_tool_dispatched(
        self,
        couple_id: Optional[str],
        tool_name: str,
        arguments: dict,
        correlation_id: UUID,
    ) -> None:
        """Log a tool invocation that reached its callback."""
        await self.log(AuditEventBuilder.tool_dispatched(
            couple_id=couple_id,
            tool_name=tool_name,
            arguments=arguments,
            correlation_id=correlation_id,
        ))

    async def log_tool_rejected(
        self,
        couple_id: Optional[str],
        tool_name: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        """Log a tool invocation rejected before its callback ran."""
        await self.log(AuditEventBuilder.tool_rejected(
            couple_id=couple_id,
            tool_name=tool_name,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_tool_failed(
        self,
        couple_id: Optional[str],
        tool_name: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.tool_failed(
            couple_id=couple_id,
            tool_name=tool_name,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_assistant_fallback(
        self,
        couple_id: Optional[str],
        error_kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.assistant_fallback(
            couple_id=couple_id,
            error_kind=error_kind,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_saga_started(
        self,
        saga: str,
        saga_id: str,
        steps: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.saga_started(saga, saga_id, steps, correlation_id))

    async def log_saga_step(
        self,
        saga: str,
        saga_id: str,
        step: str,
        succeeded: bool,
        correlation_id: Optional[UUID] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Log the outcome of one saga step."""
        await self.log(AuditEventBuilder.saga_step(
            saga=saga,
            saga_id=saga_id,
            step=step,
            succeeded=succeeded,
            correlation_id=correlation_id,
            error_message=error_message,
        ))

    async def log_saga_completed(
        self,
        saga: str,
        saga_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.saga_completed(saga, saga_id, correlation_id))

    async def log_record_saved(
        self,
        couple_id: Optional[str],
        table: str,
        record_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.record_saved(couple_id, table, record_id, correlation_id))

    async def log_save_failed(
        self,
        couple_id: Optional[str],
        table: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(couple_id, table, error_message, correlation_id))

    async def log_invite_created(self, couple_id: str, user_id: str) -> None:
        await self.log(AuditEventBuilder.invite_created(couple_id, user_id))

    async def log_couple_joined(self, couple_id: str, user_id: str) -> None:
        await self.log(AuditEventBuilder.couple_joined(couple_id, user_id))

    async def log_couple_provisioned(self, couple_id: str, user_id: str, created: bool) -> None:
        await self.log(AuditEventBuilder.couple_provisioned(couple_id, user_id, created))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a chat turn).
    Pass it through all subsequent operations.
    """
    return uuid4()
