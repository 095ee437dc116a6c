"""
Audit Models for Gossip Couple

Every significant action in the system is logged for audit purposes:
sync lifecycle, assistant tool dispatch, saga steps and integration errors.
This provides:
1. Traceability of what the assistant did on the couple's behalf
2. Debugging information when a sync or a multi-step write goes wrong
3. A record of partially-applied sagas that need a retry

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Sync store
    SYNC_INITIALIZED = "sync_initialized"
    SYNC_FAILED = "sync_failed"
    SYNC_RESCOPED = "sync_rescoped"
    SYNC_CLOSED = "sync_closed"

    # Assistant
    TOOL_DISPATCHED = "tool_dispatched"
    TOOL_REJECTED = "tool_rejected"
    TOOL_FAILED = "tool_failed"
    ASSISTANT_FALLBACK = "assistant_fallback"

    # Sagas
    SAGA_STARTED = "saga_started"
    SAGA_STEP_COMPLETED = "saga_step_completed"
    SAGA_STEP_FAILED = "saga_step_failed"
    SAGA_COMPLETED = "saga_completed"

    # Persistence
    RECORD_SAVED = "record_saved"
    SAVE_FAILED = "save_failed"

    # Membership and billing
    INVITE_CREATED = "invite_created"
    COUPLE_JOINED = "couple_joined"
    COUPLE_PROVISIONED = "couple_provisioned"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    couple_id: Optional[str] = Field(
        default=None,
        description="Couple scope the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'goal', 'saga')"
    )
    entity_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one chat turn)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "couple_id": self.couple_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_record(self) -> dict:
        """
        Convert to a row for the audit_events table.

        details is stored as a JSON string so the table stays flat.
        """
        record = self.to_log_dict()
        record["details"] = json.dumps(self.details, default=str) if self.details else None
        return record


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.sync_initialized(couple_id, counts)
        event = AuditEventBuilder.tool_dispatched(couple_id, "createGoal", ...)
    """

    @staticmethod
    def sync_initialized(
        couple_id: str,
        counts: dict[str, int],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_INITIALIZED,
            couple_id=couple_id,
            entity_type="sync",
            description=f"Sync initialized with {sum(counts.values())} records",
            details={"counts": counts},
        )

    @staticmethod
    def sync_failed(
        couple_id: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_FAILED,
            severity=AuditSeverity.ERROR,
            couple_id=couple_id,
            entity_type="sync",
            description="Initial sync failed",
            error_message=error_message,
        )

    @staticmethod
    def sync_rescoped(
        old_couple_id: Optional[str],
        new_couple_id: Optional[str],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_RESCOPED,
            couple_id=new_couple_id,
            entity_type="sync",
            description="Sync scope changed",
            details={"from": old_couple_id, "to": new_couple_id},
        )

    @staticmethod
    def sync_closed(couple_id: Optional[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_CLOSED,
            severity=AuditSeverity.DEBUG,
            couple_id=couple_id,
            entity_type="sync",
            description="Sync subscriptions closed",
        )

    @staticmethod
    def tool_dispatched(
        couple_id: Optional[str],
        tool_name: str,
        arguments: dict,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_DISPATCHED,
            couple_id=couple_id,
            entity_type="tool_call",
            correlation_id=correlation_id,
            description=f"Assistant invoked {tool_name}",
            details={"tool": tool_name, "arguments": arguments},
        )

    @staticmethod
    def tool_rejected(
        couple_id: Optional[str],
        tool_name: str,
        reason: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_REJECTED,
            severity=AuditSeverity.WARNING,
            couple_id=couple_id,
            entity_type="tool_call",
            correlation_id=correlation_id,
            description=f"Rejected {tool_name} invocation",
            error_message=reason,
            details={"tool": tool_name},
        )

    @staticmethod
    def tool_failed(
        couple_id: Optional[str],
        tool_name: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TOOL_FAILED,
            severity=AuditSeverity.ERROR,
            couple_id=couple_id,
            entity_type="tool_call",
            correlation_id=correlation_id,
            description=f"Callback for {tool_name} failed",
            error_message=error_message,
            details={"tool": tool_name},
        )

    @staticmethod
    def assistant_fallback(
        couple_id: Optional[str],
        error_kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ASSISTANT_FALLBACK,
            severity=AuditSeverity.WARNING,
            couple_id=couple_id,
            correlation_id=correlation_id,
            description=f"Assistant replied with fallback ({error_kind})",
            error_code=error_kind,
            error_message=error_message,
        )

    @staticmethod
    def saga_started(
        saga: str,
        saga_id: str,
        steps: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAGA_STARTED,
            entity_type=saga,
            entity_id=saga_id,
            correlation_id=correlation_id,
            description=f"{saga} started",
            details={"steps": steps},
            is_user_action=True,
        )

    @staticmethod
    def saga_step(
        saga: str,
        saga_id: str,
        step: str,
        succeeded: bool,
        correlation_id: Optional[UUID] = None,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.SAGA_STEP_COMPLETED
                if succeeded
                else AuditEventType.SAGA_STEP_FAILED
            ),
            severity=AuditSeverity.INFO if succeeded else AuditSeverity.ERROR,
            entity_type=saga,
            entity_id=saga_id,
            correlation_id=correlation_id,
            description=f"{saga} step {step} {'completed' if succeeded else 'failed'}",
            details={"step": step},
            error_message=error_message,
        )

    @staticmethod
    def saga_completed(
        saga: str,
        saga_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAGA_COMPLETED,
            entity_type=saga,
            entity_id=saga_id,
            correlation_id=correlation_id,
            description=f"{saga} completed",
            is_user_action=True,
        )

    @staticmethod
    def record_saved(
        couple_id: Optional[str],
        table: str,
        record_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_SAVED,
            couple_id=couple_id,
            entity_type=table,
            entity_id=record_id,
            correlation_id=correlation_id,
            description=f"Saved {table} record",
        )

    @staticmethod
    def save_failed(
        couple_id: Optional[str],
        table: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            couple_id=couple_id,
            entity_type=table,
            correlation_id=correlation_id,
            description=f"Failed to save {table} record",
            error_message=error_message,
        )

    @staticmethod
    def invite_created(couple_id: str, user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVITE_CREATED,
            couple_id=couple_id,
            entity_type="invite",
            description="Invite created for the second member",
            details={"created_by": user_id},
            is_user_action=True,
        )

    @staticmethod
    def couple_joined(couple_id: str, user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COUPLE_JOINED,
            couple_id=couple_id,
            entity_type="profile",
            entity_id=user_id,
            description="Second member joined the couple",
            is_user_action=True,
        )

    @staticmethod
    def couple_provisioned(couple_id: str, user_id: str, created: bool) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COUPLE_PROVISIONED,
            couple_id=couple_id,
            entity_type="couple",
            entity_id=couple_id,
            description="Couple created after checkout" if created else "Couple subscription activated",
            details={"user_id": user_id, "created": created},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
