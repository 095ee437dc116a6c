"""
Abstract Storage Interfaces

DESIGN DECISION: We define abstract interfaces for every storage concern.
This allows us to:
1. Run against the hosted backend in production
2. Use an in-memory backend for tests and local development
3. Keep the sync store and the services decoupled from the backend SDK

Three seams are defined here:
- CoupleRepository: scoped reads and writes on the backend tables
- ChangeFeedTransport: bulk fetch plus realtime change subscriptions
- AuditStorageInterface: append-only audit trail

The interfaces are intentionally thin - we're not building an ORM.
Row-level authorization is enforced by the backend, not here.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Optional

from gossip_couple.models.audit import AuditEvent


class Table(str, Enum):
    """Backend tables the app touches."""
    TRANSACTIONS = "transactions"
    GOALS = "goals"
    TASKS = "tasks"
    EVENTS = "events"
    INVESTMENTS = "investments"
    PROFILES = "profiles"
    COUPLES = "couples"
    INVITES = "invites"
    USER_INTEGRATIONS = "user_integrations"
    AUDIT_EVENTS = "audit_events"


# Raw change-feed payload handler: (table name, payload)
ChangeHandler = Callable[[str, dict], None]


class CoupleRepository(ABC):
    """
    Abstract interface for table reads and writes.

    Filters are equality matches on column values.
    Every method returns plain row dicts; decoding into typed rows
    happens in the caller.
    """

    @abstractmethod
    async def select(
        self,
        table: Table,
        filters: Optional[dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[dict]:
        """
        Select rows matching all filters.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def insert(self, table: Table, record: dict) -> dict:
        """
        Insert a row and return it as stored (with generated columns).

        Raises:
            DuplicateError: If the row's id already exists
            WriteError: If the backend rejects the write
        """
        pass

    @abstractmethod
    async def update(
        self,
        table: Table,
        filters: dict[str, Any],
        changes: dict,
    ) -> list[dict]:
        """
        Update every row matching filters and return the updated rows.

        Raises:
            WriteError: If the backend rejects the write
        """
        pass

    @abstractmethod
    async def upsert(
        self,
        table: Table,
        record: dict,
        on_conflict: str = "id",
    ) -> dict:
        """
        Insert or update a row keyed by the on_conflict column.

        Raises:
            WriteError: If the backend rejects the write
        """
        pass

    async def select_one(
        self,
        table: Table,
        filters: dict[str, Any],
    ) -> Optional[dict]:
        """Return the first matching row, or None."""
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None


class Subscription(ABC):
    """Handle on an open change-feed channel."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering events. Must be safe to call twice."""
        pass


class ChangeFeedTransport(ABC):
    """
    Bulk fetch plus realtime change notifications, scoped to a couple.

    Handlers are called on the event loop, one payload at a time, in
    delivery order for a given table.
    """

    @abstractmethod
    async def fetch_collection(
        self,
        table: Table,
        couple_id: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict]:
        """
        Fetch every row of a table belonging to the couple.

        Raises:
            StorageError: If the read fails
        """
        pass

    @abstractmethod
    async def subscribe(
        self,
        channel: str,
        tables: list[Table],
        couple_id: str,
        handler: ChangeHandler,
    ) -> Subscription:
        """
        Open one channel carrying the change feeds of the given tables,
        filtered server-side to couple_id.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class WriteError(StorageError):
    """The backend rejected a mutation."""
    pass


class BackendConnectionError(StorageError):
    """Could not connect to the storage backend."""
    pass
