"""Storage backends for the couple's data."""

from gossip_couple.services.repository.interface import (
    AuditStorageInterface,
    BackendConnectionError,
    ChangeFeedTransport,
    ChangeHandler,
    CoupleRepository,
    DuplicateError,
    NotFoundError,
    StorageError,
    Subscription,
    Table,
    WriteError,
)
from gossip_couple.services.repository.memory import InMemoryBackend

__all__ = [
    "AuditStorageInterface",
    "BackendConnectionError",
    "ChangeFeedTransport",
    "ChangeHandler",
    "CoupleRepository",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    "Subscription",
    "Table",
    "WriteError",
    "InMemoryBackend",
]
