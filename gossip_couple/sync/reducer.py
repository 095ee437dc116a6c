"""
Change-Feed Reducer

Folds one change event into one collection and returns the next
collection value. The input collection is never mutated.

Rules:
- INSERT appends the mapped row, or replaces the entity already holding
  that key (replaying an insert never duplicates a row)
- UPDATE replaces the entity with the matching key; unknown keys are a no-op
- DELETE removes the entity with the matching key; unknown keys are a no-op
- Keys are the row id, falling back to the symbol when either side lacks
  an id (investments)
- Collections with a sort key are re-sorted (stable) after every event
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, NamedTuple, Optional, Sequence

from pydantic import BaseModel

from gossip_couple.services.repository.interface import Table
from gossip_couple.sync.mappers import (
    map_event,
    map_goal,
    map_investment,
    map_task,
    map_transaction,
)

Mapper = Callable[[Any], BaseModel]

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One normalized change-feed notification."""
    kind: ChangeKind
    table: Optional[str] = None
    new: Optional[dict] = None
    old: Optional[dict] = None

    @classmethod
    def from_payload(cls, payload: dict, table: Optional[str] = None) -> "ChangeEvent":
        """
        Normalize a raw transport payload.

        Accepts the realtime-py shape ({"data": {"type", "record",
        "old_record"}}) and the flat shape ({"eventType", "new", "old"}).
        """
        data = payload.get("data")
        if isinstance(data, dict) and ("type" in data or "record" in data):
            kind = data.get("type")
            new = data.get("record")
            old = data.get("old_record")
            table = table or data.get("table")
        else:
            kind = payload.get("eventType") or payload.get("type")
            new = payload.get("new")
            old = payload.get("old")
            table = table or payload.get("table")

        # Enum members from the realtime client stringify to their value
        kind = getattr(kind, "value", kind)
        return cls(
            kind=ChangeKind(str(kind).upper()),
            table=table,
            new=new or None,
            old=old or None,
        )


class CollectionSpec(NamedTuple):
    """How one synced collection is fetched, mapped and ordered."""
    name: str
    table: Table
    mapper: Mapper
    sort_key: Optional[str] = None
    descending: bool = False


COLLECTION_SPECS: dict[str, CollectionSpec] = {
    "transactions": CollectionSpec(
        "transactions", Table.TRANSACTIONS, map_transaction, sort_key="date", descending=True
    ),
    "goals": CollectionSpec("goals", Table.GOALS, map_goal),
    "tasks": CollectionSpec("tasks", Table.TASKS, map_task),
    "events": CollectionSpec("events", Table.EVENTS, map_event),
    "investments": CollectionSpec("investments", Table.INVESTMENTS, map_investment),
}


def _same_key(entity: BaseModel, row: dict) -> bool:
    entity_id = getattr(entity, "id", None)
    row_id = row.get("id")
    if entity_id and row_id:
        return entity_id == row_id
    entity_symbol = getattr(entity, "symbol", None)
    row_symbol = row.get("symbol")
    if entity_symbol and row_symbol:
        return entity_symbol == row_symbol
    return False


def _sort_value(value: Any) -> datetime:
    if not value:
        return _OLDEST
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return _OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_collection(
    items: Sequence[BaseModel],
    sort_key: str,
    descending: bool = False,
) -> list[BaseModel]:
    """Stable sort by a date-like attribute. Unparseable values sort as oldest."""
    return sorted(
        items,
        key=lambda item: _sort_value(getattr(item, sort_key, None)),
        reverse=descending,
    )


def reduce(
    collection: Sequence[BaseModel],
    event: ChangeEvent,
    mapper: Mapper,
    sort_key: Optional[str] = None,
    descending: bool = False,
) -> list[BaseModel]:
    """Return the collection after applying one change event."""
    items = list(collection)

    if event.kind == ChangeKind.INSERT and event.new:
        entity = mapper(event.new)
        if any(_same_key(item, event.new) for item in items):
            items = [entity if _same_key(item, event.new) else item for item in items]
        else:
            items.append(entity)
    elif event.kind == ChangeKind.UPDATE and event.new:
        if any(_same_key(item, event.new) for item in items):
            entity = mapper(event.new)
            items = [entity if _same_key(item, event.new) else item for item in items]
    elif event.kind == ChangeKind.DELETE and event.old:
        items = [item for item in items if not _same_key(item, event.old)]

    if sort_key and items:
        items = sort_collection(items, sort_key, descending)
    return items


def reduce_spec(
    collection: Sequence[BaseModel],
    event: ChangeEvent,
    spec: CollectionSpec,
) -> list[BaseModel]:
    """reduce() with the mapper and ordering of a registered collection."""
    return reduce(collection, event, spec.mapper, spec.sort_key, spec.descending)
