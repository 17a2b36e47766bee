"""
In-process push channels.

Every committed write to a watched table is published here as a row-level
``ChangeEvent``; subscribers register per table with an optional row filter.
Publishing happens in whatever thread performed the write (request worker
threads for sync routes), so subscribers that feed asyncio code must hop onto
their loop themselves (see ``app.api.v1.realtime``).
"""
from __future__ import annotations

import enum
import itertools
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from sqlalchemy import inspect

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: EventType
    row: Dict[str, Any]
    # prior column values, when the writer knows them (UPDATE / DELETE)
    old: Optional[Dict[str, Any]] = None

    def as_payload(self) -> Dict[str, Any]:
        payload = {"table": self.table, "type": self.type.value, "new": self.row}
        if self.old is not None:
            payload["old"] = self.old
        return payload


RowFilter = Union[Mapping[str, Any], Callable[[Dict[str, Any]], bool], None]
Callback = Callable[[ChangeEvent], None]


def _json_value(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def row_to_dict(obj) -> Dict[str, Any]:
    """Column values of an ORM row as a JSON-friendly payload."""
    mapper = inspect(obj).mapper
    return {attr.key: _json_value(getattr(obj, attr.key)) for attr in mapper.column_attrs}


def _matches(row_filter: RowFilter, row: Dict[str, Any]) -> bool:
    if row_filter is None:
        return True
    if callable(row_filter):
        return bool(row_filter(row))
    return all(str(row.get(column)) == str(value) for column, value in row_filter.items())


class Subscription:
    def __init__(self, broker: "RealtimeBroker", table: str, key: int):
        self._broker = broker
        self.table = table
        self.key = key
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._broker._remove(self.table, self.key)


@dataclass
class _Subscriber:
    callback: Callback
    row_filter: RowFilter
    events: Optional[frozenset]
    subscription: Subscription


class RealtimeBroker:
    def __init__(self):
        self._lock = threading.RLock()
        self._channels: Dict[str, Dict[int, _Subscriber]] = {}
        self._keys = itertools.count(1)

    def subscribe(
        self,
        table: str,
        callback: Callback,
        row_filter: RowFilter = None,
        events: Optional[Iterable[EventType]] = None,
    ) -> Subscription:
        with self._lock:
            key = next(self._keys)
            subscription = Subscription(self, table, key)
            self._channels.setdefault(table, {})[key] = _Subscriber(
                callback=callback,
                row_filter=row_filter,
                events=frozenset(events) if events else None,
                subscription=subscription,
            )
        logger.debug("Subscribed #%d to %s", key, table)
        return subscription

    def _remove(self, table: str, key: int) -> None:
        with self._lock:
            self._channels.get(table, {}).pop(key, None)
        logger.debug("Unsubscribed #%d from %s", key, table)

    def subscriber_count(self, table: str) -> int:
        with self._lock:
            return len(self._channels.get(table, {}))

    def publish(
        self,
        table: str,
        event_type: EventType,
        row: Dict[str, Any],
        old: Optional[Dict[str, Any]] = None,
    ) -> ChangeEvent:
        event = ChangeEvent(table=table, type=EventType(event_type), row=row, old=old)
        with self._lock:
            subscribers = list(self._channels.get(table, {}).values())
        for subscriber in subscribers:
            # unsubscribed while an earlier callback ran
            if not subscriber.subscription.active:
                continue
            if subscriber.events is not None and event.type not in subscriber.events:
                continue
            try:
                if not _matches(subscriber.row_filter, row):
                    continue
                subscriber.callback(event)
            except Exception:
                logger.exception(
                    "Realtime subscriber #%d on %s failed for %s",
                    subscriber.subscription.key, table, event.type.value,
                )
        return event

    def publish_row(self, table: str, event_type: EventType, obj, old: Optional[Dict[str, Any]] = None) -> ChangeEvent:
        return self.publish(table, event_type, row_to_dict(obj), old=old)


broker = RealtimeBroker()
