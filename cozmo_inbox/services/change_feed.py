"""In-process change notifications for stored rows.

The feed hooks SQLAlchemy session events: rows touched during a flush are
snapshotted and, once the transaction commits, published to subscribers of
the row's table. Rolled back work is discarded.

Two subscription primitives exist:

* ``subscribe_table(table, on_any_change)`` delivers a :class:`TableChanged`
  ping per change. The insert/update/delete distinction is not
  exposed; callers re-fetch to learn what changed.
* ``subscribe_new_messages(on_insert, on_error)`` delivers decoded
  :class:`~cozmo_inbox.schemas.message.Message` entities for inserts on the
  ``messages`` table only. A payload that fails to decode is reported to
  ``on_error`` and the subscription keeps running.

Handlers run on the feed's event loop. A coroutine handler is scheduled as a
task and the invocations of one subscription never overlap. Handlers must not
use the committing session directly; they are called from its commit hook.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import event
from sqlalchemy import inspect as sa_inspect

from cozmo_inbox.logging import get_logger
from cozmo_inbox.schemas.message import Message
from cozmo_inbox.services.adapters import orm_row, row_to_message
from cozmo_inbox.services.errors import DecodeError
from cozmo_inbox.services.observability import CHANGE_DECODE_ERRORS, CHANGE_EVENTS

logger = get_logger(__name__)

MESSAGES_TABLE = "messages"
CUSTOMERS_TABLE = "customers"
_PENDING_KEY = "cozmo_inbox_pending_changes"


class ChangeKind(enum.Enum):
    insert = "insert"
    update = "update"
    delete = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    kind: ChangeKind
    record: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TableChanged:
    table: str


def _handle_task_exception(task: asyncio.Task) -> None:
    try:
        exc = task.exception()
        if exc:
            logger.error("change_feed_task_error error=%s", exc, exc_info=exc)
    except asyncio.CancelledError:
        pass


class Subscription:
    """Handle returned by ``subscribe_*``.

    ``unsubscribe`` is idempotent. The handle is also a context manager, so a
    ``with`` block releases it deterministically.
    """

    def __init__(self, release: Callable[[Subscription], None], handler: Callable[[Any], Any], table: str | None = None):
        self.table = table
        self._release = release
        self._handler = handler
        self._active = True
        self._lock: asyncio.Lock | None = None

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._release(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()

    def deliver(self, payload: Any) -> None:
        if not self._active:
            return
        try:
            result = self._handler(payload)
        except Exception:
            logger.warning("subscription_handler_error table=%s", self.table, exc_info=True)
            return
        if inspect.isawaitable(result):
            self._schedule(result)

    def _schedule(self, awaitable) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._await(awaitable))
            return
        task = loop.create_task(self._serialized(awaitable))
        task.add_done_callback(_handle_task_exception)

    async def _serialized(self, awaitable) -> None:
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if not self._active:
                if inspect.iscoroutine(awaitable):
                    awaitable.close()
                return
            await awaitable

    @staticmethod
    async def _await(awaitable) -> None:
        await awaitable


class ChangeFeed:
    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._targets: list[Any] = []

    # -- subscriptions -----------------------------------------------------

    def subscribe_table(self, table: str, on_any_change: Callable[[TableChanged], Any]) -> Subscription:
        def _on_event(change: ChangeEvent):
            return on_any_change(TableChanged(table=change.table))

        return self._add(Subscription(self._remove, _on_event, table=table))

    def subscribe_new_messages(
        self,
        on_insert: Callable[[Message], Any],
        on_error: Callable[[DecodeError], Any] | None = None,
    ) -> Subscription:
        def _on_event(change: ChangeEvent):
            if change.kind is not ChangeKind.insert:
                return None
            try:
                message = row_to_message(change.record)
            except DecodeError as exc:
                CHANGE_DECODE_ERRORS.inc()
                logger.warning(
                    "change_feed_decode_failed table=%s record_id=%s error=%s",
                    change.table,
                    change.record.get("id"),
                    exc.detail,
                )
                if on_error is not None:
                    return on_error(exc)
                return None
            return on_insert(message)

        return self._add(Subscription(self._remove, _on_event, table=MESSAGES_TABLE))

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            return sum(1 for sub in self._subscriptions if table is None or sub.table == table)

    def _add(self, subscription: Subscription) -> Subscription:
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("change_feed_subscribed table=%s", subscription.table)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
        logger.debug("change_feed_unsubscribed table=%s", subscription.table)

    # -- publishing --------------------------------------------------------

    def bind_loop(self, loop: asyncio.AbstractEventLoop | None) -> None:
        """Deliver events on *loop*, even when a commit happens on another thread."""
        self._loop = loop

    def publish(self, change: ChangeEvent) -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._publish_now, change)
                return
        self._publish_now(change)

    def _publish_now(self, change: ChangeEvent) -> None:
        CHANGE_EVENTS.labels(table=change.table, kind=change.kind.value).inc()
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.table == change.table]
        for subscription in targets:
            subscription.deliver(change)

    # -- SQLAlchemy session hooks -----------------------------------------

    def attach(self, target) -> None:
        """Listen to flush/commit events of a Session, sessionmaker or Session class."""
        if any(existing is target for existing in self._targets):
            return
        event.listen(target, "after_flush", self._after_flush)
        event.listen(target, "after_commit", self._after_commit)
        event.listen(target, "after_rollback", self._after_rollback)
        self._targets.append(target)

    def detach(self, target) -> None:
        if not any(existing is target for existing in self._targets):
            return
        event.remove(target, "after_flush", self._after_flush)
        event.remove(target, "after_commit", self._after_commit)
        event.remove(target, "after_rollback", self._after_rollback)
        self._targets = [existing for existing in self._targets if existing is not target]

    def detach_all(self) -> None:
        for target in list(self._targets):
            self.detach(target)

    def _after_flush(self, session, flush_context) -> None:
        pending = session.info.setdefault(_PENDING_KEY, [])
        for kind, objects in (
            (ChangeKind.insert, session.new),
            (ChangeKind.update, session.dirty),
            (ChangeKind.delete, session.deleted),
        ):
            for obj in objects:
                if kind is ChangeKind.update and not session.is_modified(obj, include_collections=False):
                    continue
                table = sa_inspect(obj).mapper.local_table.name
                pending.append(ChangeEvent(table=table, kind=kind, record=orm_row(obj, loaded_only=True)))

    def _after_commit(self, session) -> None:
        pending = session.info.pop(_PENDING_KEY, [])
        for change in pending:
            self.publish(change)

    def _after_rollback(self, session) -> None:
        session.info.pop(_PENDING_KEY, None)
