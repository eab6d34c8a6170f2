"""Unified inbox state for one agent session.

The aggregator owns the in-memory snapshot of customers, messages and
response templates, the session's filter/selection state, and every mutation
the UI can request. Collaborators (database session, change feed, reply
dispatcher) are handed in through the constructor.

Mutations follow one protocol: persist through the repository first, then
merge the returned entity into the snapshot. On failure the snapshot is left
untouched, the error is recorded in ``last_error`` and passed to error
listeners; nothing is raised to the caller.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cozmo_inbox.logging import get_logger
from cozmo_inbox.models.enums import Channel, CustomerStatus, MessageCategory
from cozmo_inbox.schemas.customer import Customer, CustomerCreate, CustomerUpdate
from cozmo_inbox.schemas.message import Message, MessageCreate, MessageUpdate
from cozmo_inbox.schemas.response_template import (
    ResponseTemplate,
    ResponseTemplateCreate,
    ResponseTemplateUpdate,
)
from cozmo_inbox.services.change_feed import (
    CUSTOMERS_TABLE,
    MESSAGES_TABLE,
    ChangeFeed,
    Subscription,
    TableChanged,
)
from cozmo_inbox.services.common import coerce_uuid
from cozmo_inbox.services.customers import Customers
from cozmo_inbox.services.dispatcher import ReplyDispatcher
from cozmo_inbox.services.errors import InboxError, InboxValidationError, wrap_persistence_error
from cozmo_inbox.services.messages import Messages
from cozmo_inbox.services.templates import ResponseTemplates, template_matches

logger = get_logger(__name__)

ALL = "all"


class LoadStatus(enum.Enum):
    idle = "idle"
    loading = "loading"
    ready = "ready"
    failed = "failed"


class ViewMode(enum.Enum):
    inbox = "inbox"
    dashboard = "dashboard"
    templates = "templates"
    customers = "customers"
    profile = "profile"


@dataclass
class InboxFilters:
    channel: Channel | Literal["all"] = ALL
    category: MessageCategory | Literal["all"] = ALL
    query: str = ""


@dataclass(frozen=True)
class ReplyResult:
    """Outcome of ``reply``. Delivery and persistence fail independently."""

    message: Message | None
    dispatch_error: InboxError | None = None
    persist_error: InboxError | None = None

    @property
    def persisted(self) -> bool:
        return self.message is not None

    @property
    def delivered(self) -> bool:
        return self.dispatch_error is None


@dataclass
class _Listeners:
    callbacks: list[Callable[..., Any]] = field(default_factory=list)

    def add(self, callback: Callable[..., Any]) -> Subscription:
        self.callbacks.append(callback)
        return Subscription(lambda _sub: self._discard(callback), callback)

    def _discard(self, callback) -> None:
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    def emit(self, *args) -> None:
        for callback in list(self.callbacks):
            try:
                callback(*args)
            except Exception:
                logger.warning("inbox_listener_error", exc_info=True)


def _coerce_filter(enum_cls: type[enum.Enum], value) -> Any:
    if value is None or value == ALL:
        return ALL
    try:
        return enum_cls(value)
    except ValueError:
        raise InboxValidationError("invalid_filter", f"Unknown {enum_cls.__name__} filter: {value!r}")


class InboxAggregator:
    def __init__(
        self,
        db: Session,
        *,
        dispatcher: ReplyDispatcher | None = None,
        feed: ChangeFeed | None = None,
        owner_id: str | None = None,
    ) -> None:
        self._db = db
        self._dispatcher = dispatcher or ReplyDispatcher()
        self._feed = feed
        self.owner_id = owner_id

        self.customers: dict[UUID, Customer] = {}
        self.messages: dict[UUID, Message] = {}
        self.templates: dict[UUID, ResponseTemplate] = {}

        self.filters = InboxFilters()
        self.selected_message_id: UUID | None = None
        self.selected_customer_id: UUID | None = None
        self.view = ViewMode.inbox
        self.sidebar_collapsed = False

        self.load_status = LoadStatus.idle
        self.load_error: InboxError | None = None
        self.last_error: InboxError | None = None

        self._change_listeners = _Listeners()
        self._error_listeners = _Listeners()
        self._feed_subscriptions: list[Subscription] = []
        self._refresh_task: asyncio.Task | None = None
        self._refresh_again = False
        self._closed = False

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Re-synchronise on every change to the messages or customers tables."""
        if self._feed is None or self._feed_subscriptions:
            return
        for table in (MESSAGES_TABLE, CUSTOMERS_TABLE):
            self._feed_subscriptions.append(self._feed.subscribe_table(table, self._on_table_changed))

    async def close(self) -> None:
        """Release subscriptions; results of calls still in flight are discarded."""
        self._closed = True
        for subscription in self._feed_subscriptions:
            subscription.unsubscribe()
        self._feed_subscriptions.clear()
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._refresh_task = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> InboxAggregator:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def on_change(self, callback: Callable[[InboxAggregator], Any]) -> Subscription:
        return self._change_listeners.add(callback)

    def on_error(self, callback: Callable[[InboxError], Any]) -> Subscription:
        return self._error_listeners.add(callback)

    # -- loading -----------------------------------------------------------

    async def refresh(self) -> bool:
        if self._closed:
            return False
        self.load_status = LoadStatus.loading
        self._notify()
        self._db.expire_all()
        try:
            customers = Customers.list(self._db)
            messages = Messages.list(self._db)
            templates = ResponseTemplates.list(self._db)
        except (InboxError, SQLAlchemyError) as exc:
            self._db.rollback()
            error = wrap_persistence_error(exc)
            logger.warning("inbox_refresh_failed code=%s detail=%s", error.code, error.detail)
            self.load_error = error
            self.load_status = LoadStatus.failed
            self._surface(error)
            return False
        if self._closed:
            return False
        self.customers = {item.id: item for item in customers}
        self.messages = {item.id: item for item in messages}
        self.templates = {item.id: item for item in templates}
        self.load_error = None
        self.load_status = LoadStatus.ready
        self._notify()
        return True

    async def settle(self) -> None:
        """Wait for a change-feed triggered refresh to finish."""
        while self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.shield(self._refresh_task)

    def _on_table_changed(self, change: TableChanged) -> None:
        if self._closed:
            return
        logger.debug("inbox_change_received table=%s", change.table)
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_again = True
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("inbox_refresh_deferred reason=no_running_loop")
            return
        self._refresh_task = loop.create_task(self._refresh_until_quiet())

    async def _refresh_until_quiet(self) -> None:
        while not self._closed:
            self._refresh_again = False
            await self.refresh()
            if not self._refresh_again:
                return

    # -- filters and selection --------------------------------------------

    def set_channel_filter(self, channel) -> None:
        self.filters.channel = _coerce_filter(Channel, channel)
        self._notify()

    def set_category_filter(self, category) -> None:
        self.filters.category = _coerce_filter(MessageCategory, category)
        self._notify()

    def set_search_query(self, query: str | None) -> None:
        self.filters.query = query or ""
        self._notify()

    def reset_filters(self) -> None:
        self.filters = InboxFilters()
        self._notify()

    def set_view(self, view) -> None:
        self.view = ViewMode(view)
        self._notify()

    def toggle_sidebar(self) -> None:
        self.sidebar_collapsed = not self.sidebar_collapsed
        self._notify()

    def select_message(self, message_id) -> None:
        self.selected_message_id = coerce_uuid(message_id) if message_id is not None else None
        self._notify()

    def select_customer(self, customer_id) -> None:
        self.selected_customer_id = coerce_uuid(customer_id) if customer_id is not None else None
        self._notify()

    async def open_message(self, message_id) -> Message | None:
        """Select a message and mark it read if it is still unread."""
        self.select_message(message_id)
        message = self.selected_message
        if message is None or message.is_read:
            return message
        return await self.mark_read(message.id)

    @property
    def selected_message(self) -> Message | None:
        if self.selected_message_id is None:
            return None
        return self.messages.get(self.selected_message_id)

    @property
    def selected_customer(self) -> Customer | None:
        message = self.selected_message
        if message is not None:
            return self.customer_for(message)
        if self.selected_customer_id is not None:
            return self.customers.get(self.selected_customer_id)
        return None

    def customer_for(self, message: Message) -> Customer | None:
        if message.customer_id is not None and message.customer_id in self.customers:
            return self.customers[message.customer_id]
        return message.customer

    # -- derived views -----------------------------------------------------

    def visible_messages(self) -> list[Message]:
        channel = self.filters.channel
        category = self.filters.category
        query = self.filters.query.lower()

        def _matches(message: Message) -> bool:
            if channel != ALL and message.channel is not channel:
                return False
            if category != ALL and message.category is not category:
                return False
            if query:
                in_content = query in message.content.lower()
                in_subject = query in (message.subject or "").lower()
                if not (in_content or in_subject):
                    return False
            return True

        visible = sorted((m for m in self.messages.values() if _matches(m)), key=lambda m: str(m.id))
        return sorted(visible, key=lambda m: m.timestamp, reverse=True)

    def uncategorized_messages(self) -> list[Message]:
        return [m for m in self._by_timestamp() if m.category is None]

    def messages_for_customer(self, customer_id) -> list[Message]:
        customer_uuid = coerce_uuid(customer_id)
        return [m for m in self._by_timestamp() if m.customer_id == customer_uuid]

    def unread_count(self) -> int:
        return sum(1 for m in self.messages.values() if not m.is_read)

    def matching_templates(self, query: str | None = None) -> list[ResponseTemplate]:
        ordered = sorted(self.templates.values(), key=lambda t: t.name.lower())
        return [t for t in ordered if template_matches(t, query or "")]

    def _by_timestamp(self) -> list[Message]:
        return sorted(self.messages.values(), key=lambda m: m.timestamp, reverse=True)

    # -- message mutations -------------------------------------------------

    async def mark_read(self, message_id) -> Message | None:
        return self._persist_message(message_id, MessageUpdate(is_read=True), action="mark_read")

    async def categorize(self, message_id, category) -> Message | None:
        try:
            category = MessageCategory(category)
        except ValueError:
            self._surface(InboxValidationError("invalid_category", f"Unknown category: {category!r}"))
            return None
        return self._persist_message(message_id, MessageUpdate(category=category), action="categorize")

    async def reply(self, message_id, content: str) -> ReplyResult:
        if not (content or "").strip():
            error = InboxValidationError("reply_empty", "Reply content is required")
            self._surface(error)
            return ReplyResult(message=None, persist_error=error)
        message = self._message_or_fetch(message_id)
        if message is None:
            return ReplyResult(message=None, persist_error=self.last_error)

        dispatch_error: InboxError | None = None
        try:
            await self._dispatcher.dispatch_reply(message, content, customer=self.customer_for(message))
        except InboxError as exc:
            dispatch_error = exc
            logger.warning(
                "reply_dispatch_failed message_id=%s channel=%s code=%s",
                message.id,
                message.channel.value,
                exc.code,
            )
        if self._closed:
            return ReplyResult(message=None, dispatch_error=dispatch_error)

        update = MessageUpdate(is_replied=True, reply_content=content, reply_timestamp=datetime.now(UTC))
        persisted = self._persist_message(message.id, update, action="reply")
        if dispatch_error is not None:
            self._surface(dispatch_error)
        if persisted is None:
            return ReplyResult(message=None, dispatch_error=dispatch_error, persist_error=self.last_error)
        return ReplyResult(message=persisted, dispatch_error=dispatch_error)

    async def create_message(self, payload: MessageCreate) -> Message | None:
        message = self._run("create_message", lambda: Messages.create(self._db, payload, owner_id=self.owner_id))
        if message is not None:
            self.messages[message.id] = message
            self._notify()
        return message

    async def delete_message(self, message_id) -> bool:
        message_uuid = self._uuid(message_id)
        if message_uuid is None:
            return False
        if self._run("delete_message", lambda: Messages.delete(self._db, message_uuid)) is None:
            return False
        self.messages.pop(message_uuid, None)
        if self.selected_message_id == message_uuid:
            self.selected_message_id = None
        self._notify()
        return True

    # -- customer mutations ------------------------------------------------

    async def create_customer(self, payload: CustomerCreate) -> Customer | None:
        customer = self._run("create_customer", lambda: Customers.create(self._db, payload, owner_id=self.owner_id))
        if customer is not None:
            self.customers[customer.id] = customer
            self._notify()
        return customer

    async def update_customer_notes(self, customer_id, notes: str) -> Customer | None:
        return self._persist_customer(customer_id, CustomerUpdate(notes=notes), action="update_customer_notes")

    async def update_customer_status(self, customer_id, status) -> Customer | None:
        try:
            status = CustomerStatus(status)
        except ValueError:
            self._surface(InboxValidationError("invalid_status", f"Unknown customer status: {status!r}"))
            return None
        return self._persist_customer(customer_id, CustomerUpdate(status=status), action="update_customer_status")

    # -- template mutations ------------------------------------------------

    async def add_template(self, payload: ResponseTemplateCreate) -> ResponseTemplate | None:
        template = self._run(
            "add_template",
            lambda: ResponseTemplates.create(self._db, payload, owner_id=self.owner_id),
        )
        if template is not None:
            self.templates[template.id] = template
            self._notify()
        return template

    async def update_template(self, template_id, payload: ResponseTemplateUpdate) -> ResponseTemplate | None:
        template_uuid = self._uuid(template_id)
        if template_uuid is None:
            return None
        template = self._run("update_template", lambda: ResponseTemplates.update(self._db, template_uuid, payload))
        if template is not None:
            self.templates[template.id] = template
            self._notify()
        return template

    async def delete_template(self, template_id) -> bool:
        template_uuid = self._uuid(template_id)
        if template_uuid is None:
            return False
        if self._run("delete_template", lambda: ResponseTemplates.delete(self._db, template_uuid)) is None:
            return False
        self.templates.pop(template_uuid, None)
        self._notify()
        return True

    # -- internals ---------------------------------------------------------

    def _run(self, action: str, call: Callable[[], Any]) -> Any:
        """Invoke a repository call at the recovery boundary."""
        if self._closed:
            return None
        try:
            result = call()
        except (InboxError, SQLAlchemyError) as exc:
            self._db.rollback()
            error = wrap_persistence_error(exc)
            logger.warning("inbox_action_failed action=%s code=%s detail=%s", action, error.code, error.detail)
            self._surface(error)
            return None
        if self._closed:
            return None
        return result

    def _uuid(self, value) -> UUID | None:
        try:
            return coerce_uuid(value)
        except InboxError as exc:
            self._surface(exc)
            return None

    def _message_or_fetch(self, message_id) -> Message | None:
        message_uuid = self._uuid(message_id)
        if message_uuid is None:
            return None
        if message_uuid in self.messages:
            return self.messages[message_uuid]
        return self._run("fetch_message", lambda: Messages.get(self._db, message_uuid))

    def _persist_message(self, message_id, update: MessageUpdate, *, action: str) -> Message | None:
        message_uuid = self._uuid(message_id)
        if message_uuid is None:
            return None
        message = self._run(action, lambda: Messages.update(self._db, message_uuid, update))
        if message is not None:
            self.messages[message.id] = message
            self._notify()
        return message

    def _persist_customer(self, customer_id, update: CustomerUpdate, *, action: str) -> Customer | None:
        customer_uuid = self._uuid(customer_id)
        if customer_uuid is None:
            return None
        customer = self._run(action, lambda: Customers.update(self._db, customer_uuid, update))
        if customer is None:
            return None
        self.customers[customer.id] = customer
        for message_id, message in list(self.messages.items()):
            if message.customer_id == customer.id and message.customer is not None:
                self.messages[message_id] = message.model_copy(update={"customer": customer})
        self._notify()
        return customer

    def _surface(self, error: InboxError) -> None:
        self.last_error = error
        self._error_listeners.emit(error)

    def _notify(self) -> None:
        if not self._closed:
            self._change_listeners.emit(self)
