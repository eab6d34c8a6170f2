import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from cozmo_inbox.models.enums import Channel, CustomerStatus, MessageCategory
from cozmo_inbox.schemas.customer import CustomerCreate
from cozmo_inbox.schemas.message import MessageCreate, MessageUpdate
from cozmo_inbox.schemas.response_template import ResponseTemplateCreate, ResponseTemplateUpdate
from cozmo_inbox.services import customers as customers_service
from cozmo_inbox.services import messages as messages_service
from cozmo_inbox.services import statistics
from cozmo_inbox.services.aggregator import ALL, InboxAggregator, LoadStatus, ViewMode
from cozmo_inbox.services.dispatcher import ReplyDispatcher
from cozmo_inbox.services.errors import InboxValidationError, MissingContactInfo, NotFoundError, TransportError


def _dispatcher(email_ok=True, whatsapp_ok=True):
    return ReplyDispatcher(
        send_email=AsyncMock(return_value=email_ok),
        send_whatsapp=AsyncMock(return_value=whatsapp_ok),
    )


@pytest.fixture()
def dispatcher():
    return _dispatcher()


@pytest.fixture()
def aggregator(db_session, dispatcher):
    return InboxAggregator(db_session, dispatcher=dispatcher, owner_id="agent-1")


@pytest.fixture()
def inbox(db_session, make_customer, make_message):
    """A small mixed inbox spread over two customers."""
    now = datetime.now(UTC)
    ada = make_customer(name="Ada", phone="+15550000001")
    bob = make_customer(name="Bob", phone=None)
    rows = {
        "email_refund": make_message(
            customer_id=ada.id,
            channel=Channel.email,
            subject="Refund request",
            content="Please refund my order",
            category=MessageCategory.complaint,
            timestamp=now - timedelta(minutes=1),
        ),
        "wa_question": make_message(
            customer_id=bob.id,
            channel=Channel.whatsapp,
            subject=None,
            content="Do you ship to Canada?",
            category=MessageCategory.inquiry,
            timestamp=now - timedelta(minutes=2),
        ),
        "ig_praise": make_message(
            customer_id=ada.id,
            channel=Channel.instagram,
            subject=None,
            content="Love the new REFUND policy",
            category=None,
            is_read=True,
            timestamp=now - timedelta(minutes=3),
        ),
        "email_support": make_message(
            customer_id=bob.id,
            channel=Channel.email,
            subject="Login trouble",
            content="Cannot sign in",
            category=MessageCategory.support,
            timestamp=now - timedelta(minutes=4),
        ),
    }
    return {"ada": ada, "bob": bob, **rows}


# =============================================================================
# Loading
# =============================================================================


@pytest.mark.asyncio
async def test_refresh_populates_snapshot(aggregator, inbox):
    assert aggregator.load_status is LoadStatus.idle

    assert await aggregator.refresh() is True

    assert aggregator.load_status is LoadStatus.ready
    assert set(aggregator.customers) == {inbox["ada"].id, inbox["bob"].id}
    assert len(aggregator.messages) == 4
    assert aggregator.load_error is None


@pytest.mark.asyncio
async def test_refresh_failure_keeps_previous_snapshot(aggregator, inbox, monkeypatch):
    await aggregator.refresh()
    snapshot = dict(aggregator.messages)
    errors = []
    aggregator.on_error(errors.append)

    def _broken_list(db):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    monkeypatch.setattr(messages_service.Messages, "list", staticmethod(_broken_list))

    assert await aggregator.refresh() is False
    assert aggregator.load_status is LoadStatus.failed
    assert aggregator.load_error.code == "persistence_failed"
    assert aggregator.messages == snapshot
    assert errors == [aggregator.load_error]


@pytest.mark.asyncio
async def test_retry_after_failure_recovers(aggregator, inbox, monkeypatch):
    original = messages_service.Messages.list

    def _broken_list(db):
        raise OperationalError("SELECT", {}, Exception("connection lost"))

    monkeypatch.setattr(messages_service.Messages, "list", staticmethod(_broken_list))
    await aggregator.refresh()
    assert aggregator.load_status is LoadStatus.failed

    monkeypatch.setattr(messages_service.Messages, "list", staticmethod(original))
    assert await aggregator.refresh() is True
    assert aggregator.load_status is LoadStatus.ready


# =============================================================================
# Visible messages
# =============================================================================


@pytest.mark.asyncio
async def test_visible_messages_sorted_newest_first(aggregator, inbox):
    await aggregator.refresh()
    ids = [item.id for item in aggregator.visible_messages()]
    expected = ["email_refund", "wa_question", "ig_praise", "email_support"]
    assert ids == [inbox[key].id for key in expected]


@pytest.mark.asyncio
async def test_channel_filter(aggregator, inbox):
    await aggregator.refresh()
    aggregator.set_channel_filter("email")
    ids = [item.id for item in aggregator.visible_messages()]
    assert ids == [inbox["email_refund"].id, inbox["email_support"].id]


@pytest.mark.asyncio
async def test_category_filter(aggregator, inbox):
    await aggregator.refresh()
    aggregator.set_category_filter(MessageCategory.inquiry)
    assert [item.id for item in aggregator.visible_messages()] == [inbox["wa_question"].id]


@pytest.mark.asyncio
async def test_query_matches_content_or_subject_case_insensitively(aggregator, inbox):
    await aggregator.refresh()
    aggregator.set_search_query("refund")
    ids = [item.id for item in aggregator.visible_messages()]
    assert ids == [inbox["email_refund"].id, inbox["ig_praise"].id]

    aggregator.set_search_query("LOGIN")
    assert [item.id for item in aggregator.visible_messages()] == [inbox["email_support"].id]


@pytest.mark.asyncio
async def test_query_whitespace_is_matched_literally(aggregator, make_message):
    now = datetime.now(UTC)
    make_message(subject=None, content="reorder please", timestamp=now - timedelta(minutes=1))
    mine = make_message(subject=None, content="my order", timestamp=now)
    await aggregator.refresh()

    aggregator.set_search_query(" order")
    assert [item.id for item in aggregator.visible_messages()] == [mine.id]

    aggregator.set_search_query("   ")
    assert aggregator.visible_messages() == []


@pytest.mark.asyncio
async def test_filters_compose_conjunctively(aggregator, inbox):
    await aggregator.refresh()
    aggregator.set_search_query("refund")
    aggregator.set_channel_filter(Channel.email)
    aggregator.set_category_filter("complaint")
    assert [item.id for item in aggregator.visible_messages()] == [inbox["email_refund"].id]

    aggregator.set_category_filter("support")
    assert aggregator.visible_messages() == []

    aggregator.reset_filters()
    assert aggregator.filters.channel == ALL
    assert len(aggregator.visible_messages()) == 4


@pytest.mark.asyncio
async def test_filter_change_preserves_relative_order(aggregator, inbox):
    await aggregator.refresh()
    full = [item.id for item in aggregator.visible_messages()]
    for channel in Channel:
        aggregator.set_channel_filter(channel)
        subset = [item.id for item in aggregator.visible_messages()]
        assert subset == [item for item in full if item in subset]


@pytest.mark.asyncio
async def test_equal_timestamps_have_stable_order(aggregator, make_message):
    moment = datetime.now(UTC)
    for _ in range(3):
        make_message(timestamp=moment)
    await aggregator.refresh()
    first = [item.id for item in aggregator.visible_messages()]
    aggregator.set_channel_filter("email")
    assert [item.id for item in aggregator.visible_messages()] == first
    assert first == sorted(first, key=str)


def test_unknown_filter_value_is_rejected(aggregator):
    with pytest.raises(InboxValidationError):
        aggregator.set_channel_filter("telegram")
    with pytest.raises(InboxValidationError):
        aggregator.set_category_filter("spam")


@pytest.mark.asyncio
async def test_visible_messages_reflect_mutations_immediately(aggregator, inbox):
    await aggregator.refresh()
    aggregator.set_category_filter("support")
    assert len(aggregator.visible_messages()) == 1

    await aggregator.categorize(inbox["ig_praise"].id, "support")

    assert len(aggregator.visible_messages()) == 2


# =============================================================================
# Mutations
# =============================================================================


@pytest.mark.asyncio
async def test_mark_read_scenario(aggregator, customer):
    await aggregator.refresh()
    created = await aggregator.create_message(
        MessageCreate(customer_id=customer.id, channel=Channel.email, content="Hi", is_read=False)
    )
    before = aggregator.visible_messages()
    assert [item.id for item in before] == [created.id]
    assert before[0].is_read is False

    updated = await aggregator.mark_read(created.id)

    assert updated.is_read is True
    stored = aggregator.messages[created.id]
    assert stored.is_read is True
    untouched = {"is_read"}
    assert stored.model_dump(exclude=untouched) == created.model_dump(exclude=untouched)


@pytest.mark.asyncio
async def test_categorize_updates_distribution(db_session, aggregator, inbox):
    await aggregator.refresh()
    before = {row.category: row.count for row in statistics.category_distribution(db_session)}

    result = await aggregator.categorize(inbox["ig_praise"].id, "support")

    after = {row.category: row.count for row in statistics.category_distribution(db_session)}
    assert result.category is MessageCategory.support
    assert after[MessageCategory.support] == before[MessageCategory.support] + 1
    assert {k: v for k, v in after.items() if k is not MessageCategory.support} == {
        k: v for k, v in before.items() if k is not MessageCategory.support
    }


@pytest.mark.asyncio
async def test_categorize_rejects_unknown_category(aggregator, inbox):
    await aggregator.refresh()
    snapshot = dict(aggregator.messages)
    assert await aggregator.categorize(inbox["ig_praise"].id, "spam") is None
    assert aggregator.last_error.code == "invalid_category"
    assert aggregator.messages == snapshot


@pytest.mark.asyncio
async def test_reply_invariant(aggregator, dispatcher, inbox):
    await aggregator.refresh()
    invoked_at = datetime.now(UTC)

    result = await aggregator.reply(inbox["email_refund"].id, "Refund issued")

    assert result.persisted and result.delivered
    message = aggregator.messages[inbox["email_refund"].id]
    assert message.is_replied is True
    assert message.reply_content == "Refund issued"
    assert message.reply_timestamp >= invoked_at
    dispatcher._send_email.assert_awaited_once_with(
        inbox["ada"].email, "Re: Refund request", "Refund issued"
    )


@pytest.mark.asyncio
async def test_reply_to_whatsapp_without_phone_still_persists(aggregator, dispatcher, inbox):
    await aggregator.refresh()
    errors = []
    aggregator.on_error(errors.append)

    result = await aggregator.reply(inbox["wa_question"].id, "Yes we do")

    assert isinstance(result.dispatch_error, MissingContactInfo)
    assert result.persist_error is None
    assert result.message.is_replied is True
    assert aggregator.messages[inbox["wa_question"].id].reply_content == "Yes we do"
    assert isinstance(aggregator.last_error, MissingContactInfo)
    assert errors == [result.dispatch_error]
    dispatcher._send_whatsapp.assert_not_awaited()


@pytest.mark.asyncio
async def test_reply_transport_failure_is_distinguishable(db_session, inbox):
    aggregator = InboxAggregator(db_session, dispatcher=_dispatcher(email_ok=False))
    await aggregator.refresh()

    result = await aggregator.reply(inbox["email_support"].id, "Try resetting your password")

    assert isinstance(result.dispatch_error, TransportError)
    assert result.persisted
    assert not result.delivered


@pytest.mark.asyncio
async def test_reply_to_instagram_is_recorded(aggregator, dispatcher, inbox):
    await aggregator.refresh()
    result = await aggregator.reply(inbox["ig_praise"].id, "Thank you!")
    assert result.delivered and result.persisted
    dispatcher._send_email.assert_not_awaited()
    dispatcher._send_whatsapp.assert_not_awaited()


@pytest.mark.asyncio
async def test_reply_persistence_failure_is_distinguishable(aggregator, inbox, monkeypatch):
    await aggregator.refresh()
    snapshot = dict(aggregator.messages)

    def _broken_update(db, message_id, payload):
        raise OperationalError("UPDATE", {}, Exception("write failed"))

    monkeypatch.setattr(messages_service.Messages, "update", staticmethod(_broken_update))
    result = await aggregator.reply(inbox["email_refund"].id, "Refund issued")

    assert result.dispatch_error is None
    assert result.persist_error.code == "persistence_failed"
    assert aggregator.messages == snapshot


@pytest.mark.asyncio
async def test_reply_requires_content(aggregator, dispatcher, inbox):
    await aggregator.refresh()
    result = await aggregator.reply(inbox["email_refund"].id, "   ")
    assert result.persist_error.code == "reply_empty"
    dispatcher._send_email.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_mutation_leaves_state_unchanged(aggregator, inbox):
    await aggregator.refresh()
    snapshot = dict(aggregator.messages)
    errors = []
    aggregator.on_error(errors.append)

    assert await aggregator.mark_read(uuid.uuid4()) is None

    assert isinstance(aggregator.last_error, NotFoundError)
    assert errors == [aggregator.last_error]
    assert aggregator.messages == snapshot


@pytest.mark.asyncio
async def test_invalid_id_is_surfaced_not_raised(aggregator):
    assert await aggregator.mark_read("nope") is None
    assert aggregator.last_error.code == "invalid_id"


@pytest.mark.asyncio
async def test_update_customer_notes_is_sparse(db_session, aggregator, make_customer):
    vip = make_customer(status=CustomerStatus.vip)
    await aggregator.refresh()

    await aggregator.update_customer_notes(vip.id, "x")

    fetched = customers_service.customers.get(db_session, vip.id)
    assert fetched.notes == "x"
    assert fetched.status is CustomerStatus.vip
    assert aggregator.customers[vip.id].notes == "x"


@pytest.mark.asyncio
async def test_update_customer_status_refreshes_embedded_customer(aggregator, inbox):
    await aggregator.refresh()

    customer = await aggregator.update_customer_status(inbox["ada"].id, "vip")

    assert customer.status is CustomerStatus.vip
    for key in ("email_refund", "ig_praise"):
        assert aggregator.messages[inbox[key].id].customer.status is CustomerStatus.vip
    assert aggregator.messages[inbox["wa_question"].id].customer.status is CustomerStatus.new


@pytest.mark.asyncio
async def test_update_customer_status_rejects_unknown(aggregator, inbox):
    await aggregator.refresh()
    assert await aggregator.update_customer_status(inbox["ada"].id, "platinum") is None
    assert aggregator.last_error.code == "invalid_status"


@pytest.mark.asyncio
async def test_create_customer_and_chain_operations(aggregator):
    customer = await aggregator.create_customer(CustomerCreate(name="Cleo", email="cleo@example.com"))
    assert aggregator.customers[customer.id] == customer

    message = await aggregator.create_message(
        MessageCreate(customer_id=customer.id, channel=Channel.facebook, content="Hi from FB")
    )
    replied = await aggregator.reply(message.id, "Hello Cleo")

    assert replied.message.is_replied is True
    assert aggregator.messages_for_customer(customer.id)[0].id == message.id


@pytest.mark.asyncio
async def test_create_message_validation_error_is_surfaced(aggregator):
    assert await aggregator.create_message(MessageCreate(channel=Channel.email)) is None
    assert aggregator.last_error.code == "message_missing_fields"
    assert aggregator.messages == {}


@pytest.mark.asyncio
async def test_delete_message_clears_selection(aggregator, inbox):
    await aggregator.refresh()
    target = inbox["email_support"].id
    aggregator.select_message(target)

    assert await aggregator.delete_message(target) is True

    assert target not in aggregator.messages
    assert aggregator.selected_message_id is None


# =============================================================================
# Selection, views and helpers
# =============================================================================


@pytest.mark.asyncio
async def test_open_message_marks_read(aggregator, inbox):
    await aggregator.refresh()
    opened = await aggregator.open_message(inbox["email_refund"].id)
    assert opened.is_read is True
    assert aggregator.selected_message.id == inbox["email_refund"].id
    assert aggregator.selected_customer.id == inbox["ada"].id


@pytest.mark.asyncio
async def test_selected_customer_without_message(aggregator, inbox):
    await aggregator.refresh()
    aggregator.select_customer(inbox["bob"].id)
    assert aggregator.selected_customer.name == "Bob"


def test_view_and_sidebar(aggregator):
    aggregator.set_view("templates")
    assert aggregator.view is ViewMode.templates
    aggregator.toggle_sidebar()
    assert aggregator.sidebar_collapsed is True
    with pytest.raises(ValueError):
        aggregator.set_view("settings")


@pytest.mark.asyncio
async def test_derived_helpers(aggregator, inbox):
    await aggregator.refresh()
    assert aggregator.unread_count() == 3
    assert [item.id for item in aggregator.uncategorized_messages()] == [inbox["ig_praise"].id]
    assert {item.id for item in aggregator.messages_for_customer(inbox["bob"].id)} == {
        inbox["wa_question"].id,
        inbox["email_support"].id,
    }


@pytest.mark.asyncio
async def test_template_lifecycle_and_search(aggregator):
    greeting = await aggregator.add_template(
        ResponseTemplateCreate(name="Greeting", content="Hello there", keywords="hi")
    )
    await aggregator.add_template(ResponseTemplateCreate(name="Refund", content="Money is on the way"))

    assert [item.name for item in aggregator.matching_templates()] == ["Greeting", "Refund"]
    assert [item.name for item in aggregator.matching_templates("HI")] == ["Greeting"]
    assert [item.name for item in aggregator.matching_templates("money")] == ["Refund"]

    updated = await aggregator.update_template(greeting.id, ResponseTemplateUpdate(content="Hi!"))
    assert aggregator.templates[greeting.id].content == updated.content == "Hi!"

    assert await aggregator.delete_template(greeting.id) is True
    assert greeting.id not in aggregator.templates


@pytest.mark.asyncio
async def test_change_listeners_are_notified(aggregator, inbox):
    calls = []
    subscription = aggregator.on_change(lambda agg: calls.append(agg.load_status))
    await aggregator.refresh()
    assert calls[-1] is LoadStatus.ready

    subscription.unsubscribe()
    calls.clear()
    aggregator.toggle_sidebar()
    assert calls == []


# =============================================================================
# Change feed and lifecycle
# =============================================================================


@pytest.mark.asyncio
async def test_change_feed_triggers_full_refresh(db_session, feed, dispatcher, customer):
    aggregator = InboxAggregator(db_session, dispatcher=dispatcher, feed=feed)
    aggregator.start()
    await aggregator.refresh()
    assert aggregator.messages == {}

    created = messages_service.messages.create(
        db_session, MessageCreate(customer_id=customer.id, channel=Channel.email, content="Arrived elsewhere")
    )
    await aggregator.settle()

    assert created.id in aggregator.messages
    assert aggregator.load_status is LoadStatus.ready
    await aggregator.close()


@pytest.mark.asyncio
async def test_change_feed_refreshes_are_coalesced(db_session, feed, dispatcher, make_message, monkeypatch):
    aggregator = InboxAggregator(db_session, dispatcher=dispatcher, feed=feed)
    aggregator.start()
    refreshes = []
    original = aggregator.refresh

    async def _counting_refresh():
        refreshes.append(1)
        return await original()

    monkeypatch.setattr(aggregator, "refresh", _counting_refresh)
    for _ in range(5):
        make_message()
    await aggregator.settle()

    assert 1 <= len(refreshes) <= 2
    assert len(aggregator.messages) == 5
    await aggregator.close()


@pytest.mark.asyncio
async def test_close_releases_subscriptions_and_discards_results(db_session, feed, dispatcher, inbox):
    async with InboxAggregator(db_session, dispatcher=dispatcher, feed=feed) as aggregator:
        await aggregator.refresh()
        assert feed.subscriber_count() == 2
        snapshot = dict(aggregator.messages)

    assert aggregator.closed
    assert feed.subscriber_count() == 0
    assert await aggregator.mark_read(inbox["email_refund"].id) is None
    assert await aggregator.refresh() is False
    assert aggregator.messages == snapshot

    messages_service.messages.update(db_session, inbox["email_refund"].id, MessageUpdate(is_read=True))
    assert aggregator.messages == snapshot
