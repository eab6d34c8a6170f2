import logging
from unittest.mock import AsyncMock

from cozmo_inbox.container import container
from cozmo_inbox.db import _engine_options
from cozmo_inbox.logging import KeyValueJsonFormatter, configure_logging
from cozmo_inbox.services.aggregator import InboxAggregator
from cozmo_inbox.services.dispatcher import ReplyDispatcher


def test_aggregator_factory_injects_collaborators(db_session):
    first = container.inbox_aggregator(db=db_session, owner_id="agent-1")
    second = container.inbox_aggregator(db=db_session)

    assert isinstance(first, InboxAggregator)
    assert first is not second
    assert first.owner_id == "agent-1"
    assert first._feed is container.change_feed()
    assert isinstance(first._dispatcher, ReplyDispatcher)


def test_sender_override_reaches_dispatcher():
    fake_send = AsyncMock(return_value=True)
    with container.email_sender.override(fake_send):
        dispatcher = container.reply_dispatcher()
    assert dispatcher._send_email is fake_send


def test_configure_logging_is_idempotent():
    root = logging.getLogger()
    configure_logging("DEBUG", "json")
    configure_logging("DEBUG", "json")
    handlers = [handler for handler in root.handlers if handler.get_name() == "cozmo_inbox"]
    assert len(handlers) == 1


def test_json_formatter_renders_single_line():
    record = logging.LogRecord("cozmo_inbox.test", logging.INFO, __file__, 1, "reply_dispatched id=%s", ("m1",), None)
    rendered = KeyValueJsonFormatter().format(record)
    assert '"message": "reply_dispatched id=m1"' in rendered
    assert "\n" not in rendered


def test_engine_options_skip_pool_sizing_for_sqlite():
    assert _engine_options("sqlite:///./inbox.db") == {"connect_args": {"check_same_thread": False}}
    options = _engine_options("postgresql+psycopg://user:pw@db/inbox")
    assert options["pool_pre_ping"] is True
    assert "pool_size" in options
