"""Dependency injection container.

Usage:
    from cozmo_inbox.container import container

    # Per agent session
    aggregator = container.inbox_aggregator(db=session, owner_id=user_id)

    # In tests
    with container.reply_dispatcher.override(FakeDispatcher()):
        aggregator = container.inbox_aggregator(db=session)
"""

from __future__ import annotations

from dependency_injector import containers, providers  # type: ignore[import-not-found]

from cozmo_inbox.services import senders
from cozmo_inbox.services.aggregator import InboxAggregator
from cozmo_inbox.services.change_feed import ChangeFeed
from cozmo_inbox.services.dispatcher import ReplyDispatcher
from cozmo_inbox.services.notifications import NewMessageNotifier
from cozmo_inbox.websocket.manager import get_connection_manager


class Container(containers.DeclarativeContainer):
    """Application dependency injection container.

    The change feed and the notifier are process-wide singletons. Each
    aggregator is a fresh Factory product bound to one session.
    """

    change_feed = providers.Singleton(ChangeFeed)
    connection_manager = providers.Singleton(get_connection_manager)

    email_sender = providers.Object(senders.send_email)
    whatsapp_sender = providers.Object(senders.send_whatsapp)

    reply_dispatcher = providers.Factory(
        ReplyDispatcher,
        send_email=email_sender,
        send_whatsapp=whatsapp_sender,
    )

    message_notifier = providers.Singleton(
        NewMessageNotifier,
        feed=change_feed,
        manager=connection_manager,
    )

    inbox_aggregator = providers.Factory(
        InboxAggregator,
        dispatcher=reply_dispatcher,
        feed=change_feed,
    )


# Global container instance
container = Container()


def get_container() -> Container:
    """Get the global container instance."""
    return container
