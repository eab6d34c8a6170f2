from __future__ import annotations

from cozmo_inbox.models.enums import Channel, MessageCategory
from cozmo_inbox.schemas.common import EntityModel


class ChannelCount(EntityModel):
    channel: Channel
    count: int


class CategoryCount(EntityModel):
    category: MessageCategory
    count: int


class MessageStats(EntityModel):
    unread_count: int = 0
    unanswered_count: int = 0
    channel_distribution: list[ChannelCount]
    category_distribution: list[CategoryCount]
