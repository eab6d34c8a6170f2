"""Aggregate inbox statistics.

Counts are grouped in the database; no message rows are pulled into Python.
"""

from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from cozmo_inbox.models.enums import Channel, MessageCategory
from cozmo_inbox.models.message import Message
from cozmo_inbox.schemas.stats import CategoryCount, ChannelCount, MessageStats


def channel_distribution(db: Session) -> list[ChannelCount]:
    rows = db.query(Message.channel, func.count(Message.id)).group_by(Message.channel).all()
    counts = {channel: 0 for channel in Channel}
    for channel, count in rows:
        if channel:
            counts[Channel(channel)] = int(count)
    return [ChannelCount(channel=channel, count=count) for channel, count in counts.items()]


def category_distribution(db: Session) -> list[CategoryCount]:
    rows = (
        db.query(Message.category, func.count(Message.id))
        .filter(Message.category.isnot(None))
        .group_by(Message.category)
        .all()
    )
    counts = {category: 0 for category in MessageCategory}
    for category, count in rows:
        if category:
            counts[MessageCategory(category)] = int(count)
    return [CategoryCount(category=category, count=count) for category, count in counts.items()]


def unread_count(db: Session) -> int:
    return int(db.query(func.count(Message.id)).filter(Message.is_read.is_(False)).scalar() or 0)


def unanswered_count(db: Session) -> int:
    return int(db.query(func.count(Message.id)).filter(Message.is_replied.is_(False)).scalar() or 0)


def message_stats(db: Session) -> MessageStats:
    return MessageStats(
        unread_count=unread_count(db),
        unanswered_count=unanswered_count(db),
        channel_distribution=channel_distribution(db),
        category_distribution=category_distribution(db),
    )
