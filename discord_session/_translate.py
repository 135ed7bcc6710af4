from dataclasses import dataclass
from typing import List, Union

from ._codec import DispatchEvent, MessageCreated, MessageDeleted, MessagesBulkDeleted
from ._models import Message

__all__ = (
    'MessageCreatedNotification',
    'MessageDeletedNotification',
    'Notification',
    'translate',
)


@dataclass(frozen=True)
class MessageCreatedNotification:
    guild_id: int
    message: Message


@dataclass(frozen=True)
class MessageDeletedNotification:
    guild_id: int
    channel_id: int
    message_id: int


Notification = Union[MessageCreatedNotification, MessageDeletedNotification]


def translate(event: DispatchEvent) -> List[Notification]:
    """Translate a dispatch event into notifications for the application.

    Only guild-scoped message events are forwarded, events in DM channels
    (without a guild ID) are dropped. Member events are decoded but not
    translated.

    Returns:
        The notifications in the order they should be emitted, one per
        affected message.
    """
    if isinstance(event, MessageCreated):
        if event.message.guild_id is None:
            return []
        return [MessageCreatedNotification(event.message.guild_id, event.message)]

    elif isinstance(event, MessageDeleted):
        if event.guild_id is None:
            return []
        return [MessageDeletedNotification(event.guild_id, event.channel_id, event.id)]

    elif isinstance(event, MessagesBulkDeleted):
        if event.guild_id is None:
            return []
        return [
            MessageDeletedNotification(event.guild_id, event.channel_id, message_id)
            for message_id in event.ids
        ]

    return []
