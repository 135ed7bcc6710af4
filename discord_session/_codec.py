"""Translation between raw gateway JSON and typed frames or commands.

Only the frames the session manager acts upon are decoded, anything else
raises `DecodeError` which callers are expected to treat as a no-op.
"""

import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple, Union

from ._errors import DecodeError
from ._models import GuildMember, Message, User, parse_snowflake
from ._opcode import DEFAULT_INTENTS, Opcode

try:
    from ujson import dumps as json_dumps
    from ujson import loads as json_loads
except ImportError:
    from json import dumps as json_dumps
    from json import loads as json_loads


__all__ = (
    'DEFAULT_PROPERTIES',
    'Hello',
    'HeartbeatAck',
    'HeartbeatRequest',
    'Dispatch',
    'Reconnect',
    'InvalidSession',
    'GatewayFrame',
    'Ready',
    'Resumed',
    'MessageCreated',
    'MessageUpdated',
    'MessageDeleted',
    'MessagesBulkDeleted',
    'GuildMemberAdded',
    'GuildMemberRemoved',
    'GuildMemberUpdated',
    'DispatchEvent',
    'Identify',
    'Resume',
    'Heartbeat',
    'GatewayCommand',
    'decode_frame',
    'encode_command',
)


DEFAULT_PROPERTIES: Dict[str, str] = {
    'os': sys.platform,
    'browser': 'discord_session',
    'device': 'discord_session',
}


# Dispatch events


@dataclass(frozen=True)
class Ready:
    session_id: str


@dataclass(frozen=True)
class Resumed:
    pass


@dataclass(frozen=True)
class MessageCreated:
    message: Message


@dataclass(frozen=True)
class MessageUpdated:
    message: Message


@dataclass(frozen=True)
class MessageDeleted:
    id: int
    channel_id: int
    guild_id: Optional[int] = None


@dataclass(frozen=True)
class MessagesBulkDeleted:
    ids: Tuple[int, ...]
    channel_id: int
    guild_id: Optional[int] = None


@dataclass(frozen=True)
class GuildMemberAdded:
    member: GuildMember


@dataclass(frozen=True)
class GuildMemberRemoved:
    guild_id: int
    user: User


@dataclass(frozen=True)
class GuildMemberUpdated:
    member: GuildMember


DispatchEvent = Union[
    Ready, Resumed, MessageCreated, MessageUpdated, MessageDeleted,
    MessagesBulkDeleted, GuildMemberAdded, GuildMemberRemoved,
    GuildMemberUpdated,
]


# Frames


@dataclass(frozen=True)
class Hello:
    interval: float  # Seconds


@dataclass(frozen=True)
class HeartbeatAck:
    pass


@dataclass(frozen=True)
class HeartbeatRequest:
    pass


@dataclass(frozen=True)
class Dispatch:
    sequence: int
    event: DispatchEvent


@dataclass(frozen=True)
class Reconnect:
    pass


@dataclass(frozen=True)
class InvalidSession:
    resumable: bool = False


GatewayFrame = Union[
    Hello, HeartbeatAck, HeartbeatRequest, Dispatch, Reconnect, InvalidSession
]


# Commands


@dataclass(frozen=True)
class Identify:
    token: str = field(repr=False)
    intents: int = DEFAULT_INTENTS
    properties: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PROPERTIES))


@dataclass(frozen=True)
class Resume:
    token: str = field(repr=False)
    session_id: str
    sequence: int


@dataclass(frozen=True)
class Heartbeat:
    pass


GatewayCommand = Union[Identify, Resume, Heartbeat]


def _parse_ready(data: Dict[str, Any]) -> Ready:
    session_id = data['session_id']
    if not isinstance(session_id, str) or not session_id:
        raise ValueError(f'Invalid session ID: {session_id!r}')
    return Ready(session_id=session_id)


def _parse_message_delete(data: Dict[str, Any]) -> MessageDeleted:
    guild_id = data.get('guild_id')
    return MessageDeleted(
        id=parse_snowflake(data['id']),
        channel_id=parse_snowflake(data['channel_id']),
        guild_id=parse_snowflake(guild_id) if guild_id is not None else None,
    )


def _parse_message_delete_bulk(data: Dict[str, Any]) -> MessagesBulkDeleted:
    ids = data['ids']
    if not isinstance(ids, list):
        raise TypeError(f'Expected a list of message IDs, got {type(ids).__name__}')

    guild_id = data.get('guild_id')
    return MessagesBulkDeleted(
        ids=tuple(parse_snowflake(id_) for id_ in ids),
        channel_id=parse_snowflake(data['channel_id']),
        guild_id=parse_snowflake(guild_id) if guild_id is not None else None,
    )


def _parse_guild_member_remove(data: Dict[str, Any]) -> GuildMemberRemoved:
    return GuildMemberRemoved(
        guild_id=parse_snowflake(data['guild_id']),
        user=User.from_payload(data['user']),
    )


DISPATCH_PARSERS: Dict[str, Callable[[Dict[str, Any]], DispatchEvent]] = {
    'READY': _parse_ready,
    'RESUMED': lambda data: Resumed(),
    'MESSAGE_CREATE': lambda data: MessageCreated(Message.from_payload(data)),
    'MESSAGE_UPDATE': lambda data: MessageUpdated(Message.from_payload(data)),
    'MESSAGE_DELETE': _parse_message_delete,
    'MESSAGE_DELETE_BULK': _parse_message_delete_bulk,
    'GUILD_MEMBER_ADD': lambda data: GuildMemberAdded(GuildMember.from_payload(data)),
    'GUILD_MEMBER_REMOVE': _parse_guild_member_remove,
    'GUILD_MEMBER_UPDATE': lambda data: GuildMemberUpdated(GuildMember.from_payload(data)),
}


def _decode_dispatch(payload: Dict[str, Any]) -> Dispatch:
    name = payload.get('t')
    sequence = payload.get('s')

    if not isinstance(sequence, int) or isinstance(sequence, bool):
        raise DecodeError(f'Dispatch frame without a valid sequence: {sequence!r}')

    try:
        parser = DISPATCH_PARSERS[name]
    except (KeyError, TypeError):
        raise DecodeError(f'Unrecognized dispatch event: {name!r}') from None

    try:
        event = parser(payload.get('d'))
    except (AttributeError, KeyError, TypeError, ValueError) as err:
        raise DecodeError(f'Malformed {name} payload') from err

    return Dispatch(sequence=sequence, event=event)


def decode_frame(raw: Union[str, bytes]) -> GatewayFrame:
    """Decode a raw JSON gateway frame.

    Parameters:
        raw: The complete text (or UTF-8 bytes) of one gateway message.

    Raises:
        DecodeError:
            The JSON is malformed, the opcode is not handled or the payload
            does not have the expected shape.

    Returns:
        The typed frame.
    """
    try:
        payload = json_loads(raw)
    except ValueError as err:
        raise DecodeError('Malformed JSON frame') from err

    if not isinstance(payload, dict):
        raise DecodeError(f'Expected a JSON object, got {type(payload).__name__}')

    op = payload.get('op')

    if op == Opcode.DISPATCH:
        return _decode_dispatch(payload)

    elif op == Opcode.HEARTBEAT:
        return HeartbeatRequest()

    elif op == Opcode.RECONNECT:
        return Reconnect()

    elif op == Opcode.INVALID_SESSION:
        # The 'd' key indicates whether the session may be resumed
        return InvalidSession(resumable=payload.get('d') is True)

    elif op == Opcode.HELLO:
        try:
            interval = payload['d']['heartbeat_interval']
        except (KeyError, TypeError):
            raise DecodeError('HELLO frame without a heartbeat interval') from None

        if not isinstance(interval, (int, float)) or isinstance(interval, bool) or interval <= 0:
            raise DecodeError(f'Invalid heartbeat interval: {interval!r}')

        # Discord sends the interval in milliseconds
        return Hello(interval=interval / 1000)

    elif op == Opcode.HEARTBEAT_ACK:
        return HeartbeatAck()

    raise DecodeError(f'Unhandled opcode: {op!r}')


def encode_command(command: GatewayCommand) -> str:
    """Serialize a command into the JSON text to send to the gateway."""
    if isinstance(command, Identify):
        payload = {
            'op': int(Opcode.IDENTIFY),
            'd': {
                'token': command.token,
                'properties': command.properties,
                'intents': int(command.intents),
            },
        }

    elif isinstance(command, Resume):
        payload = {
            'op': int(Opcode.RESUME),
            'd': {
                'token': command.token,
                'session_id': command.session_id,
                'seq': command.sequence,
            },
        }

    elif isinstance(command, Heartbeat):
        payload = {'op': int(Opcode.HEARTBEAT), 'd': None}

    else:
        raise TypeError(f'Cannot encode {command!r}')

    return json_dumps(payload)
