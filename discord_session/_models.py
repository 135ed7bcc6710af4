from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, TypeVar, Union

__all__ = (
    'MISSING',
    'MaybeMissing',
    'parse_snowflake',
    'User',
    'Message',
    'GuildMember',
)


T = TypeVar('T')


class _MissingType:
    """Type of the `MISSING` sentinel.

    Discord differentiates between a field being omitted and a field being
    explicitly set to null. `MISSING` represents the former so that `None`
    can keep representing the latter.
    """

    __slots__ = ()

    def __repr__(self) -> str:
        return 'MISSING'

    def __bool__(self) -> bool:
        return False

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _MissingType)

    def __hash__(self) -> int:
        return 0


MISSING: Any = _MissingType()

MaybeMissing = Union[T, _MissingType]


SNOWFLAKE_MAX = (1 << 64) - 1


def parse_snowflake(value: Any) -> int:
    """Parse a snowflake ID.

    JSON transmits snowflakes as strings because they overflow some JSON
    implementations, integers are accepted as well.

    Raises:
        ValueError: The value isn't a valid 64-bit unsigned integer.
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f'Invalid snowflake: {value!r}')

    if isinstance(value, str) and not (value.isascii() and value.isdigit()):
        raise ValueError(f'Invalid snowflake: {value!r}')

    snowflake = int(value)
    if not 0 <= snowflake <= SNOWFLAKE_MAX:
        raise ValueError(f'Snowflake out of range: {value!r}')

    return snowflake


def _optional_snowflake(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    return parse_snowflake(value) if value is not None else None


def _maybe(data: Dict[str, Any], key: str) -> Any:
    return data[key] if key in data else MISSING


@dataclass(frozen=True)
class User:
    id: int
    username: str
    bot: bool = False

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'User':
        return cls(
            id=parse_snowflake(data['id']),
            username=data['username'],
            bot=bool(data.get('bot', False)),
        )


@dataclass(frozen=True)
class Message:
    """A message as received from MESSAGE_CREATE or MESSAGE_UPDATE.

    MESSAGE_UPDATE only guarantees `id` and `channel_id`, which is why the
    rest of the fields may be `MISSING`.

    Attributes:
        guild_id: The guild the message was sent in, None for DMs.
        edited_timestamp:
            ISO8601 timestamp of the last edit, None if the message has never
            been edited and MISSING if the field wasn't sent.
    """

    id: int
    channel_id: int
    guild_id: Optional[int] = None
    author: MaybeMissing[User] = MISSING
    content: MaybeMissing[str] = MISSING
    edited_timestamp: MaybeMissing[Optional[str]] = MISSING

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'Message':
        author = _maybe(data, 'author')
        return cls(
            id=parse_snowflake(data['id']),
            channel_id=parse_snowflake(data['channel_id']),
            guild_id=_optional_snowflake(data, 'guild_id'),
            author=User.from_payload(author) if author is not MISSING else MISSING,
            content=_maybe(data, 'content'),
            edited_timestamp=_maybe(data, 'edited_timestamp'),
        )


@dataclass(frozen=True)
class GuildMember:
    guild_id: int
    user: User
    nick: MaybeMissing[Optional[str]] = MISSING
    roles: Tuple[int, ...] = ()
    joined_at: MaybeMissing[Optional[str]] = MISSING

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'GuildMember':
        return cls(
            guild_id=parse_snowflake(data['guild_id']),
            user=User.from_payload(data['user']),
            nick=_maybe(data, 'nick'),
            roles=tuple(parse_snowflake(role) for role in data.get('roles', ())),
            joined_at=_maybe(data, 'joined_at'),
        )
