"""Sans-I/O session manager for the Discord gateway.

The session manager is a pure state machine. It consumes one input at a time
(the connection was opened, a frame was received or the connection was
closed) and produces a new `SessionState` together with a list of effects for
the network layer to perform. It never touches a socket or a clock itself,
which means it can be reused for libraries implemented in a threading fashion
or asyncio/trio/curio.
"""

import enum
import logging
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple, Type, Union

from ._codec import (
    Dispatch, GatewayCommand, GatewayFrame, Heartbeat, HeartbeatAck,
    HeartbeatRequest, Hello, Identify, InvalidSession, Ready, Reconnect,
    Resume, Resumed, decode_frame
)
from ._errors import DecodeError
from ._opcode import close_reason, should_reconnect
from ._translate import Notification, translate

__all__ = (
    'DEFAULT_HEARTBEAT_INTERVAL',
    'ConnectionHandle',
    'SessionPhase',
    'ResumeState',
    'SessionState',
    'ConnectionOpened',
    'FrameReceived',
    'ConnectionClosed',
    'SessionInput',
    'OpenConnection',
    'CloseConnection',
    'SendCommand',
    'ScheduleHeartbeat',
    'EmitNotification',
    'Effect',
    'transition',
    'SessionManager',
)


_log = logging.getLogger(__name__)


# Used when a HEARTBEAT_ACK somehow arrives before HELLO
DEFAULT_HEARTBEAT_INTERVAL = 60.0

# There really isn't a completely fitting close code when we close the
# connection to reconnect, but it must not be 1000 or 1001 as those
# invalidate the session.
RESUMABLE_CLOSE_CODE = 1008


# Identifies one live socket. The network layer hands out a new handle for
# every connection it opens, which makes handles work as generation counters.
ConnectionHandle = int


class SessionPhase(enum.Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'  # Waiting for HELLO
    HEARTBEATING = 'heartbeating'  # IDENTIFY or RESUME sent
    ESTABLISHED = 'established'  # READY or RESUMED received


@dataclass(frozen=True)
class ResumeState:
    session_id: str
    sequence: int


@dataclass(frozen=True)
class SessionState:
    """Everything the session manager knows about the gateway session.

    Attributes:
        phase: Which step of the connection lifecycle the session is in.
        connection: Handle of the live connection, None if there isn't one.
        resume:
            Session ID and latest sequence to RESUME with. This survives
            disconnects and is only cleared by a non-resumable INVALID_SESSION.
        heartbeat_interval:
            Seconds between heartbeats, set by HELLO once per connection.
    """

    phase: SessionPhase = SessionPhase.DISCONNECTED
    connection: Optional[ConnectionHandle] = None
    resume: Optional[ResumeState] = None
    heartbeat_interval: Optional[float] = None


# Inputs


@dataclass(frozen=True)
class ConnectionOpened:
    handle: ConnectionHandle


@dataclass(frozen=True)
class FrameReceived:
    data: Union[str, bytes]


@dataclass(frozen=True)
class ConnectionClosed:
    handle: ConnectionHandle
    code: Optional[int] = None
    reason: Optional[str] = None


SessionInput = Union[ConnectionOpened, FrameReceived, ConnectionClosed]


# Effects


@dataclass(frozen=True)
class OpenConnection:
    pass


@dataclass(frozen=True)
class CloseConnection:
    handle: ConnectionHandle
    code: int = RESUMABLE_CLOSE_CODE


@dataclass(frozen=True)
class SendCommand:
    handle: ConnectionHandle
    command: GatewayCommand


@dataclass(frozen=True)
class ScheduleHeartbeat:
    handle: ConnectionHandle
    delay: float


@dataclass(frozen=True)
class EmitNotification:
    notification: Notification


Effect = Union[
    OpenConnection, CloseConnection, SendCommand, ScheduleHeartbeat,
    EmitNotification
]

Transition = Tuple[SessionState, List[Effect]]


def _drop_connection(state: SessionState, *, keep_resume: bool) -> Transition:
    """Close the current connection and ask for a new one to be opened."""
    handle = state.connection
    new = SessionState(resume=state.resume if keep_resume else None)
    return new, [CloseConnection(handle), OpenConnection()]


def _on_hello(state: SessionState, frame: Hello, token: str) -> Transition:
    if state.heartbeat_interval is not None:
        _log.debug('Ignoring duplicate HELLO on connection %s', state.connection)
        return state, []

    handle = state.connection
    if state.resume is None:
        command: GatewayCommand = Identify(token)
    else:
        command = Resume(token, state.resume.session_id, state.resume.sequence)

    new = replace(
        state, phase=SessionPhase.HEARTBEATING, heartbeat_interval=frame.interval
    )
    return new, [
        SendCommand(handle, command),
        ScheduleHeartbeat(handle, frame.interval),
    ]


def _on_heartbeat_ack(state: SessionState, frame: HeartbeatAck, token: str) -> Transition:
    interval = state.heartbeat_interval
    if interval is None:
        interval = DEFAULT_HEARTBEAT_INTERVAL

    return state, [ScheduleHeartbeat(state.connection, interval)]


def _on_heartbeat_request(state: SessionState, frame: HeartbeatRequest, token: str) -> Transition:
    # Discord has sent a HEARTBEAT and expects an immediate response
    return state, [SendCommand(state.connection, Heartbeat())]


def _on_dispatch(state: SessionState, frame: Dispatch, token: str) -> Transition:
    event = frame.event

    if isinstance(event, Ready):
        _log.info('Session %s established', event.session_id)
        new = replace(
            state,
            phase=SessionPhase.ESTABLISHED,
            resume=ResumeState(event.session_id, frame.sequence),
        )
    elif state.resume is not None:
        # Every dispatch moves the sequence forward, not only READY and
        # RESUMED, otherwise a later RESUME would replay the wrong events.
        new = replace(state, resume=replace(state.resume, sequence=frame.sequence))
    else:
        _log.debug('Received dispatch %s before READY', frame.sequence)
        new = state

    if isinstance(event, Resumed):
        _log.info('Session resumed at sequence %s', frame.sequence)
        new = replace(new, phase=SessionPhase.ESTABLISHED)

    return new, [EmitNotification(notification) for notification in translate(event)]


def _on_reconnect(state: SessionState, frame: Reconnect, token: str) -> Transition:
    _log.info('Gateway requested a reconnect')
    return _drop_connection(state, keep_resume=True)


def _on_invalid_session(state: SessionState, frame: InvalidSession, token: str) -> Transition:
    _log.info('Session invalidated (resumable: %s)', frame.resumable)
    return _drop_connection(state, keep_resume=frame.resumable)


FRAME_HANDLERS: Dict[Type, Callable[[SessionState, GatewayFrame, str], Transition]] = {
    Hello: _on_hello,
    HeartbeatAck: _on_heartbeat_ack,
    HeartbeatRequest: _on_heartbeat_request,
    Dispatch: _on_dispatch,
    Reconnect: _on_reconnect,
    InvalidSession: _on_invalid_session,
}


def _on_frame(state: SessionState, data: Union[str, bytes], token: str) -> Transition:
    if state.connection is None:
        _log.debug('Ignoring frame received without a live connection')
        return state, []

    try:
        frame = decode_frame(data)
    except DecodeError as err:
        _log.debug('Dropping frame that could not be decoded: %s', err)
        return state, []

    return FRAME_HANDLERS[type(frame)](state, frame, token)


def transition(state: SessionState, event: SessionInput, *, token: str) -> Transition:
    """Compute the next session state and the effects to perform.

    This is a pure function, neither `state` nor anything else is modified.
    Protocol anomalies never raise, at worst they produce effects to drop the
    connection and open a new one.

    Parameters:
        state: The current state of the session.
        event: The single input to process.
        token: The Discord authorization token to IDENTIFY or RESUME with.

    Returns:
        A tuple of the new state and a list of effects to perform in order.
    """
    if isinstance(event, FrameReceived):
        return _on_frame(state, event.data, token)

    elif isinstance(event, ConnectionOpened):
        if state.connection is not None:
            _log.warning(
                'Connection %s opened while %s is still live',
                event.handle, state.connection
            )

        # Wait for HELLO before sending anything
        new = SessionState(
            phase=SessionPhase.CONNECTING, connection=event.handle,
            resume=state.resume,
        )
        return new, []

    elif isinstance(event, ConnectionClosed):
        if event.handle != state.connection:
            # Closures of connections we already dropped ourselves
            _log.debug('Ignoring closure of stale connection %s', event.handle)
            return state, []

        _log.warning(
            'Connection %s closed with %s (%s)%s', event.handle, event.code,
            close_reason(event.code),
            '' if should_reconnect(event.code) else ', Discord advises against reconnecting'
        )
        return SessionState(resume=state.resume), [OpenConnection()]

    raise TypeError(f'Unknown session input: {event!r}')


class SessionManager:
    """Owner of the session state of one gateway connection.

    Each instance holds its own state, multiple independent gateway
    connections can therefore coexist. Inputs have to be processed one at a
    time in the order they were received.

    Attributes:
        state: The current state, replaced with every processed input.
    """

    state: SessionState

    __slots__ = ('_token', 'state')

    def __init__(self, token: str, *, state: Optional[SessionState] = None) -> None:
        """Initialize the session manager.

        Parameters:
            token: The Discord authorization token to IDENTIFY with.
            state:
                The state to start from, by default a disconnected session
                without anything to resume.
        """
        self._token = token
        self.state = state if state is not None else SessionState()

    @property
    def phase(self) -> SessionPhase:
        return self.state.phase

    @property
    def session_id(self) -> Optional[str]:
        return self.state.resume.session_id if self.state.resume else None

    @property
    def sequence(self) -> Optional[int]:
        return self.state.resume.sequence if self.state.resume else None

    def process(self, event: SessionInput) -> List[Effect]:
        """Process one input and return the effects to perform.

        The effects returned are tied to the connection handle that was live
        when they were produced, effects for any other handle should be
        discarded by the network layer.
        """
        self.state, effects = transition(self.state, event, token=self._token)
        return effects
