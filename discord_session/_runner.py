"""Reference network layer driving a `SessionManager` with asyncio.

The runner owns the sockets and the heartbeat timer and executes the effects
produced by the session manager. Every connection gets a new handle and any
effect referring to a handle other than the live one is discarded, which is
how stale heartbeats and sends are cancelled.
"""

import asyncio
import logging
import zlib
from ssl import SSLContext
from typing import Any, Awaitable, Callable, Optional, Set, Union

from wsproto.utilities import ProtocolError

from ._codec import Heartbeat, encode_command
from ._conn import GATEWAY_URI, GatewayConnection
from ._errors import CloseDiscordConnection, ConnectionRejected
from ._session import (
    CloseConnection, ConnectionClosed, ConnectionHandle, ConnectionOpened,
    Effect, EmitNotification, FrameReceived, OpenConnection,
    ScheduleHeartbeat, SendCommand, SessionInput, SessionManager
)
from ._translate import Notification

__all__ = ('GatewayRunner',)


_log = logging.getLogger(__name__)


READ_SIZE = 65536


class _Socket:
    """One TCP socket and the WebSocket running over it."""

    __slots__ = ('handle', 'transport', 'writer', 'opened')

    def __init__(self, handle: ConnectionHandle, transport: GatewayConnection) -> None:
        self.handle = handle
        self.transport = transport
        self.writer: Optional[asyncio.StreamWriter] = None
        # Whether ConnectionOpened has been fed to the session manager
        self.opened = False

    def write(self, data: bytes) -> None:
        if self.writer is not None and not self.writer.is_closing():
            self.writer.write(data)


class GatewayRunner:
    """Executes the effects of a `SessionManager` using asyncio streams.

    Inputs are fed to the session manager strictly one at a time, in the order
    they were received, through an internal queue.

    Attributes:
        manager: The session manager being driven.
        uri: URI of the gateway to connect to.
        compress: Transport compression to request, if any.
        reconnect_delay: Seconds to wait before opening a new connection.
    """

    def __init__(
        self,
        manager: SessionManager,
        *,
        uri: str = GATEWAY_URI,
        compress: Optional[str] = None,
        dispatch: Optional[Callable[[Notification], Any]] = None,
        ssl: Union[bool, SSLContext] = True,
        reconnect_delay: float = 1.0,
    ) -> None:
        """Initialize the runner.

        Parameters:
            manager: The session manager to drive.
            uri: URI of the gateway, by default Discord's.
            compress: Specify 'zlib-stream' to use transport compression.
            dispatch:
                Callback called with every notification. If it returns a
                coroutine it is scheduled as a task. Exceptions raised by the
                callback are logged and do not stop the runner.
            ssl: Passed to `asyncio.open_connection()`.
            reconnect_delay:
                Seconds to wait before reconnecting, this keeps the runner
                from hot-looping when the network is down.
        """
        self.manager = manager
        self.uri = uri
        self.compress = compress
        self.reconnect_delay = reconnect_delay

        self._dispatch = dispatch
        self._ssl = ssl

        self._generation = 0
        self._socket: Optional[_Socket] = None
        self._heartbeat: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()

        self._inputs: 'Optional[asyncio.Queue[SessionInput]]' = None

    async def run(self) -> None:
        """Connect to the gateway and process inputs forever.

        Cancel the task running this coroutine to stop the runner.
        """
        self._inputs = asyncio.Queue()
        self._open(0)

        try:
            while True:
                self.feed(await self._inputs.get())
        finally:
            self._cancel_heartbeat()
            if self._socket is not None and self._socket.opened:
                self._write_close(1000)
            self._socket = None

            for task in self._tasks:
                task.cancel()

    def feed(self, event: SessionInput) -> None:
        """Process one input and execute the resulting effects."""
        for effect in self.manager.process(event):
            self.execute(effect)

    def execute(self, effect: Effect) -> None:
        """Execute an effect produced by the session manager."""
        if isinstance(effect, OpenConnection):
            self._open(self.reconnect_delay)

        elif isinstance(effect, EmitNotification):
            if self._dispatch is not None:
                self._emit(effect.notification)

        elif not self._is_live(effect.handle):
            _log.debug('Discarding %s for stale connection', type(effect).__name__)

        elif isinstance(effect, SendCommand):
            self._send(encode_command(effect.command))

        elif isinstance(effect, ScheduleHeartbeat):
            self._cancel_heartbeat()
            self._heartbeat = asyncio.get_running_loop().call_later(
                effect.delay, self._send_heartbeat, effect.handle
            )

        elif isinstance(effect, CloseConnection):
            self._cancel_heartbeat()
            self._write_close(effect.code)
            # The reader continues until the closing handshake finishes but
            # nothing it receives is fed to the session manager anymore.
            self._socket = None

    def _is_live(self, handle: ConnectionHandle) -> bool:
        return self._socket is not None and self._socket.handle == handle

    def _put(self, socket: _Socket, event: SessionInput) -> None:
        if self._socket is socket and self._inputs is not None:
            self._inputs.put_nowait(event)

    def _emit(self, notification: Notification) -> None:
        try:
            result = self._dispatch(notification)
        except Exception:
            _log.exception('Notification callback raised for %r', notification)
            return

        if asyncio.iscoroutine(result):
            task = asyncio.get_running_loop().create_task(self._callback(result))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _callback(self, coro: Awaitable[Any]) -> None:
        try:
            await coro
        except Exception:
            _log.exception('Notification callback raised')

    def _write_close(self, code: int) -> None:
        if self._socket.transport.closing:
            # A closing handshake is already in progress
            _log.debug('Connection %s is already closing', self._socket.handle)
            return

        self._socket.write(self._socket.transport.close(code))

    def _send(self, text: str) -> None:
        if self._socket.transport.closing:
            _log.debug('Not sending on closing connection %s', self._socket.handle)
            return

        self._socket.write(self._socket.transport.send(text))

    def _send_heartbeat(self, handle: ConnectionHandle) -> None:
        self._heartbeat = None

        if not self._is_live(handle):
            return

        self._send(encode_command(Heartbeat()))

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None

    def _open(self, delay: float) -> None:
        self._cancel_heartbeat()

        self._generation += 1
        socket = _Socket(self._generation, GatewayConnection(self.uri, compress=self.compress))
        self._socket = socket

        task = asyncio.get_running_loop().create_task(self._connection(socket, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _connection(self, socket: _Socket, delay: float) -> None:
        if delay:
            await asyncio.sleep(delay)

        host, port = socket.transport.destination
        _log.debug('Opening connection %s to %s:%s', socket.handle, host, port)

        code: Optional[int] = None
        reason: Optional[str] = None

        try:
            reader, socket.writer = await asyncio.open_connection(host, port, ssl=self._ssl)
        except OSError as err:
            _log.warning('Could not connect to %s:%s: %s', host, port, err)
            self._closed(socket, code, reason)
            return

        try:
            socket.write(socket.transport.connect())

            while True:
                data = await reader.read(READ_SIZE)

                try:
                    responses = socket.transport.receive(data)
                finally:
                    # Messages received together with a closing frame still
                    # have to reach the session manager
                    self._received(socket)

                for response in responses:
                    socket.write(response)

                await socket.writer.drain()

        except CloseDiscordConnection as err:
            code, reason = err.code, err.reason
            if err.data is not None:
                socket.write(err.data)

        except ConnectionRejected as err:
            _log.warning('%s', err)

        except (OSError, ProtocolError, RuntimeError, ValueError, zlib.error) as err:
            _log.warning('Connection %s failed: %s', socket.handle, err)

        finally:
            socket.writer.close()

        self._closed(socket, code, reason)

    def _received(self, socket: _Socket) -> None:
        if socket.transport.accepted and not socket.opened:
            socket.opened = True
            self._put(socket, ConnectionOpened(socket.handle))

        for text in socket.transport.frames():
            self._put(socket, FrameReceived(text))

    def _closed(self, socket: _Socket, code: Optional[int], reason: Optional[str]) -> None:
        if socket.opened:
            self._put(socket, ConnectionClosed(socket.handle, code, reason))

        elif self._socket is socket:
            # The session manager never heard of this connection so it won't
            # ask for another one.
            self._open(self.reconnect_delay)
