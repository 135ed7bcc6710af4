import asyncio
import contextlib
import json
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List

import pytest
from wsproto import ConnectionType, WSConnection
from wsproto.events import AcceptConnection, CloseConnection, Request, TextMessage

from discord_session import (
    EmitNotification, GatewayRunner, Heartbeat, MessageCreatedNotification,
    ScheduleHeartbeat, SendCommand, SessionManager
)

TOKEN = 'my-token'


class GatewayPeer:
    """Server side of one gateway connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self.ws = WSConnection(ConnectionType.SERVER)
        self.pending: Deque[Dict[str, Any]] = deque()

    async def accept(self) -> None:
        while True:
            self.ws.receive_data(await self.reader.read(65536))
            for event in self.ws.events():
                if isinstance(event, Request):
                    self.writer.write(self.ws.send(AcceptConnection()))
                    return

    def send(self, payload: Dict[str, Any]) -> None:
        self.writer.write(self.ws.send(TextMessage(json.dumps(payload))))

    async def receive(self) -> Dict[str, Any]:
        while not self.pending:
            data = await self.reader.read(65536)
            assert data, 'Client closed the connection'

            self.ws.receive_data(data)
            for event in self.ws.events():
                if isinstance(event, TextMessage):
                    self.pending.append(json.loads(event.data))

        return self.pending.popleft()

    async def close(self, code: int) -> None:
        self.writer.write(self.ws.send(CloseConnection(code=code)))
        await self.closed()

    async def closed(self) -> None:
        # Wait for the client to finish the closing handshake
        while True:
            data = await self.reader.read(65536)
            if not data:
                break

            self.ws.receive_data(data)
            if any(isinstance(event, CloseConnection) for event in self.ws.events()):
                break

        self.writer.close()


Script = Callable[[GatewayPeer], Awaitable[None]]


def run_gateway(scripts: List[Script], **kwargs: Any) -> List[Any]:
    """Run a runner against a local gateway, one script per connection.

    Returns the notifications dispatched by the runner.
    """
    notifications: List[Any] = []

    async def main() -> None:
        done = asyncio.Event()
        connections = 0
        finished = 0

        async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            nonlocal connections, finished
            script = scripts[connections]
            connections += 1

            await script(GatewayPeer(reader, writer))

            finished += 1
            if finished == len(scripts):
                done.set()

        server = await asyncio.start_server(handle, '127.0.0.1', 0)
        port = server.sockets[0].getsockname()[1]

        runner = GatewayRunner(
            SessionManager(TOKEN), uri=f'ws://127.0.0.1:{port}', ssl=False,
            dispatch=notifications.append, reconnect_delay=0, **kwargs
        )
        task = asyncio.get_running_loop().create_task(runner.run())

        try:
            await asyncio.wait_for(done.wait(), 5)
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            server.close()

    asyncio.run(main())
    return notifications


def hello(interval: int) -> Dict[str, Any]:
    return {'op': 10, 'd': {'heartbeat_interval': interval}}


def test_identify_then_resume() -> None:
    commands = []

    async def first(peer: GatewayPeer) -> None:
        await peer.accept()
        peer.send(hello(60000))
        commands.append(await peer.receive())

        peer.send({'op': 0, 's': 1, 't': 'READY', 'd': {'session_id': 'abc123'}})
        peer.send({'op': 0, 's': 2, 't': 'MESSAGE_CREATE', 'd': {
            'id': '1000', 'channel_id': '2000', 'guild_id': '3000', 'content': 'Hi',
        }})
        await peer.close(4000)

    async def second(peer: GatewayPeer) -> None:
        await peer.accept()
        peer.send(hello(60000))
        commands.append(await peer.receive())

    notifications = run_gateway([first, second])

    assert commands[0]['op'] == 2
    assert commands[0]['d']['token'] == TOKEN

    assert commands[1] == {
        'op': 6, 'd': {'token': TOKEN, 'session_id': 'abc123', 'seq': 2}
    }

    assert len(notifications) == 1
    assert isinstance(notifications[0], MessageCreatedNotification)
    assert notifications[0].guild_id == 3000


def test_heartbeats() -> None:
    heartbeats = []

    async def script(peer: GatewayPeer) -> None:
        await peer.accept()
        peer.send(hello(10))
        assert (await peer.receive())['op'] == 2

        heartbeats.append(await peer.receive())
        peer.send({'op': 11})
        heartbeats.append(await peer.receive())

    run_gateway([script])

    assert heartbeats == [{'op': 1, 'd': None}, {'op': 1, 'd': None}]


def test_reconnect_request() -> None:
    close_codes = []
    commands = []

    async def first(peer: GatewayPeer) -> None:
        await peer.accept()
        peer.send(hello(60000))
        await peer.receive()
        peer.send({'op': 0, 's': 1, 't': 'READY', 'd': {'session_id': 'abc123'}})
        peer.send({'op': 7, 'd': None})

        # The client closes the connection itself
        while True:
            data = await peer.reader.read(65536)
            if not data:
                break
            peer.ws.receive_data(data)
            for event in peer.ws.events():
                if isinstance(event, CloseConnection):
                    close_codes.append(event.code)
                    peer.writer.write(peer.ws.send(event.response()))
        peer.writer.close()

    async def second(peer: GatewayPeer) -> None:
        await peer.accept()
        peer.send(hello(60000))
        commands.append(await peer.receive())

    run_gateway([first, second])

    # The session is kept by not closing with 1000 or 1001
    assert len(close_codes) == 1
    assert close_codes[0] not in (1000, 1001)
    assert commands[0]['op'] == 6


def test_reconnect_then_closed_by_gateway() -> None:
    commands = []

    async def first(peer: GatewayPeer) -> None:
        await peer.accept()
        peer.send(hello(60000))
        await peer.receive()
        peer.send({'op': 0, 's': 1, 't': 'READY', 'd': {'session_id': 'abc123'}})

        # The closing frame arrives in the same read as the RECONNECT
        peer.writer.write(
            peer.ws.send(TextMessage(json.dumps({'op': 7, 'd': None})))
            + peer.ws.send(CloseConnection(code=4000))
        )
        await peer.closed()

    async def second(peer: GatewayPeer) -> None:
        await peer.accept()
        peer.send(hello(60000))
        commands.append(await peer.receive())

    run_gateway([first, second])

    assert commands == [
        {'op': 6, 'd': {'token': TOKEN, 'session_id': 'abc123', 'seq': 1}}
    ]


class TestExecute:
    def test_stale_effects_discarded(self) -> None:
        runner = GatewayRunner(SessionManager(TOKEN))

        # There is no live connection so there is nothing to send these to
        runner.execute(SendCommand(1, Heartbeat()))
        runner.execute(ScheduleHeartbeat(1, 41.25))

    def test_dispatch(self) -> None:
        notifications = []
        runner = GatewayRunner(SessionManager(TOKEN), dispatch=notifications.append)

        notification = MessageCreatedNotification(guild_id=3, message=None)
        runner.execute(EmitNotification(notification))

        assert notifications == [notification]

    def test_dispatch_raises(self, caplog: pytest.LogCaptureFixture) -> None:
        notifications = []

        def dispatch(notification: Any) -> None:
            notifications.append(notification)
            raise RuntimeError('Callback failed')

        runner = GatewayRunner(SessionManager(TOKEN), dispatch=dispatch)

        first = MessageCreatedNotification(guild_id=3, message=None)
        second = MessageCreatedNotification(guild_id=4, message=None)
        runner.execute(EmitNotification(first))
        runner.execute(EmitNotification(second))

        assert notifications == [first, second]
        assert [record.exc_info[0] for record in caplog.records] == [RuntimeError, RuntimeError]

    def test_coroutine_dispatch_raises(self, caplog: pytest.LogCaptureFixture) -> None:
        async def dispatch(notification: Any) -> None:
            raise RuntimeError('Callback failed')

        async def main() -> None:
            runner = GatewayRunner(SessionManager(TOKEN), dispatch=dispatch)
            runner.execute(EmitNotification(MessageCreatedNotification(guild_id=3, message=None)))

            # The task is kept until it finishes
            assert len(runner._tasks) == 1
            await asyncio.gather(*runner._tasks)

        asyncio.run(main())

        assert [record.exc_info[0] for record in caplog.records] == [RuntimeError]
