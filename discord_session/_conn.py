import zlib
from collections import deque
from typing import Deque, Generator, List, Optional, Tuple
from urllib.parse import urlencode, urlsplit

from wsproto import ConnectionType, WSConnection
from wsproto.connection import ConnectionState
from wsproto.events import (
    AcceptConnection, BytesMessage, CloseConnection, Ping, RejectConnection,
    Request, TextMessage
)

from ._errors import CloseDiscordConnection, ConnectionRejected

__all__ = (
    'GATEWAY_URI',
    'GATEWAY_VERSION',
    'GatewayConnection',
)


GATEWAY_URI = 'wss://gateway.discord.gg'
GATEWAY_VERSION = 10

ZLIB_SUFFIX = b'\x00\x00\xff\xff'


class GatewayConnection:
    """Sans-I/O WebSocket connection carrying the JSON gateway protocol.

    This wraps a `wsproto.WSConnection` object and has to be wrapped with a
    network layer. It only deals with the WebSocket: the text of every complete
    gateway message received is made available through `frames()` and it is
    up to the session manager to interpret it.

    A new instance should be created for every TCP socket.

    Attributes:
        host: The host to open a TCP socket to.
        port: The port to open a TCP socket to.
        compress: The transport compression used, if any.
        accepted: Whether the WebSocket upgrade has been accepted.
    """

    host: str
    port: int
    compress: Optional[str]
    accepted: bool

    __slots__ = (
        'host', 'port', 'compress', 'accepted', '_proto', '_frames',
        '_bytes_buffer', '_text_buffer', '_inflator',
    )

    def __init__(self, uri: str = GATEWAY_URI, *, compress: Optional[str] = None) -> None:
        """Initialize the connection.

        Parameters:
            uri:
                URI to open a websocket to. The scheme and path are ignored,
                the gateway always uses secure WebSockets.
            compress:
                Transport compression to use, specify 'zlib-stream' to have
                Discord compress everything it sends.
        """
        if compress not in (None, 'zlib-stream'):
            raise ValueError(f'Unsupported transport compression: {compress!r}')

        if '://' not in uri:
            uri = 'wss://' + uri

        parts = urlsplit(uri)
        self.host = parts.hostname or ''
        # The gateway uses secure WebSockets (wss) hence port 443
        self.port = parts.port or 443

        self.compress = compress
        self.accepted = False

        self._proto = WSConnection(ConnectionType.CLIENT)
        self._frames: Deque[str] = deque()  # Buffer of complete messages

        self._bytes_buffer = bytearray()
        self._text_buffer = ''
        self._inflator = zlib.decompressobj()

    @property
    def query_params(self) -> str:
        """Query parameters to add to the URL depending on values chosen."""
        quote = {'v': GATEWAY_VERSION, 'encoding': 'json'}
        if self.compress == 'zlib-stream':
            quote['compress'] = self.compress
        return urlencode(quote)

    @property
    def destination(self) -> Tuple[str, int]:
        """Generate a destination to connect to in the form of a tuple.

        The tuple has two items representing the host and port to open a TCP
        socket to.
        """
        return self.host, self.port

    @property
    def closing(self) -> bool:
        """Whether the connection is closing.

        When this is true nothing more should be sent as a closing handshake
        is in progress, this includes any pending heartbeat.
        """
        return self._proto.state in {
            ConnectionState.CLOSED, ConnectionState.LOCAL_CLOSING,
            ConnectionState.REMOTE_CLOSING
        }

    def frames(self) -> Generator[str, None, None]:
        """Generator that yields the text of every complete message received.

        This will consume an internal deque until no more items can be removed
        and return, meaning that messages are removed when retrieved so that
        no duplicates appear.
        """
        while True:
            try:
                yield self._frames.popleft()
            except IndexError:
                # There are no more messages to consume
                return

    def connect(self) -> bytes:
        """Generate the switching protocols bytes to convert to a WebSocket.

        Continue receiving data until `accepted` is True, at which point
        Discord will send a HELLO.
        """
        return self._proto.send(Request(self.host, '/?' + self.query_params))

    def send(self, text: str) -> bytes:
        """Generate the bytes of a text frame containing `text`."""
        return self._proto.send(TextMessage(text))

    def close(self, code: int = 1001) -> bytes:
        """Generate the bytes to send a closing frame to the WebSocket.

        After having sent this you should continue receiving bytes and calling
        `receive()` until `CloseDiscordConnection` is raised at which point the
        TCP socket should be closed.

        Parameters:
            code:
                The reasoning of closing the WebSocket as close code. Both 1000
                and 1001 (default) close the session which means when
                reconnecting a new session has to be created using an IDENTIFY.
        """
        return self._proto.send(CloseConnection(code))

    def _inflate(self, data: bytes) -> Optional[str]:
        self._bytes_buffer.extend(data)

        if len(self._bytes_buffer) < 4 or self._bytes_buffer[-4:] != ZLIB_SUFFIX:
            # It isn't the end of the message and there will be more coming
            return None

        # The Zlib suffix has been sent and our buffer should be full with a
        # complete message
        text = self._inflator.decompress(self._bytes_buffer).decode('utf-8')
        self._bytes_buffer = bytearray()
        return text

    def receive(self, data: Optional[bytes]) -> List[bytes]:
        """Receive data from the WebSocket.

        This method may return new data to send back, in cases such as PING
        frames which require a PONG to be sent back.

        Parameters:
            data: The bytes received from the TCP socket, None or empty on EOF.

        Raises:
            ConnectionRejected: Discord refused the WebSocket upgrade.
            CloseDiscordConnection: The WebSocket has been closed.
            RuntimeError: Compressed message received with no compression.

        Returns:
            A list of bytes to respond back with. See `frames()` for how to
            get the messages received.
        """
        # WSProto uses None instead of an empty byte string.
        if data is not None and len(data) == 0:
            data = None

        if data is None and not self.accepted:
            # The TCP socket was closed before the WebSocket was established
            raise CloseDiscordConnection(None)

        self._proto.receive_data(data)

        res = []

        for event in self._proto.events():
            if isinstance(event, AcceptConnection):
                self.accepted = True

            elif isinstance(event, Ping):
                res.append(self._proto.send(event.response()))

            elif isinstance(event, RejectConnection):
                raise ConnectionRejected(event)

            elif isinstance(event, CloseConnection):
                if self._proto.state == ConnectionState.CLOSED:
                    # Either we initiated the closing and have now received a
                    # reply, or the TCP socket was lost
                    raise CloseDiscordConnection(None, event.code, event.reason)
                else:
                    # It should be ConnectionState.REMOTE_CLOSING and we need
                    # to reply to the closure
                    raise CloseDiscordConnection(
                        self._proto.send(event.response()), event.code, event.reason
                    )

            elif isinstance(event, TextMessage):
                self._text_buffer += event.data

                if not event.message_finished:
                    continue

                self._frames.append(self._text_buffer)
                self._text_buffer = ''

            elif isinstance(event, BytesMessage):
                if self.compress != 'zlib-stream':
                    raise RuntimeError('Received bytes message when no compression specified')

                text = self._inflate(event.data)
                if text is not None:
                    self._frames.append(text)

        return res
