from typing import List, Optional, Tuple

from wsproto.events import RejectConnection

__all__ = (
    'CloseDiscordConnection',
    'ConnectionRejected',
    'DecodeError',
)


class CloseDiscordConnection(Exception):
    """Raised by `GatewayConnection.receive()` once the WebSocket is closed.

    Attributes:
        data:
            Closing frame to write before closing the TCP socket, None when
            the closing handshake is already complete.
        code: Close code received, None if the TCP socket was lost first.
        reason: Close reason received, if any.
    """

    data: Optional[bytes]
    code: Optional[int]
    reason: Optional[str]

    def __init__(
        self,
        data: Optional[bytes],
        code: Optional[int] = None,
        reason: Optional[str] = None
    ) -> None:
        super().__init__(f'WebSocket closed with {code}' + (f': {reason}' if reason else ''))

        self.data = data
        self.code = code
        self.reason = reason


class ConnectionRejected(Exception):
    """Exception raised when the connection to Discord was rejected.

    This means that Discord rejected the WebSocket upgrade request. Whether
    this can be recovered from depends on the status code, the runner simply
    treats it as a closed connection and tries again.
    """

    code: int
    headers: List[Tuple[bytes, bytes]]

    def __init__(self, event: RejectConnection) -> None:
        super().__init__(
            f'Discord rejected the WebSocket connection - Error code {event.status_code}'
        )

        self.code = event.status_code
        self.headers = list(event.headers)


class DecodeError(ValueError):
    """Raised when a gateway frame could not be decoded.

    This is never fatal, the session manager drops the frame and carries on
    as if it was never received.
    """
