"""Single WebSocket handshake attempt against the managed router."""

from websockets.exceptions import WebSocketException
from websockets.sync.client import connect

from .config import ConnectionConfig
from .errors import OtherConnectError


class WebSocketConnector:
    SUBPROTOCOL = "wamp.2.json"
    OPEN_TIMEOUT = 2.0

    def __init__(self, subprotocol: str = SUBPROTOCOL, open_timeout: float = OPEN_TIMEOUT):
        self.subprotocol = subprotocol
        self.open_timeout = open_timeout

    def connect(self, config: ConnectionConfig):
        """Open one connection to ``config.uri``.

        Returns:
            The open ``websockets`` client connection.

        Raises:
            ConnectionRefusedError: nothing is listening on the endpoint yet
            OtherConnectError: any other failure, not worth retrying
        """
        uri = config.uri
        try:
            return connect(
                uri,
                subprotocols=[self.subprotocol],
                open_timeout=self.open_timeout,
            )
        except ConnectionRefusedError:
            raise
        except TimeoutError as e:
            raise OtherConnectError(f"handshake with {uri} timed out: {e}") from e
        except WebSocketException as e:
            raise OtherConnectError(f"handshake with {uri} failed: {e}") from e
        except (OSError, ValueError) as e:
            raise OtherConnectError(f"transport error connecting to {uri}: {e}") from e
