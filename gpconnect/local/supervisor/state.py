from enum import Enum
from dataclasses import dataclass


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTING = "disconnecting"


@dataclass
class RetryState:
    """
    Automatic reconnect bookkeeping. `manually_disconnected` starts out True
    so nothing reconnects before the user has connected once.
    """
    count: int = 0
    manually_disconnected: bool = True
