# Exceptions - error taxonomy for the POS Device Proxy
# Connection faults are retried by the supervisor, device faults go into acks

from typing import Optional


class DeviceProxyError(Exception):
    """Base class for all device proxy errors"""
    pass


class ConnectError(DeviceProxyError):
    """Socket-level failure while opening the channel. Transient, retried."""
    pass


class ConnectTimeout(ConnectError):
    """Socket did not open within the connect timeout"""

    def __init__(self, message: str = "Socket connection timeout",
                 timeout_seconds: Optional[float] = None):
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class TransportError(ConnectError):
    """Lower-level socket or websocket handshake error"""
    pass


class JoinError(DeviceProxyError):
    """
    Channel join was rejected or never answered.

    ``response`` holds the server's error reply when the join was explicitly
    rejected; it is None for a join that timed out or lost its socket.
    """

    def __init__(self, message: str, response: Optional[dict] = None):
        super().__init__(message)
        self.response = response

    @property
    def rejected(self) -> bool:
        return self.response is not None


class NotAuthenticatedError(DeviceProxyError):
    """A connect was requested but no session credentials are present"""
    pass


class AuthenticationError(DeviceProxyError):
    """Remote auth endpoint rejected the code or could not be reached"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PrintError(DeviceProxyError):
    """Printer failed to print a job. Reported via ack, never a connection fault."""
    pass


class FrameDecodeError(DeviceProxyError):
    """Inbound frame is not a valid JSON envelope"""

    def __init__(self, message: str, raw: Optional[str] = None):
        super().__init__(message)
        self.raw = raw
