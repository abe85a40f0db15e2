# POS Device Proxy
# Bridges a receipt printer and card scanner to a remote control server

__version__ = '0.1.0'

from .protocol import Envelope, encode_envelope, decode_envelope, socket_url
from .card_scanner import CardFrameParser, CardReadEvent, SerialCardScanner, SimulatedCardScanner
from .channel import ChannelConnection, ChannelStatus
from .connection_manager import ConnectionSupervisor, SupervisorState, RetryState, backoff_delay_ms
from .dispatcher import CommandDispatcher
from .session import Session, SessionStore
from .printer import NetworkPrinter, MockPrinter
from .device_manager import DeviceManager
from .auth_client import AuthClient

__all__ = [
    'Envelope',
    'encode_envelope',
    'decode_envelope',
    'socket_url',
    'CardFrameParser',
    'CardReadEvent',
    'SerialCardScanner',
    'SimulatedCardScanner',
    'ChannelConnection',
    'ChannelStatus',
    'ConnectionSupervisor',
    'SupervisorState',
    'RetryState',
    'backoff_delay_ms',
    'CommandDispatcher',
    'Session',
    'SessionStore',
    'NetworkPrinter',
    'MockPrinter',
    'DeviceManager',
    'AuthClient',
]
