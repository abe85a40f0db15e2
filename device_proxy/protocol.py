# Channel Protocol - wire envelope codec for the POS Device Proxy
# Phoenix channel messages (JSON serializer v1) exchanged over the websocket

import json
import itertools
import time
from typing import Dict, Any, Optional
from dataclasses import dataclass, field

from .exceptions import FrameDecodeError


SOCKET_PATH = '/socket/websocket'

# Event names
PHX_JOIN = 'phx_join'
PHX_REPLY = 'phx_reply'
HEARTBEAT = 'heartbeat'
PRINT_HTML = 'print_html'
PRINT_COMPLETED = 'print_completed'
CARD_SCANNED = 'card_scanned'

HEARTBEAT_TOPIC = 'phoenix'

# Join uses a fixed ref so its reply can be matched
JOIN_REF = 'join_ref_1'

_ref_counter = itertools.count(1)


@dataclass(frozen=True)
class Envelope:
    """One message on the channel"""
    topic: str
    event: str
    payload: Dict[str, Any] = field(default_factory=dict)
    ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'topic': self.topic,
            'event': self.event,
            'payload': self.payload,
            'ref': self.ref,
        }

    @property
    def is_reply(self) -> bool:
        return self.event == PHX_REPLY

    @property
    def reply_ok(self) -> bool:
        return self.is_reply and self.payload.get('status') == 'ok'


def device_topic(device_id) -> str:
    """Channel topic for a device"""
    return f"device:{device_id}"


def make_ref(prefix: str) -> str:
    """Unique outbound ref: prefix + epoch millis + process-wide counter"""
    return f"{prefix}_{int(time.time() * 1000)}_{next(_ref_counter)}"


def join_envelope(device_id, token: str) -> Envelope:
    return Envelope(
        topic=device_topic(device_id),
        event=PHX_JOIN,
        payload={'token': token},
        ref=JOIN_REF,
    )


def heartbeat_envelope() -> Envelope:
    return Envelope(topic=HEARTBEAT_TOPIC, event=HEARTBEAT, payload={}, ref=make_ref('hb'))


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to the JSON text frame"""
    return json.dumps(envelope.to_dict(), separators=(',', ':'))


def decode_envelope(raw) -> Envelope:
    """Parse a text (or bytes) frame into an Envelope"""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise FrameDecodeError(f"Frame is not UTF-8: {e}") from e

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise FrameDecodeError(f"Frame is not JSON: {e}", raw=raw) from e

    if not isinstance(data, dict):
        raise FrameDecodeError("Frame is not a JSON object", raw=raw)

    topic = data.get('topic')
    event = data.get('event')
    if not isinstance(topic, str) or not isinstance(event, str):
        raise FrameDecodeError("Frame is missing topic or event", raw=raw)

    payload = data.get('payload')
    if payload is None:
        payload = {}
    elif not isinstance(payload, dict):
        raise FrameDecodeError("Frame payload is not an object", raw=raw)

    ref = data.get('ref')
    return Envelope(topic=topic, event=event, payload=payload,
                    ref=str(ref) if ref is not None else None)


def socket_url(server_url: str) -> str:
    """
    Derive the websocket endpoint from the HTTP base URL.

    http://host -> ws://host/socket/websocket
    https://host -> wss://host/socket/websocket
    ws:// and wss:// URLs keep their scheme. Anything else is a ValueError.
    """
    if not server_url:
        raise ValueError("Server URL is empty")

    base = server_url.strip().rstrip('/')
    scheme, sep, rest = base.partition('://')
    if not sep or not rest:
        raise ValueError(f"Server URL has no scheme: {server_url!r}")

    scheme = scheme.lower()
    if scheme == 'http':
        scheme = 'ws'
    elif scheme == 'https':
        scheme = 'wss'
    elif scheme not in ('ws', 'wss'):
        raise ValueError(f"Unsupported URL scheme: {scheme!r}")

    return f"{scheme}://{rest}{SOCKET_PATH}"
