# Channel Connection - one websocket to the control server for the POS Device Proxy
# Opens the socket, joins the device channel, keeps it alive with heartbeats

import time
import logging
import threading
from enum import Enum
from typing import Optional, Callable, Dict, Any

from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

from .exceptions import ConnectTimeout, TransportError, JoinError, FrameDecodeError
from .protocol import (
    Envelope, JOIN_REF, device_topic, make_ref, join_envelope, heartbeat_envelope,
    encode_envelope, decode_envelope, socket_url,
)
from .session import Session


logger = logging.getLogger(__name__)


class ChannelStatus(Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    AWAITING_JOIN = 'awaiting_join'
    JOINED = 'joined'


class ChannelConnection:
    """
    A single joined channel over a single websocket.

    Created fresh for every connect attempt and thrown away on any terminal
    transition. Inbound envelopes other than replies go to ``on_event``;
    a socket closed by the peer (not by ``disconnect()``) fires
    ``on_disconnect(self)`` once.
    """

    CONNECT_TIMEOUT = 10
    JOIN_TIMEOUT = 5
    HEARTBEAT_INTERVAL = 30
    CLOSE_TIMEOUT = 2

    def __init__(self, on_event: Optional[Callable[[str, Dict[str, Any]], None]] = None,
                 on_disconnect: Optional[Callable[['ChannelConnection'], None]] = None,
                 connector: Optional[Callable] = None,
                 connect_timeout: float = CONNECT_TIMEOUT,
                 join_timeout: float = JOIN_TIMEOUT,
                 heartbeat_interval: float = HEARTBEAT_INTERVAL):
        self.on_event = on_event
        self.on_disconnect = on_disconnect
        self.connector = connector or ws_connect
        self.connect_timeout = connect_timeout
        self.join_timeout = join_timeout
        self.heartbeat_interval = heartbeat_interval

        self.session: Optional[Session] = None
        self.socket = None
        self.join_ref = JOIN_REF
        self.join_response = None
        self.pending_events = []
        self.status = ChannelStatus.DISCONNECTED

        self._send_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._socket_open = False
        self._closing = False
        self._heartbeat_stop: Optional[threading.Event] = None
        self._heartbeat_thread = None
        self._reader_thread = None

    @property
    def topic(self) -> Optional[str]:
        return device_topic(self.session.device_id) if self.session else None

    @property
    def is_open(self) -> bool:
        return self._socket_open and self.socket is not None

    @property
    def is_joined(self) -> bool:
        return self.status == ChannelStatus.JOINED and self.is_open

    @property
    def heartbeat_active(self) -> bool:
        return self._heartbeat_stop is not None and not self._heartbeat_stop.is_set()

    def connect(self, session: Session):
        """
        Open the socket and join ``device:<device_id>``. Raises ConnectError or JoinError.

        Events pushed before the join reply are kept in ``pending_events``
        until ``deliver_pending()`` is called.
        """
        if self.status != ChannelStatus.DISCONNECTED:
            raise RuntimeError(f"Channel already {self.status.value}")

        self.session = session
        self._closing = False
        self.pending_events = []
        self.status = ChannelStatus.CONNECTING

        try:
            url = socket_url(session.server_url)
        except ValueError as e:
            self.status = ChannelStatus.DISCONNECTED
            raise TransportError(str(e)) from e

        logger.info(f"Connecting to {url}")
        try:
            self.socket = self.connector(url, open_timeout=self.connect_timeout,
                                         close_timeout=self.CLOSE_TIMEOUT)
        except TimeoutError as e:
            self.status = ChannelStatus.DISCONNECTED
            raise ConnectTimeout(timeout_seconds=self.connect_timeout) from e
        except (OSError, WebSocketException) as e:
            self.status = ChannelStatus.DISCONNECTED
            raise TransportError(f"Socket error: {e}") from e

        self._socket_open = True
        self.status = ChannelStatus.AWAITING_JOIN

        try:
            self._join()
        except JoinError:
            if self.pending_events:
                logger.warning(f"Dropping {len(self.pending_events)} event(s) received before a failed join")
            self.pending_events = []
            # Never leave a half-open socket behind
            with self._state_lock:
                self._closing = True
            self._teardown()
            raise

        self.status = ChannelStatus.JOINED
        self._start_heartbeat()
        self._reader_thread = threading.Thread(target=self._read_loop, args=(self.socket,),
                                               daemon=True, name='channel-reader')
        self._reader_thread.start()
        logger.info(f"Channel {self.topic} joined")

    def _join(self):
        logger.info(f"Joining channel: {self.topic}")
        envelope = join_envelope(self.session.device_id, self.session.auth_token)
        if not self._send_envelope(envelope):
            raise JoinError("Socket closed before join could be sent")

        deadline = time.monotonic() + self.join_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise JoinError("Channel join timeout")
            try:
                raw = self.socket.recv(timeout=remaining)
            except TimeoutError:
                raise JoinError("Channel join timeout")
            except ConnectionClosed as e:
                raise JoinError(f"Socket closed while joining: {e}")

            try:
                reply = decode_envelope(raw)
            except FrameDecodeError as e:
                logger.warning(f"Ignoring frame while joining: {e}")
                continue

            if reply.is_reply and reply.ref == self.join_ref:
                if reply.reply_ok:
                    self.join_response = reply.payload.get('response')
                    logger.info("Join successful")
                    return
                raise JoinError(f"Channel join failed: {reply.payload}", response=reply.payload)

            if reply.is_reply:
                self._handle_envelope(reply)
            else:
                # Held until the owner has published this channel as joined
                self.pending_events.append(reply)

    def deliver_pending(self):
        """Hand events that arrived during the join handshake to on_event"""
        pending, self.pending_events = self.pending_events, []
        for envelope in pending:
            self._handle_envelope(envelope)

    def _read_loop(self, sock):
        reason = None
        while True:
            try:
                raw = sock.recv()
            except ConnectionClosed as e:
                reason = str(e)
                break
            except (OSError, RuntimeError) as e:
                reason = f"Socket error: {e}"
                break

            try:
                envelope = decode_envelope(raw)
            except FrameDecodeError as e:
                logger.warning(f"Raw message (not an envelope): {e}")
                continue
            self._handle_envelope(envelope)

        self._on_socket_closed(reason)

    def _handle_envelope(self, envelope: Envelope):
        if envelope.is_reply:
            # Replies only matter for join bookkeeping
            logger.debug("Reply %s: %s", envelope.ref, envelope.payload.get('status'))
            return

        logger.info(f"Received {envelope.event} on {envelope.topic}")
        if self.on_event is None:
            return
        try:
            self.on_event(envelope.event, envelope.payload)
        except Exception as e:
            logger.error(f"Error handling {envelope.event}: {e}")

    def _on_socket_closed(self, reason: Optional[str]):
        with self._state_lock:
            if self._closing:
                return
            self._closing = True

        logger.warning(f"Channel socket disconnected: {reason or 'closed'}")
        self._teardown()
        if self.on_disconnect:
            self.on_disconnect(self)

    def send(self, event: str, payload: Dict[str, Any]) -> bool:
        """Push an event on the device topic; False when not joined"""
        if not self.is_joined:
            logger.warning(f"Cannot send {event}: channel not joined")
            return False

        envelope = Envelope(topic=self.topic, event=event, payload=payload, ref=make_ref(event))
        return self._send_envelope(envelope)

    def _send_envelope(self, envelope: Envelope) -> bool:
        sock = self.socket
        if sock is None:
            return False

        frame = encode_envelope(envelope)
        try:
            # One frame at a time; reader, heartbeat, scanner and dispatcher all send
            with self._send_lock:
                sock.send(frame)
        except (ConnectionClosed, OSError) as e:
            logger.warning(f"Failed to send {envelope.event}: {e}")
            return False

        logger.debug("Sent %s (%s)", envelope.event, envelope.ref)
        return True

    def _start_heartbeat(self):
        self._stop_heartbeat()
        stop = threading.Event()
        self._heartbeat_stop = stop
        self._heartbeat_thread = threading.Thread(target=self._heartbeat_loop, args=(stop,),
                                                  daemon=True, name='channel-heartbeat')
        self._heartbeat_thread.start()

    def _heartbeat_loop(self, stop: threading.Event):
        while not stop.wait(self.heartbeat_interval):
            if not self._heartbeat_tick():
                break

    def _heartbeat_tick(self) -> bool:
        """Send one heartbeat; stops the heartbeat if the socket is gone"""
        if not self.is_open:
            logger.info("Socket not open, stopping heartbeat")
            self._stop_heartbeat()
            return False
        self._send_envelope(heartbeat_envelope())
        return True

    def _stop_heartbeat(self):
        stop = self._heartbeat_stop
        if stop is not None:
            stop.set()
        self._heartbeat_stop = None
        self._heartbeat_thread = None

    def _teardown(self):
        self._stop_heartbeat()
        self._socket_open = False
        sock, self.socket = self.socket, None
        self.status = ChannelStatus.DISCONNECTED
        if sock is not None:
            try:
                sock.close()
            except Exception as e:
                logger.debug("Error closing socket: %s", e)

    def disconnect(self):
        """Stop heartbeat and close the socket. Safe to call repeatedly."""
        with self._state_lock:
            self._closing = True
        self._teardown()

        reader = self._reader_thread
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self.CLOSE_TIMEOUT)
        self._reader_thread = None

    def get_status(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'topic': self.topic,
            'joined': self.is_joined,
            'heartbeat_active': self.heartbeat_active,
        }
