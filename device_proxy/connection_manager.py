# Connection Supervisor - keeps the device channel up for the POS Device Proxy
# Bounded exponential backoff, then fixed-interval retry until connected

import logging
import threading
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Callable, Dict, Any

from .channel import ChannelConnection
from .card_scanner import CardReadEvent
from .exceptions import ConnectError, JoinError, NotAuthenticatedError
from .protocol import CARD_SCANNED
from .session import Session, SessionStore


logger = logging.getLogger(__name__)


class SupervisorState(Enum):
    IDLE = 'idle'
    RETRYING = 'retrying'
    CONNECTED = 'connected'
    PERSISTENT_RETRY = 'persistent_retry'


def backoff_delay_ms(attempt: int, initial_delay_ms: float = 2000,
                     backoff_factor: float = 1.5) -> float:
    """Delay before attempt ``attempt`` (0-based): initial * factor ** attempt"""
    return initial_delay_ms * backoff_factor ** attempt


@dataclass
class RetryState:
    """Progress of one supervised connect sequence"""
    attempt: int = 0
    max_attempts: int = 5
    initial_delay_ms: float = 2000
    backoff_factor: float = 1.5

    def delay_ms(self, attempt: int) -> float:
        return backoff_delay_ms(attempt, self.initial_delay_ms, self.backoff_factor)

    def reset(self):
        self.attempt = 0


class _ConnectSequence:
    """Result slot shared with callers that arrive while a sequence runs"""

    def __init__(self):
        self.done = threading.Event()
        self.result = False
        self.error: Optional[BaseException] = None

    def finish(self, result: bool = False, error: Optional[BaseException] = None):
        self.result = result
        self.error = error
        self.done.set()

    def wait(self) -> bool:
        self.done.wait()
        if self.error is not None:
            raise self.error
        return self.result


class ConnectionSupervisor:
    """Owns the one live ChannelConnection and every retry timer"""

    PERSISTENT_RETRY_INTERVAL = 30

    def __init__(self, sessions: SessionStore,
                 on_event: Optional[Callable[[str, Dict[str, Any]], None]] = None,
                 channel_factory: Callable[..., ChannelConnection] = ChannelConnection,
                 retry_interval: float = PERSISTENT_RETRY_INTERVAL,
                 max_attempts: int = 5,
                 initial_delay_ms: float = 2000,
                 backoff_factor: float = 1.5):
        self.sessions = sessions
        self.on_event = on_event
        self.channel_factory = channel_factory
        self.retry_interval = retry_interval
        self.retry = RetryState(max_attempts=max_attempts,
                                initial_delay_ms=initial_delay_ms,
                                backoff_factor=backoff_factor)

        self.state = SupervisorState.IDLE
        self.channel: Optional[ChannelConnection] = None
        self.last_error: Optional[str] = None

        self.lock = threading.Lock()
        # Held for the duration of any single connect attempt
        self._attempt_lock = threading.Lock()
        self._sequence: Optional[_ConnectSequence] = None
        self._cancel = threading.Event()
        self._retry_stop: Optional[threading.Event] = None
        self._retry_thread = None

    # -- top-level connect -------------------------------------------------

    def connect_with_retry(self) -> bool:
        """
        Connect with up to ``max_attempts`` tries and exponential backoff.

        Returns True once joined. Returns False when every attempt failed; in
        that case persistent retry keeps going in the background. A call made
        while a sequence is running waits for that sequence's result instead
        of starting another. A join the server explicitly rejected ends the
        sequence and propagates as JoinError; a join that timed out counts as
        a failed attempt. NotAuthenticatedError propagates.
        """
        with self.lock:
            sequence = self._sequence
            owner = sequence is None
            if owner:
                sequence = self._sequence = _ConnectSequence()

        if not owner:
            logger.info("Connect already in progress, waiting for its result")
            return sequence.wait()

        try:
            result = self._run_sequence()
        except BaseException as e:
            sequence.finish(error=e)
            raise
        else:
            sequence.finish(result=result)
            return result
        finally:
            with self.lock:
                self._sequence = None

    def _run_sequence(self) -> bool:
        if not self.sessions.is_authenticated():
            raise NotAuthenticatedError("Authentication required before connecting")

        self._stop_persistent_retry()
        self._cancel.clear()
        self.retry.reset()
        self.state = SupervisorState.RETRYING
        max_attempts = self.retry.max_attempts

        for attempt in range(max_attempts):
            self.retry.attempt = attempt
            if attempt > 0:
                delay = self.retry.delay_ms(attempt)
                logger.info(f"Channel retry attempt {attempt + 1}/{max_attempts} in {delay / 1000}s...")
                if self._cancel.wait(delay / 1000):
                    logger.info("Connect sequence cancelled")
                    return False
            else:
                logger.info(f"Channel connection attempt {attempt + 1}/{max_attempts}")

            session = self.sessions.current()
            if session is None or not session.is_valid:
                logger.warning("Credentials cleared during connect sequence")
                self.state = SupervisorState.IDLE
                return False

            try:
                with self._attempt_lock:
                    if self._attempt_connect(session):
                        return True
                # Cancelled by disconnect() while the attempt was in flight
                return False
            except JoinError as e:
                self.last_error = str(e)
                if e.rejected:
                    self.retry.reset()
                    self.state = SupervisorState.IDLE
                    logger.error(f"Channel join rejected: {e}")
                    raise
                logger.error(f"Channel attempt {attempt + 1} failed: {e}")
            except ConnectError as e:
                self.last_error = str(e)
                logger.error(f"Channel attempt {attempt + 1} failed: {e}")

            if self._cancel.is_set():
                return False

        logger.error("All channel connection attempts failed")
        self._start_persistent_retry()
        return False

    def _attempt_connect(self, session: Session, end_retry: bool = False) -> bool:
        """
        One connect + join. The previous channel is fully torn down first.

        With ``end_retry`` the persistent retry loop is released in the same
        step that publishes the new channel, so a drop right after joining
        starts a fresh loop.
        """
        with self.lock:
            old, self.channel = self.channel, None
        if old is not None:
            old.disconnect()

        channel = self.channel_factory(on_event=self._on_channel_event,
                                       on_disconnect=self._on_channel_disconnect)
        channel.connect(session)

        with self.lock:
            cancelled = self._cancel.is_set()
            if not cancelled:
                if end_retry:
                    self._release_retry_loop()
                self.channel = channel
                self.state = SupervisorState.CONNECTED
                self.retry.reset()
                self.last_error = None

        if cancelled:
            channel.disconnect()
            return False

        logger.info("Channel connection established")
        channel.deliver_pending()
        return True

    # -- persistent retry --------------------------------------------------

    def _start_persistent_retry(self):
        with self.lock:
            self.state = SupervisorState.PERSISTENT_RETRY
            if self._retry_stop is not None:
                return
            stop = threading.Event()
            self._retry_stop = stop
            self._retry_thread = threading.Thread(target=self._retry_loop, args=(stop,),
                                                  daemon=True, name='channel-retry')
            thread = self._retry_thread

        logger.info(f"Starting automatic channel reconnection (every {self.retry_interval} seconds)")
        thread.start()

    def _release_retry_loop(self):
        # Caller holds self.lock
        stop, self._retry_stop = self._retry_stop, None
        self._retry_thread = None
        if stop is not None:
            stop.set()

    def _stop_persistent_retry(self):
        with self.lock:
            self._release_retry_loop()

    def _retry_loop(self, stop: threading.Event):
        while not stop.wait(self.retry_interval):
            if not self._retry_tick():
                break
        with self.lock:
            if self._retry_stop is stop:
                self._release_retry_loop()

    def _retry_tick(self) -> bool:
        """One persistent-retry firing. Returns False once retrying should end."""
        if self.state != SupervisorState.PERSISTENT_RETRY:
            return False

        if self.is_joined():
            logger.info("Channel already connected, stopping auto-reconnect")
            self._stop_persistent_retry()
            self.state = SupervisorState.CONNECTED
            return False

        session = self.sessions.current()
        if session is None or not session.is_valid:
            logger.info("No credentials, stopping auto-reconnect")
            self._stop_persistent_retry()
            self.state = SupervisorState.IDLE
            return False

        if not self._attempt_lock.acquire(blocking=False):
            logger.debug("Connect attempt already in flight, skipping tick")
            return True

        try:
            logger.info("Attempting automatic channel reconnection...")
            connected = self._attempt_connect(session, end_retry=True)
        except (JoinError, ConnectError) as e:
            self.last_error = str(e)
            logger.error(f"Automatic reconnection failed: {e}")
            return True
        finally:
            self._attempt_lock.release()

        if connected:
            logger.info("Automatic reconnection successful")
        return False

    # -- channel callbacks -------------------------------------------------

    def _on_channel_event(self, event: str, payload: Dict[str, Any]):
        if self.on_event:
            self.on_event(event, payload)

    def _on_channel_disconnect(self, channel: ChannelConnection):
        with self.lock:
            if channel is not self.channel:
                return
            self.channel = None
            was_connected = self.state == SupervisorState.CONNECTED

        if was_connected:
            self.last_error = "Connection lost"
            logger.warning("Channel lost, entering automatic reconnection")
            self._start_persistent_retry()

    # -- outbound ----------------------------------------------------------

    def send(self, event: str, payload: Dict[str, Any]) -> bool:
        channel = self.channel
        if channel is None or not channel.is_joined:
            logger.warning(f"Cannot send {event}: not connected to server")
            return False
        return channel.send(event, payload)

    def send_card_scanned(self, card: CardReadEvent) -> bool:
        return self.send(CARD_SCANNED, {'card_data': card.to_dict()})

    # -- teardown / status -------------------------------------------------

    def disconnect(self):
        """Cancel backoff and retry timers, close the live channel"""
        with self.lock:
            self._cancel.set()
            channel, self.channel = self.channel, None
            self.state = SupervisorState.IDLE
            self.retry.reset()
        self._stop_persistent_retry()
        if channel is not None:
            channel.disconnect()
        logger.info("Channel supervisor disconnected")

    def is_joined(self) -> bool:
        channel = self.channel
        return channel is not None and channel.is_joined

    @property
    def auto_retry_active(self) -> bool:
        return self.state == SupervisorState.PERSISTENT_RETRY

    def get_status(self) -> Dict[str, Any]:
        channel = self.channel
        return {
            'connected': channel is not None and channel.is_open,
            'joined': channel is not None and channel.is_joined,
            'auto_retry_active': self.auto_retry_active,
            'state': self.state.value,
            'attempt': self.retry.attempt,
            'max_attempts': self.retry.max_attempts,
            'last_error': self.last_error,
        }
