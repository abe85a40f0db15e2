# Card Scanner - card reader byte stream handling for the POS Device Proxy
# Splits raw scanner bytes into card reads and classifies the card id

import re
import threading
import logging
from typing import Optional, Callable, Dict, Any
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
import serial


logger = logging.getLogger(__name__)

PREFIXED_PATTERN = re.compile(r'[A-Z]+(\d+)')
NUMERIC_PATTERN = re.compile(r'\d+')
HEX_PATTERN = re.compile(r'[0-9A-Fa-f]+')

FORMAT_NUMERIC = 'numeric'
FORMAT_HEX = 'hex'
FORMAT_PREFIXED_NUMERIC = 'prefixed_numeric'
FORMAT_UNKNOWN = 'unknown'


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass(frozen=True)
class CardReadEvent:
    """One completed card read"""
    raw_data: str
    card_id: str
    format: str
    timestamp: str = field(default_factory=_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract_card_id(raw_data: str) -> str:
    """Pull the card id out of a raw token"""
    # Prefixed cards, e.g. CARD123456
    match = PREFIXED_PATTERN.fullmatch(raw_data)
    if match:
        return match.group(1)

    if NUMERIC_PATTERN.fullmatch(raw_data):
        return raw_data

    if HEX_PATTERN.fullmatch(raw_data):
        return raw_data.lower()

    return raw_data


def detect_card_format(raw_data: str) -> str:
    if NUMERIC_PATTERN.fullmatch(raw_data):
        return FORMAT_NUMERIC
    if HEX_PATTERN.fullmatch(raw_data):
        return FORMAT_HEX
    if PREFIXED_PATTERN.fullmatch(raw_data):
        return FORMAT_PREFIXED_NUMERIC
    return FORMAT_UNKNOWN


def make_card_event(raw_data: str) -> CardReadEvent:
    return CardReadEvent(
        raw_data=raw_data,
        card_id=extract_card_id(raw_data),
        format=detect_card_format(raw_data),
    )


class CardFrameParser:
    """
    Turns an unframed scanner byte stream into CardReadEvents.

    NUL bytes are skipped, CR/LF end the current token, printable ASCII
    (0x20-0x7E) is accumulated and every other byte is dropped without
    ending the token.
    """

    CR = 0x0D
    LF = 0x0A
    NUL = 0x00

    def __init__(self, on_card: Optional[Callable[[CardReadEvent], None]] = None):
        self.on_card = on_card
        self._buffer = []
        self.anomalies = 0

    def subscribe(self, callback: Callable[[CardReadEvent], None]):
        """Register the single subscriber, replacing any previous one"""
        self.on_card = callback

    @property
    def pending(self) -> str:
        return ''.join(self._buffer)

    def feed(self, data: bytes) -> list:
        """Consume a chunk of bytes; returns the events completed by it"""
        events = []
        for byte in bytes(data):
            if byte == self.NUL:
                continue
            if byte == self.CR or byte == self.LF:
                event = self._terminate()
                if event is not None:
                    events.append(event)
            elif 0x20 <= byte <= 0x7E:
                self._buffer.append(chr(byte))
            else:
                self.anomalies += 1
                logger.debug("Dropped non-printable scanner byte 0x%02X", byte)
        return events

    def reset(self):
        self._buffer = []

    def _terminate(self) -> Optional[CardReadEvent]:
        if not self._buffer:
            return None
        raw_data = ''.join(self._buffer).strip()
        self._buffer = []
        if not raw_data:
            return None

        event = make_card_event(raw_data)
        logger.info(f"Card scanned: {event.card_id} ({event.format})")
        if self.on_card:
            self.on_card(event)
        return event


class CardScanner:
    """Scanner capability: byte source + parser + readiness"""

    def __init__(self):
        self.parser = CardFrameParser()
        self.ready = False
        self.status = 'initializing'

    def subscribe(self, callback: Callable[[CardReadEvent], None]):
        self.parser.subscribe(callback)

    def start(self):
        raise NotImplementedError

    def stop(self):
        raise NotImplementedError

    def is_ready(self) -> bool:
        return self.ready

    def get_status(self) -> str:
        return self.status


class SerialCardScanner(CardScanner):
    """Card reader on a serial / USB-CDC port, read on a background thread"""

    def __init__(self, port: str, baudrate: int = 9600,
                 reconnect_delay: float = 5, reconnect_max_delay: float = 60):
        super().__init__()
        self.port = port
        self.baudrate = baudrate
        self.running = False
        self.thread = None
        self._reconnect_delay = reconnect_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._stop_event = threading.Event()

    def start(self):
        if self.running:
            return
        self.running = True
        self._stop_event.clear()
        self.thread = threading.Thread(target=self._serial_listener, daemon=True,
                                       name='card-scanner')
        self.thread.start()
        logger.info(f"Card scanner listening on {self.port}")

    def stop(self):
        self.running = False
        self._stop_event.set()
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=2)
        self.ready = False
        self.status = 'disconnected'
        self.parser.reset()
        logger.info("Card scanner stopped")

    def _serial_listener(self):
        """Serial read loop with disconnect/reconnect"""
        delay = self._reconnect_delay
        while self.running:
            try:
                with serial.Serial(self.port, self.baudrate, timeout=1) as ser:
                    delay = self._reconnect_delay
                    self.ready = True
                    self.status = 'ready'
                    logger.info("Scanner port %s opened", self.port)

                    while self.running:
                        data = ser.read(ser.in_waiting or 1)
                        if data:
                            self.parser.feed(data)
            except serial.SerialException as e:
                logger.warning("Scanner serial error on %s: %s", self.port, e)
                self.status = 'error'
            except Exception as e:
                # A faulty subscriber must not kill the reader thread
                logger.error("Error in scanner listener: %s", e)
                self.status = 'error'
            finally:
                self.ready = False
                self.parser.reset()

            if self.running:
                logger.info("Reopening scanner %s in %s seconds...", self.port, delay)
                if self._stop_event.wait(delay):
                    break
                delay = min(delay * 2, self._reconnect_max_delay)


class SimulatedCardScanner(CardScanner):
    """Scanner stand-in; bytes are pushed in with inject()"""

    def __init__(self):
        super().__init__()
        self.status = 'mock_mode'

    def start(self):
        self.ready = True
        self.status = 'mock_mode'
        logger.info("Simulated card scanner started")

    def stop(self):
        self.ready = False
        self.status = 'disconnected'
        self.parser.reset()

    def inject(self, data) -> list:
        if isinstance(data, str):
            data = data.encode('ascii', errors='replace')
        return self.parser.feed(data)


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)

    parser = CardFrameParser(lambda e: print(e.to_dict()))
    for sample in (b"CARD123456\r", b"4001234567\n", b"\x001A2B3C\r", b"AB-12\r\n"):
        parser.feed(sample)
