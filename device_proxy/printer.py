# Receipt Printer - printer capabilities for the POS Device Proxy
# Network (raw TCP 9100) ESC/POS printer and a mock printer for testing

import socket
import logging
from typing import Optional, Callable, Dict, Any, List

from .escpos import html_to_text, build_text_job
from .exceptions import PrintError


logger = logging.getLogger(__name__)


class ReceiptPrinter:
    """Printer capability: is_ready() + print_html()"""

    def __init__(self):
        self.ready = False
        self.status = 'initializing'

    def initialize(self):
        pass

    def is_ready(self) -> bool:
        return self.ready

    def get_status(self) -> str:
        return self.status

    def print_html(self, html: str, options: Optional[Dict[str, Any]] = None):
        raise NotImplementedError

    def print_text(self, text: str, options: Optional[Dict[str, Any]] = None):
        raise NotImplementedError

    def disconnect(self):
        self.ready = False
        self.status = 'disconnected'


class NetworkPrinter(ReceiptPrinter):
    """ESC/POS printer reachable on a raw TCP port (9100 on most thermal printers)"""

    def __init__(self, host: str, port: int = 9100, timeout: float = 10,
                 renderer: Optional[Callable[[str], str]] = None):
        super().__init__()
        self.host = host
        self.port = port
        self.timeout = timeout
        self.renderer = renderer or html_to_text

    def initialize(self):
        """Probe the printer port; the printer is usable only if it answers"""
        logger.info(f"Initializing network printer at {self.host}:{self.port}...")
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                pass
        except OSError as e:
            logger.error(f"Failed to initialize network printer: {e}")
            self.ready = False
            self.status = 'error'
            return

        self.ready = True
        self.status = 'ready'
        logger.info(f"Network printer initialized at {self.host}:{self.port}")

    def print_html(self, html: str, options: Optional[Dict[str, Any]] = None):
        if not self.ready:
            raise PrintError('Printer not ready')
        self.print_text(self.renderer(html), options)

    def print_text(self, text: str, options: Optional[Dict[str, Any]] = None):
        if not self.ready:
            raise PrintError('Printer not ready')
        self._send(build_text_job(text, options))
        logger.info("Receipt printed successfully")

    def _send(self, job: bytes):
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout) as conn:
                conn.sendall(job)
        except OSError as e:
            self.status = 'error'
            raise PrintError(f"Printer {self.host}:{self.port} unreachable: {e}") from e
        self.status = 'ready'


class MockPrinter(ReceiptPrinter):
    """Accepts every job and only logs it"""

    def __init__(self, ready: bool = True):
        super().__init__()
        self.ready = ready
        self.status = 'mock_mode'
        self.jobs: List[Dict[str, Any]] = []

    def print_html(self, html: str, options: Optional[Dict[str, Any]] = None):
        if not self.ready:
            raise PrintError('Printer not ready')
        logger.info('MOCK PRINT: %s...', html[:100])
        self.jobs.append({'html': html, 'options': options or {}})

    def print_text(self, text: str, options: Optional[Dict[str, Any]] = None):
        if not self.ready:
            raise PrintError('Printer not ready')
        logger.info('MOCK PRINT TEXT: %s', text)
        self.jobs.append({'text': text, 'options': options or {}})
