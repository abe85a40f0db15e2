# Device Manager - builds and tracks local devices for the POS Device Proxy

import logging
from typing import Optional, Callable, Dict, Any

from .card_scanner import CardScanner, CardReadEvent, SerialCardScanner, SimulatedCardScanner
from .printer import ReceiptPrinter, NetworkPrinter, MockPrinter


logger = logging.getLogger(__name__)


def build_printer(printer_config: Dict[str, Any]) -> ReceiptPrinter:
    mode = printer_config.get('mode', 'mock')
    if mode == 'network':
        if not printer_config.get('host'):
            raise ValueError("Network printer needs a host")
        return NetworkPrinter(
            printer_config['host'],
            port=int(printer_config.get('port', 9100)),
            timeout=float(printer_config.get('timeout', 10)),
        )
    if mode == 'mock':
        return MockPrinter()
    raise ValueError(f"Unknown printer mode: {mode}")


def build_scanner(scanner_config: Dict[str, Any]) -> CardScanner:
    mode = scanner_config.get('mode', 'simulated')
    if mode == 'serial':
        if not scanner_config.get('port'):
            raise ValueError("Serial scanner needs a port")
        return SerialCardScanner(
            scanner_config['port'],
            baudrate=int(scanner_config.get('baudrate', 9600)),
        )
    if mode == 'simulated':
        return SimulatedCardScanner()
    raise ValueError(f"Unknown scanner mode: {mode}")


class DeviceManager:
    """Owns the receipt printer and the card scanner"""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.printer: Optional[ReceiptPrinter] = None
        self.scanner: Optional[CardScanner] = None
        self.initialized = False

    def initialize(self):
        logger.info("Initializing devices...")
        self.printer = build_printer(self.config.get('printer') or {})
        self.scanner = build_scanner(self.config.get('scanner') or {})
        self.printer.initialize()
        self.scanner.start()
        self.initialized = True
        logger.info("Devices initialized")

    def on_card_scanned(self, callback: Callable[[CardReadEvent], None]):
        """Single subscription point for completed card reads"""
        if self.scanner:
            self.scanner.subscribe(callback)

    def get_printer(self) -> Optional[ReceiptPrinter]:
        return self.printer

    def get_scanner(self) -> Optional[CardScanner]:
        return self.scanner

    def get_status(self) -> Dict[str, Any]:
        return {
            'printer': {
                'available': self.printer is not None,
                'ready': self.printer.is_ready() if self.printer else False,
                'status': self.printer.get_status() if self.printer else 'not_initialized',
            },
            'scanner': {
                'available': self.scanner is not None,
                'ready': self.scanner.is_ready() if self.scanner else False,
                'status': self.scanner.get_status() if self.scanner else 'not_initialized',
            },
        }

    def disconnect(self):
        if self.printer:
            self.printer.disconnect()
        if self.scanner:
            self.scanner.stop()
