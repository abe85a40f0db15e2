# Command Dispatcher - remote commands to local devices for the POS Device Proxy
# Every print command gets exactly one print_completed ack

import logging
import threading
from queue import Queue
from datetime import datetime, timezone
from typing import Optional, Callable, Dict, Any

from .exceptions import PrintError
from .protocol import PRINT_HTML, PRINT_COMPLETED


logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_FAILED = 'failed'
PRINTER_NOT_READY = 'Printer not ready'


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def make_print_ack(print_id, status: str, error: Optional[str] = None) -> Dict[str, Any]:
    ack = {
        'print_id': print_id,
        'status': status,
        'timestamp': _timestamp(),
    }
    if error is not None:
        ack['error'] = error
    return ack


class CommandDispatcher:
    """Routes inbound channel events to device capabilities"""

    def __init__(self, get_printer: Callable[[], Any],
                 send: Callable[[str, Dict[str, Any]], bool]):
        self.get_printer = get_printer
        self.send = send
        self.queue = Queue()
        self.running = False
        self.thread = None
        self.handled = 0
        self.last_ack: Optional[Dict[str, Any]] = None
        self.handlers = {
            PRINT_HTML: self.handle_print_command,
        }

    def start(self):
        """Run commands on a worker thread so the socket reader never waits on a printer"""
        if self.running:
            return
        self.running = True
        self.thread = threading.Thread(target=self._worker, daemon=True, name='command-dispatcher')
        self.thread.start()

    def stop(self):
        if not self.running:
            return
        self.running = False
        self.queue.put(None)
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=5)
        self.thread = None

    def dispatch(self, event: str, payload: Dict[str, Any]):
        """Channel on_event hook"""
        if event not in self.handlers:
            logger.info(f"Ignoring unhandled event: {event}")
            return
        if self.running:
            self.queue.put((event, payload))
        else:
            self.handle(event, payload)

    def handle(self, event: str, payload: Dict[str, Any]):
        handler = self.handlers.get(event)
        if handler is None:
            return None
        return handler(payload or {})

    def _worker(self):
        while True:
            item = self.queue.get()
            if item is None:
                break
            event, payload = item
            try:
                self.handle(event, payload)
            except Exception as e:
                logger.error(f"Command {event} crashed: {e}")

    def handle_print_command(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Print the HTML and send back the single ack for this print_id"""
        print_id = payload.get('print_id')
        logger.info(f"Received print command. Print ID: {print_id}")

        printer = self.get_printer()
        if printer is None or not printer.is_ready():
            logger.warning("Print command received but printer not ready")
            ack = make_print_ack(print_id, STATUS_FAILED, PRINTER_NOT_READY)
        else:
            try:
                html = payload.get('html')
                if not isinstance(html, str):
                    raise PrintError("Print command has no html")
                printer.print_html(html, payload.get('options') or {})
            except Exception as e:
                logger.error(f"Print failed. Print ID: {print_id}: {e}")
                ack = make_print_ack(print_id, STATUS_FAILED, str(e) or e.__class__.__name__)
            else:
                logger.info(f"Print completed successfully. Print ID: {print_id}")
                ack = make_print_ack(print_id, STATUS_SUCCESS)

        self.handled += 1
        self.last_ack = ack
        if not self.send(PRINT_COMPLETED, ack):
            logger.warning(f"Ack for print {print_id} could not be delivered")
        return ack
