import os
import sys
import threading
import termios
import tty
import select
from typing import Optional
from batchpress.infrastructure.event_bus import EventBus
from batchpress.domain.events import ConcurrencyChangeRequested

INCREASE_KEYS = ('.', '>', '+')
DECREASE_KEYS = (',', '<', '-')


class KeyboardListener:
    """Listens for keyboard input in a background thread.

    '>' / '.' / '+' raise the concurrency ceiling by one, '<' / ',' / '-'
    lower it. Ctrl+C is left to the terminal (cbreak mode keeps SIGINT).
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _handle_key(self, key: str):
        if key in INCREASE_KEYS:
            self.event_bus.publish(ConcurrencyChangeRequested(change=1))
        elif key in DECREASE_KEYS:
            self.event_bus.publish(ConcurrencyChangeRequested(change=-1))

    def _run(self):
        """Main loop for the listener thread."""
        if not sys.stdin.isatty():
            return

        fd = sys.stdin.fileno()
        old_settings = termios.tcgetattr(fd)
        try:
            tty.setcbreak(fd)
            while not self._stop_event.is_set():
                if fd in select.select([fd], [], [], 0.1)[0]:
                    try:
                        raw = os.read(fd, 1)
                    except OSError:
                        continue
                    if raw:
                        self._handle_key(raw.decode('utf-8', errors='replace'))
        finally:
            termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)

    def start(self):
        """Starts the listener thread."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        """Stops the listener thread."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=1.0)
