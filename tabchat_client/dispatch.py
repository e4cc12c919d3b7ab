"""
Ordered hand-off of connection events to a single consumer thread.
"""
import logging
import threading
from queue import Queue
from typing import Any, Optional, Protocol

from tabchat_common.messages import Frame

logger = logging.getLogger(__name__)

_STOP = object()


class EventHandler(Protocol):
    def handle_message(self, frame: Frame) -> None: ...
    def handle_closed(self) -> None: ...
    def handle_state(self, state: Any) -> None: ...


class Dispatcher:
    '''
    Replays engine callbacks on one consumer thread, in the order they were
    produced. Pass the on_* methods to ChatConnection; they only enqueue, so
    the reader thread never waits on the UI.
    '''
    def __init__(self, handler: EventHandler, name: str = "ChatDispatcher"):
        self.handler = handler
        self._events: "Queue[Any]" = Queue()
        self._thread: Optional[threading.Thread] = None
        self._name = name

    def start(self):
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        ''' Deliver everything already queued, then stop the consumer thread '''
        if self._thread is None:
            return
        self._events.put(_STOP)
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def on_message(self, frame: Frame):
        self._events.put(("message", frame))

    def on_closed(self):
        self._events.put(("closed", None))

    def on_state_changed(self, state: Any):
        self._events.put(("state", state))

    def _run(self):
        while True:
            event = self._events.get()
            if event is _STOP:
                break
            kind, payload = event
            try:
                if kind == "message":
                    self.handler.handle_message(payload)
                elif kind == "closed":
                    self.handler.handle_closed()
                else:
                    self.handler.handle_state(payload)
            except Exception:
                logger.exception("Event handler failed on %s event", kind)
