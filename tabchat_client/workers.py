"""
Reader and writer threads of one chat connection.
"""
import logging
import socket
import threading
from typing import Callable, Optional

from tabchat_common.messages import Frame, FrameType
from tabchat_common.protocol import LineReader, decode, send_line

from .errors import ReadFailure, ShutdownError
from .sendqueue import SendQueue

logger = logging.getLogger(__name__)


class WriterLoop(threading.Thread):
    '''
    Drains the send queue onto the socket, one line per write.
    Stops when the queue is shut down or a write fails. A write failure is
    only logged; the reader notices the broken connection on its own.
    '''
    def __init__(self, sock: socket.socket, send_queue: SendQueue):
        super().__init__(name="ChatWriter", daemon=True)
        self.sock = sock
        self.send_queue = send_queue
        self.sent = 0

    def run(self):
        while True:
            try:
                line = self.send_queue.dequeue()
            except ShutdownError:
                break
            try:
                send_line(self.sock, line)
            except OSError as e:
                logger.debug("Writer stopped after write failure: %s", e)
                break
            self.sent += 1
        logger.debug("Writer exiting after %d lines", self.sent)


class ReaderLoop(threading.Thread):
    '''
    Reads lines, decodes them and hands frames to on_message in arrival order.
    on_exit runs once on this thread when the loop ends, whatever the cause.
    '''
    def __init__(self, lines: LineReader,
                 on_message: Callable[[Frame], None],
                 on_exit: Optional[Callable[[], None]] = None):
        super().__init__(name="ChatReader", daemon=True)
        self.lines = lines
        self.on_message = on_message
        self.on_exit = on_exit
        self.failure: Optional[ReadFailure] = None
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        ''' Stop after the current read returns. Closing the socket is what interrupts that read. '''
        self._cancelled.set()

    def run(self):
        try:
            self._read_until_closed()
        finally:
            if self.on_exit:
                self.on_exit()

    def _read_until_closed(self):
        while not self.cancelled:
            try:
                line = self.lines.readline()
            except OSError as e:
                if self.cancelled:
                    break
                self.failure = ReadFailure(str(e) or e.__class__.__name__)
                logger.warning("Read failed: %s", self.failure)
                self._deliver(Frame(FrameType.ERROR, "", body=f"Connection error: {self.failure}"))
                break

            if line is None:
                logger.info("Server closed the connection.")
                break
            if self.cancelled:
                break

            frame = decode(line)
            if frame is None:
                logger.debug("Discarding unrecognized frame: %r", line)
                continue
            self._deliver(frame)

    def _deliver(self, frame: Frame):
        try:
            self.on_message(frame)
        except Exception:
            # A broken handler must not kill the reader thread
            logger.exception("on_message handler failed for %s frame", frame.type.value)
