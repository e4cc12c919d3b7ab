import datetime
import sys
import threading
from typing import Optional, TextIO

from tabchat_common.messages import Frame, FrameType


def hhmmss(timestamp_ms: int) -> str:
    '''Takes a timestamp in ms since the epoch and returns HH:MM:SS in local time'''
    try:
        return datetime.datetime.fromtimestamp(timestamp_ms / 1000).strftime("%H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return "--:--:--"


def format_frame(frame: Frame) -> Optional[str]:
    '''
    Render one inbound frame as a chat line.
    JOIN and LEAVE frames are not shown; returns None for them.
    '''
    time = hhmmss(frame.timestamp)
    if frame.type is FrameType.SYSTEM:
        return f"{time}  [SYSTEM] {frame.body}"
    if frame.type is FrameType.CHAT:
        return f"{time}  [{frame.sender}] {frame.body}"
    if frame.type is FrameType.ERROR:
        return f"{time}  [ERROR] {frame.body}"
    return None


class ConsoleUI:
    ''' Prints connection events to a text stream. Meant to run behind a Dispatcher. '''
    def __init__(self, out: Optional[TextIO] = None):
        self.out = out or sys.stdout
        self.closed = threading.Event()   # set once the connection has ended
        self.status = "Disconnected"

    def append(self, text: str):
        print(text, file=self.out, flush=True)

    def append_system(self, msg: str):
        self.append(f"[SYSTEM] {msg}")

    def handle_message(self, frame: Frame):
        line = format_frame(frame)
        if line is not None:
            self.append(line)

    def handle_closed(self):
        self.append_system("Connection closed.")
        self.closed.set()

    def handle_state(self, state):
        # Connected/Disconnected lines are printed by main, which knows host and nickname
        self.status = getattr(state, "value", str(state))
