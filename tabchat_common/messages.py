import time
from dataclasses import dataclass, field
from enum import Enum


class FrameType(str, Enum):
    JOIN = "JOIN"
    LEAVE = "LEAVE"
    CHAT = "CHAT"
    SYSTEM = "SYSTEM"
    ERROR = "ERROR"


def now_millis() -> int:
    ''' Current local time in integer milliseconds since the epoch '''
    return time.time_ns() // 1_000_000


# One decoded protocol line. Field order matches the wire order.
@dataclass(frozen=True)
class Frame:
    type: FrameType
    sender: str = ""                                    # empty for server-originated frames
    timestamp: int = field(default_factory=now_millis)  # ms since epoch
    body: str = ""                                      # may be truncated by the sender
