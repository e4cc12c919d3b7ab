"""
Client configuration defaults.
"""
from dataclasses import dataclass
from typing import Optional

from tabchat_common.protocol import MAX_BODY

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

CONNECT_TIMEOUT = 5.0      # seconds, TCP connect
SEND_QUEUE_CAPACITY = 200  # outbound lines waiting for the writer
SEND_TIMEOUT = 2.0         # seconds to wait for queue space in send()
JOIN_TIMEOUT = 2.0         # seconds to wait for a loop thread on teardown

RESERVED_NICKNAME = "SYSTEM"
NICKNAME_PATTERN = r"[A-Za-z0-9_]{3,24}"

LOGGING_CONFIG = {
    "level": "WARNING",
    "format": "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
    "datefmt": "%H:%M:%S",
}


@dataclass(frozen=True)
class ClientConfig:
    connect_timeout: float = CONNECT_TIMEOUT
    send_queue_capacity: int = SEND_QUEUE_CAPACITY
    send_timeout: float = SEND_TIMEOUT
    max_body: int = MAX_BODY
    # None keeps the handshake read unbounded
    handshake_timeout: Optional[float] = None
    join_timeout: float = JOIN_TIMEOUT
