"""
Pytest configuration and shared fixtures for the chat client tests.

Provides a scripted loopback server that answers the JOIN handshake and
records every line the client sends, plus a connected socket pair for
codec/worker tests.
"""

import queue
import socket
import sys
import threading
from pathlib import Path
from typing import List, Optional

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tabchat_client.config import ClientConfig


# =============================================================================
# Scripted server
# =============================================================================


class ScriptedServer:
    """
    Accepts one client on 127.0.0.1, reads its JOIN line, answers with
    `reply` (or closes the connection when reply is None), then records
    every further line in `lines`.
    """

    def __init__(self, reply: Optional[str] = "SYSTEM\t\t0\tWelcome"):
        self.reply = reply
        self.listener = socket.create_server(("127.0.0.1", 0))
        self.port = self.listener.getsockname()[1]
        self.lines: "queue.Queue[str]" = queue.Queue()
        self.accepted = threading.Event()
        self.conn: Optional[socket.socket] = None
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        try:
            conn, _ = self.listener.accept()
        except OSError:
            return
        self.conn = conn
        self.accepted.set()
        buf = bytearray()
        answered = False
        try:
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                buf.extend(chunk)
                while b"\n" in buf:
                    line, _, rest = bytes(buf).partition(b"\n")
                    buf = bytearray(rest)
                    self.lines.put(line.decode("utf-8"))
                    if not answered:
                        answered = True
                        if self.reply is None:
                            conn.close()
                            return
                        conn.sendall(self.reply.encode("utf-8") + b"\n")
        except OSError:
            pass

    def next_line(self, timeout: float = 2.0) -> str:
        return self.lines.get(timeout=timeout)

    def send(self, line: str):
        self.accepted.wait(2.0)
        self.conn.sendall(line.encode("utf-8") + b"\n")

    def send_raw(self, data: bytes):
        self.accepted.wait(2.0)
        self.conn.sendall(data)

    def drop_client(self):
        """Close the server side of the connection."""
        self.accepted.wait(2.0)
        try:
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.conn.close()

    def close(self):
        self.listener.close()
        if self.conn is not None:
            try:
                self.conn.close()
            except OSError:
                pass


@pytest.fixture
def server():
    """Server that accepts the handshake with a SYSTEM welcome."""
    srv = ScriptedServer()
    yield srv
    srv.close()


@pytest.fixture
def make_server():
    """Factory for servers with a custom handshake reply."""
    servers: List[ScriptedServer] = []

    def _make(reply: Optional[str]) -> ScriptedServer:
        srv = ScriptedServer(reply)
        servers.append(srv)
        return srv

    yield _make
    for srv in servers:
        srv.close()


# =============================================================================
# Client fixtures
# =============================================================================


class Recorder:
    """Collects engine callbacks for assertions."""

    def __init__(self):
        self.frames = []
        self.states = []
        self.closed_count = 0
        self.closed = threading.Event()
        self.got_frame = threading.Event()

    def on_message(self, frame):
        self.frames.append(frame)
        self.got_frame.set()

    def on_closed(self):
        self.closed_count += 1
        self.closed.set()

    def on_state_changed(self, state):
        self.states.append(state)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def fast_config() -> ClientConfig:
    """Short timeouts so failing paths finish quickly."""
    return ClientConfig(connect_timeout=1.0, send_timeout=0.2, join_timeout=1.0)


@pytest.fixture
def sock_pair():
    """A connected pair of stream sockets: (client_side, peer_side)."""
    a, b = socket.socketpair()
    yield a, b
    for s in (a, b):
        try:
            s.close()
        except OSError:
            pass
