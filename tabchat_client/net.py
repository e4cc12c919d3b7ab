import logging
import socket
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Deque, Optional

from tabchat_common.messages import Frame, FrameType, now_millis
from tabchat_common.protocol import LineReader, decode, encode, sanitize, send_line

from .config import RESERVED_NICKNAME, ClientConfig
from .errors import ConnectError, HandshakeError, HandshakeRejectedError, SendError, ShutdownError
from .sendqueue import SendQueue
from .workers import ReaderLoop, WriterLoop

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    HANDSHAKING = "Handshaking"
    CONNECTED = "Connected"
    DISCONNECTING = "Disconnecting"


@dataclass
class Session:
    ''' Everything that belongs to one connection attempt '''
    sock: socket.socket
    nickname: str
    lines: LineReader
    send_queue: SendQueue
    writer: Optional[WriterLoop] = None
    reader: Optional[ReaderLoop] = None


def _close_socket(sock: socket.socket):
    # shutdown() wakes a thread blocked in recv()/sendall(); close() alone does not
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    sock.close()


class ChatConnection:
    ''' Client side of one tab-delimited chat connection '''
    def __init__(self, config: Optional[ClientConfig] = None,
                 on_message: Optional[Callable[[Frame], None]] = None,
                 on_closed: Optional[Callable[[], None]] = None,
                 on_state_changed: Optional[Callable[[ConnectionState], None]] = None):
        self.config = config or ClientConfig()
        self.on_message = on_message              # called on the reader thread, in arrival order
        self.on_closed = on_closed                # called once per established connection
        self.on_state_changed = on_state_changed  # called on every state transition
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self._lock = threading.RLock()   # guards _state, _session and _pending_states
        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[Session] = None
        # transitions not yet reported to on_state_changed, oldest first
        self._pending_states: Deque[ConnectionState] = deque()
        self._notify_lock = threading.Lock()   # held by the one thread reporting transitions

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def nickname(self) -> Optional[str]:
        with self._lock:
            return self._session.nickname if self._session else None

    def _set_state(self, state: ConnectionState) -> bool:
        ''' Record a transition. Callers report it with _notify_states() once the lock is released. '''
        with self._lock:
            if state is self._state:
                return False
            logger.debug("State %s -> %s", self._state.value, state.value)
            self._state = state
            self._pending_states.append(state)
            return True

    def _notify_states(self):
        '''
        Report recorded transitions to on_state_changed, outside the engine lock.
        Only one thread reports at a time, so callbacks keep transition order;
        a thread that finds another one reporting leaves its transitions to it.
        '''
        while True:
            if not self._notify_lock.acquire(blocking=False):
                return
            try:
                while True:
                    with self._lock:
                        if not self._pending_states:
                            break
                        state = self._pending_states.popleft()
                    if self.on_state_changed:
                        try:
                            self.on_state_changed(state)
                        except Exception:
                            logger.exception("on_state_changed handler failed")
            finally:
                self._notify_lock.release()
            with self._lock:
                if not self._pending_states:
                    return

    def connect(self, host: str, port: int, nickname: str):
        '''
        Open the connection and run the JOIN handshake. Blocks until the server
        has answered. Raises HandshakeRejectedError when the server refuses the
        nickname, and ConnectError or HandshakeError on other failures. Every
        resource opened here has been released by then.
        '''
        if nickname.upper() == RESERVED_NICKNAME:
            raise ValueError(f"Nickname '{nickname}' is reserved.")
        with self._lock:
            if self._state is not ConnectionState.DISCONNECTED or self._session is not None:
                raise ConnectError(f"Cannot connect while {self._state.value}.")
            self._set_state(ConnectionState.CONNECTING)
        self._notify_states()

        session = None
        try:
            sock = self._open_socket(host, port)
            session = Session(sock, nickname, LineReader(sock),
                              SendQueue(self.config.send_queue_capacity))
            with self._lock:
                self._session = session
                self._set_state(ConnectionState.HANDSHAKING)
            self._notify_states()
            self._handshake(session)
        except BaseException:
            self._abort(session)
            raise

        session.writer = WriterLoop(session.sock, session.send_queue)
        session.reader = ReaderLoop(session.lines, self._dispatch,
                                    on_exit=lambda: self._reader_finished(session))
        with self._lock:
            if self._session is not session:
                # disconnect() ran while we were waiting for the reply
                raise ConnectError("Connection closed during handshake.")
            self.host, self.port = host, port
            self._set_state(ConnectionState.CONNECTED)
            session.writer.start()
            session.reader.start()
        self._notify_states()
        logger.info("Connected as %s to %s:%s", nickname, host, port)

    def _open_socket(self, host: str, port: int) -> socket.socket:
        try:
            sock = socket.create_connection((host, port), timeout=self.config.connect_timeout)
        except OSError as e:
            raise ConnectError(f"Could not connect to {host}:{port}: {e}") from e
        try:
            sock.settimeout(self.config.handshake_timeout)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)  # send chat lines immediately
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        except OSError as e:
            sock.close()
            raise ConnectError(f"Could not configure socket: {e}") from e
        return sock

    def _handshake(self, session: Session) -> Frame:
        ''' Send JOIN and wait for exactly one reply line, bypassing the send queue '''
        try:
            send_line(session.sock, encode(FrameType.JOIN, session.nickname))
            first = session.lines.readline()
            session.sock.settimeout(None)
        except socket.timeout as e:
            raise HandshakeError("no handshake response from server") from e
        except OSError as e:
            raise HandshakeError(f"handshake failed: {e}") from e

        if first is None:
            raise HandshakeError("server closed during handshake")
        reply = decode(first)
        if reply is not None and reply.type is FrameType.ERROR:
            raise HandshakeRejectedError(reply.body or "Rejected.")
        if reply is None or reply.type is not FrameType.SYSTEM:
            raise HandshakeError("unexpected handshake response")
        logger.info("Handshake accepted: %s", reply.body)
        return reply

    def _abort(self, session: Optional[Session]):
        ''' Undo a failed connect() '''
        with self._lock:
            owned = session is None or self._session is session
            if owned:
                self._session = None
        if session is not None:
            session.send_queue.shutdown()
            _close_socket(session.sock)
        if owned:
            self._set_state(ConnectionState.DISCONNECTED)
            self._notify_states()

    def send(self, text: str) -> bool:
        '''
        Queue a chat message for the writer thread.
        Input:
            - text: raw message text, sanitized here
        Output: True if queued, False if nothing was left to send after sanitizing
        Raises SendError when not connected or the queue stays full.
        '''
        with self._lock:
            session = self._session
            if self._state is not ConnectionState.CONNECTED or session is None:
                raise SendError("Not connected.")
        body = sanitize(text, self.config.max_body)
        if not body:
            return False
        line = encode(FrameType.CHAT, session.nickname, now_millis(), body, self.config.max_body)
        try:
            session.send_queue.enqueue(line, self.config.send_timeout)
        except ShutdownError as e:
            raise SendError("Connection is closing.") from e
        return True

    def disconnect(self):
        ''' Close the connection. Safe to call in any state and more than once. '''
        with self._lock:
            session = self._session
            if session is None:
                return
            courtesy = self._state is ConnectionState.CONNECTED
            self._session = None
            self._set_state(ConnectionState.DISCONNECTING)
        self._notify_states()
        logger.info("Disconnecting from %s:%s", self.host, self.port)
        self._teardown(session, courtesy)
        self._set_state(ConnectionState.DISCONNECTED)
        self._notify_states()

    def _teardown(self, session: Session, courtesy: bool):
        current = threading.current_thread()
        if session.reader is not None:
            session.reader.cancel()
        session.send_queue.shutdown()
        if session.writer is not None and session.writer is not current and session.writer.is_alive():
            session.writer.join(self.config.join_timeout)

        if courtesy:
            if session.writer is not None and session.writer.is_alive():
                logger.debug("Writer still busy, skipping LEAVE")
            else:
                try:
                    session.sock.settimeout(self.config.join_timeout)
                    send_line(session.sock, encode(FrameType.LEAVE, session.nickname))
                except OSError as e:
                    logger.debug("LEAVE not delivered: %s", e)

        _close_socket(session.sock)
        if session.reader is not None and session.reader is not current and session.reader.is_alive():
            session.reader.join(self.config.join_timeout)

    def _dispatch(self, frame: Frame):
        if self.on_message:
            self.on_message(frame)

    def _reader_finished(self, session: Session):
        ''' Runs on the reader thread once its loop has ended '''
        with self._lock:
            owned = self._session is session
            if owned:
                # the server went away, nobody asked us to disconnect
                self._session = None
                self._set_state(ConnectionState.DISCONNECTING)
        self._notify_states()
        if owned:
            logger.info("Connection to %s:%s lost", self.host, self.port)
            self._teardown(session, courtesy=False)
            self._set_state(ConnectionState.DISCONNECTED)
            self._notify_states()
        if self.on_closed:
            try:
                self.on_closed()
            except Exception:
                logger.exception("on_closed handler failed")
