import re
import socket
from typing import Optional

from tabchat_common.messages import Frame, FrameType, now_millis

ENC = "utf-8"   # encoding for protocol lines
SEP = "\t"      # field separator
DELIM = b"\n"   # line delimiter on the wire
MAX_BODY = 500  # max characters of a sanitized body
MAX_FIELDS = 4  # type, sender, timestamp, body

_TIMESTAMP_RE = re.compile(r"[+-]?[0-9]+")   # ASCII digits only, int() alone also takes " 1_000 "
_LONG_MIN, _LONG_MAX = -2 ** 63, 2 ** 63 - 1
_LINE_END = re.compile(rb"[\r\n]")

_UNSAFE = str.maketrans({"\t": " ", "\r": " ", "\n": " "})


def sanitize(text: Optional[str], max_len: int = MAX_BODY) -> str:
    '''
    The function makes a message body safe to put on the wire.
    Tab, CR and LF are replaced with spaces, the result is trimmed and then
    truncated to max_len characters.
    Input:
        - text: raw user text (None is treated as empty)
        - max_len: maximum number of characters kept
    Output: sanitized body, possibly empty (an empty body must not be sent)
    '''
    if not text:
        return ""
    return text.translate(_UNSAFE).strip()[:max_len]


def encode(frame_type: FrameType, sender: str, timestamp: Optional[int] = None,
           body: Optional[str] = None, max_body: int = MAX_BODY) -> str:
    '''
    The function encodes frame fields as one protocol line, without the newline.
    Trailing fields left as None are omitted, so encode(FrameType.JOIN, "bob")
    gives "JOIN\\tbob".
    Input:
        - frame_type: FrameType of the frame
        - sender: sender nickname (may be empty)
        - timestamp: ms since epoch, or None
        - body: message text, sanitized before joining, or None
        - max_body: truncation limit for the body
    Output: the encoded line
    '''
    fields = [FrameType(frame_type).value, (sender or "").translate(_UNSAFE)]
    if timestamp is not None or body is not None:
        fields.append(str(timestamp if timestamp is not None else now_millis()))
    if body is not None:
        fields.append(sanitize(body, max_body))
    return SEP.join(fields)


def encode_frame(frame: Frame, max_body: int = MAX_BODY) -> str:
    return encode(frame.type, frame.sender, frame.timestamp, frame.body, max_body)


def decode(line: str) -> Optional[Frame]:
    '''
    The function decodes one protocol line into a Frame.
    The line is split on at most 3 separators, so any extra tab stays in the body.
    A missing timestamp, or one that is not a signed run of ASCII digits,
    falls back to the current time.
    Input:
        - line: one line read from the wire, newline already removed
    Output: Frame, or None when the type field is missing or unknown
    '''
    if line.endswith("\r"):
        line = line[:-1]
    parts = line.split(SEP, MAX_FIELDS - 1)
    try:
        frame_type = FrameType(parts[0])
    except ValueError:
        return None
    sender = parts[1] if len(parts) > 1 else ""
    timestamp = _parse_timestamp(parts[2]) if len(parts) > 2 else None
    if timestamp is None:
        timestamp = now_millis()
    body = parts[3] if len(parts) > 3 else ""
    return Frame(frame_type, sender, timestamp, body)


def _parse_timestamp(field: str) -> Optional[int]:
    ''' Signed ASCII digits within the 64-bit range, anything else gives None '''
    if not _TIMESTAMP_RE.fullmatch(field):
        return None
    value = int(field)
    if value < _LONG_MIN or value > _LONG_MAX:
        return None
    return value


def send_line(sock: socket.socket, line: str) -> None:
    '''
    The function sends one protocol line over a socket, adding the newline.
    Raises OSError if the socket is broken or closed.
    '''
    sock.sendall(line.encode(ENC) + DELIM)


class LineReader:
    '''
    Reads lines from one socket. A line ends at LF, CR or CRLF, and a CRLF
    split across two recv() calls still counts as one line end.
    Residual bytes stay in the reader's own buffer, so several lines arriving
    in one recv() come back one per call.
    '''
    def __init__(self, sock: socket.socket, chunk_size: int = 4096):
        self.sock = sock
        self.chunk_size = chunk_size
        self._buf = bytearray()
        self._eof = False
        self._skip_lf = False   # last line ended on CR, drop a following LF

    def readline(self) -> Optional[str]:
        '''
        Return the next line without its newline, or None once the peer has
        closed the stream. An unterminated fragment before EOF is returned as
        a last line. Raises OSError on I/O failure.
        '''
        while True:
            if self._skip_lf and self._buf:
                if self._buf[0] == DELIM[0]:
                    del self._buf[0]
                self._skip_lf = False

            end = _LINE_END.search(self._buf)
            if end is not None:
                nl = end.start()
                line_bytes = bytes(self._buf[:nl])
                if self._buf[nl] == DELIM[0]:
                    del self._buf[:nl + 1]
                elif nl + 1 < len(self._buf):
                    del self._buf[:nl + 2 if self._buf[nl + 1] == DELIM[0] else nl + 1]
                else:
                    del self._buf[:nl + 1]
                    self._skip_lf = True
                return line_bytes.decode(ENC, errors="replace")

            if self._eof:
                if self._buf:
                    rest = bytes(self._buf)
                    self._buf.clear()
                    return rest.decode(ENC, errors="replace")
                return None

            chunk = self.sock.recv(self.chunk_size)
            if not chunk:
                self._eof = True
                continue
            self._buf.extend(chunk)
