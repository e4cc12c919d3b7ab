"""
Input validation for the connection prompt.
"""
import re

from .config import NICKNAME_PATTERN, RESERVED_NICKNAME

_NICKNAME_RE = re.compile(NICKNAME_PATTERN)


def validate_nickname(nickname):
    """Check the nickname format. Returns (ok, message)."""
    nickname = (nickname or "").strip()
    if not _NICKNAME_RE.fullmatch(nickname) or nickname.upper() == RESERVED_NICKNAME:
        return False, "Nickname must be 3-24 letters/digits/underscore and not 'SYSTEM'."
    return True, ""


def validate_host(host):
    if not (host or "").strip():
        return False, "Host cannot be empty."
    return True, ""


def validate_port(port):
    """Accepts an int or a numeric string."""
    try:
        value = int(str(port).strip())
    except ValueError:
        return False, "Port must be a number."
    if value <= 0 or value > 65535:
        return False, "Port out of range."
    return True, ""
