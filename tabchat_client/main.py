"""
Console entry point for the chat client.
Ask for connection details, connect, then send every line typed on stdin.
"""
import argparse
import logging
import sys
from typing import Optional

from .config import DEFAULT_HOST, DEFAULT_PORT, LOGGING_CONFIG, ClientConfig
from .console import ConsoleUI
from .dispatch import Dispatcher
from .errors import ConnectError, HandshakeRejectedError, SendError
from .net import ChatConnection
from .validation import validate_host, validate_nickname, validate_port

QUIT_COMMAND = "/quit"


def _ask(prompt: str) -> Optional[str]:
    try:
        return input(prompt).strip()
    except EOFError:
        return None


def _connect(conn: ChatConnection, ui: ConsoleUI, host: str, port: int, nickname: Optional[str]) -> bool:
    ''' Loop until connected; a rejected nickname asks for another one '''
    while True:
        if nickname is None:
            nickname = _ask("Nickname: ")
            if nickname is None:
                return False
        ok, msg = validate_nickname(nickname)
        if not ok:
            ui.append(msg)
            nickname = None
            continue
        try:
            conn.connect(host, port, nickname)
            ui.append_system(f"Connected as {nickname} to {host}:{port}")
            return True
        except HandshakeRejectedError as e:
            ui.append(f"Could not connect: {e.reason}")
            nickname = None
        except ConnectError as e:
            ui.append(f"Could not connect: {e}")
            return False


def chat_loop(conn: ChatConnection, ui: ConsoleUI, lines=None):
    for raw in (sys.stdin if lines is None else lines):
        if ui.closed.is_set():
            break
        text = raw.rstrip("\n")
        if text.strip().lower() == QUIT_COMMAND:
            break
        try:
            conn.send(text)
        except SendError as e:
            ui.append(f"Failed to send: {e}")
            if not conn.connected:
                break


def main(argv=None):
    ap = argparse.ArgumentParser(description="Tab-delimited chat client")
    ap.add_argument("--host", default=DEFAULT_HOST, help="Server host address")
    ap.add_argument("--port", default=DEFAULT_PORT, help="Server port")
    ap.add_argument("--nick", default=None, help="Nickname (asked interactively when omitted)")
    ap.add_argument("--handshake-timeout", type=float, default=None,
                    help="Seconds to wait for the server's handshake reply (default: wait forever)")
    ap.add_argument("--log-level", default=LOGGING_CONFIG["level"],
                    choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    args = ap.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format=LOGGING_CONFIG["format"], datefmt=LOGGING_CONFIG["datefmt"])

    for ok, msg in (validate_host(args.host), validate_port(args.port)):
        if not ok:
            ap.error(msg)
    host, port = args.host.strip(), int(str(args.port).strip())

    ui = ConsoleUI()
    dispatcher = Dispatcher(ui)
    dispatcher.start()
    conn = ChatConnection(ClientConfig(handshake_timeout=args.handshake_timeout),
                          on_message=dispatcher.on_message,
                          on_closed=dispatcher.on_closed,
                          on_state_changed=dispatcher.on_state_changed)
    try:
        if not _connect(conn, ui, host, port, args.nick):
            return 1
        ui.append(f"Type a message and press Enter. {QUIT_COMMAND} leaves.")
        chat_loop(conn, ui)
    except KeyboardInterrupt:
        pass
    finally:
        was_connected = conn.connected
        conn.disconnect()
        dispatcher.stop(timeout=2.0)
        if was_connected:
            ui.append_system("Disconnected.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
