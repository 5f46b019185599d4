from __future__ import annotations

import socket

import psutil


def is_listening(host: str, port: int, timeout: float = 0.6) -> bool:
    """True when a TCP connection to host:port succeeds within `timeout` seconds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def get_free_port(host: str = "127.0.0.1") -> int:
    """
    Ask the OS for an unused TCP port on `host`.

    The port is released before returning, so another process may grab it
    before the emulator binds it.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        port: int = s.getsockname()[1]
    return port


def owner_info(port: int) -> str:
    """
    Describe the process listening on `port` for error messages.

    Gives "PID <pid>, name '<name>', user '<user>'", just "PID <pid>" if the
    process cannot be inspected, or "unknown".
    """
    try:
        connections = psutil.net_connections(kind="inet")
    except (psutil.AccessDenied, OSError):
        # Listing sockets of other users needs root on some platforms
        return "unknown"

    listeners = (
        c for c in connections
        if c.laddr and c.laddr.port == port and c.status == psutil.CONN_LISTEN
    )
    conn = next(listeners, None)
    if conn is None or not conn.pid:
        return "unknown"
    try:
        proc = psutil.Process(conn.pid)
        return f"PID {proc.pid}, name '{proc.name()}', user '{proc.username()}'"
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return f"PID {conn.pid}"
