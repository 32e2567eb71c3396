from __future__ import annotations

import socket
from dataclasses import dataclass, field
from typing import Callable

from .errors import ExhaustedRange
from .events import log_event


def is_port_free(port: int, host: str = "") -> bool:
    """Return True if a TCP listener can be bound on ``port`` right now.

    The listener is closed immediately; the answer is only valid at probe time.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        # Ports lingering in TIME_WAIT count as free.
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(1)
    except OSError:
        return False
    finally:
        sock.close()
    return True


@dataclass
class PortRange:
    """Host ports available to one run.

    ``reserved`` only grows, and only through :func:`allocate`. It is not
    thread-safe: allocate from a single thread before any deployment threads
    start.
    """

    start: int
    end: int
    reserved: set[int] = field(default_factory=set)

    def __post_init__(self) -> None:
        if not (0 < self.start <= self.end <= 65535):
            raise ValueError(f"Invalid port range {self.start}-{self.end}")

    def __contains__(self, port: object) -> bool:
        return isinstance(port, int) and self.start <= port <= self.end


def allocate(port_range: PortRange, probe: Callable[[int], bool] = is_port_free) -> int:
    """Reserve and return the lowest free port of ``port_range``.

    Ports are probed in ascending order. Raises :class:`ExhaustedRange` when
    every port is either reserved by this run or not bindable.
    """
    for port in range(port_range.start, port_range.end + 1):
        if port in port_range.reserved:
            continue
        if not probe(port):
            log_event("DEBUG", f"TCP port {port} is already bound in range {port_range.start}-{port_range.end}")
            continue
        port_range.reserved.add(port)
        return port
    raise ExhaustedRange(port_range.start, port_range.end)


def free_ports(port_range: PortRange, probe: Callable[[int], bool] = is_port_free) -> list[int]:
    """List unreserved, currently bindable ports without reserving them."""
    return [p for p in range(port_range.start, port_range.end + 1) if p not in port_range.reserved and probe(p)]
