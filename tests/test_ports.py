import socket

import pytest

from mdo.errors import ExhaustedRange
from mdo.ports import PortRange, allocate, free_ports, is_port_free


def test_sequential_allocation_then_exhaustion(always_free):
    r = PortRange(30000, 30002)
    assert [allocate(r, probe=always_free) for _ in range(3)] == [30000, 30001, 30002]
    with pytest.raises(ExhaustedRange):
        allocate(r, probe=always_free)
    assert r.reserved == {30000, 30001, 30002}


def test_allocation_skips_reserved_and_unbindable_ports():
    r = PortRange(31000, 31005, reserved={31000})
    busy = {31001, 31003}
    probe = lambda p: p not in busy
    assert allocate(r, probe=probe) == 31002
    assert allocate(r, probe=probe) == 31004
    assert allocate(r, probe=probe) == 31005
    with pytest.raises(ExhaustedRange) as exc:
        allocate(r, probe=probe)
    assert exc.value.start == 31000 and exc.value.end == 31005


def test_ports_are_distinct_and_in_range(always_free):
    r = PortRange(32000, 32049)
    ports = [allocate(r, probe=always_free) for _ in range(50)]
    assert len(set(ports)) == 50
    assert all(p in r for p in ports)


def test_allocation_is_deterministic(always_free):
    a, b = PortRange(33000, 33010), PortRange(33000, 33010)
    assert [allocate(a, probe=always_free) for _ in range(5)] == [allocate(b, probe=always_free) for _ in range(5)]


def test_invalid_range_rejected():
    with pytest.raises(ValueError):
        PortRange(40010, 40000)


def test_bound_port_is_not_free():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("", 0))
    sock.listen(1)
    port = sock.getsockname()[1]
    try:
        assert is_port_free(port) is False
    finally:
        sock.close()


def test_free_ports_does_not_reserve(always_free):
    r = PortRange(34000, 34002, reserved={34001})
    assert free_ports(r, probe=always_free) == [34000, 34002]
    assert r.reserved == {34001}


def test_probe_sets_reuseaddr_before_bind(monkeypatch):
    calls = []

    class _Sock:
        def __init__(self, *args):
            pass

        def setsockopt(self, level, opt, value):
            calls.append(("setsockopt", opt, value))

        def bind(self, addr):
            calls.append(("bind", addr[1]))

        def listen(self, backlog):
            pass

        def close(self):
            calls.append(("close",))

    monkeypatch.setattr(socket, "socket", _Sock)
    assert is_port_free(30123) is True
    assert calls == [("setsockopt", socket.SO_REUSEADDR, 1), ("bind", 30123), ("close",)]
