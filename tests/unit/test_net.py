import socket
from collections import namedtuple
from unittest.mock import patch

import pytest

from remoteaccess.errors import BindError, ErrorCode
from remoteaccess.utils.net import bind_socket, get_ip_addresses

Addr = namedtuple("Addr", "family address netmask broadcast ptp")


def fake_interfaces():
    return {
        "lo": [Addr(socket.AF_INET, "127.0.0.1", None, None, None), Addr(socket.AF_INET6, "::1", None, None, None)],
        "eth0": [
            Addr(socket.AF_INET, "192.168.1.20", None, None, None),
            Addr(socket.AF_INET6, "fe80::abcd%eth0", None, None, None),
        ],
        "wlan0": [Addr(socket.AF_INET, "10.0.0.5", None, None, None), Addr(socket.AF_INET, "192.168.1.20", None, None, None)],
    }


def test_ipv4_addresses_skip_loopback():
    with patch("remoteaccess.utils.net.psutil.net_if_addrs", return_value=fake_interfaces()):
        assert get_ip_addresses() == ["192.168.1.20", "10.0.0.5"]


def test_ipv6_addresses_are_upper_cased_without_zone():
    with patch("remoteaccess.utils.net.psutil.net_if_addrs", return_value=fake_interfaces()):
        assert get_ip_addresses(use_ipv4=False) == ["FE80::ABCD"]


def test_interface_enumeration_failure_gives_no_addresses():
    with patch("remoteaccess.utils.net.psutil.net_if_addrs", side_effect=OSError("denied")):
        assert get_ip_addresses() == []


def test_bind_preferred_port_when_free():
    free = bind_socket("127.0.0.1", 0)
    port = free.getsockname()[1]
    free.close()

    sock = bind_socket("127.0.0.1", port)
    try:
        assert sock.getsockname()[1] == port
    finally:
        sock.close()


def test_bind_falls_back_when_port_taken():
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen(1)
    taken = holder.getsockname()[1]
    try:
        sock = bind_socket("127.0.0.1", taken)
        try:
            assert sock.getsockname()[1] not in (0, taken)
        finally:
            sock.close()
    finally:
        holder.close()


def test_bind_error_when_no_port_at_all():
    with pytest.raises(BindError) as exc_info:
        bind_socket("203.0.113.1", 0)

    assert exc_info.value.code == ErrorCode.BIND_NO_FREE_PORT
