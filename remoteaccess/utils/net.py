"""Network helpers: interface addresses and listener sockets with port fallback."""

import ipaddress
import logging
import socket
from typing import List

import psutil

from remoteaccess.errors import BindError

logger = logging.getLogger(__name__)


def get_ip_addresses(use_ipv4: bool = True) -> List[str]:
    """
    Addresses of every non-loopback interface.

    Args:
        use_ipv4: True for IPv4 addresses, False for IPv6 (upper-cased, zone id stripped)
    """
    results: List[str] = []
    family = socket.AF_INET if use_ipv4 else socket.AF_INET6
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, RuntimeError) as e:
        logger.warning(f"[Net] Cannot enumerate interfaces: {e}")
        return results

    for addrs in interfaces.values():
        for addr in addrs:
            if addr.family != family or not addr.address:
                continue
            host = addr.address.split("%", 1)[0]
            try:
                if ipaddress.ip_address(host).is_loopback:
                    continue
            except ValueError:
                continue
            host = host if use_ipv4 else host.upper()
            if host not in results:
                results.append(host)
    return results


def bind_socket(host: str, preferred_port: int) -> socket.socket:
    """
    Bind a TCP listener on the preferred port, falling back once to an
    OS-assigned port when the preferred one is taken.

    Raises:
        BindError: when the fallback bind fails as well
    """
    for port in (preferred_port, 0):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            if port == 0:
                raise BindError(
                    "Cannot find a free port to use",
                    details={"host": host, "preferred_port": preferred_port, "error": str(e)},
                ) from e
            logger.info(f"[Net] Port {port} unavailable ({e}), falling back to an ephemeral port")
            continue
        sock.set_inheritable(True)
        logger.debug(f"[Net] Bound {host}:{sock.getsockname()[1]}")
        return sock
    raise BindError("Cannot find a free port to use", details={"host": host})
