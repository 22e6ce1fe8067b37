"""
UDP datagram transport for the discovery channels.

Thin helpers around the socket module: a multicast listener for RNDP,
an ephemeral-port unicast listener for REDP, a multicast sender for the
heartbeat, and local IPv4 address discovery.
"""

import socket
import struct
import logging
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

NO_ADDRESS = b"\x00\x00\x00\x00"


def open_multicast_listener(
    group: str, port: int, timeout: Optional[float] = None,
) -> socket.socket:
    """Bind a UDP socket to ``port`` and join multicast ``group``."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
    sock.bind(("", port))
    mreq = struct.pack("4sl", socket.inet_aton(group), socket.INADDR_ANY)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
    sock.settimeout(timeout)
    logger.info("Joined %s:%d", group, port)
    return sock


def open_unicast_listener(
    host: str = "", timeout: Optional[float] = None,
) -> socket.socket:
    """Bind a UDP socket to an ephemeral port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.bind((host, 0))
    sock.settimeout(timeout)
    logger.info("Unicast listener on port %d", sock.getsockname()[1])
    return sock


def open_sender(ttl: int = 1) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
    return sock


def get_local_ip() -> bytes:
    """
    First non-loopback IPv4 address of this host as 4 bytes.

    Returns 0.0.0.0 when no such interface exists.
    """
    for ifname, addrs in psutil.net_if_addrs().items():
        if ifname == "lo":
            continue
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                return socket.inet_aton(addr.address)
    return NO_ADDRESS
