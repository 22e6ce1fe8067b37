"""
Discovery activities.

NodeListener consumes RNDP announcements from the multicast group,
EndpointListener consumes REDP announcements sent to our unicast port, and
HeartbeatBroadcaster announces this monitor so that LPSS nodes reply with
their own RNDP and REDP messages. Each runs in its own thread until the
shared MonitorState is stopped.
"""

import abc
import socket
import logging
from typing import Optional

from .. import config
from ..protocol.messages import (
    EndpointType,
    Locator,
    NodeAnnouncement,
    decode_endpoint_announcement,
    decode_node_announcement,
    is_endpoint_announcement,
    is_node_announcement,
)
from ..topology.store import MonitorState, Role

logger = logging.getLogger(__name__)


class _DatagramListener(abc.ABC):
    """Receive loop shared by both listeners; subclasses decode and store."""

    name = "listener"

    def __init__(self, state: MonitorState, sock: socket.socket, bufsize: int = config.RECV_BUFSIZE):
        self.state = state
        self.sock = sock
        self.bufsize = bufsize
        self.received = 0
        self.dropped = 0

    @abc.abstractmethod
    def handle(self, data: bytes) -> bool:
        """Apply one datagram to the store. Returns False if it was dropped."""

    def run(self):
        logger.debug("%s started", self.name)
        while self.state.running:
            try:
                data, addr = self.sock.recvfrom(self.bufsize)
            except socket.timeout:
                continue
            except OSError as e:
                if not self.state.running:
                    break
                logger.warning("%s receive failed: %s", self.name, e)
                continue
            self.received += 1
            if not self.handle(data):
                self.dropped += 1
                logger.debug("%s dropped %d bytes from %s", self.name, len(data), addr[0])
        logger.debug("%s stopped", self.name)


class NodeListener(_DatagramListener):
    """Upserts node names from RNDP announcements."""

    name = "node-listener"

    def handle(self, data: bytes) -> bool:
        if not is_node_announcement(data):
            return False
        msg = decode_node_announcement(data)
        if msg is None:
            return False
        self.state.store.upsert_node(msg.prefix, msg.name)
        return True


class EndpointListener(_DatagramListener):
    """Records deduplicated publisher/subscriber endpoints from REDP announcements."""

    name = "endpoint-listener"

    def handle(self, data: bytes) -> bool:
        if not is_endpoint_announcement(data):
            return False
        msg = decode_endpoint_announcement(data)
        if msg is None:
            return False
        role = Role.PUBLISHER if msg.type == EndpointType.WRITER else Role.SUBSCRIBER
        if self.state.store.add_endpoint(msg.prefix, msg.topic, role):
            logger.info("New %s endpoint %r on %012x", role.value, msg.topic, msg.prefix)
        return True


class HeartbeatBroadcaster:
    """Periodically multicasts this monitor's own RNDP announcement."""

    def __init__(
        self,
        state: MonitorState,
        sock: socket.socket,
        guid: int,
        locator: Locator,
        name: str = config.INSPECTOR_NAME,
        group: str = config.NODE_GROUP,
        port: int = config.NODE_PORT,
        interval: float = config.HEARTBEAT_INTERVAL,
    ):
        self.state = state
        self.sock = sock
        self.announcement = NodeAnnouncement(guid=guid, name=name, locators=[locator])
        self.destination = (group, port)
        self.interval = interval
        self.sent = 0

    def beat(self) -> Optional[int]:
        """Send one announcement. Returns bytes sent, or None on failure."""
        try:
            payload = self.announcement.encode()
        except ValueError as e:
            logger.error("Cannot encode heartbeat: %s", e)
            return None
        try:
            n = self.sock.sendto(payload, self.destination)
        except OSError as e:
            logger.warning("Heartbeat to %s:%d failed: %s", *self.destination, e)
            return None
        self.sent += 1
        return n

    def run(self):
        logger.debug("heartbeat started (every %.1fs)", self.interval)
        while self.state.running:
            self.beat()
            if self.state.wait(self.interval):
                break
        logger.debug("heartbeat stopped")
