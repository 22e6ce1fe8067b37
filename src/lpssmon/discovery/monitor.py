"""
Socket and thread ownership for the discovery activities.
"""

import socket
import logging
import threading
from typing import Optional

from .. import config
from ..protocol import transport
from ..protocol.messages import Locator
from ..topology.store import MonitorState
from .tasks import EndpointListener, HeartbeatBroadcaster, NodeListener

logger = logging.getLogger(__name__)


class Monitor:
    """
    Run the node listener, endpoint listener and heartbeat broadcaster
    against one MonitorState.

    Sockets are opened lazily by ``start()`` unless supplied, so tests can
    hand in loopback sockets.
    """

    def __init__(
        self,
        state: Optional[MonitorState] = None,
        group: str = config.NODE_GROUP,
        port: int = config.NODE_PORT,
        guid: int = config.INSPECTOR_GUID,
        name: str = config.INSPECTOR_NAME,
        interval: float = config.HEARTBEAT_INTERVAL,
        recv_timeout: float = config.RECV_TIMEOUT,
        node_sock: Optional[socket.socket] = None,
        endpoint_sock: Optional[socket.socket] = None,
        send_sock: Optional[socket.socket] = None,
        local_ip: Optional[bytes] = None,
    ):
        self.state = state if state is not None else MonitorState()
        self.group = group
        self.port = port
        self.guid = guid
        self.name = name
        self.interval = interval
        self.recv_timeout = recv_timeout
        self.node_sock = node_sock
        self.endpoint_sock = endpoint_sock
        self.send_sock = send_sock
        self.local_ip = local_ip
        self.threads: list[threading.Thread] = []

    @property
    def store(self):
        return self.state.store

    @property
    def endpoint_port(self) -> int:
        return self.endpoint_sock.getsockname()[1]

    def _open_sockets(self):
        """Open any socket not supplied; on failure close the ones opened here."""
        opened = []
        try:
            if self.node_sock is None:
                self.node_sock = transport.open_multicast_listener(
                    self.group, self.port, timeout=self.recv_timeout,
                )
                opened.append("node_sock")
            if self.endpoint_sock is None:
                self.endpoint_sock = transport.open_unicast_listener(timeout=self.recv_timeout)
                opened.append("endpoint_sock")
            if self.send_sock is None:
                self.send_sock = transport.open_sender()
                opened.append("send_sock")
        except OSError:
            for attr in opened:
                getattr(self, attr).close()
                setattr(self, attr, None)
            raise

    def start(self):
        self._open_sockets()
        if self.local_ip is None:
            self.local_ip = transport.get_local_ip()

        locator = Locator(self.endpoint_port, self.local_ip)
        activities = {
            "lpss-nodes": NodeListener(self.state, self.node_sock).run,
            "lpss-endpoints": EndpointListener(self.state, self.endpoint_sock).run,
            "lpss-heartbeat": HeartbeatBroadcaster(
                self.state, self.send_sock, self.guid, locator,
                name=self.name, group=self.group, port=self.port,
                interval=self.interval,
            ).run,
        }
        for thread_name, target in activities.items():
            t = threading.Thread(target=target, name=thread_name, daemon=True)
            t.start()
            self.threads.append(t)

        logger.info(
            "Monitor running: group %s:%d, endpoint port %d, ip %s",
            self.group, self.port, self.endpoint_port, locator.address,
        )

    def stop(self, timeout: float = config.JOIN_TIMEOUT) -> bool:
        """
        Clear the running flag, join the threads and close the sockets.

        Returns True if every thread finished within ``timeout``.
        """
        self.state.stop()
        for t in self.threads:
            t.join(timeout)
        alive = [t.name for t in self.threads if t.is_alive()]
        if alive:
            logger.warning("Threads still running after shutdown: %s", alive)
        for sock in (self.node_sock, self.endpoint_sock, self.send_sock):
            if sock is not None:
                sock.close()
        return not alive

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
