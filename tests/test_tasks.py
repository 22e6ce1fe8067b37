"""Tests for the discovery listeners, heartbeat and monitor."""

import socket
import time
import threading

import pytest
from lpssmon.discovery.monitor import Monitor
from lpssmon.discovery.tasks import (
    EndpointListener,
    HeartbeatBroadcaster,
    NodeListener,
    _DatagramListener,
)
from lpssmon.protocol import transport
from lpssmon.protocol.messages import (
    EndpointAnnouncement,
    EndpointType,
    Locator,
    NodeAnnouncement,
    decode_node_announcement,
)
from lpssmon.topology.store import EndpointRecord, MonitorState, Role

LOOPBACK = bytes([127, 0, 0, 1])


class FakeSocket:
    """Feeds queued datagrams to recvfrom, then times out."""

    def __init__(self, packets=(), state=None):
        self.packets = list(packets)
        self.state = state
        self.sent = []

    def recvfrom(self, bufsize):
        if self.packets:
            item = self.packets.pop(0)
            if isinstance(item, Exception):
                raise item
            return item, ("10.0.0.5", 7500)
        if self.state is not None:
            self.state.stop()
        raise socket.timeout()

    def sendto(self, data, addr):
        self.sent.append((data, addr))
        return len(data)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


class TestNodeListener:
    def test_handle(self):
        state = MonitorState()
        listener = NodeListener(state, FakeSocket())
        assert listener.handle(NodeAnnouncement(guid=0xAA, name="sensor1").encode())
        assert state.store.node_names() == ["sensor1"]

    def test_drops_noise(self):
        state = MonitorState()
        listener = NodeListener(state, FakeSocket())
        assert not listener.handle(b"N")
        assert not listener.handle(b"garbage-packet-data")
        assert not listener.handle(EndpointAnnouncement(endpoint_guid=1, topic="imu").encode())
        assert state.store.node_names() == []

    def test_masks_guid(self):
        state = MonitorState()
        listener = NodeListener(state, FakeSocket())
        listener.handle(NodeAnnouncement(guid=(5 << 64) | 0xAA, name="old").encode())
        listener.handle(NodeAnnouncement(guid=(9 << 64) | 0xAA, name="new").encode())
        assert state.store.snapshot().nodes == {0xAA: "new"}

    def test_run_until_stopped(self):
        state = MonitorState()
        packets = [
            NodeAnnouncement(guid=1, name="a").encode(),
            b"xx",
            OSError("transient"),
            NodeAnnouncement(guid=2, name="b").encode(),
        ]
        listener = NodeListener(state, FakeSocket(packets, state))
        listener.run()
        assert sorted(state.store.node_names()) == ["a", "b"]
        assert listener.received == 3
        assert listener.dropped == 1


class TestEndpointListener:
    def test_writer_is_publisher(self):
        state = MonitorState()
        listener = EndpointListener(state, FakeSocket())
        listener.handle(EndpointAnnouncement(endpoint_guid=0xAA, topic="imu", type=EndpointType.WRITER).encode())
        listener.handle(EndpointAnnouncement(endpoint_guid=0xAA, topic="cmd", type=EndpointType.READER).encode())
        assert state.store.snapshot().endpoints[0xAA] == [
            EndpointRecord("imu", Role.PUBLISHER),
            EndpointRecord("cmd", Role.SUBSCRIBER),
        ]

    def test_duplicate_announcements(self):
        state = MonitorState()
        listener = EndpointListener(state, FakeSocket())
        packet = EndpointAnnouncement(endpoint_guid=0xAA, topic="imu").encode()
        assert listener.handle(packet)
        assert listener.handle(packet)
        assert len(state.store.snapshot().endpoints[0xAA]) == 1

    def test_drops_node_packets(self):
        state = MonitorState()
        listener = EndpointListener(state, FakeSocket())
        assert not listener.handle(NodeAnnouncement(guid=1, name="camera_node").encode())
        assert state.store.snapshot().endpoints == {}


class TestHeartbeat:
    def test_beat(self):
        state = MonitorState()
        sock = FakeSocket()
        hb = HeartbeatBroadcaster(
            state, sock, guid=0x12345678, locator=Locator(40000, LOOPBACK),
            group="239.255.0.1", port=7500,
        )
        assert hb.beat() > 0
        data, addr = sock.sent[0]
        assert addr == ("239.255.0.1", 7500)
        msg = decode_node_announcement(data)
        assert msg.name == "lpss_inspector"
        assert msg.guid == 0x12345678
        assert msg.locators == [Locator(40000, LOOPBACK)]

    def test_send_failure_is_not_fatal(self):
        class BrokenSocket(FakeSocket):
            def sendto(self, data, addr):
                raise OSError("network unreachable")

        state = MonitorState()
        hb = HeartbeatBroadcaster(state, BrokenSocket(), guid=1, locator=Locator(1))
        assert hb.beat() is None
        assert hb.sent == 0

    def test_run_stops_promptly(self):
        state = MonitorState()
        hb = HeartbeatBroadcaster(state, FakeSocket(), guid=1, locator=Locator(1), interval=60)
        t = threading.Thread(target=hb.run, daemon=True)
        t.start()
        assert _wait_for(lambda: hb.sent == 1)
        state.stop()
        t.join(2)
        assert not t.is_alive()


class TestMonitor:
    @pytest.fixture
    def monitor(self):
        node_sock = transport.open_unicast_listener("127.0.0.1", timeout=0.1)
        endpoint_sock = transport.open_unicast_listener("127.0.0.1", timeout=0.1)
        mon = Monitor(
            group="127.0.0.1",
            port=node_sock.getsockname()[1],
            interval=0.05,
            node_sock=node_sock,
            endpoint_sock=endpoint_sock,
            send_sock=transport.open_sender(),
            local_ip=LOOPBACK,
        )
        mon.start()
        yield mon
        mon.stop()

    def test_heartbeat_reaches_node_listener(self, monitor):
        assert _wait_for(lambda: "lpss_inspector" in monitor.store.node_names())

    def test_endpoint_announcements(self, monitor):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            for _ in range(2):
                s.sendto(
                    EndpointAnnouncement(endpoint_guid=0xAA, topic="imu").encode(),
                    ("127.0.0.1", monitor.endpoint_port),
                )
        assert _wait_for(lambda: 0xAA in monitor.store.snapshot().endpoints)
        time.sleep(0.2)
        assert monitor.store.snapshot().endpoints[0xAA] == [EndpointRecord("imu", Role.PUBLISHER)]

    def test_bounded_shutdown(self, monitor):
        start = time.monotonic()
        assert monitor.stop(timeout=2.0)
        assert time.monotonic() - start < 2.0
        assert all(not t.is_alive() for t in monitor.threads)


class TestListenerBase:
    def test_abstract(self):
        with pytest.raises(TypeError):
            _DatagramListener(MonitorState(), FakeSocket())


class TestHeartbeatEncoding:
    def test_oversized_name_is_not_fatal(self):
        state = MonitorState()
        sock = FakeSocket()
        hb = HeartbeatBroadcaster(state, sock, guid=1, locator=Locator(1), name="x" * 300, interval=0.01)
        assert hb.beat() is None
        assert sock.sent == []

        t = threading.Thread(target=hb.run, daemon=True)
        t.start()
        time.sleep(0.1)
        assert t.is_alive()
        state.stop()
        t.join(2)
        assert not t.is_alive()


class ClosableSocket:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class TestMonitorStartFailure:
    def test_closes_opened_sockets(self, monkeypatch):
        node, endpoint = ClosableSocket(), ClosableSocket()

        def no_sender(*args, **kwargs):
            raise OSError("no route")

        monkeypatch.setattr(transport, "open_multicast_listener", lambda *a, **k: node)
        monkeypatch.setattr(transport, "open_unicast_listener", lambda *a, **k: endpoint)
        monkeypatch.setattr(transport, "open_sender", no_sender)

        mon = Monitor(local_ip=LOOPBACK)
        with pytest.raises(OSError):
            mon.start()
        assert node.closed and endpoint.closed
        assert mon.node_sock is None and mon.endpoint_sock is None
        assert mon.threads == []

    def test_keeps_supplied_sockets(self, monkeypatch):
        supplied = ClosableSocket()

        def no_listener(*args, **kwargs):
            raise OSError("address in use")

        monkeypatch.setattr(transport, "open_unicast_listener", no_listener)

        mon = Monitor(node_sock=supplied, local_ip=LOOPBACK)
        with pytest.raises(OSError):
            mon.start()
        assert not supplied.closed
        assert mon.node_sock is supplied
