"""
Thread-safe topology store.

Single source of truth for discovered nodes and their publish/subscribe
endpoints. Both mappings are guarded by one lock so readers always see a
consistent pair, and every mutation (including endpoint dedup) happens in a
single lock acquisition.
"""

import enum
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional
import networkx as nx


class Role(enum.Enum):
    PUBLISHER = "pub"
    SUBSCRIBER = "sub"

    @property
    def tag(self) -> str:
        return "PUB" if self is Role.PUBLISHER else "SUB"


@dataclass(frozen=True)
class EndpointRecord:
    """One topic relationship of a node."""
    topic: str
    role: Role


@dataclass
class TopologySnapshot:
    """Detached copy of the store contents."""
    nodes: dict[int, str] = field(default_factory=dict)
    endpoints: dict[int, list[EndpointRecord]] = field(default_factory=dict)

    @property
    def prefixes(self) -> list[int]:
        """Every prefix seen in either mapping, ascending."""
        return sorted(set(self.nodes) | set(self.endpoints))

    @property
    def topics(self) -> list[str]:
        return sorted({ep.topic for eps in self.endpoints.values() for ep in eps})


class TopologyStore:
    """
    Discovered nodes (prefix -> display name) and their endpoints
    (prefix -> ordered, deduplicated endpoint records).

    Entries are never removed. Endpoints may reference a prefix whose node
    announcement has not been seen.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._nodes: dict[int, str] = {}
        self._endpoints: dict[int, list[EndpointRecord]] = {}

    def upsert_node(self, prefix: int, name: str):
        """Record a node's display name; the latest announcement wins."""
        with self._lock:
            self._nodes[prefix] = name

    def add_endpoint(self, prefix: int, topic: str, role: Role) -> bool:
        """
        Append an endpoint record unless an identical (topic, role) exists.

        Returns True if the record was added.
        """
        record = EndpointRecord(topic, role)
        with self._lock:
            records = self._endpoints.setdefault(prefix, [])
            for existing in records:
                if existing == record:
                    return False
            records.append(record)
            return True

    @contextmanager
    def locked(self) -> Iterator[TopologySnapshot]:
        """
        Hold the store lock and yield a live view of both mappings.

        The view must not be used after the block exits.
        """
        with self._lock:
            yield TopologySnapshot(nodes=self._nodes, endpoints=self._endpoints)

    def snapshot(self) -> TopologySnapshot:
        with self._lock:
            return TopologySnapshot(
                nodes=dict(self._nodes),
                endpoints={p: list(eps) for p, eps in self._endpoints.items()},
            )

    def node_names(self) -> list[str]:
        with self._lock:
            return list(self._nodes.values())

    def find_endpoints(self, name: str) -> Optional[list[EndpointRecord]]:
        """
        Endpoints of the first node whose display name equals ``name``.

        Returns None when no node has that name.
        """
        with self._lock:
            for prefix, node_name in self._nodes.items():
                if node_name == name:
                    return list(self._endpoints.get(prefix, []))
        return None

    def to_graph(self) -> nx.DiGraph:
        """
        Convert the topology to a NetworkX directed graph.

        Node vertices are keyed by prefix, topic vertices by ``"t:<topic>"``.
        Publishers point at topics, topics point at subscribers.
        """
        snap = self.snapshot()
        G = nx.DiGraph()

        for topic in snap.topics:
            G.add_node(f"t:{topic}", type="topic", label=topic)

        for prefix in snap.prefixes:
            G.add_node(
                prefix,
                type="node",
                label=snap.nodes.get(prefix, placeholder_name(prefix)),
                known=prefix in snap.nodes,
            )
            for ep in snap.endpoints.get(prefix, []):
                if ep.role is Role.PUBLISHER:
                    G.add_edge(prefix, f"t:{ep.topic}", role=ep.role.value)
                else:
                    G.add_edge(f"t:{ep.topic}", prefix, role=ep.role.value)

        return G

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)


def placeholder_name(prefix: int) -> str:
    """Label for a node whose announcement has not been received."""
    return f"<unknown {prefix:012x}>"


class MonitorState:
    """
    State shared by the monitor's activities: the topology store and the
    running flag. Handed to each activity at construction.
    """

    def __init__(self, store: Optional[TopologyStore] = None):
        self.store = store if store is not None else TopologyStore()
        self._stopped = threading.Event()

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()

    def stop(self):
        self._stopped.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; returns True once stopped."""
        return self._stopped.wait(timeout)
