"""
Visualization export for LPSS topologies.

Renders the topology store as a Graphviz DOT digraph (topics as ellipses,
nodes as boxes, publishers pointing at topics, topics pointing at
subscribers), exports D3.js JSON, and hands DOT files to an external
rasterizer.
"""

import os
import shutil
import logging
import subprocess
from typing import Optional, Protocol
import networkx as nx

from .. import config
from ..topology.store import Role, TopologySnapshot, TopologyStore, placeholder_name

logger = logging.getLogger(__name__)


class Renderer(Protocol):
    def render(self, path: str) -> bool: ...


class NullRenderer:
    """Renderer that does nothing; keeps only the DOT file."""

    def render(self, path: str) -> bool:
        return True


class GraphvizRenderer:
    """
    Rasterize a DOT file with Graphviz and open the image in a viewer.

    Runs ``dot -Tpng <path> -o <path>.png`` followed by the viewer in a
    detached shell. Failures are logged, never raised.
    """

    def __init__(
        self,
        dot: str = config.DOT_BINARY,
        viewer: Optional[str] = config.VIEWER_BINARY,
        fmt: str = "png",
    ):
        self.dot = dot
        self.viewer = viewer
        self.fmt = fmt

    def image_path(self, path: str) -> str:
        return os.path.splitext(path)[0] + "." + self.fmt

    def command(self, path: str) -> list[str]:
        image = self.image_path(path)
        script = '"$0" -T"$1" "$2" -o "$3"'
        args = [self.dot, self.fmt, path, image]
        if self.viewer:
            script += ' && "$4" "$3" > /dev/null 2>&1'
            args.append(self.viewer)
        return ["sh", "-c", script] + args

    def render(self, path: str) -> bool:
        if shutil.which(self.dot) is None:
            logger.warning("Graphviz '%s' not found; DOT left at %s", self.dot, path)
            return False
        try:
            subprocess.Popen(
                self.command(path),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            logger.warning("Could not start renderer: %s", e)
            return False
        return True


class DotExporter:
    """Export the topology to Graphviz DOT syntax."""

    @staticmethod
    def to_dot(store: TopologyStore) -> str:
        """Render the store while holding its lock."""
        with store.locked() as view:
            return DotExporter.render(view)

    @staticmethod
    def render(snap: TopologySnapshot) -> str:
        """
        Render a snapshot to DOT.

        Topics and nodes are emitted in sorted order so the output is
        byte-identical for identical contents.
        """
        lines = [
            "digraph G {",
            "  rankdir=LR;",
            '  node [fontname="sans-serif", fontsize=10];',
            "",
        ]

        for topic in snap.topics:
            lines.append(
                f'  {_topic_id(topic)} [label="{_escape(topic)}", shape=ellipse, '
                f"style=filled, fillcolor=lightyellow];"
            )

        for prefix in snap.prefixes:
            name = snap.nodes.get(prefix)
            label = name if name is not None else placeholder_name(prefix)
            lines.append(
                f'  {_node_id(prefix)} [label="{_escape(label)}", shape=box, '
                f"style=filled, fillcolor={'lightblue' if name is not None else 'lightgrey'}];"
            )
            for ep in snap.endpoints.get(prefix, []):
                if ep.role is Role.PUBLISHER:
                    lines.append(
                        f'  {_node_id(prefix)} -> {_topic_id(ep.topic)} [color=blue, label="pub"];'
                    )
                else:
                    lines.append(
                        f'  {_topic_id(ep.topic)} -> {_node_id(prefix)} [color=darkgreen, label="sub"];'
                    )

        lines.append("}")
        return "\n".join(lines) + "\n"


class GraphExporter:
    """Write the DOT description to a fixed path and rasterize it."""

    def __init__(
        self,
        store: TopologyStore,
        output: str = config.GRAPH_OUTPUT,
        renderer: Optional[Renderer] = None,
    ):
        self.store = store
        self.output = output
        self.renderer = renderer if renderer is not None else GraphvizRenderer()

    def export(self) -> bool:
        """
        Render and save the graph, then invoke the renderer.

        Returns False only if the output file cannot be written; the
        renderer's outcome is not reported.
        """
        with self.store.locked() as view:
            content = DotExporter.render(view)
            try:
                with open(self.output, "w") as f:
                    f.write(content)
            except OSError as e:
                logger.error("Cannot write graph to %s: %s", self.output, e)
                return False

        if not self.renderer.render(self.output):
            logger.warning("Rendering %s failed", self.output)
        return True


class D3Exporter:
    """Export the topology to D3.js force-directed JSON format."""

    @staticmethod
    def to_d3_json(G: nx.DiGraph) -> dict:
        """
        Convert a graph from ``TopologyStore.to_graph()`` to D3 JSON.

        Returns dict with 'nodes' and 'links' arrays.
        """
        node_map = {n: i for i, n in enumerate(G.nodes())}

        nodes = []
        for node, data in G.nodes(data=True):
            d = {
                "id": node if data.get("type") == "topic" else f"{node:012x}",
                "index": node_map[node],
                "type": data.get("type", "node"),
                "label": data.get("label", str(node)),
            }
            if "known" in data:
                d["known"] = data["known"]
            nodes.append(d)

        links = [
            {"source": node_map[u], "target": node_map[v], "role": data.get("role", "")}
            for u, v, data in G.edges(data=True)
        ]

        return {"nodes": nodes, "links": links}


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _topic_id(topic: str) -> str:
    return f'"t_{_escape(topic)}"'


def _node_id(prefix: int) -> str:
    return f"n{prefix:x}"
