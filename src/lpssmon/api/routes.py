"""
REST API for lpssmon.

Read-only view of the live topology store for dashboards and scripts.
"""

import threading
import time
import logging

from flask import Flask, Blueprint, Response, abort, jsonify

from .. import config
from ..topology.store import MonitorState, placeholder_name
from ..viz.export import D3Exporter, DotExporter

logger = logging.getLogger(__name__)


class MonitorAPI:
    """
    REST API server over a MonitorState.

    Endpoints:
      GET  /api/v1/health            — API health check
      GET  /api/v1/nodes             — Every known node with its endpoints
      GET  /api/v1/nodes/<name>      — Endpoints of the first node named <name>
      GET  /api/v1/topology          — Topology as D3 JSON
      GET  /api/v1/graph.dot         — Topology as Graphviz DOT
    """

    def __init__(self, state: MonitorState):
        self.state = state
        self._started = time.time()

    def create_app(self) -> Flask:
        """Create and configure the Flask application."""
        app = Flask(__name__)
        api = Blueprint("api", __name__, url_prefix="/api/v1")

        @api.route("/health")
        def health():
            return jsonify({
                "status": "ok" if self.state.running else "stopping",
                "nodes": len(self.state.store),
                "uptime": time.time() - self._started,
            })

        @api.route("/nodes")
        def nodes():
            snap = self.state.store.snapshot()
            entries = []
            for prefix in snap.prefixes:
                entries.append({
                    "prefix": f"{prefix:012x}",
                    "name": snap.nodes.get(prefix, placeholder_name(prefix)),
                    "known": prefix in snap.nodes,
                    "endpoints": [
                        {"topic": ep.topic, "role": ep.role.value}
                        for ep in snap.endpoints.get(prefix, [])
                    ],
                })
            return jsonify({"nodes": entries, "count": len(entries)})

        @api.route("/nodes/<name>")
        def node(name):
            endpoints = self.state.store.find_endpoints(name)
            if endpoints is None:
                abort(404, f"Node {name} not found")
            return jsonify({
                "name": name,
                "endpoints": [
                    {"topic": ep.topic, "role": ep.role.value} for ep in endpoints
                ],
            })

        @api.route("/topology")
        def topology():
            return jsonify(D3Exporter.to_d3_json(self.state.store.to_graph()))

        @api.route("/graph.dot")
        def graph_dot():
            return Response(DotExporter.to_dot(self.state.store), mimetype="text/vnd.graphviz")

        app.register_blueprint(api)
        return app

    def serve_background(self, host: str = config.API_HOST, port: int = 8080) -> threading.Thread:
        """Run the development server in a daemon thread."""
        app = self.create_app()
        t = threading.Thread(
            target=app.run,
            kwargs={"host": host, "port": port, "use_reloader": False},
            name="lpss-api",
            daemon=True,
        )
        t.start()
        logger.info("API listening on http://%s:%d/api/v1", host, port)
        return t
