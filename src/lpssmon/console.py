"""
Interactive command console.

Commands:
  list          — Show every discovered node
  info <name>   — Show the endpoints of a node
  graph         — Export the topology graph
  quit          — Stop the monitor
"""

import sys
import logging
from typing import Optional, TextIO

import click

from .topology.store import MonitorState
from .viz.export import GraphExporter

logger = logging.getLogger(__name__)

BANNER = "LPSS Async Monitor running. Commands: list, info <name>, graph, quit"


class Console:
    """Blocking read-eval loop over a text stream."""

    def __init__(
        self,
        state: MonitorState,
        exporter: GraphExporter,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
        prompt: str = "> ",
    ):
        self.state = state
        self.exporter = exporter
        self.stdin = stdin if stdin is not None else sys.stdin
        self.stdout = stdout if stdout is not None else sys.stdout
        self.prompt = prompt

    def _echo(self, text: str = "", nl: bool = True):
        click.echo(text, file=self.stdout, nl=nl)

    def cmd_list(self):
        for name in self.state.store.node_names():
            self._echo(f"- {name}")

    def cmd_info(self, name: str):
        for ep in self.state.store.find_endpoints(name) or []:
            self._echo(f"  [{ep.role.tag}] {ep.topic}")

    def cmd_graph(self):
        if self.exporter.export():
            self._echo(f"Graph written to {self.exporter.output}")

    def execute(self, line: str) -> bool:
        """Run one command line. Returns False when the console should exit."""
        tokens = line.split()[:2]
        if not tokens:
            return True
        cmd = tokens[0]
        if cmd == "list":
            self.cmd_list()
        elif cmd == "info" and len(tokens) == 2:
            self.cmd_info(tokens[1])
        elif cmd == "graph":
            self.cmd_graph()
        elif cmd == "quit":
            return False
        else:
            logger.debug("Ignoring %r", line.rstrip())
        return True

    def run(self):
        """Read commands until 'quit' or end of input, then stop the monitor."""
        self._echo(BANNER)
        while True:
            self._echo(self.prompt, nl=False)
            self.stdout.flush()
            line = self.stdin.readline()
            if not line or not self.execute(line):
                break
        self.state.stop()
