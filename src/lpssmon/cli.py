"""
lpssmon CLI — Command-line interface for the LPSS discovery monitor.

Commands:
  monitor     — Discover the network and open the interactive console
  announce    — Emit RNDP/REDP announcements as a fake LPSS node
  graph-demo  — Write the DOT graph of a sample topology
"""

import logging
import random

import click

from . import config, __version__
from .console import Console
from .discovery.monitor import Monitor
from .protocol import transport
from .protocol.messages import (
    EndpointAnnouncement,
    EndpointType,
    Locator,
    NodeAnnouncement,
    MAX_STRING_BYTES,
)
from .topology.store import MonitorState, Role, TopologyStore
from .viz.export import DotExporter, GraphExporter, GraphvizRenderer, NullRenderer


def _setup_logging(level: str):
    logging.basicConfig(level=level.upper(), format=config.LOG_FORMAT)


def _wire_string(ctx, param, value):
    """Reject names and topics too long for a discovery packet."""
    values = value if isinstance(value, tuple) else (value,)
    for v in values:
        if len(v.encode("utf-8")) > MAX_STRING_BYTES:
            raise click.BadParameter(f"longer than {MAX_STRING_BYTES} bytes: {v[:20]}...")
    return value


@click.group()
@click.version_option(version=__version__, prog_name="lpssmon")
@click.option("--log-level", default=config.LOG_LEVEL, help="Logging level")
def cli(log_level):
    """lpssmon — LPSS network discovery monitor."""
    _setup_logging(log_level)


@cli.command()
@click.option("--group", "-g", default=config.NODE_GROUP, help="RNDP multicast group")
@click.option("--port", "-p", default=config.NODE_PORT, help="RNDP port")
@click.option("--interval", "-i", default=config.HEARTBEAT_INTERVAL, help="Heartbeat interval (s)")
@click.option("--name", "-n", default=config.INSPECTOR_NAME, callback=_wire_string,
              help="Name announced by the monitor")
@click.option("--output", "-o", default=config.GRAPH_OUTPUT, help="DOT output file")
@click.option("--no-render", is_flag=True, help="Write DOT only, skip Graphviz")
@click.option("--api-port", type=int, default=None, help="Serve the REST API on this port")
def monitor(group, port, interval, name, output, no_render, api_port):
    """Discover the network and open the interactive console."""
    state = MonitorState()
    mon = Monitor(state, group=group, port=port, name=name, interval=interval)
    mon.start()

    if api_port is not None:
        from .api.routes import MonitorAPI
        MonitorAPI(state).serve_background(port=api_port)

    renderer = NullRenderer() if no_render else GraphvizRenderer()
    console = Console(state, GraphExporter(state.store, output=output, renderer=renderer))
    try:
        console.run()
    except KeyboardInterrupt:
        click.echo()
    finally:
        click.echo("Shutting down...")
        mon.stop()


@cli.command()
@click.argument("target")
@click.option("--name", "-n", default="camera_node", callback=_wire_string, help="Node display name")
@click.option("--guid", type=str, default=None, help="Node GUID (hex), random if omitted")
@click.option("--pub", multiple=True, callback=_wire_string, help="Topic published (repeatable)")
@click.option("--sub", multiple=True, callback=_wire_string, help="Topic subscribed (repeatable)")
@click.option("--group", "-g", default=config.NODE_GROUP, help="RNDP multicast group")
@click.option("--port", "-p", default=config.NODE_PORT, help="RNDP port")
def announce(target, name, guid, pub, sub, group, port):
    """
    Announce a fake node: RNDP to the multicast group, REDP to TARGET.

    TARGET is host:port of a monitor's endpoint listener.
    """
    host, _, target_port = target.rpartition(":")
    if not host or not target_port.isdigit():
        raise click.BadParameter("expected host:port", param_hint="TARGET")
    node_guid = int(guid, 16) if guid else random.getrandbits(128)

    sock = transport.open_sender()
    try:
        rndp = NodeAnnouncement(
            guid=node_guid, name=name,
            locators=[Locator(0, transport.get_local_ip())],
        )
        sock.sendto(rndp.encode(), (group, port))
        click.echo(f"RNDP {name} ({node_guid & 0xFFFFFFFFFFFF:012x}) -> {group}:{port}")

        endpoints = [(t, EndpointType.WRITER) for t in pub] + [(t, EndpointType.READER) for t in sub]
        for topic, etype in endpoints:
            redp = EndpointAnnouncement(endpoint_guid=node_guid, topic=topic, type=etype)
            sock.sendto(redp.encode(), (host, int(target_port)))
            click.echo(f"REDP {etype.name.lower()} {topic} -> {target}")
    except OSError as e:
        raise click.ClickException(f"Send failed: {e}")
    finally:
        sock.close()


@cli.command("graph-demo")
@click.option("--output", "-o", default=config.GRAPH_OUTPUT, help="DOT output file")
@click.option("--render", is_flag=True, help="Rasterize with Graphviz")
def graph_demo(output, render):
    """Write the DOT graph of a sample topology."""
    store = _build_demo_topology()
    exporter = GraphExporter(
        store, output=output,
        renderer=GraphvizRenderer() if render else NullRenderer(),
    )
    if not exporter.export():
        raise click.ClickException(f"Cannot write {output}")
    click.echo(DotExporter.to_dot(store), nl=False)
    click.echo(f"Exported to {output}", err=True)


def _build_demo_topology() -> TopologyStore:
    """Build a small robot topology for demos."""
    store = TopologyStore()

    store.upsert_node(0x0001, "camera_node")
    store.add_endpoint(0x0001, "image_raw", Role.PUBLISHER)

    store.upsert_node(0x0002, "detector_node")
    store.add_endpoint(0x0002, "image_raw", Role.SUBSCRIBER)
    store.add_endpoint(0x0002, "detections", Role.PUBLISHER)

    store.upsert_node(0x0003, "planner_node")
    store.add_endpoint(0x0003, "detections", Role.SUBSCRIBER)
    store.add_endpoint(0x0003, "imu", Role.SUBSCRIBER)
    store.add_endpoint(0x0003, "cmd_vel", Role.PUBLISHER)

    # Endpoint seen before its node announcement
    store.add_endpoint(0x0004, "imu", Role.PUBLISHER)

    return store


if __name__ == "__main__":
    cli()
