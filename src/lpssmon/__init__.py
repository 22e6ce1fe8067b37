"""
LPSS network discovery monitor.

Listens to RNDP node announcements and REDP endpoint announcements on the
local network, aggregates them into a thread-safe topology model, and exports
the publish/subscribe graph as Graphviz DOT.
"""

__version__ = "0.1.0"
