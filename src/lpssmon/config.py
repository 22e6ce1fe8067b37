"""
Configuration settings for lpssmon.

Defaults for the discovery channels, heartbeat, and graph export.
Every value here can be overridden from the command line.
"""

import os

# RNDP node announcements (multicast)
NODE_GROUP = "239.255.0.1"
NODE_PORT = 7500

# Heartbeat
HEARTBEAT_INTERVAL = 1.0  # seconds
INSPECTOR_NAME = "lpss_inspector"
INSPECTOR_GUID = 0x12345678

# Listener sockets wake up this often to re-check the running flag
RECV_TIMEOUT = 0.5  # seconds
RECV_BUFSIZE = 65535

# Time allowed for background threads to finish on shutdown
JOIN_TIMEOUT = 2.0  # seconds

# Graph export
GRAPH_OUTPUT = "lpss_graph.dot"
DOT_BINARY = "dot"
VIEWER_BINARY = "xdg-open"

# REST API
API_HOST = "127.0.0.1"

# Logging
LOG_LEVEL = os.getenv("LPSSMON_LOG_LEVEL", "WARNING")  # DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
