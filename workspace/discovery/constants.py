"""Discovery protocol constants shared by the broadcaster and listeners."""

DISCOVERY_PORT = 8061
BROADCAST_INTERVAL = 5.0  # seconds
DISCOVERY_TIMEOUT = 10.0  # seconds

WORKSPACE_MAGIC = "WORKSPACE_SERVER_BEACON"

DEFAULT_SERVER_PORT = 8060
SERVER_NAME = "Workspace Server"

FALLBACK_HOST = "localhost"
FALLBACK_BROADCAST = "255.255.255.255"
