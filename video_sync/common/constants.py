"""Shared defaults for the relay server and client sessions."""

# Network
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_SERVER_URL = "ws://localhost:3000"
HEALTH_PATH = "/health"

# Room ids
ROOM_ID_LENGTH = 6
ROOM_ID_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# Server liveness (seconds)
SWEEP_INTERVAL = 5 * 60.0
INACTIVITY_TIMEOUT = 10 * 60.0
MAX_ROOM_AGE = 24 * 60 * 60.0
SEND_TIMEOUT = 5.0
SERVER_PING_INTERVAL = 20.0  # websocket-level keepalive, reaps dead TCP peers

# Client heartbeat (seconds)
HEARTBEAT_INTERVAL = 30.0
MAX_MISSED_HEARTBEATS = 3

# Client reconnect (seconds)
RECONNECT_BASE_DELAY = 2.0
RECONNECT_MAX_DELAY = 30.0
MAX_RECONNECT_ATTEMPTS = 10
CONNECT_TIMEOUT = 10.0

# Playback sync
STALE_EVENT_THRESHOLD_MS = 5000
ECHO_SETTLE_WINDOW = 0.2
DRIFT_CHECK_INTERVAL = 5.0
DRIFT_THRESHOLD = 1.0

# Session resume (seconds since the saved session was last active)
RESUME_AUTO_WINDOW = 60.0
RESUME_PROMPT_WINDOW = 5 * 60.0
