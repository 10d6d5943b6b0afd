"""Shared constants for the Fridge server."""

# Network defaults (overridable via environment / CLI)
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_DATA_FILE = "data.json"

# Per-connection cooldown between requests (ms)
DEFAULT_COOLDOWN_MS = 1000

# Persistence timing
SAVE_DEBOUNCE_S = 0.5        # Quiet period before a change is written
PERIODIC_SAVE_S = 60 * 60    # Unconditional save every hour

# Outbound messages kept per observer before the oldest is dropped
OBSERVER_QUEUE_SIZE = 32

# WebSocket message types: server -> observer
EVENT_STATE = "state"
EVENT_ACTION_REJECTED = "actionRejected"

# WebSocket message types: observer -> server
REQUEST_TOGGLE = "requestToggle"
REQUEST_OPEN = "requestOpen"
REQUEST_CLOSE = "requestClose"
REQUEST_TYPES = (REQUEST_TOGGLE, REQUEST_OPEN, REQUEST_CLOSE)

# Rejection reasons
REASON_COOLDOWN = "cooldown"
REASON_ALREADY_OPEN = "already-open"
REASON_ALREADY_CLOSED = "already-closed"
