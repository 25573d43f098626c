"""Constants shared across the ground-station link."""

from __future__ import annotations

#: Lower/upper bound of a steering or throttle value on the wire.
AXIS_MIN = 0
AXIS_MAX = 180

#: Centered steering / stopped throttle.
NEUTRAL = 90

#: 16-bit unsigned range used by remote control samples and gamepad axes.
RAW_MIN = 0
RAW_MAX = 65535
RAW_STEERING_CENTER = 32767

#: Keyboard nudge limits (throttle is kept away from full scale).
NUDGE_STEERING_STEP = 5
NUDGE_THROTTLE_STEP = 1
NUDGE_THROTTLE_MIN = 40
NUDGE_THROTTLE_MAX = 140

#: Ground-station MAC index range bounds.
MAC_INDEX_MIN = 0
MAC_INDEX_MAX = 255

DEFAULT_BAUD = 115200
DEFAULT_REMOTE_URL = "ws://localhost:8080/"
DEFAULT_HUB_HOST = "0.0.0.0"
DEFAULT_HUB_PORT = 9091
DEFAULT_HUB_PATH = "/events/"

TRANSMIT_INTERVAL_SECONDS = 0.020
SESSION_SECONDS = 240
SESSION_TICK_SECONDS = 1.0
DEBOUNCE_WINDOW_MS = 1500
SCANNER_IDLE_FLUSH_SECONDS = 0.150
RECONNECT_DELAY_SECONDS = 5.0
HUB_CLOSE_TIMEOUT_SECONDS = 0.2
HUB_SEND_TIMEOUT_SECONDS = 1.0

#: Schema version tag carried by every broadcast event.
EVENT_SCHEMA_VERSION = "1"

DISCONNECTED_TEXT = "(disconnected)"
WAITING_TEXT = "(waiting)"
