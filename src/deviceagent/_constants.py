"""Internal constants shared across the package."""

PROJECT_FILE = "device-project.json"
PROJECT_DIR = "project"
SNAPSHOT_FILE = "snapshot.json"
SETTINGS_FILE = "settings.json"

USER_AGENT = "deviceagent/0.4"

DEFAULT_DIR = "/opt/deviceagent"
DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_MQTT_KEEPALIVE = 60
DEFAULT_MQTT_CHECKIN_INTERVAL = 15 * 60.0
DEFAULT_LAUNCHER_COMMAND: tuple[str, ...] = ("node-red", "-u", "{project_dir}")

# ------------------------------------------------------------------
# MQTT topics
# ------------------------------------------------------------------

DEVICE_COMMAND_TOPIC = "ff/v1/{team}/d/{device}/command"
PROJECT_COMMAND_TOPIC = "ff/v1/{team}/p/{project}/command"
DEVICE_STATUS_TOPIC = "ff/v1/{team}/d/{device}/status"

# ------------------------------------------------------------------
# HTTP endpoints (relative to forge_url)
# ------------------------------------------------------------------

SNAPSHOT_ENDPOINT = "/api/v1/devices/{device}/live/snapshot"
SETTINGS_ENDPOINT = "/api/v1/devices/{device}/live/settings"
STATE_ENDPOINT = "/api/v1/devices/{device}/live/state"

# A managed process that ran at least this long before exiting is treated
# as having been healthy; its crash counter starts over.
STABLE_RUN_SECONDS = 60.0
