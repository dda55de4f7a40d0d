"""Shared constants for DeskFleet."""

DIR_MODE = 0o755
FILE_MODE = 0o644
SECRET_MODE = 0o600

DEFAULT_PROJECT_DIR = "/opt/deskfleet"
DEFAULT_CONFIG_FILE = "deskfleet.yml"
DEFAULT_DOMAIN = "freelancers.example.com"
DEFAULT_FLEET_SIZE = 3

DEFAULT_DESKTOP_BASE_PORT = 54040
DEFAULT_SHELL_BASE_PORT = 52520
DEFAULT_ADMIN_SSH_PORT = 58085
DEFAULT_ADMIN_PORTS = (22, 80, 443)
DEFAULT_DESKTOP_CONTAINER_PORT = 54040
DEFAULT_SHELL_CONTAINER_PORT = 22
MAX_PORT = 65535

DEFAULT_WORKER_PREFIX = "worker"
DEFAULT_COMPOSE_PROJECT = "deskfleet"
DEFAULT_IMAGE = "deskfleet-worker:latest"
PROJECT_LABEL = "deskfleet.project"
WORKER_LABEL = "deskfleet.worker"
DISPLAY_OFFSET = 10

CONTAINER_DATA_DIR = "/home/worker/data"
CONTAINER_SCRIPTS_DIR = "/scripts"
CONTAINER_CONFIGS_DIR = "/configs"
CONTAINER_LOG_DIR = "/var/log/worker"

DEFAULT_ADDRESS_SOURCES = (
    "https://api.ipify.org",
    "https://checkip.amazonaws.com",
)
CLOUDFLARE_API_URL = "https://api.cloudflare.com/client/v4"
DEFAULT_DDNS_TTL = 120
DEFAULT_DDNS_INTERVAL_SECONDS = 300.0
DEFAULT_DDNS_JITTER_SECONDS = 30.0

DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_PROBE_TIMEOUT = 1.0
DEFAULT_COMMAND_TIMEOUT = 300.0
DEFAULT_BUILD_TIMEOUT = 3600.0

DEFAULT_HOST_PACKAGES = (
    "ca-certificates",
    "curl",
    "docker.io",
    "docker-compose-v2",
    "ufw",
)

WORKER_CONFIG_KEYS = (
    "targetSiteUrl",
    "credentials",
    "fieldSelectors",
    "trackerUrl",
    "trackerCredentials",
)

BACKUP_TREES = ("data", "configs", "scripts")
DDNS_EVENT_LOG = "ddns-events.jsonl"
DDNS_PID_FILE = "ddns.pid"
DDNS_SETTINGS_FILE = "ddns-settings.yml"
SYSTEMD_UNIT_DIR = "/etc/systemd/system"
REBUILD_MANIFEST = "rebuild-manifest.json"
