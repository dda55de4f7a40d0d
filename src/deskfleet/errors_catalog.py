"""Actionable error catalog for DeskFleet."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "port_out_of_range": {
        "what": "Port {port} for {worker} is outside the valid range 1-65535.",
        "next": "Lower `{namespace}_base_port` or reduce the fleet `size`.",
    },
    "port_reserved": {
        "what": "Port {port} for {worker} collides with a reserved administrative port.",
        "next": "Move `{namespace}_base_port` away from the reserved ports or shrink the fleet.",
    },
    "port_collision": {
        "what": "Port {port} is assigned to both {first} and {second}.",
        "next": "Spread `desktop_base_port` and `shell_base_port` further apart than the fleet size.",
    },
    "missing_worker_config": {
        "what": "No configuration blob for {worker}.",
        "next": "Run `deskfleet config {worker}` or add `{path}`.",
    },
    "invalid_worker_config": {
        "what": "Configuration for {worker} is invalid: {reason}",
        "next": "Fix `{path}` so it contains a JSON object with the required keys.",
    },
    "firewall_unavailable": {
        "what": "The ufw firewall control interface is not available.",
        "next": "Install ufw (`apt install ufw`) and run DeskFleet as root.",
    },
    "compose_unavailable": {
        "what": "Docker Compose is not available.",
        "next": "Install Docker Compose v2 (`docker compose`) or v1 (`docker-compose`).",
    },
    "not_root": {
        "what": "Host setup requires root privileges.",
        "next": "Re-run with sudo or set `install_dependencies: false` on a prepared host.",
    },
    "service_manager_unavailable": {
        "what": "systemd (`systemctl`) is not available to keep the DDNS daemon running.",
        "next": "Run `deskfleet ddns` under your own process supervisor.",
    },
    "dns_not_configured": {
        "what": "Cloudflare API token or zone id is not set.",
        "next": "Point the A record for {domain} at {address} manually or configure `cf_api_token` and `cf_zone_id`.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"


def remediation(code: str, **kwargs: str) -> str:
    """Return only the suggested-action half of a catalog entry."""
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")
    return _ERROR_MESSAGES[code]["next"].format(**kwargs)


def description(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")
    return _ERROR_MESSAGES[code]["what"].format(**kwargs)
