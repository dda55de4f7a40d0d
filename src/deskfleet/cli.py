import logging
import os
import signal
from contextlib import contextmanager
from dataclasses import fields

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .constants import DEFAULT_CONFIG_FILE
from .core import FleetRebuilder
from .errors import FleetError
from .fleet import Fleet
from .models import FleetSettings
from .services.config_loader import ConfigLoader
from .services.monitor import render_snapshot

console = Console()

_TUPLE_FIELDS = {"admin_ports", "reserved_ports", "address_sources", "host_packages"}


def _resolve_option(cli_value, config, key, default=None):
    if cli_value is not None:
        return cli_value
    if key in config:
        return config[key]
    return default


logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True, show_level=False, show_path=False)],
)


def build_settings(config_values, **cli_values) -> FleetSettings:
    """Merges CLI values over config values over FleetSettings defaults."""
    resolved = {}
    for field in fields(FleetSettings):
        value = _resolve_option(cli_values.get(field.name), config_values, field.name, default=field.default)
        if value is not None and field.name in _TUPLE_FIELDS:
            value = tuple(value)
        resolved[field.name] = value

    try:
        for key in ("size", "desktop_base_port", "shell_base_port", "admin_ssh_port", "ddns_ttl"):
            resolved[key] = int(resolved[key])
        for key in ("ddns_interval_seconds", "ddns_jitter_seconds", "http_timeout", "probe_timeout",
                    "command_timeout", "build_timeout"):
            resolved[key] = float(resolved[key])
        resolved["admin_ports"] = tuple(int(port) for port in resolved["admin_ports"])
        resolved["reserved_ports"] = tuple(int(port) for port in resolved["reserved_ports"])
    except (TypeError, ValueError) as exc:
        raise FleetError(f"Invalid configuration value: {exc}") from exc
    resolved["ddns_proxied"] = bool(resolved["ddns_proxied"])
    resolved["install_dependencies"] = bool(resolved["install_dependencies"])
    return FleetSettings(**resolved)


@contextmanager
def _cli_errors():
    try:
        yield
    except FleetError as exc:
        raise click.ClickException(str(exc)) from exc


def _fleet(ctx) -> Fleet:
    if "fleet" not in ctx.obj:
        with _cli_errors():
            ctx.obj["fleet"] = Fleet(ctx.obj["settings"], console=console)
    return ctx.obj["fleet"]


@click.group()
@click.option(
    "--config",
    required=False,
    type=click.Path(),
    help=f"Path to a YAML configuration file. Defaults to {DEFAULT_CONFIG_FILE} if present.",
)
@click.option("--project-dir", required=False, type=click.Path(), help="Fleet installation directory.")
@click.option("--size", required=False, type=int, default=None, help="Number of workers.")
@click.option("--domain", required=False, help="DNS name the workers are reached through.")
@click.option(
    "--cf-api-token",
    required=False,
    envvar="DESKFLEET_CF_API_TOKEN",
    help="Cloudflare API token (or DESKFLEET_CF_API_TOKEN).",
)
@click.option(
    "--cf-zone-id",
    required=False,
    envvar="DESKFLEET_CF_ZONE_ID",
    help="Cloudflare zone id (or DESKFLEET_CF_ZONE_ID).",
)
@click.option("--verbose", is_flag=True, default=None, help="Enable verbose logging")
@click.option("--log-file", type=click.Path(), help="Path to log file")
@click.pass_context
def main(ctx, config, project_dir, size, domain, cf_api_token, cf_zone_id, verbose, log_file):
    """Provision and operate a fleet of isolated remote-desktop workers."""
    logger = logging.getLogger("deskfleet")

    try:
        config_loader = ConfigLoader()
        resolved_config = config
        if resolved_config is None:
            default_config_path = os.path.join(os.getcwd(), DEFAULT_CONFIG_FILE)
            if os.path.exists(default_config_path):
                resolved_config = default_config_path

        config_values = config_loader.load(resolved_config)
        settings = build_settings(
            config_values,
            project_dir=project_dir,
            size=size,
            domain=domain,
            cf_api_token=cf_api_token,
            cf_zone_id=cf_zone_id,
        )
    except FleetError as exc:
        raise click.ClickException(str(exc)) from exc

    verbose = bool(_resolve_option(verbose, config_values, "verbose", default=False))
    log_file = _resolve_option(log_file, config_values, "log_file")

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.setLevel(logging.DEBUG)
    else:
        logger.setLevel(logging.INFO)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.addHandler(file_handler)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@main.command()
@click.pass_context
def rebuild(ctx):
    """Tear down and rebuild the whole fleet on this host."""
    fleet = _fleet(ctx)
    rebuilder = FleetRebuilder(fleet, confirm=lambda prompt: click.confirm(prompt, default=False))
    raise SystemExit(rebuilder.run())


def _print_result(result):
    services = ", ".join(result.services) or "-"
    console.print(f"[green]{result.operation} {result.target or 'all'}:[/green] {services}")
    if result.detail:
        console.print(result.detail)


@main.command()
@click.argument("worker", required=False)
@click.pass_context
def start(ctx, worker):
    """Start all workers or one WORKER."""
    with _cli_errors():
        _print_result(_fleet(ctx).start(worker))


@main.command()
@click.argument("worker", required=False)
@click.pass_context
def stop(ctx, worker):
    """Stop and remove all workers or one WORKER."""
    with _cli_errors():
        _print_result(_fleet(ctx).stop(worker))


@main.command()
@click.argument("worker", required=False)
@click.pass_context
def restart(ctx, worker):
    """Restart all workers or one WORKER."""
    with _cli_errors():
        _print_result(_fleet(ctx).restart(worker))


@main.command()
@click.argument("worker", required=False)
@click.pass_context
def status(ctx, worker):
    """Show container status and resource usage."""
    with _cli_errors():
        observations = _fleet(ctx).status(worker)

    table = Table(title="Workers")
    table.add_column("Worker")
    table.add_column("Running")
    table.add_column("Status")
    table.add_column("Ports")
    table.add_column("CPU", justify="right")
    table.add_column("Memory", justify="right")
    for obs in observations:
        table.add_row(
            obs.name,
            "[green]yes[/green]" if obs.running else "[red]no[/red]",
            obs.status or "-",
            ", ".join(str(port) for port in sorted(obs.ports)) or "-",
            obs.cpu or "-",
            obs.memory or "-",
        )
    console.print(table)


@main.command()
@click.argument("worker")
@click.pass_context
def shell(ctx, worker):
    """Open an interactive shell inside WORKER."""
    with _cli_errors():
        _fleet(ctx).shell(worker)


@main.command()
@click.argument("worker")
@click.option("--follow", "-f", is_flag=True, help="Follow log output.")
@click.option("--tail", type=int, default=None, help="Number of lines to show from the end.")
@click.pass_context
def logs(ctx, worker, follow, tail):
    """Show container logs of WORKER."""
    with _cli_errors():
        _fleet(ctx).logs(worker, follow=follow, tail=tail)


@main.command()
@click.pass_context
def backup(ctx):
    """Stop the fleet, copy data/configs/scripts, start the fleet again."""
    with _cli_errors():
        result = _fleet(ctx).backup()
    console.print(f"[green]Backup written to {result.path}[/green] ({', '.join(result.copied) or 'nothing copied'})")


@main.command(name="update-dns")
@click.pass_context
def update_dns(ctx):
    """Point the DNS record at the current public address once."""
    with _cli_errors():
        outcome = _fleet(ctx).reconcile_dns()
    console.print(f"[green]{outcome.action}[/green] {outcome.name} -> {outcome.address}")


@main.command()
@click.pass_context
def ddns(ctx):
    """Run the DDNS timer loop in the foreground until SIGINT/SIGTERM."""
    fleet = _fleet(ctx)
    if fleet.scheduler is None:
        raise click.ClickException(fleet.manual_dns_hint())

    scheduler = fleet.scheduler
    scheduler.run_immediately = True

    def shutdown(signum, _frame):
        logging.getLogger("deskfleet").info("Received signal %s, stopping DDNS scheduler.", signum)
        scheduler.stop()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    fleet.pid_file.write()
    try:
        scheduler.run_forever()
    finally:
        fleet.pid_file.remove()


@main.command()
@click.option("--interval", type=float, default=5.0, show_default=True, help="Seconds between refreshes.")
@click.option("--iterations", type=int, default=None, help="Stop after this many refreshes.")
@click.pass_context
def monitor(ctx, interval, iterations):
    """Live view of containers, ports and DDNS state."""
    fleet = _fleet(ctx)
    try:
        fleet.monitor.watch(
            lambda snapshot: render_snapshot(console, snapshot, fleet.settings.domain),
            interval=interval,
            iterations=iterations,
        )
    except KeyboardInterrupt:
        console.print("Monitoring stopped.")


@main.command(name="config")
@click.argument("worker")
@click.pass_context
def configure_worker(ctx, worker):
    """Interactively write the configuration blob of WORKER."""
    fleet = _fleet(ctx)
    blob = {
        "targetSiteUrl": click.prompt("Target site URL"),
        "credentials": {
            "username": click.prompt("Site username"),
            "password": click.prompt("Site password", hide_input=True),
        },
        "fieldSelectors": {
            "username": click.prompt("Username field selector", default="input[name='email']"),
            "password": click.prompt("Password field selector", default="input[type='password']"),
            "submit": click.prompt("Submit button selector", default="button[type='submit']"),
        },
        "trackerUrl": click.prompt("Tracker URL"),
        "trackerCredentials": {
            "username": click.prompt("Tracker username"),
            "password": click.prompt("Tracker password", hide_input=True),
        },
    }
    with _cli_errors():
        path = fleet.save_worker_config(worker, blob)
    console.print(f"[green]Saved {path}[/green]. Run `deskfleet restart {worker}` to apply it.")


@main.command()
@click.argument("worker", required=False)
@click.pass_context
def connections(ctx, worker):
    """Show how to reach each worker."""
    with _cli_errors():
        items = _fleet(ctx).connections(worker)

    table = Table(title="Connections")
    table.add_column("Worker")
    table.add_column("Host")
    table.add_column("Desktop Port", justify="right")
    table.add_column("Shell Port", justify="right")
    for item in items:
        table.add_row(item.name, item.host, str(item.desktop_port), str(item.shell_port))
    console.print(table)


@main.command()
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def teardown(ctx, yes):
    """Remove every container of this fleet. Data and configs are kept."""
    fleet = _fleet(ctx)
    if not yes and not click.confirm(
        f"Remove all containers of compose project '{fleet.settings.compose_project}'?",
        default=False,
    ):
        console.print("Nothing removed.")
        return
    with _cli_errors():
        _print_result(fleet.teardown())


@main.command()
@click.pass_context
def verify(ctx):
    """Run the verification pass and exit non-zero when it fails."""
    with _cli_errors():
        report = _fleet(ctx).verify()
    for check in report.checks:
        marker = "[green]PASS[/green]" if check.passed else "[red]FAIL[/red]"
        console.print(f"{marker} {check.name}: {check.detail}")
    raise SystemExit(0 if report.passed else 1)


if __name__ == "__main__":
    main()
