import logging
import uuid
from typing import Callable, Optional

from rich.console import Console

from .errors import CommandError, ExternalServiceError, FleetError, HostEnvironmentError
from .models import DesiredState, VerificationReport
from .services.manifest import ManifestService

console = Console()
logger = logging.getLogger("deskfleet")

CONFIRM_PROMPT = (
    "This tears down every container of compose project '{project}', resets the host firewall "
    "and rebuilds {size} workers. Continue?"
)


class FleetRebuilder:
    """Full convergence of one host: teardown, install, firewall, build, start, DNS, verify.

    Stages run strictly in order and the first fatal error aborts the rest.
    Once the pipeline has started, the verification pass still runs so the
    operator sees the state the host actually ended up in.
    """

    def __init__(self, fleet, confirm: Callable[[str], bool], rebuild_console: Optional[Console] = None):
        self.fleet = fleet
        self.settings = fleet.settings
        self.confirm = confirm
        self.console = rebuild_console or console
        self.manifest_service = ManifestService(manifest_file=fleet.manifest_file, logger=logger)
        self.current_step_name: Optional[str] = None
        self.report: Optional[VerificationReport] = None
        self.public_ip: Optional[str] = None

    def _run_step(self, name: str, callback, *args, **kwargs):
        self.manifest_service.stage_started(name)
        self.current_step_name = name
        self.console.print(f"[blue]{name.replace('_', ' ').capitalize()}...[/blue]")
        logger.info("Stage started: %s", name)

        try:
            result = callback(*args, **kwargs)
        except Exception as exc:
            self.manifest_service.stage_finished(name, "failed", error=str(exc))
            raise

        self.manifest_service.stage_finished(name, "success")
        self.current_step_name = None
        return result

    def _skip_step(self, name: str, reason: str):
        self.manifest_service.stage_started(name)
        self.manifest_service.stage_finished(name, "skipped", details={"reason": reason})
        logger.info("Stage skipped: %s (%s)", name, reason)

    def reconcile_dns(self):
        """One-shot DNS update. Never fatal for the rebuild."""
        if self.fleet.reconciler is None:
            hint = self.fleet.manual_dns_hint()
            self.console.print(f"[yellow]DDNS not configured.[/yellow] {hint}")
            logger.warning(hint)
            return None

        try:
            outcome = self.fleet.reconcile_dns()
        except ExternalServiceError as exc:
            self.console.print(f"[yellow]DNS update failed:[/yellow] {exc}")
            logger.warning("DNS update failed, continuing without it: %s", exc)
            return None

        self.public_ip = outcome.address
        self.console.print(f"[green]DNS {outcome.action}: {outcome.name} -> {outcome.address}[/green]")
        return outcome

    def install_ddns_service(self):
        """Leaves a DDNS daemon running after the rebuild. Failure is a warning."""
        try:
            unit_file = self.fleet.install_ddns_service()
        except (CommandError, HostEnvironmentError, OSError) as exc:
            self.console.print(f"[yellow]DDNS daemon not installed:[/yellow] {exc}")
            logger.warning("DDNS daemon not installed, DNS will not follow address changes: %s", exc)
            return None
        self.console.print(f"[green]DDNS daemon running ({unit_file}).[/green]")
        return unit_file

    def verify(self, desired: DesiredState) -> VerificationReport:
        report = self.fleet.verify(desired)
        self.report = report
        self.manifest_service.record_verification(report)

        for check in report.checks:
            marker = "[green]PASS[/green]" if check.passed else "[red]FAIL[/red]"
            self.console.print(f"{marker} {check.name}: {check.detail}")
        if report.passed:
            self.console.print("[bold green]Verification passed.[/bold green]")
        else:
            self.console.print("[bold red]Verification failed.[/bold red]")
        return report

    def run(self) -> int:
        exit_code = 1
        manifest_status = "failed"
        manifest_error: Optional[str] = None
        desired: Optional[DesiredState] = None
        pipeline_started = False

        try:
            logger.info("Starting DeskFleet rebuild...")
            desired = self.fleet.desired_state(fill_templates=True)

            prompt = CONFIRM_PROMPT.format(project=self.settings.compose_project, size=len(desired.workers))
            if not self.confirm(prompt):
                self.console.print("[yellow]Rebuild cancelled. Nothing was changed.[/yellow]")
                logger.info("Rebuild declined at confirmation gate")
                return exit_code

            pipeline_started = True
            self.manifest_service.start_run(
                run_id=uuid.uuid4().hex[:10],
                fleet={
                    "size": len(desired.workers),
                    "domain": self.settings.domain,
                    "workers": list(desired.names),
                    "ports": list(desired.worker_ports),
                },
            )

            self._run_step("teardown_previous_instance", self.fleet.teardown)
            if self.settings.install_dependencies:
                self._run_step("install_host_dependencies", self.fleet.install_host_dependencies)
            else:
                self._skip_step("install_host_dependencies", "install_dependencies is disabled")
            self._run_step("prepare_project_tree", self.fleet.prepare_project_tree, desired)
            self._run_step("sync_firewall", self.fleet.sync_firewall, desired)
            self._run_step("write_runtime_definition", self.fleet.write_runtime_definition, desired)
            self._run_step("build_images", self.fleet.build)
            self._run_step("start_fleet", self.fleet.start)
            self._run_step("reconcile_dns", self.reconcile_dns)
            if self.fleet.reconciler is None:
                self._skip_step("install_ddns_service", "DDNS not configured")
            else:
                self._run_step("install_ddns_service", self.install_ddns_service)
            self._run_step("write_guides", self.fleet.write_guides, desired, self.public_ip)

            manifest_status = "success"
            exit_code = 0

        except KeyboardInterrupt:
            self.console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            manifest_status = "aborted"
            manifest_error = "Operation cancelled by user."
        except FleetError as exc:
            stage = self.current_step_name or "compute_desired_state"
            self.console.print(f"[bold red]Error in stage '{stage}':[/bold red] {exc}")
            logger.error("Stage '%s' failed: %s", stage, exc)
            manifest_error = f"{stage}: {exc}"
        except Exception as exc:
            stage = self.current_step_name or "run"
            self.console.print(f"[bold red]Unexpected error in stage '{stage}':[/bold red] {exc}")
            logger.exception("Unexpected error")
            manifest_error = f"{stage}: {exc}"

        if not pipeline_started:
            return exit_code

        try:
            report = self._run_step("verification", self.verify, desired)
        except FleetError as exc:
            self.console.print(f"[bold red]Verification could not run:[/bold red] {exc}")
            logger.error("Verification could not run: %s", exc)
            report = None

        if exit_code == 0 and (report is None or not report.passed):
            manifest_status = "degraded"
            exit_code = 1
        self.manifest_service.finalize(manifest_status, error=manifest_error)
        return exit_code
