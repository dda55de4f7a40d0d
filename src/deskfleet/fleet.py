import logging
import os
import subprocess
from typing import Dict, List, Optional

import requests
from rich.console import Console

from .constants import DDNS_EVENT_LOG, DDNS_PID_FILE, DDNS_SETTINGS_FILE, REBUILD_MANIFEST
from .errors import ConfigError, ExternalServiceError, NotFoundError
from .errors_catalog import actionable_error
from .models import (
    BackupResult,
    DdnsTickOutcome,
    DesiredState,
    FleetSettings,
    LifecycleResult,
    RuntimeObservation,
    SyncResult,
    VerificationReport,
    WorkerConnection,
)
from .services.address_discovery import AddressDiscovery
from .services.command_runner import CommandRunner
from .services.ddns import DdnsEventLog, DdnsPidFile, DdnsReconciler, DdnsScheduler
from .services.ddns_service import DdnsServiceInstaller
from .services.desired_state import DesiredStateBuilder
from .services.dns_provider import CloudflareDnsProvider
from .services.docker_runtime import ComposeRuntime
from .services.filesystem import FileSystemService
from .services.firewall import FirewallSynchronizer
from .services.guides import GuideWriter, detect_local_ip
from .services.host_setup import HostSetupService
from .services.lifecycle import FleetLifecycleManager
from .services.monitor import MonitorService
from .services.ports import worker_name
from .services.probe import PortProber
from .services.verification import VerificationService
from .services.worker_config import WorkerConfigStore

logger = logging.getLogger("deskfleet")


class Fleet:
    """Lifecycle API over one fleet installation.

    Every method returns a structured result or raises a FleetError subclass;
    nothing here prints. Desired state is recomputed from configuration on
    each call.
    """

    def __init__(
        self,
        settings: FleetSettings,
        console: Optional[Console] = None,
        requests_module=requests,
        subprocess_module=subprocess,
        fleet_logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.layout = settings.layout()
        self.logger = fleet_logger or logger
        self.console = console or Console()

        self.command_runner = CommandRunner(
            logger=self.logger,
            default_timeout=settings.command_timeout,
            subprocess_module=subprocess_module,
        )
        self.filesystem_service = FileSystemService(logger=self.logger, console=self.console)
        self.config_store = WorkerConfigStore(self.layout, self.logger, worker_prefix=settings.worker_prefix)
        self.state_builder = DesiredStateBuilder(
            self.layout,
            admin_ports=settings.administrative_ports,
            worker_prefix=settings.worker_prefix,
        )
        self.firewall = FirewallSynchronizer(run_cmd=self._run_cmd, logger=self.logger)
        self.runtime = ComposeRuntime(
            run_cmd=self._run_cmd,
            logger=self.logger,
            compose_file=self.layout.compose_file,
            project_name=settings.compose_project,
            image=settings.image,
            build_context=self.layout.dockerfiles_dir,
            desktop_container_port=settings.desktop_container_port,
            shell_container_port=settings.shell_container_port,
            build_timeout=settings.build_timeout,
            subprocess_module=subprocess_module,
        )
        self.lifecycle = FleetLifecycleManager(
            runtime=self.runtime,
            layout=self.layout,
            filesystem=self.filesystem_service,
            logger=self.logger,
            desired_state=self.desired_state,
        )
        self.host_setup = HostSetupService(run_cmd=self._run_cmd, logger=self.logger, console=self.console)
        self.prober = PortProber(timeout=settings.probe_timeout)
        self.discovery = AddressDiscovery(
            logger=self.logger,
            sources=settings.address_sources,
            timeout=settings.http_timeout,
            requests_module=requests_module,
        )
        self.event_log = DdnsEventLog(os.path.join(self.layout.logs_dir, DDNS_EVENT_LOG), self.logger)
        self.pid_file = DdnsPidFile(os.path.join(self.layout.run_dir, DDNS_PID_FILE), self.logger)
        self.ddns_settings_file = os.path.join(self.layout.run_dir, DDNS_SETTINGS_FILE)
        self.ddns_service = DdnsServiceInstaller(
            run_cmd=self._run_cmd,
            logger=self.logger,
            unit_name=f"{settings.compose_project}-ddns.service",
        )
        self.manifest_file = os.path.join(self.layout.logs_dir, REBUILD_MANIFEST)

        self.reconciler: Optional[DdnsReconciler] = None
        self.scheduler: Optional[DdnsScheduler] = None
        if settings.ddns_configured:
            provider = CloudflareDnsProvider(
                api_token=settings.cf_api_token,
                timeout=settings.http_timeout,
                requests_module=requests_module,
            )
            self.reconciler = DdnsReconciler(
                provider=provider,
                discover=self.discovery,
                zone_id=settings.cf_zone_id,
                name=settings.domain,
                logger=self.logger,
                event_log=self.event_log,
                ttl=settings.ddns_ttl,
                proxied=settings.ddns_proxied,
            )
            self.scheduler = DdnsScheduler(
                self.reconciler,
                self.logger,
                interval=settings.ddns_interval_seconds,
                jitter=settings.ddns_jitter_seconds,
            )

        self.verification = VerificationService(
            runtime=self.runtime,
            lifecycle=self.lifecycle,
            prober=self.prober,
            firewall=self.firewall,
            ddns_active=self.ddns_active,
            logger=self.logger,
        )
        self.monitor = MonitorService(
            lifecycle=self.lifecycle,
            prober=self.prober,
            event_log=self.event_log,
            logger=self.logger,
            discover=self.discovery,
        )
        self.guides = GuideWriter(self.layout, self.logger)

    def _run_cmd(self, cmd: List[str], check: bool = True, capture_output: bool = False, **kwargs):
        return self.command_runner.run(cmd, check=check, capture_output=capture_output, **kwargs)

    def desired_state(self, fill_templates: bool = False) -> DesiredState:
        """Builds the desired state from configuration and the per-worker blobs.

        With `fill_templates`, workers without a blob on disk get the stock
        template instead of failing; a rebuild writes those templates out.
        """
        spec = self.settings.fleet_spec()
        blobs: Dict[int, dict] = self.config_store.load_all(max(spec.size, 0))
        if fill_templates:
            for index in range(1, spec.size + 1):
                if index not in blobs:
                    blobs[index] = self.config_store.template(worker_name(index, self.settings.worker_prefix))
        return self.state_builder.build(spec, blobs)

    def ddns_active(self) -> bool:
        if self.scheduler is not None and self.scheduler.is_active():
            return True
        return self.ddns_service.is_active() or self.pid_file.is_running()

    # Host-side convergence steps used by the rebuild orchestrator.

    def install_host_dependencies(self):
        self.host_setup.install(self.settings.host_packages)

    def prepare_project_tree(self, desired: DesiredState) -> List[str]:
        created = self.filesystem_service.prepare_layout(self.layout, desired.names)
        self.config_store.ensure_templates(len(desired.workers))
        self.runtime.ensure_build_context()
        return created

    def sync_firewall(self, desired: DesiredState) -> SyncResult:
        return self.firewall.sync(desired)

    def write_runtime_definition(self, desired: DesiredState) -> str:
        return self.runtime.write_definition(desired)

    def build(self) -> LifecycleResult:
        return self.lifecycle.build()

    def install_ddns_service(self) -> Optional[str]:
        """Hands DDNS over to a systemd unit that keeps running after this process."""
        if not self.settings.ddns_configured:
            return None
        return self.ddns_service.install(self.settings, self.ddns_settings_file)

    def stop_ddns_scheduler(self, timeout: Optional[float] = None):
        if self.scheduler is not None:
            self.scheduler.stop(timeout)

    def write_guides(self, desired: DesiredState, public_ip: Optional[str] = None) -> List[str]:
        local_ip = self.settings.server_local_ip or detect_local_ip()
        return self.guides.write(desired, self.settings.domain, local_ip, public_ip)

    def manual_dns_hint(self) -> str:
        try:
            address = self.discovery.discover()
        except ExternalServiceError:
            address = "<public IP>"
        return actionable_error("dns_not_configured", domain=self.settings.domain, address=address)

    # Lifecycle API

    def start(self, target: Optional[str] = None) -> LifecycleResult:
        return self.lifecycle.up(target)

    def stop(self, target: Optional[str] = None) -> LifecycleResult:
        return self.lifecycle.down(target)

    def restart(self, target: Optional[str] = None) -> LifecycleResult:
        return self.lifecycle.restart(target)

    def status(self, target: Optional[str] = None) -> List[RuntimeObservation]:
        return self.lifecycle.status(target)

    def shell(self, target: str) -> LifecycleResult:
        return self.lifecycle.shell(target)

    def logs(self, target: Optional[str] = None, follow: bool = False, tail: Optional[int] = None) -> LifecycleResult:
        return self.lifecycle.logs(target, follow=follow, tail=tail)

    def backup(self) -> BackupResult:
        return self.lifecycle.backup()

    def reconcile_dns(self) -> DdnsTickOutcome:
        if self.reconciler is None:
            raise ConfigError(self.manual_dns_hint())
        return self.reconciler.reconcile()

    def connections(self, target: Optional[str] = None) -> List[WorkerConnection]:
        desired = self.desired_state(fill_templates=True)
        workers = desired.workers
        if target is not None:
            worker = desired.worker(target)
            if worker is None:
                raise NotFoundError(f"Unknown worker '{target}'. Known workers: {', '.join(desired.names) or '<none>'}.")
            workers = (worker,)
        return [self.guides.connection(worker, self.settings.domain) for worker in workers]

    def save_worker_config(self, target: str, blob: dict) -> str:
        names = [worker_name(index, self.settings.worker_prefix) for index in range(1, self.settings.size + 1)]
        if target not in names:
            raise NotFoundError(f"Unknown worker '{target}'. Known workers: {', '.join(names) or '<none>'}.")
        return self.config_store.save(target, blob)

    def teardown(self) -> LifecycleResult:
        self.stop_ddns_scheduler()
        self.ddns_service.stop()
        self.pid_file.terminate_running()
        return self.lifecycle.teardown()

    def verify(self, desired: Optional[DesiredState] = None) -> VerificationReport:
        return self.verification.verify(desired or self.desired_state())
