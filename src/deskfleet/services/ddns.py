"""Dynamic DNS reconciliation and its timer loop."""

import json
import os
import random
import signal
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from deskfleet.constants import DEFAULT_DDNS_INTERVAL_SECONDS, DEFAULT_DDNS_JITTER_SECONDS, DEFAULT_DDNS_TTL
from deskfleet.errors import ExternalServiceError
from deskfleet.models import DdnsTickOutcome, DnsRecord


class DdnsEventLog:
    """Append-only JSON-lines log of DDNS decisions."""

    def __init__(self, path: str, logger):
        self.path = path
        self.logger = logger

    def append(self, outcome: DdnsTickOutcome) -> Dict[str, Any]:
        event = {"timestamp": datetime.now(timezone.utc).isoformat()}
        event.update(asdict(outcome))
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as file_obj:
                file_obj.write(json.dumps(event, sort_keys=True) + "\n")
        except OSError as exc:
            self.logger.warning("Could not append DDNS event to '%s': %s", self.path, exc)
        return event

    def last(self) -> Optional[Dict[str, Any]]:
        try:
            with open(self.path, "r", encoding="utf-8") as file_obj:
                lines = [line for line in file_obj.read().splitlines() if line.strip()]
        except OSError:
            return None
        if not lines:
            return None
        try:
            return json.loads(lines[-1])
        except json.JSONDecodeError:
            return None


class DdnsReconciler:
    """Keeps one A record pointed at the host's current public address."""

    def __init__(
        self,
        provider,
        discover: Callable[[], str],
        zone_id: str,
        name: str,
        logger,
        event_log: Optional[DdnsEventLog] = None,
        ttl: int = DEFAULT_DDNS_TTL,
        proxied: bool = False,
    ):
        self.provider = provider
        self.discover = discover
        self.zone_id = zone_id
        self.name = name
        self.logger = logger
        self.event_log = event_log
        self.ttl = ttl
        self.proxied = proxied
        self._lock = threading.Lock()

    def reconcile(self) -> DdnsTickOutcome:
        """One create-or-update decision. Raises ExternalServiceError on failure."""
        with self._lock:
            try:
                outcome = self._decide()
            except ExternalServiceError as exc:
                self._record(DdnsTickOutcome(action="skipped", name=self.name, error=str(exc)))
                raise
            self._record(outcome)
            return outcome

    def tick(self) -> DdnsTickOutcome:
        try:
            return self.reconcile()
        except ExternalServiceError as exc:
            return DdnsTickOutcome(action="skipped", name=self.name, error=str(exc))

    def _decide(self) -> DdnsTickOutcome:
        address = self.discover()
        existing = self.provider.get_record(self.zone_id, self.name, "A")
        wanted = DnsRecord(name=self.name, content=address, proxied=self.proxied, ttl=self.ttl)

        if existing is None:
            created = self.provider.create_record(self.zone_id, wanted)
            return DdnsTickOutcome(action="created", name=self.name, address=address, record_id=created.id)

        if existing.content != address:
            self.provider.update_record(self.zone_id, existing.id, wanted)
            return DdnsTickOutcome(
                action="updated",
                name=self.name,
                address=address,
                previous=existing.content,
                record_id=existing.id,
            )

        return DdnsTickOutcome(action="unchanged", name=self.name, address=address, record_id=existing.id)

    def _record(self, outcome: DdnsTickOutcome):
        if outcome.action == "created":
            self.logger.info("Created A record %s -> %s", outcome.name, outcome.address)
        elif outcome.action == "updated":
            self.logger.info("Updated %s: %s -> %s", outcome.name, outcome.previous, outcome.address)
        elif outcome.action == "unchanged":
            self.logger.info("Address unchanged for %s: %s", outcome.name, outcome.address)
        else:
            self.logger.warning("Skipped DDNS update for %s: %s", outcome.name, outcome.error)

        if self.event_log is not None:
            self.event_log.append(outcome)


class DdnsScheduler:
    """Runs DdnsReconciler.tick on a fixed interval plus random jitter.

    Two states: idle between ticks and updating while a tick runs. `stop()`
    prevents new ticks and waits for an in-flight one to finish.
    """

    IDLE = "idle"
    UPDATING = "updating"

    def __init__(
        self,
        reconciler: DdnsReconciler,
        logger,
        interval: float = DEFAULT_DDNS_INTERVAL_SECONDS,
        jitter: float = DEFAULT_DDNS_JITTER_SECONDS,
        rng: Optional[random.Random] = None,
        run_immediately: bool = False,
    ):
        self.reconciler = reconciler
        self.logger = logger
        self.interval = max(0.0, float(interval))
        self.jitter = max(0.0, float(jitter))
        self.rng = rng or random.Random()
        self.run_immediately = run_immediately
        self.state = self.IDLE
        self.ticks = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def next_delay(self) -> float:
        if self.jitter <= 0:
            return self.interval
        return self.interval + self.rng.uniform(0, self.jitter)

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="deskfleet-ddns", daemon=True)
        self._thread.start()

    def run_forever(self):
        self._stop_event.clear()
        self._running = True
        self._loop()

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout)

    def is_active(self) -> bool:
        return self._running and not self._stop_event.is_set()

    def _loop(self):
        self.logger.info("DDNS scheduler started for %s (every %ss).", self.reconciler.name, self.interval)
        try:
            if self.run_immediately and not self._stop_event.is_set():
                self._run_tick()
            while not self._stop_event.wait(self.next_delay()):
                self._run_tick()
        finally:
            self._running = False
            self.state = self.IDLE
            self.logger.info("DDNS scheduler stopped.")

    def _run_tick(self):
        self.state = self.UPDATING
        try:
            self.reconciler.tick()
        except Exception:
            self.logger.exception("Unexpected error during DDNS tick")
        finally:
            self.ticks += 1
            self.state = self.IDLE


class DdnsPidFile:
    """Tracks the standalone DDNS daemon so a rebuild can stop a previous one."""

    def __init__(self, path: str, logger, kill: Callable[[int, int], None] = os.kill):
        self.path = path
        self.logger = logger
        self.kill = kill

    def write(self, pid: Optional[int] = None):
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as file_obj:
            file_obj.write(f"{pid or os.getpid()}\n")

    def read(self) -> Optional[int]:
        try:
            with open(self.path, "r", encoding="utf-8") as file_obj:
                return int(file_obj.read().strip())
        except (OSError, ValueError):
            return None

    def remove(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    def is_running(self) -> bool:
        pid = self.read()
        if pid is None:
            return False
        try:
            self.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # process exists but belongs to another user
            return True
        return True

    def terminate_running(self) -> bool:
        pid = self.read()
        if pid is None:
            return False
        try:
            self.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self.logger.debug("Stale DDNS pid file for %s", pid)
            self.remove()
            return False
        except PermissionError as exc:
            self.logger.warning("Cannot signal DDNS daemon %s: %s", pid, exc)
            return False
        self.logger.info("Sent SIGTERM to previous DDNS daemon (pid %s).", pid)
        self.remove()
        return True
