"""Subprocess execution for host-side commands (docker, ufw, apt)."""

import subprocess
import time
from typing import Iterable, List, Optional

from deskfleet.errors import CommandError, HostEnvironmentError


class CommandRunner:
    """Runs one external command with bounded timeouts and optional retries.

    Every failure mode is mapped onto the fleet error hierarchy: a missing
    binary is a HostEnvironmentError, anything else is a CommandError that
    carries the command, its exit code and captured stderr.
    """

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        effective = self.default_timeout if timeout is None else timeout
        if effective is not None and effective <= 0:
            # interactive sessions and followed logs run until the user leaves
            return None
        return effective

    def _execute(self, cmd: List[str], capture_output: bool, timeout: Optional[float]):
        try:
            return self.subprocess.run(cmd, text=True, capture_output=capture_output, timeout=timeout)
        except FileNotFoundError as exc:
            raise HostEnvironmentError(
                f"Required command not found: {cmd[0]}.",
                hint=f"Install {cmd[0]} and try again.",
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise CommandError(
                f"Command timed out after {timeout}s: {' '.join(cmd)}",
                cmd=cmd,
                timed_out=True,
            ) from exc
        except OSError as exc:
            raise CommandError(f"Failed to execute command: {' '.join(cmd)}. {exc}", cmd=cmd) from exc

    @staticmethod
    def _failure(cmd: List[str], result, capture_output: bool) -> CommandError:
        stderr = (result.stderr or "").strip() if capture_output else ""
        message = f"Command failed ({result.returncode}): {' '.join(cmd)}"
        if stderr:
            message = f"{message}\n{stderr}"
        return CommandError(message, cmd=cmd, returncode=result.returncode, stderr=stderr)

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
        retry_count: int = 0,
        retry_backoff_seconds: float = 0.0,
        retry_on_returncodes: Optional[Iterable[int]] = None,
    ) -> subprocess.CompletedProcess:
        self.logger.debug("Executing: %s", " ".join(cmd))

        effective_timeout = self._timeout(timeout)
        attempts = max(1, retry_count + 1)
        retry_codes = set(retry_on_returncodes or ())

        attempt = 0
        while True:
            attempt += 1
            last_attempt = attempt >= attempts

            try:
                result = self._execute(cmd, capture_output, effective_timeout)
            except CommandError as exc:
                if not exc.timed_out or last_attempt:
                    raise
                self.logger.warning(
                    "Attempt %s/%s timed out, retrying in %.1fs: %s",
                    attempt,
                    attempts,
                    retry_backoff_seconds,
                    " ".join(cmd),
                )
                time.sleep(retry_backoff_seconds)
                continue

            if capture_output and result.stdout:
                self.logger.debug("Command output: %s", result.stdout.strip())
            if result.returncode == 0:
                return result

            failure = self._failure(cmd, result, capture_output)
            if not last_attempt and (not retry_codes or result.returncode in retry_codes):
                self.logger.warning(
                    "Attempt %s/%s failed, retrying in %.1fs.\n%s",
                    attempt,
                    attempts,
                    retry_backoff_seconds,
                    failure,
                )
                time.sleep(retry_backoff_seconds)
                continue

            if check:
                raise failure
            self.logger.debug(str(failure))
            return result
