"""Public IPv4 address discovery."""

import ipaddress
from typing import List, Sequence

import requests

from deskfleet.constants import DEFAULT_ADDRESS_SOURCES, DEFAULT_HTTP_TIMEOUT
from deskfleet.errors import ExternalServiceError


class AddressDiscovery:
    """Returns the first valid IPv4 address reported by a list of echo services."""

    def __init__(
        self,
        logger,
        sources: Sequence[str] = DEFAULT_ADDRESS_SOURCES,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        requests_module=requests,
    ):
        self.logger = logger
        self.sources = tuple(sources)
        self.timeout = timeout
        self.requests = requests_module

    def __call__(self) -> str:
        return self.discover()

    def discover(self) -> str:
        failures: List[str] = []
        for source in self.sources:
            try:
                response = self.requests.get(source, timeout=self.timeout)
                response.raise_for_status()
                candidate = response.text.strip()
                address = ipaddress.IPv4Address(candidate)
            except self.requests.RequestException as exc:
                failures.append(f"{source}: {exc}")
                continue
            except ValueError:
                failures.append(f"{source}: not an IPv4 address")
                continue

            self.logger.debug("Public address %s reported by %s", address, source)
            return str(address)

        detail = "; ".join(failures) or "no sources configured"
        raise ExternalServiceError("address discovery", "discover", detail)
