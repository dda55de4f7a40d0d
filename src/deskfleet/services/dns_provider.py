"""Cloudflare DNS provider client."""

from typing import Any, Dict, Optional

import requests

from deskfleet.constants import CLOUDFLARE_API_URL, DEFAULT_HTTP_TIMEOUT
from deskfleet.errors import ExternalServiceError
from deskfleet.models import DnsRecord


class CloudflareDnsProvider:
    """get-record / create-record / update-record against the Cloudflare v4 API."""

    SERVICE = "Cloudflare"

    def __init__(
        self,
        api_token: str,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        requests_module=requests,
        base_url: str = CLOUDFLARE_API_URL,
    ):
        self.api_token = api_token
        self.timeout = timeout
        self.requests = requests_module
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _request(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.requests.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except self.requests.RequestException as exc:
            raise ExternalServiceError(self.SERVICE, operation, str(exc)) from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400 or not isinstance(payload, dict) or not payload.get("success"):
            errors = payload.get("errors") if isinstance(payload, dict) else None
            raise ExternalServiceError(
                self.SERVICE,
                operation,
                f"HTTP {response.status_code}: {errors or 'unexpected response'}",
            )
        return payload

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> DnsRecord:
        return DnsRecord(
            id=data.get("id"),
            name=data.get("name", ""),
            content=data.get("content", ""),
            proxied=bool(data.get("proxied", False)),
            ttl=int(data.get("ttl") or 1),
            type=data.get("type", "A"),
        )

    def get_record(self, zone: str, name: str, type: str = "A") -> Optional[DnsRecord]:
        payload = self._request(
            "get_record",
            "GET",
            f"/zones/{zone}/dns_records",
            params={"type": type, "name": name},
        )
        results = payload.get("result") or []
        if not results:
            return None
        return self._to_record(results[0])

    def create_record(self, zone: str, record: DnsRecord) -> DnsRecord:
        payload = self._request(
            "create_record",
            "POST",
            f"/zones/{zone}/dns_records",
            json=record.payload(),
        )
        return self._to_record(payload.get("result") or {})

    def update_record(self, zone: str, record_id: str, record: DnsRecord) -> DnsRecord:
        payload = self._request(
            "update_record",
            "PUT",
            f"/zones/{zone}/dns_records/{record_id}",
            json=record.payload(),
        )
        return self._to_record(payload.get("result") or {})
