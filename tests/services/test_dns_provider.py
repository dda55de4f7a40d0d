import pytest
import requests

from deskfleet.errors import ExternalServiceError
from deskfleet.models import DnsRecord
from deskfleet.services.dns_provider import CloudflareDnsProvider


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeRequests:
    RequestException = requests.RequestException

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def make_provider(responses):
    fake = FakeRequests(responses)
    return CloudflareDnsProvider(api_token="secret", timeout=3, requests_module=fake, base_url="https://api.test/v4"), fake


def test_get_record_returns_first_match():
    provider, fake = make_provider(
        [
            FakeResponse(
                200,
                {
                    "success": True,
                    "result": [{"id": "rec1", "name": "f.example.com", "content": "1.2.3.4", "ttl": 120, "type": "A"}],
                },
            )
        ]
    )

    record = provider.get_record("zone1", "f.example.com")

    assert record == DnsRecord(id="rec1", name="f.example.com", content="1.2.3.4", ttl=120)
    method, url, kwargs = fake.calls[0]
    assert method == "GET"
    assert url == "https://api.test/v4/zones/zone1/dns_records"
    assert kwargs["params"] == {"type": "A", "name": "f.example.com"}
    assert kwargs["headers"]["Authorization"] == "Bearer secret"
    assert kwargs["timeout"] == 3


def test_get_record_absent_returns_none():
    provider, _ = make_provider([FakeResponse(200, {"success": True, "result": []})])

    assert provider.get_record("zone1", "f.example.com") is None


def test_create_and_update_send_record_payload():
    created = {"success": True, "result": {"id": "new", "name": "f.example.com", "content": "5.6.7.8", "ttl": 120}}
    provider, fake = make_provider([FakeResponse(200, created), FakeResponse(200, created)])
    record = DnsRecord(name="f.example.com", content="5.6.7.8")

    assert provider.create_record("zone1", record).id == "new"
    provider.update_record("zone1", "rec1", record)

    assert fake.calls[0][0] == "POST"
    assert fake.calls[0][2]["json"] == {
        "type": "A",
        "name": "f.example.com",
        "content": "5.6.7.8",
        "ttl": 120,
        "proxied": False,
    }
    assert fake.calls[1][0] == "PUT"
    assert fake.calls[1][1].endswith("/zones/zone1/dns_records/rec1")


def test_api_error_names_operation():
    provider, _ = make_provider([FakeResponse(403, {"success": False, "errors": [{"message": "denied"}]})])

    with pytest.raises(ExternalServiceError, match="create_record") as excinfo:
        provider.create_record("zone1", DnsRecord(name="f", content="1.1.1.1"))
    assert excinfo.value.service == "Cloudflare"


def test_transport_error_is_external_service_error():
    provider, _ = make_provider([requests.ConnectionError("unreachable")])

    with pytest.raises(ExternalServiceError, match="unreachable"):
        provider.get_record("zone1", "f.example.com")


def test_non_json_body_is_rejected():
    provider, _ = make_provider([FakeResponse(200, ValueError("no json"))])

    with pytest.raises(ExternalServiceError):
        provider.get_record("zone1", "f.example.com")
