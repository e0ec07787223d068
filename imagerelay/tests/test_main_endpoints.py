"""Tests covering the FastAPI routes defined in :mod:`imagerelay.main`."""

from __future__ import annotations

import sqlite3
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from imagerelay.config import Settings
from imagerelay.errors import GenerationError
from imagerelay.main import RelayServices, create_app, get_relay_service
from imagerelay.quota import QuotaLedger, QuotaPolicy
from imagerelay.schemas import ClientQuotaRecord, QuotaTier
from imagerelay.storageservice.storageservice import StorageService

START = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

QUOTA_MESSAGE = "Daily limit exceeded for free users. Upgrade to pro for unlimited access."
MISSING_MESSAGE = "Both prompt and IP address are required."
INTERNAL_MESSAGE = "Internal server error. Please try again later."


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubRelay:
    """Test double emulating :class:`imagerelay.service.ImageRelayService`."""

    def __init__(self) -> None:
        self.prompts: list[str] = []
        self.error: Exception | None = None
        self.closed = False

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return f"https://cdn.example.com/images/{len(self.prompts)}.jpeg"

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def storage_service(tmp_path):
    service = StorageService(str(tmp_path / "relay.db"))
    try:
        yield service
    finally:
        service.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


def _make_app(storage_service: StorageService, clock: FakeClock, relay: StubRelay):
    ledger = QuotaLedger(storage_service, QuotaPolicy(), clock=clock)
    services = RelayServices(storage=storage_service, ledger=ledger, relay=relay)
    return create_app(Settings(upload_provider="s3", model_type="stable-diffusion-xl"), services)


@pytest.fixture
def client(storage_service, clock):
    """Yield a :class:`TestClient` backed by a real ledger and a stubbed relay."""

    stub = StubRelay()
    app = _make_app(storage_service, clock, stub)

    with TestClient(app) as test_client:
        test_client.app.state.stub_relay = stub
        yield test_client


def get_stub(client: TestClient) -> StubRelay:
    return client.app.state.stub_relay  # type: ignore[return-value]


def get_storage(client: TestClient) -> StorageService:
    return client.app.state.services.storage  # type: ignore[return-value]


def test_root_reports_server_running(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.text == "Server is running"
    assert response.headers["content-type"].startswith("text/plain")


def test_healthcheck_reports_backend_settings(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "modelType": "stable-diffusion-xl", "uploadProvider": "s3"}


@pytest.mark.parametrize(
    "params",
    [
        {"ip": "1.2.3.4"},
        {"prompt": "a castle"},
        {},
        {"prompt": "", "ip": "1.2.3.4"},
        {"prompt": "a castle", "ip": ""},
    ],
)
def test_prompt_requires_prompt_and_ip(client: TestClient, params: dict) -> None:
    response = client.get("/prompt", params=params)

    assert response.status_code == 400
    assert response.json() == {"error": MISSING_MESSAGE}
    assert get_stub(client).prompts == []
    assert get_storage(client).list_quota_records() == []


def test_prompt_returns_hosted_image_url(client: TestClient) -> None:
    response = client.get("/prompt", params={"prompt": "a castle in fog", "ip": "1.2.3.4"})

    assert response.status_code == 200
    assert response.json() == {"imageUrl": "https://cdn.example.com/images/1.jpeg"}
    assert get_stub(client).prompts == ["a castle in fog"]


def test_free_client_gets_three_images_then_forbidden(client: TestClient, clock: FakeClock) -> None:
    for i in range(1, 4):
        response = client.get("/prompt", params={"prompt": f"prompt {i}", "ip": "1.2.3.4"})
        assert response.status_code == 200
        assert response.json()["imageUrl"]
        clock.advance(hours=1)

    response = client.get("/prompt", params={"prompt": "prompt 4", "ip": "1.2.3.4"})

    assert response.status_code == 403
    assert response.json() == {"error": QUOTA_MESSAGE}
    assert len(get_stub(client).prompts) == 3
    assert get_storage(client).get_quota_record("1.2.3.4").requests_made == 3


def test_elapsed_window_admits_again(client: TestClient, clock: FakeClock) -> None:
    for _ in range(3):
        client.get("/prompt", params={"prompt": "p", "ip": "1.2.3.4"})
    assert client.get("/prompt", params={"prompt": "p", "ip": "1.2.3.4"}).status_code == 403

    clock.advance(hours=24)
    response = client.get("/prompt", params={"prompt": "p", "ip": "1.2.3.4"})

    assert response.status_code == 200
    assert get_storage(client).get_quota_record("1.2.3.4").requests_made == 1


def test_pro_client_is_never_limited(client: TestClient) -> None:
    get_storage(client).set_client_tier("9.9.9.9", QuotaTier.PRO, now=START)

    statuses = [client.get("/prompt", params={"prompt": "p", "ip": "9.9.9.9"}).status_code for _ in range(6)]

    assert statuses == [200] * 6


def test_orchestrator_failure_returns_generic_500_and_keeps_charge(client: TestClient) -> None:
    stub = get_stub(client)
    stub.error = GenerationError("Generation backend returned HTTP 502")

    response = client.get("/prompt", params={"prompt": "p", "ip": "1.2.3.4"})

    assert response.status_code == 500
    assert response.json() == {"error": INTERNAL_MESSAGE}
    assert "502" not in response.text
    assert get_storage(client).get_quota_record("1.2.3.4").requests_made == 1


def test_storage_failure_returns_500_without_generating(client: TestClient, monkeypatch) -> None:
    storage = get_storage(client)

    def _unavailable(client_id):
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(storage, "get_quota_record", _unavailable)

    response = client.get("/prompt", params={"prompt": "p", "ip": "1.2.3.4"})

    assert response.status_code == 500
    assert response.json() == {"error": INTERNAL_MESSAGE}
    assert get_stub(client).prompts == []


def test_prompt_uses_the_relay_dependency(client: TestClient) -> None:
    override = StubRelay()
    client.app.dependency_overrides[get_relay_service] = lambda: override
    try:
        response = client.get("/prompt", params={"prompt": "via override", "ip": "1.2.3.4"})
    finally:
        client.app.dependency_overrides.clear()

    assert response.status_code == 200
    assert override.prompts == ["via override"]
    assert get_stub(client).prompts == []


def test_quota_endpoint_reports_remaining_requests(client: TestClient) -> None:
    assert client.get("/quota", params={"ip": "1.2.3.4"}).json()["remaining"] == 3

    client.get("/prompt", params={"prompt": "p", "ip": "1.2.3.4"})
    body = client.get("/quota", params={"ip": "1.2.3.4"}).json()

    assert body["clientId"] == "1.2.3.4"
    assert body["tier"] == "free"
    assert body["requestsMade"] == 1
    assert body["limit"] == 3
    assert body["remaining"] == 2


def test_quota_endpoint_requires_ip(client: TestClient) -> None:
    response = client.get("/quota")

    assert response.status_code == 400
    assert response.json() == {"error": "IP address is required."}


def test_startup_purges_idle_free_records_and_shutdown_closes_relay(storage_service, clock) -> None:
    long_ago = START - timedelta(days=45)
    storage_service.save_quota_record(ClientQuotaRecord(client_id="idle", last_request_timestamp=long_ago, requests_made=3))
    storage_service.save_quota_record(
        ClientQuotaRecord(client_id="vip", last_request_timestamp=long_ago, requests_made=3, tier=QuotaTier.PRO)
    )
    stub = StubRelay()

    with TestClient(_make_app(storage_service, clock, stub)):
        remaining = [r.client_id for r in storage_service.list_quota_records()]

    assert remaining == ["vip"]
    assert stub.closed
