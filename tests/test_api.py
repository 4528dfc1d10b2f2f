import time

import pytest
from fastapi.testclient import TestClient

from onebox.api.main import create_app
from onebox.application.sync.manager import SyncManager
from onebox.domain.models import DomainEvent, EventType
from onebox.infrastructure.event_bus import EventBus


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def client(registry, connections, ingest, policy, bus):
    manager = SyncManager(registry, connections, ingest, bus, policy)
    app = create_app(manager=manager, events=bus)
    with TestClient(app) as test_client:
        yield test_client


def _wait_for_state(client, account_id, state, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/accounts/{account_id}/status").json()
        if body.get("state") == state:
            return body
        time.sleep(0.02)
    raise AssertionError(f"{account_id} never reached {state}")


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["accounts"] == 1


def test_readiness_reports_connected_accounts(client):
    _wait_for_state(client, "acct-1", "listening")

    body = client.get("/health/ready").json()

    assert body["status"] == "ready"
    assert body["services"]["accounts"] == "1/1 connected"


def test_status_of_known_account(client):
    body = _wait_for_state(client, "acct-1", "listening")

    assert body["account_id"] == "acct-1"
    assert body["strategy"] == "listening"
    assert body["connected"] is True
    assert body["consecutive_failures"] == 0


def test_status_of_unknown_account_is_404(client):
    response = client.get("/accounts/nope/status")

    assert response.status_code == 404
    assert "nope" in response.json()["detail"]


def test_sync_request_is_accepted(client):
    _wait_for_state(client, "acct-1", "listening")

    response = client.post("/accounts/acct-1/sync")

    assert response.status_code == 202
    assert response.json() == {"account_id": "acct-1", "accepted": True, "state": "listening"}


def test_sync_request_for_unknown_account_is_404(client):
    assert client.post("/accounts/nope/sync").status_code == 404


def test_event_feed_streams_only_requested_account(client, bus):
    with client.websocket_connect("/ws/events?account_id=acct-9") as ws:
        assert ws.receive_json() == {"type": "subscribed", "account_id": "acct-9"}

        client.portal.call(bus.publish, DomainEvent(type=EventType.CONNECTED, account_id="acct-7"))
        client.portal.call(
            bus.publish,
            DomainEvent(type=EventType.EMAIL_INGESTED, account_id="acct-9", payload={"email_id": "e1"}),
        )

        message = ws.receive_json()

    assert message["type"] == "email.ingested"
    assert message["account_id"] == "acct-9"
    assert message["payload"] == {"email_id": "e1"}
