"""HTTP surface tests using FastAPI's TestClient."""

from urllib.parse import parse_qs
from urllib.parse import urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from launchpad.main import create_app

ADMIN = {"X-Admin-Key": "admin-secret"}


@pytest.fixture
def client(settings, fake_crm, userpilot):
    app = create_app(
        settings,
        crm_transport=httpx.MockTransport(fake_crm),
        analytics_transport=httpx.MockTransport(userpilot),
    )
    with TestClient(app) as c:
        yield c


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_status_defaults_for_new_tenant(client, fake_crm):
    resp = client.get("/api/onboarding/T1/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["locationId"] == "T1"
    assert body["shouldShowWidget"] is True
    assert body["allTasksCompleted"] is False
    # Unauthorized tenants are served from storage without platform calls.
    assert fake_crm.calls == []


def test_update_and_toggle(client):
    resp = client.post("/api/onboarding/T2/update", json={"domainConnected": True, "courseCreated": True})
    assert resp.status_code == 200
    assert resp.json()["domainConnected"] is True

    resp = client.post("/api/onboarding/T2/toggle", json={"field": "courseCreated"})
    assert resp.json()["courseCreated"] is False

    body = client.get("/api/onboarding/T2/status", params={"skipApiChecks": "true"}).json()
    assert body["domainConnected"] is True
    assert body["courseCreated"] is False


def test_unknown_field_is_rejected(client):
    resp = client.post("/api/onboarding/T3/update", json={"productAttached": True})
    assert resp.status_code == 400
    assert "productAttached" in resp.json()["detail"]

    resp = client.post("/api/onboarding/T3/toggle", json={"field": "locationVerified"})
    assert resp.status_code == 400


def test_dismiss_hides_widget(client):
    client.post("/api/onboarding/T4/update", json={"domainConnected": True})

    body = client.post("/api/onboarding/T4/dismiss").json()

    assert body["dismissed"] is True
    assert body["shouldShowWidget"] is False


def test_blank_tenant_id_is_rejected(client):
    assert client.get("/api/onboarding/%20/status").status_code == 400


def test_webhook_always_acknowledges(client):
    resp = client.post(
        "/api/webhooks/crm",
        json={"type": "DomainUpdate", "locationId": "T5", "data": {"domain": "example.com"}},
    )
    assert resp.status_code == 200
    assert resp.json() == {
        "received": True,
        "routed": True,
        "matched": ["domain"],
        "changed": {"domainConnected": True},
    }

    resp = client.post("/api/webhooks/crm", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 200
    assert resp.json()["routed"] is False

    body = client.get("/api/onboarding/T5/status", params={"skipApiChecks": "true"}).json()
    assert body["domainConnected"] is True


def test_check_products_marks_course(client, fake_crm):
    client.get("/oauth/callback", params={"code": "abc"})
    fake_crm.products["loc-installed"] = [{"id": "prod-1"}]

    body = client.post("/api/onboarding/loc-installed/check-products").json()

    assert body["courseCreated"] is True


def test_reset_requires_admin_key(client):
    client.post("/api/onboarding/T6/update", json={"courseCreated": True})

    assert client.post("/api/onboarding/T6/reset").status_code == 401
    assert client.post("/api/onboarding/T6/reset", headers={"X-Admin-Key": "wrong"}).status_code == 401

    resp = client.post("/api/onboarding/T6/reset", headers=ADMIN)
    assert resp.status_code == 200
    assert resp.json()["courseCreated"] is False


def test_oauth_install_round_trip(client):
    resp = client.get("/oauth/install", follow_redirects=False)
    assert resp.status_code == 302
    query = parse_qs(urlparse(resp.headers["location"]).query)
    assert query["client_id"] == ["client-id"]
    state = query["state"][0]

    resp = client.get("/oauth/callback", params={"code": "abc", "state": state})
    assert resp.json() == {
        "success": True,
        "tokenType": "location",
        "locationId": "loc-installed",
        "companyId": "co-installed",
    }

    # States are single use.
    assert client.get("/oauth/callback", params={"code": "abc", "state": state}).status_code == 400

    installation = client.get("/api/installation/loc-installed").json()
    assert installation == {"authorized": True, "tokenType": "location", "errorMessage": None}

    tenants = client.get("/api/parents/co-installed/tenants").json()
    assert [t["tenantId"] for t in tenants["tenants"]] == ["loc-installed"]


def test_token_exchange_failure_is_bad_gateway(client, fake_crm):
    fake_crm.refresh_status = 400
    assert client.get("/oauth/callback", params={"code": "bad"}).status_code == 502


def test_installation_for_unknown_tenant(client):
    body = client.get("/api/installation/nobody").json()

    assert body["authorized"] is False
    assert body["errorMessage"].startswith("Agency administrator needs to authorize")


def test_uninstall_and_deactivate_require_admin(client):
    client.get("/oauth/callback", params={"code": "abc"})

    assert client.delete("/api/installation/loc-installed").status_code == 401
    assert client.delete("/api/installation/loc-installed", headers=ADMIN).json() == {
        "credentialDeleted": True,
        "statusDeleted": False,
    }

    resp = client.post("/api/tenants/loc-installed/deactivate", headers=ADMIN)
    assert resp.json() == {"tenantId": "loc-installed", "active": False}
    assert client.get("/api/parents/co-installed/stats").json() == {
        "parentAccountId": "co-installed",
        "total": 1,
        "active": 0,
        "inactive": 1,
    }
    assert client.post("/api/tenants/unknown/deactivate", headers=ADMIN).status_code == 404


def test_verify_unknown_tenant_is_not_found(client):
    assert client.post("/api/tenants/loc-x/verify").status_code == 404


def test_metrics_exposes_counters(client):
    client.post("/api/webhooks/crm", json={"type": "ProductCreate", "locationId": "T7"})

    body = client.get("/metrics").text

    assert "launchpad_webhook_events_total" in body
    assert "launchpad_status_broadcasts_total" in body


def test_client_config(client, settings):
    body = client.get("/api/config").json()

    assert body == {"apiBase": "http://testserver", "environment": settings.environment, "userpilotToken": "up-key"}


def test_client_config_prefers_public_base_url(client, settings):
    settings.override(public_base_url="https://widget.example.com")

    assert client.get("/api/config").json()["apiBase"] == "https://widget.example.com"


def test_location_context(client, fake_crm):
    client.get("/oauth/callback", params={"code": "abc"})
    fake_crm.add_location("loc-installed", "fresh-access-1", name="Bakery", companyId="co-installed", city="Oslo")

    body = client.get("/api/location-context", params={"locationId": "loc-installed"}).json()

    assert body["locationId"] == "loc-installed"
    assert body["name"] == "Bakery"
    assert body["companyId"] == "co-installed"
    assert body["city"] == "Oslo"
    assert body["email"] == ""


def test_location_context_errors(client, fake_crm):
    assert client.get("/api/location-context").status_code == 400
    assert client.get("/api/location-context", params={"locationId": "nobody"}).status_code == 401

    client.get("/oauth/callback", params={"code": "abc"})
    fake_crm.timeout_paths = ("/locations/",)
    assert client.get("/api/location-context", params={"locationId": "loc-installed"}).status_code == 502


def test_agency_status_after_agency_install(client, fake_crm):
    assert client.get("/api/agency/status").json() == {"authorized": False, "installation": None}

    fake_crm.install_user_type = "Company"
    resp = client.get("/oauth/callback", params={"code": "abc"})
    assert resp.json()["tokenType"] == "agency"

    body = client.get("/api/agency/status").json()
    assert body["authorized"] is True
    assert body["installation"]["accountId"] == "co-installed"
    assert body["installation"]["expiresAt"] is not None
    assert body["installation"]["createdAt"] is not None

    assert client.get("/api/agency/status", params={"companyId": "other-co"}).json()["authorized"] is False


def test_sub_account_lookup(client):
    assert client.get("/api/sub-accounts/loc-installed").status_code == 404

    client.get("/oauth/callback", params={"code": "abc"})

    body = client.get("/api/sub-accounts/loc-installed").json()
    assert body["success"] is True
    assert body["subAccount"]["parentAccountId"] == "co-installed"
    assert body["subAccount"]["active"] is True
