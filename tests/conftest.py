import os

# Set *before* any project imports so settings validation is relaxed.
os.environ["TESTING"] = "1"

from cryptography.fernet import Fernet  # noqa: E402

os.environ.setdefault("FERNET_SECRET", Fernet.generate_key().decode())

import asyncio  # noqa: E402
from datetime import timedelta  # noqa: E402
from urllib.parse import parse_qs  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from launchpad.config import get_settings  # noqa: E402
from launchpad.core.services import build_services  # noqa: E402
from launchpad.database import initialize_database  # noqa: E402
from launchpad.database import make_engine  # noqa: E402
from launchpad.database import make_sessionmaker  # noqa: E402
from launchpad.models.enums import CredentialKind  # noqa: E402
from launchpad.services.credential_store import Credential  # noqa: E402
from launchpad.services.credential_store import parent_subject_id  # noqa: E402
from launchpad.utils.time import utc_now  # noqa: E402


class FakeCrm:
    """In-memory stand-in for the CRM platform, served via httpx.MockTransport.

    * ``locations[tenant_id] = (parent_token, location_dict)``: only the
      owning parent's token (or the tenant's own token) may read it.
    * ``products[tenant_id]``: list returned by the products endpoint.
    * ``refresh_status``: status code returned by the token endpoint.
    """

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.locations: dict[str, tuple[set[str], dict]] = {}
        self.products: dict[str, list] = {}
        self.refresh_status = 200
        self.refresh_issues_new_refresh_token = True
        self.refresh_delay = 0.0
        self.location_status: int | None = None
        # Path prefixes whose requests raise httpx.ReadTimeout.
        self.timeout_paths: tuple[str, ...] = ()
        self.install_user_type = "Location"
        self.token_forms: list[dict[str, str]] = []
        self._issued = 0

    # -- helpers -----------------------------------------------------------
    def add_location(self, tenant_id: str, *tokens: str, **fields) -> None:
        self.locations[tenant_id] = (set(tokens), {"id": tenant_id, **fields})

    def count(self, method: str, prefix: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p.startswith(prefix))

    @property
    def refresh_calls(self) -> int:
        return sum(1 for form in self.token_forms if form.get("grant_type") == "refresh_token")

    # -- transport handler -------------------------------------------------
    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if self.timeout_paths and path.startswith(self.timeout_paths):
            raise httpx.ReadTimeout("read timed out", request=request)

        if path == "/oauth/token":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.token_forms.append(form)
            if self.refresh_delay:
                await asyncio.sleep(self.refresh_delay)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": "invalid_grant"})
            self._issued += 1
            body = {
                "access_token": f"fresh-access-{self._issued}",
                "expires_in": 86399,
                "scope": "locations.readonly",
            }
            if self.refresh_issues_new_refresh_token:
                body["refresh_token"] = f"fresh-refresh-{self._issued}"
            if form.get("grant_type") == "authorization_code":
                body.update({"userType": self.install_user_type, "companyId": "co-installed"})
                if self.install_user_type == "Location":
                    body["locationId"] = "loc-installed"
            return httpx.Response(200, json=body)

        token = request.headers.get("authorization", "").removeprefix("Bearer ")

        if path.startswith("/locations/"):
            if self.location_status is not None:
                return httpx.Response(self.location_status, json={"message": "boom"})
            tenant_id = path.rsplit("/", 1)[-1]
            entry = self.locations.get(tenant_id)
            if entry is None:
                return httpx.Response(404, json={"message": "not found"})
            tokens, location = entry
            if token not in tokens:
                return httpx.Response(403, json={"message": "forbidden"})
            return httpx.Response(200, json={"location": location})

        if path.startswith("/products"):
            tenant_id = request.url.params.get("locationId")
            return httpx.Response(200, json={"products": self.products.get(tenant_id, [])})

        return httpx.Response(404, json={"message": f"unhandled {path}"})


class RecordingUserpilot:
    def __init__(self):
        self.events: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        import json

        self.events.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    @property
    def names(self) -> list[str]:
        return [e["event"]["name"] for e in self.events]


@pytest.fixture
def settings(tmp_path):
    s = get_settings()
    s.override(
        database_url=f"sqlite:///{tmp_path / 'launchpad.db'}",
        crm_client_id="client-id",
        crm_client_secret="client-secret",
        crm_api_base="https://crm.test",
        crm_token_url="https://crm.test/oauth/token",
        userpilot_api_key="up-key",
        userpilot_api_base="https://userpilot.test",
        sse_keepalive_seconds=60.0,
        admin_api_key="admin-secret",
    )
    return s


@pytest.fixture
def engine(settings):
    eng = make_engine(settings.database_url)
    initialize_database(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def fake_crm():
    return FakeCrm()


@pytest.fixture
def userpilot():
    return RecordingUserpilot()


@pytest_asyncio.fixture
async def services(settings, session_factory, fake_crm, userpilot):
    svc = build_services(
        settings,
        session_factory,
        crm_transport=httpx.MockTransport(fake_crm),
        analytics_transport=httpx.MockTransport(userpilot),
    )
    yield svc
    await svc.aclose()


def make_credential(
    subject_id: str,
    *,
    kind: CredentialKind = CredentialKind.TENANT,
    access_token: str | None = None,
    refresh_token: str | None = "refresh-token",
    expires_in: timedelta | None = timedelta(hours=12),
    parent_account_id: str | None = None,
) -> Credential:
    return Credential(
        subject_id=subject_id,
        kind=kind,
        access_token=access_token or f"access-{subject_id}",
        refresh_token=refresh_token,
        expires_at=utc_now() + expires_in if expires_in is not None else None,
        scope="locations.readonly",
        parent_account_id=parent_account_id,
    )


def make_parent_credential(parent_account_id: str, **kwargs) -> Credential:
    return make_credential(
        parent_subject_id(parent_account_id),
        kind=CredentialKind.PARENT,
        parent_account_id=parent_account_id,
        **kwargs,
    )
