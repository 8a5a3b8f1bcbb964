"""Thin async client for the CRM platform's REST and OAuth endpoints.

Every call runs under a bounded timeout.  Timeouts and transport failures
surface as :class:`CrmUnavailable` so callers handle them exactly like a
failed response.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from typing import Any

import httpx

from launchpad.config import Settings
from launchpad.exceptions import CrmApiError
from launchpad.exceptions import CrmNotFound
from launchpad.exceptions import CrmUnauthorized
from launchpad.exceptions import CrmUnavailable
from launchpad.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenGrant:
    """Parsed response of the ``/oauth/token`` endpoint."""

    access_token: str
    refresh_token: str | None
    expires_at: datetime | None
    scope: str | None
    user_type: str | None = None
    location_id: str | None = None
    company_id: str | None = None

    @property
    def is_company(self) -> bool:
        return (self.user_type or "").lower() == "company"

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "TokenGrant":
        access_token = data.get("access_token")
        if not access_token:
            raise CrmApiError("token response did not include an access_token")

        expires_in = data.get("expires_in")
        expires_at = None
        if expires_in is not None:
            expires_at = utc_now() + timedelta(seconds=int(expires_in))

        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            scope=data.get("scope"),
            user_type=data.get("userType"),
            location_id=data.get("locationId"),
            company_id=data.get("companyId"),
        )


class CrmClient:
    """Async wrapper around a shared :class:`httpx.AsyncClient`.

    Pass ``transport`` (e.g. :class:`httpx.MockTransport`) to stub the
    platform in tests.
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None):
        self._settings = settings
        self._http = httpx.AsyncClient(
            base_url=settings.crm_api_base,
            timeout=settings.http_timeout_seconds,
            transport=transport,
        )

    @property
    def has_client_credentials(self) -> bool:
        return bool(self._settings.crm_client_id and self._settings.crm_client_secret)

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # OAuth token endpoint
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str) -> TokenGrant:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self._settings.crm_client_id or "",
            "client_secret": self._settings.crm_client_secret or "",
        }
        if self._settings.crm_redirect_uri:
            form["redirect_uri"] = self._settings.crm_redirect_uri
        return TokenGrant.from_response(await self._post_token(form))

    async def refresh(self, refresh_token: str) -> TokenGrant:
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self._settings.crm_client_id or "",
            "client_secret": self._settings.crm_client_secret or "",
        }
        return TokenGrant.from_response(await self._post_token(form))

    async def _post_token(self, form: dict[str, str]) -> dict[str, Any]:
        try:
            response = await self._http.post(
                self._settings.crm_token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as exc:
            raise CrmUnavailable("token endpoint timed out") from exc
        except httpx.TransportError as exc:
            raise CrmUnavailable(f"token endpoint unreachable: {exc}") from exc

        self._raise_for_status(response, "POST oauth/token")
        return self._json(response, "POST oauth/token")

    # ------------------------------------------------------------------
    # REST resources
    # ------------------------------------------------------------------

    async def get_location(self, tenant_id: str, token: str) -> dict[str, Any]:
        """Return the tenant record (``location`` object) for *tenant_id*."""
        data = await self._get(f"/locations/{tenant_id}", token)
        location = data.get("location")
        return location if isinstance(location, dict) else data

    async def has_products(self, tenant_id: str, token: str) -> bool:
        data = await self._get("/products/", token, params={"locationId": tenant_id, "limit": 1})
        products = data.get("products")
        if products is None:
            products = data.get("data")
        return isinstance(products, list) and len(products) > 0

    async def _get(self, path: str, token: str, *, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self._http.get(
                path,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Version": self._settings.crm_api_version,
                    "Accept": "application/json",
                },
            )
        except httpx.TimeoutException as exc:
            raise CrmUnavailable(f"GET {path} timed out") from exc
        except httpx.TransportError as exc:
            raise CrmUnavailable(f"GET {path} unreachable: {exc}") from exc

        self._raise_for_status(response, f"GET {path}")
        return self._json(response, f"GET {path}")

    @staticmethod
    def _json(response: httpx.Response, what: str) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise CrmApiError(f"{what} returned a non-JSON body", response.status_code) from exc
        if not isinstance(data, dict):
            raise CrmApiError(f"{what} returned an unexpected payload", response.status_code)
        return data

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        code = response.status_code
        if code < 400:
            return
        body = response.text[:200]
        logger.debug("crm_client.error call=%s status=%d body=%s", what, code, body)
        if code == 401:
            raise CrmUnauthorized(f"{what} unauthorized", code)
        if code in (403, 404):
            raise CrmNotFound(f"{what} not found or forbidden", code)
        if code >= 500:
            raise CrmUnavailable(f"{what} failed with {code}", code)
        raise CrmApiError(f"{what} failed with {code}: {body}", code)


__all__ = ["CrmClient", "TokenGrant"]
