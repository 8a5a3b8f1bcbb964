"""Tests for multi-tenant token resolution."""

import asyncio
from datetime import timedelta

import pytest
from conftest import make_credential
from conftest import make_parent_credential

from launchpad.models.enums import CredentialKind
from launchpad.services.credential_store import parent_subject_id


@pytest.mark.asyncio
async def test_resolve_returns_none_without_any_credential(services, fake_crm):
    assert await services.resolver.resolve("T1") is None
    resolution = await services.resolver.resolve_detailed("T1")
    assert not resolution.authorized
    assert not resolution.tenant_refresh_failed
    assert not resolution.parent_refresh_failed
    # No parent credentials means nothing to ask the platform with.
    assert fake_crm.calls == []


@pytest.mark.asyncio
async def test_valid_tenant_credential_needs_no_refresh_or_lookup(services, fake_crm):
    await services.credentials.upsert(make_credential("loc-1", access_token="tenant-token"))
    await services.credentials.upsert(make_parent_credential("agency-A"))

    assert await services.resolver.resolve("loc-1") == "tenant-token"
    assert fake_crm.calls == []
    assert await services.ownership_store.get("loc-1") is None


@pytest.mark.asyncio
async def test_parent_credential_found_through_ownership_lookup(services, fake_crm):
    await services.credentials.upsert(make_parent_credential("agency-B", access_token="token-B"))
    await services.credentials.upsert(make_parent_credential("agency-A", access_token="token-A"))
    fake_crm.add_location("loc-2", "token-A", companyId="agency-A", name="Shop")

    resolution = await services.resolver.resolve_detailed("loc-2")

    assert resolution.access_token == "token-A"
    assert resolution.kind == CredentialKind.PARENT
    assert resolution.subject_id == parent_subject_id("agency-A")
    # agency-B was asked first and could not see the tenant.
    assert fake_crm.count("GET", "/locations/loc-2") == 2
    record = await services.ownership_store.get("loc-2")
    assert record.parent_account_id == "agency-A"
    assert record.display_name == "Shop"


@pytest.mark.asyncio
async def test_expired_tenant_credential_is_refreshed(services, fake_crm):
    await services.credentials.upsert(make_credential("loc-3", expires_in=timedelta(minutes=2)))

    token = await services.resolver.resolve("loc-3")

    assert token == "fresh-access-1"
    stored = await services.credentials.get_by_subject_id("loc-3")
    assert stored.access_token == "fresh-access-1"
    assert stored.refresh_token == "fresh-refresh-1"
    assert fake_crm.refresh_calls == 1


@pytest.mark.asyncio
async def test_failed_tenant_refresh_falls_through_to_parent(services, fake_crm):
    fake_crm.refresh_status = 400
    await services.credentials.upsert(
        make_credential("loc-4", expires_in=-timedelta(hours=1), parent_account_id="agency-A")
    )
    await services.credentials.upsert(make_parent_credential("agency-A", access_token="token-A", expires_in=None))

    resolution = await services.resolver.resolve_detailed("loc-4")

    assert resolution.access_token == "token-A"
    assert resolution.kind == CredentialKind.PARENT


@pytest.mark.asyncio
async def test_everything_expired_and_unrefreshable_reports_flags(services, fake_crm):
    fake_crm.refresh_status = 401
    await services.credentials.upsert(make_credential("loc-5", expires_in=-timedelta(hours=1)))
    await services.credentials.upsert(make_parent_credential("agency-A", expires_in=-timedelta(hours=1)))

    resolution = await services.resolver.resolve_detailed("loc-5")

    assert resolution.access_token is None
    assert resolution.tenant_refresh_failed
    assert resolution.parent_refresh_failed
    assert fake_crm.refresh_calls == 2


@pytest.mark.asyncio
async def test_fallback_parent_used_without_ownership_metadata(services, fake_crm):
    await services.credentials.upsert(make_parent_credential("solo-agency", access_token="solo-token"))

    # The platform does not know the tenant, yet the lone parent is returned.
    assert await services.resolver.resolve("unknown-loc") == "solo-token"


@pytest.mark.asyncio
async def test_concurrent_resolves_share_one_parent_refresh(services, fake_crm):
    fake_crm.refresh_delay = 0.05
    await services.credentials.upsert(
        make_parent_credential("agency-A", access_token="stale-A", expires_in=timedelta(minutes=1))
    )
    await services.ownership_store.record("loc-x", "agency-A")
    await services.ownership_store.record("loc-y", "agency-A")

    first, second = await asyncio.gather(
        services.resolver.resolve("loc-x"),
        services.resolver.resolve("loc-y"),
    )

    assert first == second == "fresh-access-1"
    assert fake_crm.refresh_calls == 1


@pytest.mark.asyncio
async def test_resolver_never_raises_on_storage_failure(services, monkeypatch):
    async def broken(_subject_id):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(services.credentials, "get_by_subject_id", broken)

    assert await services.resolver.resolve("loc-err") is None


@pytest.mark.asyncio
async def test_revoked_parent_is_refreshed_once_per_resolve(services, fake_crm):
    fake_crm.refresh_status = 400
    await services.credentials.upsert(make_parent_credential("agency-A", expires_in=-timedelta(hours=1)))

    resolution = await services.resolver.resolve_detailed("unknown-loc")

    assert resolution.access_token is None
    assert resolution.parent_refresh_failed
    # The ownership lookup already spent the refresh; the fallback reuses that answer.
    assert fake_crm.refresh_calls == 1


@pytest.mark.asyncio
async def test_token_endpoint_timeout_counts_as_failed_refresh(services, fake_crm):
    fake_crm.timeout_paths = ("/oauth/token",)
    await services.credentials.upsert(make_credential("loc-t", expires_in=-timedelta(hours=1)))

    resolution = await services.resolver.resolve_detailed("loc-t")

    assert resolution.access_token is None
    assert resolution.tenant_refresh_failed
    assert fake_crm.count("POST", "/oauth/token") == 1
    assert (await services.credentials.get_by_subject_id("loc-t")).access_token == "access-loc-t"


@pytest.mark.asyncio
async def test_ownership_lookup_timeout_falls_back_to_parent(services, fake_crm):
    fake_crm.timeout_paths = ("/locations/",)
    await services.credentials.upsert(make_parent_credential("agency-A", access_token="token-A"))

    assert await services.resolver.resolve("loc-slow") == "token-A"
    assert await services.ownership_store.get("loc-slow") is None
