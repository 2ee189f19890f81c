# tests/test_api_client.py

import httpx
import pytest

from crm_portal_bff.api_client import CrmApiClient
from crm_portal_bff.exceptions import (
    ApiError,
    CrmConnectionError,
    EmailNotVerified,
    InvalidCredentials,
    RefreshFailed,
    TokenExpired,
)
from crm_portal_bff.models import LookupKind, PipelineStage, ProfileUpdate

from .conftest import BASE_URL, login_payload, opportunity_payload, request_json, token_payload, user_payload


# ============================================================================
# Login
# ============================================================================

async def test_login_returns_tokens_and_user(api, backend):
    backend.on("POST", "/auth/crm/login", json=login_payload())

    result = await api.login("jane@example.com", "secret1")

    assert result.token == "access-1"
    assert result.refresh_token == "refresh-1"
    assert result.user.id == "u-1"
    assert request_json(backend.calls("POST", "/auth/crm/login")[0]) == {
        "email": "jane@example.com",
        "password": "secret1",
    }


async def test_login_falls_back_to_admin_endpoint(api, backend):
    backend.on("POST", "/auth/crm/login", status=404, json={"message": "This email is not recognized"})
    backend.on("POST", "/auth/admin/login", json=login_payload(user=user_payload(role="ADMIN")))

    result = await api.login("admin@example.com", "secret1")

    assert result.user.is_admin
    assert backend.count("POST", "/auth/admin/login") == 1


async def test_login_does_not_fall_back_on_wrong_password(api, backend):
    backend.on("POST", "/auth/crm/login", status=401, json={"message": "Wrong password"})

    with pytest.raises(InvalidCredentials) as exc_info:
        await api.login("jane@example.com", "secret1")

    assert exc_info.value.message == "Wrong password"
    assert backend.count("POST", "/auth/admin/login") == 0


async def test_login_reports_unverified_email(api, backend):
    backend.on(
        "POST", "/auth/crm/login",
        status=403, json={"message": "EMAIL_NOT_VERIFIED", "data": {"verificationRequired": True}},
    )

    with pytest.raises(EmailNotVerified) as exc_info:
        await api.login("jane@example.com", "secret1")
    assert exc_info.value.email == "jane@example.com"


async def test_server_error_on_login_is_an_api_error(api, backend):
    backend.on("POST", "/auth/crm/login", status=500, json={"error": "boom"})

    with pytest.raises(ApiError) as exc_info:
        await api.login("jane@example.com", "secret1")
    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "boom"
    assert not isinstance(exc_info.value, InvalidCredentials)


async def test_transport_failure_is_a_connection_error(api, backend):
    def fail(request):
        raise httpx.ConnectError("refused", request=request)

    backend.on("GET", "/auth/me", fail)

    with pytest.raises(CrmConnectionError):
        await api.me("access-1")


# ============================================================================
# Session endpoints
# ============================================================================

async def test_me_sends_bearer_token(api, backend):
    backend.on("GET", "/auth/me", json=user_payload())

    user = await api.me("access-1")

    assert user.first_name == "jane"
    assert backend.calls("GET", "/auth/me")[0].headers["Authorization"] == "Bearer access-1"


async def test_me_rejection_is_token_expired(api, backend):
    backend.on("GET", "/auth/me", status=401, json={"message": "Unauthorized"})

    with pytest.raises(TokenExpired):
        await api.me("access-1")


async def test_refresh_uses_refresh_token_as_bearer(api, backend):
    backend.on("POST", "/auth/refresh", json=token_payload(access="access-2", refresh="refresh-2"))

    tokens = await api.refresh("refresh-1")

    assert tokens.token == "access-2"
    assert backend.calls("POST", "/auth/refresh")[0].headers["Authorization"] == "Bearer refresh-1"


async def test_refresh_failure_keeps_status(api, backend):
    backend.on("POST", "/auth/refresh", status=401, json={"message": "Refresh token revoked"})

    with pytest.raises(RefreshFailed) as exc_info:
        await api.refresh("refresh-1")
    assert exc_info.value.status_code == 401


@pytest.mark.parametrize("status", [429, 500, 502, 503])
async def test_refresh_server_error_is_not_a_rejection(api, backend, status):
    backend.on("POST", "/auth/refresh", status=status, json={"message": "upstream down"})

    with pytest.raises(ApiError) as exc_info:
        await api.refresh("refresh-1")
    assert not isinstance(exc_info.value, RefreshFailed)
    assert exc_info.value.status_code == status
    assert exc_info.value.message == "upstream down"


# ============================================================================
# Lookups, agents, opportunities
# ============================================================================

async def test_get_lookup_passes_search_and_active_filter(api, backend):
    backend.on("GET", "/license-types", json=[
        {"id": "1", "label": "Life", "value": "LIFE", "order": 1, "isActive": True},
    ])

    items = await api.get_lookup(LookupKind.LICENSE_TYPES, search="li")

    assert [item.value for item in items] == ["LIFE"]
    params = backend.calls("GET", "/license-types")[0].url.params
    assert params["search"] == "li"
    assert params["isActive"] == "true"


async def test_get_lookup_failure_names_the_table(api, backend):
    backend.on("GET", "/regions", status=503)

    with pytest.raises(ApiError) as exc_info:
        await api.get_lookup(LookupKind.REGIONS)
    assert "regions" in exc_info.value.message


async def test_list_agents_sends_paging(api, backend):
    backend.on("GET", "/users/crm-agents", json={
        "data": [user_payload("a-1")], "hasNextPage": True, "current": 2, "limit": 5, "total": 11,
    })

    page = await api.list_agents("access-1", page=2, limit=5)

    assert page.has_next_page is True
    assert page.data[0].id == "a-1"
    params = backend.calls("GET", "/users/crm-agents")[0].url.params
    assert (params["page"], params["limit"]) == ("2", "5")


async def test_list_opportunities_accepts_wrapped_and_bare_lists(api, backend):
    backend.on("GET", "/opportunities", [
        httpx.Response(200, json={"data": [opportunity_payload("o-1")]}),
        httpx.Response(200, json=[opportunity_payload("o-2")]),
    ])

    assert [o.id for o in await api.list_opportunities("access-1")] == ["o-1"]
    assert [o.id for o in await api.list_opportunities("access-1")] == ["o-2"]


async def test_update_opportunity_stage_patches_stage(api, backend):
    backend.on("PATCH", "/opportunities/o-1", json=opportunity_payload("o-1", "PROSPECT_QUOTE"))

    updated = await api.update_opportunity_stage("access-1", "o-1", PipelineStage.PROSPECT_QUOTE)

    assert updated.pipeline_stage is PipelineStage.PROSPECT_QUOTE
    assert request_json(backend.calls("PATCH", "/opportunities/o-1")[0]) == {"pipelineStage": "PROSPECT_QUOTE"}


async def test_update_profile_sends_only_set_fields(api, backend):
    backend.on("POST", "/users/u-1/update-profile", json=user_payload(mobile="555"))

    await api.update_profile("access-1", "u-1", ProfileUpdate(mobile="555", years_licensed=3))

    assert request_json(backend.calls("POST", "/users/u-1/update-profile")[0]) == {
        "mobile": "555",
        "yearsLicensed": 3,
    }


async def test_base_url_path_is_kept(transport, backend):
    backend.on("GET", "/auth/me", json=user_payload())
    client = CrmApiClient(BASE_URL, transport=transport)
    try:
        await client.me("t")
    finally:
        await client.aclose()
    assert backend.requests[0].url.path == "/api/v1/auth/me"
