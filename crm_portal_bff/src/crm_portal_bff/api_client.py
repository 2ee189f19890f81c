# src/crm_portal_bff/api_client.py
"""
Async client for the CRM backend REST API (``/api/v1``).

Every method maps transport failures to ``CrmConnectionError`` and non-2xx
answers to ``ApiError`` (or one of its more specific subclasses), passing the
server's ``message`` through when it sent one.
"""

import logging
import typing

import httpx

from .auth_utils import bearer_headers
from .exceptions import (
    ApiError,
    CrmConnectionError,
    EmailNotVerified,
    InvalidCredentials,
    RefreshFailed,
    TokenExpired,
)
from .models import (
    AgentsPage,
    LoginResult,
    LookupItem,
    LookupKind,
    Opportunity,
    PipelineStage,
    ProfileUpdate,
    RegisterResult,
    TokenPair,
    User,
)

logger = logging.getLogger(__name__)

ADMIN_FALLBACK_MARKER = "email is not recognized"
REFRESH_REJECTED_STATUSES = frozenset({400, 401, 403})


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or default
    if isinstance(data, dict):
        return data.get("message") or data.get("error") or default
    return default


def _raise_for_status(response: httpx.Response, default: str) -> None:
    if response.is_success:
        return
    raise ApiError(response.status_code, _error_message(response, default))


class CrmApiClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: typing.Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        token: typing.Optional[str] = None,
        json: typing.Any = None,
        params: typing.Optional[typing.Dict[str, typing.Any]] = None,
    ) -> httpx.Response:
        headers = bearer_headers(token) if token else None
        try:
            response = await self._client.request(method, path, headers=headers, json=json, params=params)
        except httpx.RequestError as e:
            logger.error("Request error calling CRM API %s %s: %s", method, path, e)
            raise CrmConnectionError(f"Could not connect to CRM API: {e}") from e
        if not response.is_success:
            logger.info("CRM API %s %s answered %s", method, path, response.status_code)
        return response

    # --- Auth ---

    async def login(self, email: str, password: str) -> LoginResult:
        """CRM (agent) login first; admin login when the backend does not know the email as an agent."""
        credentials = {"email": email, "password": password}
        response = await self._send("POST", "/auth/crm/login", json=credentials)

        if not response.is_success and ADMIN_FALLBACK_MARKER in _error_message(response, ""):
            logger.info("CRM login did not recognize the email, trying admin login")
            response = await self._send("POST", "/auth/admin/login", json=credentials)

        if not response.is_success:
            data = _json_or_empty(response)
            nested = data.get("data") if isinstance(data.get("data"), dict) else {}
            if response.status_code == 403 and nested.get("verificationRequired"):
                raise EmailNotVerified(email)
            message = _error_message(response, "Invalid email or password")
            if response.status_code in (401, 403):
                raise InvalidCredentials(message, response.status_code)
            raise ApiError(response.status_code, message)

        return LoginResult.model_validate(response.json())

    async def me(self, token: str) -> User:
        response = await self._send("GET", "/auth/me", token=token)
        if response.status_code == 401:
            raise TokenExpired("Access token was rejected by /auth/me")
        _raise_for_status(response, "Failed to get current user")
        return User.model_validate(response.json())

    async def refresh(self, refresh_token: str) -> TokenPair:
        response = await self._send("POST", "/auth/refresh", token=refresh_token)
        if response.status_code in REFRESH_REJECTED_STATUSES:
            raise RefreshFailed(_error_message(response, "Failed to refresh token"), response.status_code)
        # anything else (5xx, 429...) says nothing about the refresh token itself
        _raise_for_status(response, "Failed to refresh token")
        return TokenPair.model_validate(response.json())

    async def logout(self, token: str) -> None:
        response = await self._send("POST", "/auth/logout", token=token)
        _raise_for_status(response, "Failed to log out")

    async def confirm_email(self, email: str, code: str) -> None:
        response = await self._send("POST", "/auth/confirm", json={"email": email, "code": code})
        _raise_for_status(response, "Invalid verification code")

    async def register(self, payload: typing.Dict[str, str]) -> RegisterResult:
        response = await self._send("POST", "/auth/crm/register", json=payload)
        _raise_for_status(response, "Registration failed")
        return RegisterResult.model_validate(_json_or_empty(response))

    async def forgot_password(self, email: str, is_resend: bool = False) -> None:
        response = await self._send(
            "POST", "/auth/crm/forgot/password", json={"email": email, "isResend": is_resend}
        )
        _raise_for_status(response, "Failed to send password reset email")

    async def verify_password_reset_code(self, email: str, code: str) -> None:
        response = await self._send(
            "POST", "/auth/verify/password-reset-code", json={"email": email, "code": code}
        )
        _raise_for_status(response, "Invalid verification code")

    async def reset_password(self, email: str, password: str, code: str) -> None:
        response = await self._send(
            "POST", "/auth/reset/password", json={"email": email, "password": password, "code": code}
        )
        _raise_for_status(response, "Failed to reset password")

    # --- Users / agents ---

    async def update_profile(self, token: str, user_id: str, update: ProfileUpdate) -> User:
        response = await self._send(
            "POST",
            f"/users/{user_id}/update-profile",
            token=token,
            json=update.model_dump(by_alias=True, exclude_unset=True),
        )
        _raise_for_status(response, "Failed to update profile")
        return User.model_validate(response.json())

    async def list_agents(self, token: str, page: int = 1, limit: int = 10) -> AgentsPage:
        response = await self._send(
            "GET", "/users/crm-agents", token=token, params={"page": page, "limit": limit}
        )
        _raise_for_status(response, "Failed to fetch agents")
        return AgentsPage.model_validate(response.json())

    async def list_pending_agents(self, token: str, page: int = 1, limit: int = 10) -> AgentsPage:
        response = await self._send(
            "GET", "/users/crm-agents/pending", token=token, params={"page": page, "limit": limit}
        )
        _raise_for_status(response, "Failed to fetch pending agents")
        return AgentsPage.model_validate(response.json())

    async def approve_agent(self, token: str, agent_id: str) -> None:
        response = await self._send("POST", f"/users/{agent_id}/approve", token=token)
        _raise_for_status(response, "Failed to approve agent")

    # --- Lookups ---

    async def get_lookup(self, kind: LookupKind, search: typing.Optional[str] = None) -> typing.List[LookupItem]:
        params = {}
        if search:
            params["search"] = search
        params["isActive"] = "true"
        response = await self._send("GET", f"/{kind.value}", params=params)
        if not response.is_success:
            raise ApiError(
                response.status_code,
                f"Failed to fetch {kind.value}: {response.status_code} {response.reason_phrase}",
            )
        data = response.json()
        return [LookupItem.model_validate(item) for item in data]

    # --- Opportunities ---

    async def list_opportunities(self, token: str) -> typing.List[Opportunity]:
        response = await self._send("GET", "/opportunities", token=token)
        if response.status_code == 401:
            raise TokenExpired()
        _raise_for_status(response, "Failed to load opportunities")
        data = response.json()
        if isinstance(data, dict):
            data = data.get("data", [])
        return [Opportunity.model_validate(item) for item in data]

    async def update_opportunity(
        self, token: str, opportunity_id: str, fields: typing.Dict[str, typing.Any]
    ) -> Opportunity:
        response = await self._send("PATCH", f"/opportunities/{opportunity_id}", token=token, json=fields)
        _raise_for_status(response, "Failed to update opportunity")
        return Opportunity.model_validate(response.json())

    async def update_opportunity_stage(
        self, token: str, opportunity_id: str, stage: PipelineStage
    ) -> Opportunity:
        return await self.update_opportunity(token, opportunity_id, {"pipelineStage": stage.value})
