# tests/conftest.py
"""
Shared fixtures: a scripted fake of the CRM backend mounted on
``httpx.MockTransport``, a controllable clock and ready-made API client,
token store and session manager instances.
"""

import inspect
import json
import typing

import httpx
import pytest

from crm_portal_bff.api_client import CrmApiClient
from crm_portal_bff.session_manager import SessionManager
from crm_portal_bff.storage import JsonFileStorage, MemoryStorage, TokenStore

BASE_URL = "http://crm.test/api/v1"
API_PREFIX = "/api/v1"

NOW = 1_700_000_000.0
HOUR = 60 * 60


# ============================================================================
# Payload builders
# ============================================================================

def user_payload(user_id: str = "u-1", role: str = "CRM_AGENT", **overrides) -> dict:
    payload = {
        "id": user_id,
        "firstName": "jane",
        "lastName": "doe",
        "email": "jane@example.com",
        "role": {"id": "r-1", "name": role},
        "status": {"id": "s-1", "name": "Active"},
        "isApproved": True,
        "createdAt": "2023-01-01T00:00:00Z",
    }
    payload.update(overrides)
    return payload


def token_payload(access: str = "access-1", refresh: str = "refresh-1", expires_in: float = 24 * HOUR) -> dict:
    return {"token": access, "refreshToken": refresh, "tokenExpires": int((NOW + expires_in) * 1000)}


def login_payload(**kwargs) -> dict:
    user = kwargs.pop("user", None) or user_payload()
    return {**token_payload(**kwargs), "user": user}


def opportunity_payload(opp_id: str, stage: str = "LEADS_INTEREST", **overrides) -> dict:
    payload = {
        "id": opp_id,
        "name": f"Opportunity {opp_id}",
        "service": "Life",
        "createDate": "2023-11-01T10:00:00Z",
        "pipelineStage": stage,
        "temperature": "WARM",
        "accountType": "Individual",
        "closingDate": "2023-12-31",
    }
    payload.update(overrides)
    return payload


# ============================================================================
# Fake CRM backend
# ============================================================================

Handler = typing.Callable[[httpx.Request], typing.Any]


class FakeCrmBackend:
    """
    Routes (method, path) to scripted answers. A route holds either a single
    response, a list of responses consumed in order (the last one repeats),
    or a callable receiving the request. Callables may be async.
    """

    def __init__(self):
        self.routes: typing.Dict[typing.Tuple[str, str], typing.Any] = {}
        self.requests: typing.List[httpx.Request] = []

    def on(self, method: str, path: str, answer=None, *, status: int = 200, json: typing.Any = None):
        if answer is None:
            answer = httpx.Response(status, json=json if json is not None else {})
        self.routes[(method.upper(), path)] = answer
        return answer

    def calls(self, method: str, path: str) -> typing.List[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and self._path(r) == path]

    def count(self, method: str, path: str) -> int:
        return len(self.calls(method, path))

    @staticmethod
    def _path(request: httpx.Request) -> str:
        path = request.url.path
        return path[len(API_PREFIX):] if path.startswith(API_PREFIX) else path

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.routes.get((request.method, self._path(request)))
        if answer is None:
            return httpx.Response(404, json={"message": f"No route for {request.method} {self._path(request)}"})
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if callable(answer):
            answer = answer(request)
            if inspect.isawaitable(answer):
                answer = await answer
        return answer


def request_json(request: httpx.Request) -> typing.Any:
    return json.loads(request.content or b"null")


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def backend() -> FakeCrmBackend:
    return FakeCrmBackend()


@pytest.fixture
def transport(backend: FakeCrmBackend) -> httpx.MockTransport:
    return httpx.MockTransport(backend)


@pytest.fixture
async def api(transport):
    client = CrmApiClient(BASE_URL, transport=transport)
    yield client
    await client.aclose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def persistent(tmp_path) -> JsonFileStorage:
    return JsonFileStorage(tmp_path / "session.json")


@pytest.fixture
def ephemeral() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(persistent, ephemeral) -> TokenStore:
    return TokenStore(persistent=persistent, ephemeral=ephemeral)


@pytest.fixture
async def manager(api, store, clock):
    session_manager = SessionManager(api, store, refresh_interval=30 * 60, refresh_margin=HOUR, clock=clock)
    yield session_manager
    session_manager.cancel_refresh()
