# src/crm_portal_bff/main.py

import logging
import time
import typing
from datetime import date
from pathlib import Path

import httpx
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from .agents import summarize
from .api_client import CrmApiClient
from .config import settings
from .exceptions import (
    AgentNotFound,
    ApiError,
    CrmConnectionError,
    CrmError,
    EmailNotVerified,
    InvalidCredentials,
    LoadError,
    OpportunityNotFound,
    RefreshFailed,
    TokenExpired,
    ValidationError,
)
from .filters import (
    ACCOUNT_TYPE_OPTIONS,
    ALL,
    DAYS_OPEN_RANGE,
    INTEREST_OPTIONS,
    SERVICE_OPTIONS,
    FilterSpec,
)
from .logging_config import setup_logging
from .models import PIPELINE_STAGES, LookupKind, PipelineStage, User
from .navigation import guard_route, visible_items
from .onboarding import REGISTRATION_TYPE_DESCRIPTIONS, OnboardingStep, OnboardingWizard
from .sessions import PortalSession, SessionRegistry

logger = logging.getLogger(__name__)


# --- Backend client and session registry ---

def configure_backend(
    target: FastAPI,
    transport: typing.Optional[httpx.AsyncBaseTransport] = None,
    storage_dir: typing.Optional[Path] = None,
    clock: typing.Callable[[], float] = time.time,
) -> SessionRegistry:
    """Attaches a CRM API client and a fresh session registry to `target.state`."""
    api = CrmApiClient(settings.CRM_API_BASE, timeout=settings.HTTP_TIMEOUT_SECONDS, transport=transport)
    registry = SessionRegistry(
        api,
        storage_dir or settings.PERSISTENT_STORAGE_DIR,
        refresh_interval=settings.REFRESH_INTERVAL_SECONDS,
        refresh_margin=settings.REFRESH_MARGIN_SECONDS,
        allow_reopen=settings.ALLOW_STAGE_REOPEN,
        idle_timeout=settings.SESSION_IDLE_TIMEOUT_SECONDS,
        clock=clock,
    )
    target.state.api = api
    target.state.registry = registry
    return registry


# --- Session cookie ---

class SessionMiddlewareCustom(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        registry: SessionRegistry = request.app.state.registry
        portal = await registry.get(request.cookies.get(settings.SESSION_COOKIE_NAME))
        request.state.session_id = portal.session_id
        request.state.portal = portal
        try:
            response: StarletteResponse = await call_next(request)
        finally:
            registry.track(portal)
        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            portal.session_id,
            # Without "remember me" the cookie dies with the browser session, like the ephemeral tier.
            max_age=settings.SESSION_COOKIE_MAX_AGE if portal.is_persistent else None,
            httponly=True,
            secure=settings.SESSION_COOKIE_SECURE,
            samesite="lax",
        )
        return response


# --- FastAPI App Setup ---
app = FastAPI(
    title="CRM Portal BFF API",
    description="Backend-For-Frontend for the CRM portal: sessions, pipeline board and agent administration.",
    version="0.1.0"
)
app.add_middleware(SessionMiddlewareCustom)
configure_backend(app)


# --- Error mapping ---

def http_error(exc: CrmError) -> HTTPException:
    if isinstance(exc, ValidationError):
        return HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, detail={"errors": exc.errors})
    if isinstance(exc, EmailNotVerified):
        return HTTPException(
            status.HTTP_403_FORBIDDEN,
            detail={"message": exc.message, "verificationRequired": True, "email": exc.email},
        )
    if isinstance(exc, InvalidCredentials):
        return HTTPException(status.HTTP_401_UNAUTHORIZED, detail=exc.message)
    if isinstance(exc, (TokenExpired, RefreshFailed)):
        return HTTPException(status.HTTP_401_UNAUTHORIZED, detail=exc.message)
    if isinstance(exc, (OpportunityNotFound, AgentNotFound)):
        return HTTPException(status.HTTP_404_NOT_FOUND, detail=exc.message)
    if isinstance(exc, CrmConnectionError):
        return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message)
    if isinstance(exc, LoadError):
        return HTTPException(status.HTTP_502_BAD_GATEWAY, detail={"message": exc.message, "retry": True})
    if isinstance(exc, ApiError):
        return HTTPException(exc.status_code, detail=exc.message)
    return HTTPException(status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)


@app.exception_handler(CrmError)
async def crm_error_handler(request: Request, exc: CrmError):
    http_exc = http_error(exc)
    if http_exc.status_code >= 500:
        logger.error("BFF: %s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})


# --- Dependencies ---

def get_portal(request: Request) -> PortalSession:
    return request.state.portal


def get_api(request: Request) -> CrmApiClient:
    return request.app.state.api


async def get_authenticated_user(portal: PortalSession = Depends(get_portal)) -> User:
    if not portal.manager.is_authenticated or portal.manager.current_user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return portal.manager.current_user


async def get_admin_user(user: User = Depends(get_authenticated_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user


# --- Request bodies ---

class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""
    rememberMe: bool = False


class EmailCodeRequest(BaseModel):
    email: str = ""
    code: str = ""


class MoveRequest(BaseModel):
    stage: PipelineStage


class OnboardingPatch(BaseModel):
    fields: typing.Dict[str, typing.Any] = Field(default_factory=dict)


# --- Authentication Routes ---

@app.post("/api/bff/login")
async def login(body: LoginRequest, portal: PortalSession = Depends(get_portal)):
    session = await portal.manager.login(body.email, body.password, remember_me=body.rememberMe)
    portal.board.clear()
    portal.onboarding = None
    portal.manager.schedule_refresh()
    logger.info("BFF: login for session %s, storage tier %s", portal.session_id, session.storage_tier.value)
    return {
        "user": session.user,
        "storageTier": session.storage_tier.value,
        "expiresAt": session.expires_at.isoformat(),
    }


@app.post("/api/bff/logout")
async def logout(portal: PortalSession = Depends(get_portal)):
    await portal.manager.logout()
    portal.board.clear()
    portal.onboarding = None
    return {"status": "logged_out"}


@app.get("/api/bff/me")
async def get_user_info(user: User = Depends(get_authenticated_user), portal: PortalSession = Depends(get_portal)):
    session = portal.manager.session
    return {
        "user": user,
        "storageTier": session.storage_tier.value,
        "expiresAt": session.expires_at.isoformat(),
        "state": portal.manager.state.value,
    }


@app.post("/api/bff/confirm")
async def confirm_email(body: EmailCodeRequest, portal: PortalSession = Depends(get_portal)):
    await portal.manager.confirm_email(body.email, body.code)
    return {"status": "confirmed"}


@app.post("/api/bff/signup", status_code=status.HTTP_201_CREATED)
async def signup(body: typing.Dict[str, typing.Any] = Body(...), portal: PortalSession = Depends(get_portal)):
    result = await portal.accounts.signup(body)
    return result


@app.post("/api/bff/password/forgot")
async def forgot_password(body: typing.Dict[str, typing.Any] = Body(...), portal: PortalSession = Depends(get_portal)):
    await portal.accounts.forgot_password(body)
    return {"status": "code_sent"}


@app.post("/api/bff/password/verify")
async def verify_reset_code(body: typing.Dict[str, typing.Any] = Body(...), portal: PortalSession = Depends(get_portal)):
    await portal.accounts.verify_reset_code(body)
    return {"status": "code_valid"}


@app.post("/api/bff/password/reset")
async def reset_password(body: typing.Dict[str, typing.Any] = Body(...), portal: PortalSession = Depends(get_portal)):
    await portal.accounts.reset_password(body)
    return {"status": "password_reset"}


# --- Navigation ---

@app.get("/api/bff/navigation")
async def navigation(portal: PortalSession = Depends(get_portal)):
    return {"items": visible_items(portal.manager.current_user if portal.manager.is_authenticated else None)}


@app.get("/api/bff/route-guard")
async def route_guard(path: str = Query(...), portal: PortalSession = Depends(get_portal)):
    user = portal.manager.current_user if portal.manager.is_authenticated else None
    return {"path": path, "redirect": guard_route(user, path)}


# --- Pipeline ---

def _board_payload(portal: PortalSession, spec: FilterSpec) -> dict:
    columns = portal.board.columns(spec)
    return {
        "columns": [
            {"stage": stage.value, "label": stage.label, "terminal": stage.is_terminal, "opportunities": columns[stage]}
            for stage in PIPELINE_STAGES
        ],
        "total": sum(len(items) for items in columns.values()),
        "syncErrors": {oid: str(err) for oid, err in portal.board.sync_errors.items()},
        "filterOptions": {
            "accountType": list(ACCOUNT_TYPE_OPTIONS),
            "service": list(SERVICE_OPTIONS),
            "interest": list(INTEREST_OPTIONS),
            "daysOpen": {"min": DAYS_OPEN_RANGE[0], "max": DAYS_OPEN_RANGE[1]},
        },
    }


def get_filter_spec(
    accountType: typing.List[str] = Query(default=[ALL]),
    service: typing.List[str] = Query(default=[ALL]),
    interest: typing.List[str] = Query(default=[ALL]),
    daysOpen: typing.Optional[int] = Query(default=None, ge=DAYS_OPEN_RANGE[0], le=DAYS_OPEN_RANGE[1]),
    maxClosingDate: typing.Optional[date] = Query(default=None),
) -> FilterSpec:
    return FilterSpec(
        account_types=accountType,
        services=service,
        interests=interest,
        days_open=daysOpen,
        max_closing_date=maxClosingDate,
    )


@app.get("/api/bff/pipeline")
async def get_pipeline(
    spec: FilterSpec = Depends(get_filter_spec),
    user: User = Depends(get_authenticated_user),
    portal: PortalSession = Depends(get_portal),
):
    if not portal.board.loaded:
        await portal.board.load()
    return _board_payload(portal, spec)


@app.post("/api/bff/pipeline/reload")
async def reload_pipeline(
    spec: FilterSpec = Depends(get_filter_spec),
    user: User = Depends(get_authenticated_user),
    portal: PortalSession = Depends(get_portal),
):
    await portal.board.load()
    return _board_payload(portal, spec)


@app.post("/api/bff/pipeline/{opportunity_id}/move")
async def move_opportunity(
    opportunity_id: str,
    body: MoveRequest,
    wait: bool = Query(default=False, description="Wait for the backend to accept or reject the move"),
    user: User = Depends(get_authenticated_user),
    portal: PortalSession = Depends(get_portal),
):
    if not portal.board.loaded:
        await portal.board.load()
    sync = portal.board.move_to_stage(opportunity_id, body.stage)
    if not wait:
        return {"opportunity": portal.board.get(opportunity_id), "synced": None}
    accepted = await sync
    return {
        "opportunity": portal.board.get(opportunity_id),
        "synced": accepted is not None,
        "error": str(portal.board.sync_errors[opportunity_id]) if accepted is None else None,
    }


# --- Agent administration ---

@app.get("/api/bff/agents")
async def list_agents(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=1000),
    admin: User = Depends(get_admin_user),
    portal: PortalSession = Depends(get_portal),
):
    result = await portal.agents.list_agents(page=page, limit=limit)
    return {**result.model_dump(by_alias=True, exclude={"data"}), "data": [summarize(a) for a in result.data]}


@app.get("/api/bff/agents/pending")
async def list_pending_agents(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=1000),
    admin: User = Depends(get_admin_user),
    portal: PortalSession = Depends(get_portal),
):
    result = await portal.agents.list_pending(page=page, limit=limit)
    return {**result.model_dump(by_alias=True, exclude={"data"}), "data": [summarize(a) for a in result.data]}


@app.get("/api/bff/agents/{agent_id}")
async def get_agent(agent_id: str, admin: User = Depends(get_admin_user), portal: PortalSession = Depends(get_portal)):
    return summarize(await portal.agents.get_agent(agent_id))


@app.post("/api/bff/agents/{agent_id}/approve")
async def approve_agent(agent_id: str, admin: User = Depends(get_admin_user), portal: PortalSession = Depends(get_portal)):
    await portal.agents.approve(agent_id)
    return {"status": "approved", "agentId": agent_id}


# --- Lookups ---

@app.get("/api/bff/lookups/{kind}")
async def get_lookup(kind: LookupKind, search: typing.Optional[str] = None, api: CrmApiClient = Depends(get_api)):
    return await api.get_lookup(kind, search=search)


# --- Onboarding wizard ---

def _wizard_payload(wizard: OnboardingWizard) -> dict:
    return {
        "step": wizard.step.value,
        "steps": [{"id": s.value, "label": s.label} for s in OnboardingStep],
        "stepValid": wizard.is_step_valid(),
        "errors": wizard.step_errors(),
        "form": wizard.form,
        "registrationTypes": [
            {"value": t.value, "description": d} for t, d in REGISTRATION_TYPE_DESCRIPTIONS.items()
        ],
        "licenseTypes": wizard.license_types,
        "regions": wizard.regions,
        "submitted": wizard.submitted,
    }


async def get_wizard(
    user: User = Depends(get_authenticated_user),
    portal: PortalSession = Depends(get_portal),
    api: CrmApiClient = Depends(get_api),
) -> OnboardingWizard:
    if portal.onboarding is None:
        portal.onboarding = await OnboardingWizard.start(api, user, portal.accounts.saved_license_type())
    return portal.onboarding


@app.get("/api/bff/onboarding")
async def get_onboarding(wizard: OnboardingWizard = Depends(get_wizard)):
    return _wizard_payload(wizard)


@app.patch("/api/bff/onboarding")
async def update_onboarding(body: OnboardingPatch, wizard: OnboardingWizard = Depends(get_wizard)):
    wizard.update(body.fields)
    return _wizard_payload(wizard)


@app.post("/api/bff/onboarding/next")
async def onboarding_next(wizard: OnboardingWizard = Depends(get_wizard)):
    wizard.next()
    return _wizard_payload(wizard)


@app.post("/api/bff/onboarding/back")
async def onboarding_back(wizard: OnboardingWizard = Depends(get_wizard)):
    wizard.back()
    return _wizard_payload(wizard)


@app.post("/api/bff/onboarding/submit")
async def onboarding_submit(
    wizard: OnboardingWizard = Depends(get_wizard),
    portal: PortalSession = Depends(get_portal),
    api: CrmApiClient = Depends(get_api),
):
    token = await portal.manager.get_access_token()
    user = await wizard.submit(api, token)
    portal.manager.set_current_user(user)
    return {**_wizard_payload(wizard), "user": user}


# --- Root ---

@app.get("/")
async def home():
    return {"message": "CRM Portal BFF is running!"}


# --- Startup / Shutdown ---

@app.on_event("startup")
async def startup_event():
    setup_logging()
    logger.info("--- CRM Portal BFF (FastAPI) Starting Up ---")
    logger.info("CRM API base URL: %s", settings.CRM_API_BASE)
    logger.info("Persistent session storage: %s", settings.PERSISTENT_STORAGE_DIR)
    logger.info(
        "Token refresh every %ss when less than %ss remain",
        settings.REFRESH_INTERVAL_SECONDS, settings.REFRESH_MARGIN_SECONDS,
    )


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.registry.close()
    await app.state.api.aclose()
    logger.info("--- CRM Portal BFF shut down ---")
