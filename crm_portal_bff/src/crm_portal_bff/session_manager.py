# src/crm_portal_bff/session_manager.py
"""
Token lifecycle for one authenticated identity.

A ``SessionManager`` signs in, restores a stored session on start-up, keeps the
access token fresh (on demand and on a fixed schedule) and signs out. Tokens
live in exactly one of the two tiers of its ``TokenStore``; the tier is picked
by the "remember me" flag at login and kept across refreshes.
"""

import asyncio
import logging
import time
import typing

from .api_client import CrmApiClient
from .auth_utils import resolve_token_expiry
from .exceptions import (
    CrmError,
    EmailNotVerified,
    RefreshFailed,
    TokenExpired,
)
from .models import TokenPair, User
from .session_data import (
    SessionData,
    SessionState,
    StorageTier,
    expires_at_from_millis,
)
from .storage import TokenStore
from .validators import EmailCodeForm, LoginForm, validate_form

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 30 * 60
DEFAULT_REFRESH_MARGIN = 60 * 60


class SessionManager:
    def __init__(
        self,
        api: CrmApiClient,
        store: TokenStore,
        *,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        refresh_margin: float = DEFAULT_REFRESH_MARGIN,
        clock: typing.Callable[[], float] = time.time,
    ):
        self.api = api
        self.store = store
        self.refresh_interval = refresh_interval
        self.refresh_margin = refresh_margin
        self.clock = clock

        self.state = SessionState.UNAUTHENTICATED
        self.session: typing.Optional[SessionData] = None
        self.pending_verification_email: typing.Optional[str] = None

        self._refresh_task: typing.Optional[asyncio.Task] = None
        self._schedule_task: typing.Optional[asyncio.Task] = None
        # bumped whenever the signed-in identity changes (login, restore, sign-out)
        self._generation = 0

    # --- Read-only views ---

    @property
    def is_authenticated(self) -> bool:
        return self.session is not None and self.state in (
            SessionState.AUTHENTICATED,
            SessionState.REFRESH_PENDING,
        )

    @property
    def current_user(self) -> typing.Optional[User]:
        return self.session.user if self.session else None

    @property
    def storage_tier(self) -> typing.Optional[StorageTier]:
        return self.session.storage_tier if self.session else None

    def set_current_user(self, user: User) -> None:
        """Replaces the cached profile after a profile update."""
        if self.session is not None:
            self.session = self.session.model_copy(update={"user": user})

    # --- Sign-in ---

    async def login(self, email: str, password: str, remember_me: bool = False) -> SessionData:
        form = validate_form(LoginForm, {"email": email, "password": password, "rememberMe": remember_me})
        tier = StorageTier.PERSISTENT if form.remember_me else StorageTier.EPHEMERAL

        self.state = SessionState.AUTHENTICATING
        try:
            result = await self.api.login(form.email, form.password)
        except EmailNotVerified:
            self.state = SessionState.VERIFICATION_PENDING
            self.pending_verification_email = form.email
            raise
        except CrmError:
            self._reset_state()
            raise

        self.pending_verification_email = None
        self._generation += 1
        self.session = self._store_tokens(result, tier, user=result.user)
        self.state = SessionState.AUTHENTICATED
        logger.info("Login succeeded for user %s (%s storage)", result.user.id, tier.value)

        # an in-flight refresh belongs to the previous identity
        self._refresh_task = None
        if self._schedule_task is not None and not self._schedule_task.done():
            self.cancel_refresh()
            self.schedule_refresh()
        return self.session

    async def confirm_email(self, email: str, code: str) -> None:
        form = validate_form(EmailCodeForm, {"email": email, "code": code})
        await self.api.confirm_email(form.email, form.code)
        if self.state is SessionState.VERIFICATION_PENDING:
            self.state = SessionState.UNAUTHENTICATED
        self.pending_verification_email = None

    # --- Start-up reconciliation ---

    async def restore_session(self) -> typing.Optional[SessionData]:
        """
        Rebuilds the session from whichever tier is tagged as holding it.

        At most one refresh is attempted, either because the stored token has
        expired or because /auth/me rejected it. Authentication failures clear
        storage and return None; connection and server errors propagate and
        leave storage as it was.
        """
        stored = self.store.load()
        if stored is None:
            self._reset_state()
            return None

        self._generation += 1
        self.session = SessionData(
            access_token=stored.access_token,
            refresh_token=stored.refresh_token,
            expires_at=expires_at_from_millis(stored.token_expires),
            storage_tier=stored.tier,
        )
        self.state = SessionState.AUTHENTICATED
        try:
            user = await self._reconcile_stored_session()
        except CrmError:
            self._reset_state()
            raise
        if user is None:
            return None

        self.session = self.session.model_copy(update={"user": user})
        logger.info("Session restored for user %s", user.id)
        return self.session

    async def _reconcile_stored_session(self) -> typing.Optional[User]:
        refreshed = False
        if self.session.is_expired(self.clock()):
            logger.info("Stored access token has expired, attempting silent refresh")
            if not await self._try_refresh():
                return None
            refreshed = True

        try:
            return await self.api.me(self.session.access_token)
        except TokenExpired:
            if refreshed:
                logger.info("Refreshed token was rejected by /auth/me, clearing session")
                self._clear_session()
                return None

        logger.info("Stored access token was rejected, attempting silent refresh")
        if not await self._try_refresh():
            return None
        try:
            return await self.api.me(self.session.access_token)
        except TokenExpired:
            logger.info("Refreshed token was rejected by /auth/me, clearing session")
            self._clear_session()
            return None

    async def _try_refresh(self) -> bool:
        try:
            await self.refresh()
        except RefreshFailed:
            return False
        return True

    # --- Refresh ---

    async def refresh(self) -> SessionData:
        """Single-flight: callers arriving while a refresh is running share its outcome."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> SessionData:
        session = self.session
        if session is None:
            raise RefreshFailed("No session to refresh")

        generation = self._generation
        previous_state = self.state
        self.state = SessionState.REFRESH_PENDING
        try:
            tokens = await self.api.refresh(session.refresh_token)
        except RefreshFailed as e:
            logger.warning("Token refresh rejected (%s), logging out", e.status_code)
            if self._generation == generation:
                self._clear_session()
            raise
        except CrmError:
            if self._generation == generation:
                self.state = previous_state
            raise

        if self._generation != generation:
            if self.session is None:
                raise RefreshFailed("Logged out during refresh")
            # superseded by a new login; its tokens stay, these are dropped
            logger.info("Discarding refreshed tokens for a session replaced by a new login")
            return self.session

        # self.session may be a newer copy (profile update) of the same identity
        self.session = self._store_tokens(tokens, self.session.storage_tier, user=self.session.user)
        self.state = SessionState.AUTHENTICATED
        logger.debug("Access token refreshed, expires at %s", self.session.expires_at.isoformat())
        return self.session

    async def refresh_if_needed(self) -> bool:
        if not self.is_authenticated:
            return False
        if self.session.seconds_remaining(self.clock()) >= self.refresh_margin:
            return False
        await self.refresh()
        return True

    async def get_access_token(self) -> str:
        if not self.is_authenticated:
            raise TokenExpired("Not authenticated")
        if self.session.is_expired(self.clock()):
            try:
                await self.refresh()
            except RefreshFailed as e:
                raise TokenExpired("Session expired, please log in again") from e
        return self.session.access_token

    # --- Scheduled refresh ---

    def schedule_refresh(self) -> asyncio.Task:
        if self._schedule_task is None or self._schedule_task.done():
            self._schedule_task = asyncio.ensure_future(self._refresh_loop())
        return self._schedule_task

    def cancel_refresh(self) -> None:
        if self._schedule_task is not None and not self._schedule_task.done():
            self._schedule_task.cancel()
        self._schedule_task = None

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            if not self.is_authenticated:
                return
            try:
                await self.refresh_if_needed()
            except RefreshFailed:
                logger.info("Scheduled refresh failed, session ended")
                return
            except CrmError as e:
                # retried on the next tick
                logger.warning("Scheduled refresh did not complete: %s", e)

    # --- Sign-out ---

    async def logout(self) -> None:
        session = self.session
        self.cancel_refresh()
        if session is not None:
            try:
                await self.api.logout(session.access_token)
            except CrmError as e:
                logger.info("Server-side logout failed, continuing: %s", e)
        self._clear_session()
        self.pending_verification_email = None

    # --- Internals ---

    def _store_tokens(self, tokens: TokenPair, tier: StorageTier, user: typing.Optional[User]) -> SessionData:
        token_expires = resolve_token_expiry(tokens)
        self.store.save(tier, tokens.token, tokens.refresh_token, token_expires)
        return SessionData(
            access_token=tokens.token,
            refresh_token=tokens.refresh_token,
            expires_at=expires_at_from_millis(token_expires),
            storage_tier=tier,
            user=user,
        )

    def _clear_session(self) -> None:
        self.store.clear()
        self._reset_state()

    def _reset_state(self) -> None:
        self._generation += 1
        self.session = None
        self.state = SessionState.UNAUTHENTICATED
