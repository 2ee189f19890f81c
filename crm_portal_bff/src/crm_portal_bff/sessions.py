# src/crm_portal_bff/sessions.py
"""
One ``PortalSession`` per browser.

The browser only carries an opaque session ID. Its tokens and board state live
here, owned by the application's ``SessionRegistry``. The ephemeral token
tier is process memory; the persistent tier is a JSON file per session ID.
"""

import asyncio
import logging
import time
import typing
import uuid
from dataclasses import dataclass
from pathlib import Path

from .accounts import AccountService
from .agents import AgentDirectory
from .api_client import CrmApiClient
from .exceptions import CrmError
from .onboarding import OnboardingWizard
from .pipeline import PipelineBoard
from .session_data import StorageTier
from .session_manager import SessionManager
from .storage import JsonFileStorage, MemoryStorage, TokenStore

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 24 * 60 * 60
PRUNE_INTERVAL = 60


@dataclass
class PortalSession:
    session_id: str
    manager: SessionManager
    board: PipelineBoard
    agents: AgentDirectory
    accounts: AccountService
    onboarding: typing.Optional[OnboardingWizard] = None
    last_seen: float = 0.0

    @property
    def is_persistent(self) -> bool:
        return self.manager.storage_tier is StorageTier.PERSISTENT


def _valid_session_id(session_id: typing.Optional[str]) -> bool:
    if not session_id:
        return False
    try:
        return str(uuid.UUID(session_id)) == session_id
    except ValueError:
        return False


class SessionRegistry:
    """
    Holds the portal sessions of signed-in browsers.

    Anonymous sessions are built per request and forgotten by ``track`` once
    the request is done, so cookies that never log in cost nothing. Signed-in
    sessions stay until they log out or sit idle for ``idle_timeout`` seconds;
    a persistent one is rebuilt from its file on the next request after that.
    """

    def __init__(
        self,
        api: CrmApiClient,
        storage_dir: typing.Union[str, Path],
        *,
        refresh_interval: float,
        refresh_margin: float,
        allow_reopen: bool = False,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        clock: typing.Callable[[], float] = time.time,
    ):
        self.api = api
        self.storage_dir = Path(storage_dir)
        self.refresh_interval = refresh_interval
        self.refresh_margin = refresh_margin
        self.allow_reopen = allow_reopen
        self.idle_timeout = idle_timeout
        self.clock = clock
        self._sessions: typing.Dict[str, PortalSession] = {}
        self._pruned_at = clock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _build(self, session_id: str) -> PortalSession:
        store = TokenStore(
            persistent=JsonFileStorage(self.storage_dir / f"{session_id}.json"),
            ephemeral=MemoryStorage(),
        )
        manager = SessionManager(
            self.api,
            store,
            refresh_interval=self.refresh_interval,
            refresh_margin=self.refresh_margin,
            clock=self.clock,
        )
        return PortalSession(
            session_id=session_id,
            manager=manager,
            board=PipelineBoard(self.api, manager.get_access_token, allow_reopen=self.allow_reopen),
            agents=AgentDirectory(self.api, manager.get_access_token),
            accounts=AccountService(self.api, store),
        )

    async def get(self, session_id: typing.Optional[str]) -> PortalSession:
        """Returns the session for this cookie value, building (and restoring) it when not held."""
        now = self.clock()
        if now - self._pruned_at >= PRUNE_INTERVAL:
            self.prune_idle()

        if not _valid_session_id(session_id):
            session_id = str(uuid.uuid4())

        session = self._sessions.get(session_id)
        if session is None:
            session = self._build(session_id)
            await self._restore(session)
            if session.manager.is_authenticated:
                held = self._sessions.get(session_id)
                if held is not None:
                    # a concurrent request restored it first
                    session.manager.cancel_refresh()
                    session = held
                else:
                    self._sessions[session_id] = session
        session.last_seen = now
        return session

    async def _restore(self, session: PortalSession) -> None:
        try:
            restored = await session.manager.restore_session()
        except CrmError as e:
            # Storage is untouched; the next request tries again.
            logger.warning("Could not restore session %s: %s", session.session_id, e)
            return
        if restored is not None:
            session.manager.schedule_refresh()

    def track(self, session: PortalSession) -> None:
        """Called once a request is done: keeps the session if it is signed in, forgets it otherwise."""
        held = self._sessions.get(session.session_id)
        if session.manager.is_authenticated:
            if held is not session:
                if held is not None:
                    held.manager.cancel_refresh()
                self._sessions[session.session_id] = session
        elif held is session:
            self.discard(session.session_id)

    def discard(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.manager.cancel_refresh()

    def prune_idle(self) -> int:
        now = self.clock()
        self._pruned_at = now
        idle = [sid for sid, s in self._sessions.items() if now - s.last_seen > self.idle_timeout]
        for session_id in idle:
            self.discard(session_id)
        if idle:
            logger.info("Dropped %d idle portal sessions", len(idle))
        return len(idle)

    async def close(self) -> None:
        for session in self._sessions.values():
            session.manager.cancel_refresh()
        await asyncio.gather(
            *(session.board.wait_for_sync() for session in self._sessions.values()),
            return_exceptions=True,
        )
        logger.info("Closed %d portal sessions", len(self._sessions))
