# src/crm_portal_bff/pipeline.py
"""
Kanban board state for the opportunity pipeline.

The board owns the fetched list of opportunities. Stage moves are applied to
that list first and synced to the backend afterwards; when the backend rejects
a move, the opportunity goes back to the stage it came from (unless it has
been moved again in the meantime).
"""

import asyncio
import logging
import typing
from datetime import date

from .api_client import CrmApiClient
from .exceptions import CrmError, InvalidStageTransition, LoadError, OpportunityNotFound
from .filters import FilterSpec, apply_filters, group_by_stage
from .models import Opportunity, PipelineStage

logger = logging.getLogger(__name__)

TokenProvider = typing.Callable[[], typing.Awaitable[str]]


class PipelineBoard:
    def __init__(self, api: CrmApiClient, token_provider: TokenProvider, *, allow_reopen: bool = False):
        self.api = api
        self.token_provider = token_provider
        self.allow_reopen = allow_reopen

        self.loaded = False
        self.sync_errors: typing.Dict[str, CrmError] = {}
        self._opportunities: typing.List[Opportunity] = []
        self._pending: typing.Set[asyncio.Task] = set()

    @property
    def opportunities(self) -> typing.List[Opportunity]:
        return list(self._opportunities)

    async def load(self) -> typing.List[Opportunity]:
        try:
            token = await self.token_provider()
            opportunities = await self.api.list_opportunities(token)
        except CrmError as e:
            logger.warning("Loading opportunities failed: %s", e)
            raise LoadError(f"Failed to load opportunities: {e.message}") from e

        self._opportunities = list(opportunities)
        self.sync_errors.clear()
        self.loaded = True
        logger.info("Loaded %d opportunities", len(self._opportunities))
        return self.opportunities

    def clear(self) -> None:
        """Forgets the loaded list, e.g. when a different user signs in."""
        self._opportunities = []
        self.sync_errors.clear()
        self.loaded = False

    def get(self, opportunity_id: str) -> Opportunity:
        return self._opportunities[self._index_of(opportunity_id)]

    def _index_of(self, opportunity_id: str) -> int:
        for i, opportunity in enumerate(self._opportunities):
            if opportunity.id == opportunity_id:
                return i
        raise OpportunityNotFound(opportunity_id)

    # --- Drag and drop ---

    def move_to_stage(self, opportunity_id: str, new_stage: PipelineStage) -> asyncio.Task:
        """
        Moves the card now and returns the task that syncs the move to the backend.
        Awaiting the task is optional; it resolves to the server's copy, or None
        when the move was rejected and reverted.
        """
        new_stage = PipelineStage(new_stage)
        index = self._index_of(opportunity_id)
        current = self._opportunities[index]
        previous_stage = current.pipeline_stage

        if new_stage is previous_stage:
            return asyncio.ensure_future(self._unchanged(current))
        if previous_stage.is_terminal and not self.allow_reopen:
            raise InvalidStageTransition(opportunity_id, previous_stage.value, new_stage.value)

        self._opportunities[index] = current.model_copy(update={"pipeline_stage": new_stage})
        self.sync_errors.pop(opportunity_id, None)
        logger.debug("Moved %s from %s to %s", opportunity_id, previous_stage.value, new_stage.value)

        task = asyncio.ensure_future(self._sync_stage(opportunity_id, previous_stage, new_stage))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _unchanged(self, opportunity: Opportunity) -> Opportunity:
        return opportunity

    async def _sync_stage(
        self, opportunity_id: str, previous_stage: PipelineStage, new_stage: PipelineStage
    ) -> typing.Optional[Opportunity]:
        try:
            token = await self.token_provider()
            return await self.api.update_opportunity_stage(token, opportunity_id, new_stage)
        except CrmError as e:
            logger.warning(
                "Backend rejected moving %s to %s, reverting to %s: %s",
                opportunity_id, new_stage.value, previous_stage.value, e,
            )
            self.sync_errors[opportunity_id] = e
            self._revert(opportunity_id, previous_stage, new_stage)
            return None

    def _revert(self, opportunity_id: str, previous_stage: PipelineStage, rejected_stage: PipelineStage) -> None:
        try:
            index = self._index_of(opportunity_id)
        except OpportunityNotFound:
            return  # list was reloaded without it
        current = self._opportunities[index]
        if current.pipeline_stage is rejected_stage:
            self._opportunities[index] = current.model_copy(update={"pipeline_stage": previous_stage})

    async def wait_for_sync(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    # --- Derived views ---

    def apply_filters(self, spec: typing.Optional[FilterSpec], today: typing.Optional[date] = None) -> typing.List[Opportunity]:
        return apply_filters(self._opportunities, spec, today)

    def columns(
        self, spec: typing.Optional[FilterSpec] = None, today: typing.Optional[date] = None
    ) -> typing.Dict[PipelineStage, typing.List[Opportunity]]:
        return group_by_stage(self.apply_filters(spec, today))
