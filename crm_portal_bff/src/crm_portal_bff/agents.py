# src/crm_portal_bff/agents.py

import logging
import typing

from .api_client import CrmApiClient
from .exceptions import AgentNotFound
from .formatters import format_full_name, format_member_since
from .models import Agent, AgentsPage, CrmModel
from .pipeline import TokenProvider

logger = logging.getLogger(__name__)

# Agent detail has no endpoint of its own; it is found in one large page.
DETAIL_SCAN_LIMIT = 1000


class AgentSummary(CrmModel):
    """An agent plus the display fields the admin list and detail views show."""

    agent: Agent
    full_name: str
    member_since: str
    status_name: str


def summarize(agent: Agent) -> AgentSummary:
    return AgentSummary(
        agent=agent,
        full_name=format_full_name(agent.first_name, agent.last_name),
        member_since=format_member_since(agent.created_at),
        status_name=(agent.status.name if agent.status and agent.status.name else
                     ("Approved" if agent.is_approved else "Pending")),
    )


class AgentDirectory:
    def __init__(self, api: CrmApiClient, token_provider: TokenProvider):
        self.api = api
        self.token_provider = token_provider

    async def list_agents(self, page: int = 1, limit: int = 10) -> AgentsPage:
        token = await self.token_provider()
        return await self.api.list_agents(token, page=page, limit=limit)

    async def list_pending(self, page: int = 1, limit: int = 10) -> AgentsPage:
        token = await self.token_provider()
        return await self.api.list_pending_agents(token, page=page, limit=limit)

    async def approve(self, agent_id: str) -> None:
        token = await self.token_provider()
        await self.api.approve_agent(token, agent_id)
        logger.info("Approved agent %s", agent_id)

    async def get_agent(self, agent_id: str) -> Agent:
        page = await self.list_agents(page=1, limit=DETAIL_SCAN_LIMIT)
        for agent in page.data:
            if agent.id == agent_id:
                return agent
        raise AgentNotFound(agent_id)
