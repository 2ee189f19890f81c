# src/crm_portal_bff/models.py
"""
Wire models for the CRM backend.

Field names are snake_case in Python and camelCase on the wire; every model
accepts either form and dumps camelCase with ``model_dump(by_alias=True)``.
"""

import enum
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CrmModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# --- Users ---

class NamedRef(CrmModel):
    id: str = ""
    name: Optional[str] = ""


class User(CrmModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    mobile: Optional[str] = None
    registration_type: Optional[str] = None
    primary_license_type: Optional[str] = None
    resident_state: Optional[str] = None
    license_number: Optional[str] = None
    years_licensed: Optional[int] = None
    prior_products_sold: Optional[str] = None
    current_company: Optional[str] = None
    created_at: Optional[datetime] = None
    role: NamedRef = Field(default_factory=NamedRef)
    status: NamedRef = Field(default_factory=NamedRef)
    is_approved: bool = False

    @property
    def is_admin(self) -> bool:
        return (self.role.name or "").upper() == "ADMIN"


class TokenPair(CrmModel):
    """Answer of /auth/refresh. `token_expires` is milliseconds since the epoch."""

    token: str
    refresh_token: str
    token_expires: Optional[int] = None


class LoginResult(TokenPair):
    user: User


class ProfileUpdate(CrmModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    mobile: Optional[str] = None
    registration_type: Optional[str] = None
    primary_license_type: Optional[str] = None
    resident_state: Optional[str] = None
    license_number: Optional[str] = None
    years_licensed: Optional[int] = None
    prior_products_sold: Optional[str] = None
    current_company: Optional[str] = None


class RegisterResult(CrmModel):
    success: bool = True
    message: str = ""
    data: Optional[dict] = None


# --- Agents (admin) ---

class Agent(CrmModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    mobile: Optional[str] = None
    primary_license_type: Optional[str] = None
    registration_type: Optional[str] = None
    is_approved: bool = False
    status: Optional[NamedRef] = None
    created_at: Optional[datetime] = None


class AgentsPage(CrmModel):
    data: List[Agent] = Field(default_factory=list)
    has_next_page: bool = False
    current: int = 1
    limit: int = 10
    total: int = 0


# --- Lookup tables ---

class LookupKind(str, enum.Enum):
    LICENSE_TYPES = "license-types"
    REGIONS = "regions"
    TERM_LICENSES = "term-licenses"
    PRODUCTS_SOLD = "product-sold"


class LookupItem(CrmModel):
    id: str
    label: str
    value: str
    code: Optional[str] = None
    order: int = 0
    is_active: bool = True


# --- Opportunities ---

class PipelineStage(str, enum.Enum):
    LEADS_INTEREST = "LEADS_INTEREST"
    PROSPECT_QUOTE = "PROSPECT_QUOTE"
    PROSPECT_APP_SIGNED = "PROSPECT_APP_SIGNED"
    PROSPECT_UNDERWRITING = "PROSPECT_UNDERWRITING"
    CLIENT_WON_IN_FORCE = "CLIENT_WON_IN_FORCE"
    LOST_LOST = "LOST_LOST"

    @property
    def label(self) -> str:
        return STAGE_LABELS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STAGES


# Declaration order above is funnel order.
PIPELINE_STAGES = tuple(PipelineStage)
TERMINAL_STAGES = frozenset({PipelineStage.CLIENT_WON_IN_FORCE, PipelineStage.LOST_LOST})
STAGE_LABELS = {
    PipelineStage.LEADS_INTEREST: "Leads / Interest",
    PipelineStage.PROSPECT_QUOTE: "Prospect / Quote",
    PipelineStage.PROSPECT_APP_SIGNED: "Prospect / App Signed",
    PipelineStage.PROSPECT_UNDERWRITING: "Prospect / Underwriting",
    PipelineStage.CLIENT_WON_IN_FORCE: "Client / Won / In Force",
    PipelineStage.LOST_LOST: "Lost",
}


class Temperature(str, enum.Enum):
    HOT = "HOT"
    WARM = "WARM"
    COLD = "COLD"
    UNKNOWN = "UNKNOWN"


class ContactSummary(CrmModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone_number: Optional[str] = None


class Opportunity(CrmModel):
    id: str
    name: str
    service: Optional[str] = None
    create_date: Optional[datetime] = None
    pipeline_stage: PipelineStage = PipelineStage.LEADS_INTEREST
    temperature: Optional[Temperature] = None
    est_annual_premium: Optional[float] = None
    opportunity_amount: Optional[float] = None
    contact_id: Optional[str] = None
    agent_id: Optional[str] = None
    is_locked: bool = False
    account_type: Optional[str] = None
    closing_date: Optional[date] = None
    contact: Optional[ContactSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
