# src/crm_portal_bff/filters.py

import typing
from datetime import date

from pydantic import ConfigDict, Field

from .models import PIPELINE_STAGES, CrmModel, Opportunity, PipelineStage

ALL = "All"

ACCOUNT_TYPE_OPTIONS = (ALL, "Individual", "Business", "Employees")
SERVICE_OPTIONS = (ALL, "Life Insurance", "Annuity", "Medicare")
INTEREST_OPTIONS = (ALL, "Cold", "Warm", "Hot")
DAYS_OPEN_RANGE = (0, 365)


class FilterSpec(CrmModel):
    """
    Board filter state. Each multi-select dimension is the set of chosen option
    labels; an empty set or one containing "All" lets everything through.
    """
    model_config = ConfigDict(frozen=True)

    account_types: typing.FrozenSet[str] = frozenset({ALL})
    services: typing.FrozenSet[str] = frozenset({ALL})
    interests: typing.FrozenSet[str] = frozenset({ALL})
    days_open: typing.Optional[int] = Field(default=None, ge=DAYS_OPEN_RANGE[0], le=DAYS_OPEN_RANGE[1])
    max_closing_date: typing.Optional[date] = None


def _selects_all(selected: typing.AbstractSet[str]) -> bool:
    return not selected or ALL in selected


def _is_selected(value: typing.Optional[str], selected: typing.AbstractSet[str]) -> bool:
    if _selects_all(selected):
        return True
    if not value:
        return False
    wanted = {s.casefold() for s in selected}
    return value.casefold() in wanted


def matches(opportunity: Opportunity, spec: FilterSpec, today: date) -> bool:
    if not _is_selected(opportunity.account_type, spec.account_types):
        return False
    if not _is_selected(opportunity.service, spec.services):
        return False
    temperature = opportunity.temperature.value if opportunity.temperature else None
    if not _is_selected(temperature, spec.interests):
        return False
    if spec.days_open is not None:
        if opportunity.create_date is None:
            return False
        if (today - opportunity.create_date.date()).days > spec.days_open:
            return False
    if spec.max_closing_date is not None:
        if opportunity.closing_date is None or opportunity.closing_date > spec.max_closing_date:
            return False
    return True


def apply_filters(
    opportunities: typing.Iterable[Opportunity],
    spec: typing.Optional[FilterSpec] = None,
    today: typing.Optional[date] = None,
) -> typing.List[Opportunity]:
    """Returns a new list; the input is never modified. Order is preserved."""
    if spec is None:
        return list(opportunities)
    today = today or date.today()
    return [o for o in opportunities if matches(o, spec, today)]


def group_by_stage(
    opportunities: typing.Iterable[Opportunity],
) -> typing.Dict[PipelineStage, typing.List[Opportunity]]:
    """Every stage gets a column, in funnel order, even when empty. No sorting inside a column."""
    columns: typing.Dict[PipelineStage, typing.List[Opportunity]] = {stage: [] for stage in PIPELINE_STAGES}
    for opportunity in opportunities:
        columns[opportunity.pipeline_stage].append(opportunity)
    return columns
