# tests/test_navigation.py

import pytest

from crm_portal_bff.models import User
from crm_portal_bff.navigation import guard_route, visible_items

from .conftest import user_payload


def make_user(role: str = "CRM_AGENT", approved: bool = True) -> User:
    return User.model_validate(user_payload(role=role, isApproved=approved))


def labels(items):
    return [item.label for item in items]


def test_agents_do_not_see_admin_items():
    items = visible_items(make_user())
    assert "Users & Agents" not in labels(items)
    assert "Pipeline" in labels(items)


def test_admins_see_everything():
    assert "Users & Agents" in labels(visible_items(make_user(role="admin")))


def test_opportunity_children_are_kept():
    opportunities = next(item for item in visible_items(make_user()) if item.label == "Opportunities")
    assert labels(opportunities.children) == ["Individuals", "Businesses", "Employees"]


@pytest.mark.parametrize("user, path, expected", [
    (None, "/dashboard", "/login"),
    (make_user(approved=False), "/pipeline", "/profile"),
    (make_user(approved=False), "/profile", None),
    (make_user(), "/admin/users", "/dashboard"),
    (make_user(role="ADMIN"), "/admin/users", None),
    (make_user(), "/pipeline", None),
])
def test_guard_route(user, path, expected):
    assert guard_route(user, path) == expected
