# src/crm_portal_bff/navigation.py

import typing

from pydantic import BaseModel, Field

from .models import User

LOGIN_PATH = "/login"
PROFILE_PATH = "/profile"
HOME_PATH = "/dashboard"


class NavItem(BaseModel):
    label: str
    icon: str
    path: typing.Optional[str] = None
    admin_only: bool = False
    children: typing.List["NavItem"] = Field(default_factory=list)


NAV_ITEMS: typing.List[NavItem] = [
    NavItem(path="/dashboard", label="Dashboard", icon="dashboard"),
    NavItem(path="/contacts", label="Contacts", icon="group"),
    NavItem(path="/pipeline", label="Pipeline", icon="ads_click"),
    NavItem(
        label="Opportunities",
        icon="chat_bubble",
        children=[
            NavItem(path="/opportunities/individuals", label="Individuals", icon="group"),
            NavItem(path="/opportunities/businesses", label="Businesses", icon="chat_bubble"),
            NavItem(path="/opportunities/employees", label="Employees", icon="campaign"),
        ],
    ),
    NavItem(path="/admin/users", label="Users & Agents", icon="badge", admin_only=True),
    NavItem(path="/settings", label="Settings", icon="settings"),
]

ADMIN_PATH_PREFIXES = ("/admin",)


def visible_items(user: typing.Optional[User], items: typing.Sequence[NavItem] = NAV_ITEMS) -> typing.List[NavItem]:
    is_admin = user is not None and user.is_admin
    visible = []
    for item in items:
        if item.admin_only and not is_admin:
            continue
        if item.children:
            item = item.model_copy(update={"children": visible_items(user, item.children)})
        visible.append(item)
    return visible


def guard_route(user: typing.Optional[User], path: str) -> typing.Optional[str]:
    """Where to send `user` instead of `path`, or None when the route may render."""
    if user is None:
        return LOGIN_PATH
    if not user.is_approved and path != PROFILE_PATH:
        return PROFILE_PATH
    if not user.is_admin and path.startswith(ADMIN_PATH_PREFIXES):
        return HOME_PATH
    return None
