# src/crm_portal_bff/formatters.py

import typing
from datetime import datetime, timezone


def to_title_case(value: typing.Optional[str]) -> str:
    if not value:
        return ""
    return " ".join(word[:1].upper() + word[1:].lower() for word in value.split(" "))


def format_full_name(first_name: typing.Optional[str], last_name: typing.Optional[str]) -> str:
    return " ".join(part for part in (to_title_case(first_name), to_title_case(last_name)) if part)


def _plural(count: int, unit: str) -> str:
    return f"1 {unit}" if count == 1 else f"{count} {unit}s"


def format_member_since(
    created_at: typing.Optional[datetime], now: typing.Optional[datetime] = None
) -> str:
    """Human-readable age of an account: "Today", "3 days", "2 weeks", "1 year"..."""
    if created_at is None:
        return "-"
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    days = (now - created_at).days

    if days < 1:
        return "Today"
    if days < 7:
        return _plural(days, "day")
    if days < 30:
        return _plural(days // 7, "week")
    if days < 365:
        return _plural(days // 30, "month")
    return _plural(days // 365, "year")
