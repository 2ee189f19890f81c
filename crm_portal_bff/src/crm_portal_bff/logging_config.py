# src/crm_portal_bff/logging_config.py
"""
Logging setup for the CRM portal BFF.
Call setup_logging() once at app startup.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record):
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "func": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        for key in ("session_id", "route", "status_code", "opportunity_id"):
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        return json.dumps(entry, default=str)


class HumanFormatter(logging.Formatter):
    def format(self, record):
        ts = datetime.now(timezone.utc).strftime("%H:%M:%S")
        line = f"{ts} [{record.levelname[0]}] {record.name}: {record.getMessage()}"
        if record.exc_info and record.exc_info[0]:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (default: settings.LOG_LEVEL)
        json_logs: Emit JSON lines instead of the console format (default: settings.LOG_JSON)
    """
    from .config import settings

    if level is None:
        level = settings.LOG_LEVEL
    if json_logs is None:
        json_logs = settings.LOG_JSON

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler()
    console.setFormatter(JSONFormatter() if json_logs else HumanFormatter())
    root.addHandler(console)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
