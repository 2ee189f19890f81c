# src/crm_portal_bff/exceptions.py

from typing import Dict, Optional


class CrmError(Exception):
    """Base class for everything the portal raises about the CRM backend or its own rules."""

    def __init__(self, message: str = "CRM request failed"):
        self.message = message
        super().__init__(message)


class CrmConnectionError(CrmError):
    """The CRM backend could not be reached at all."""


class ApiError(CrmError):
    """Non-2xx answer from the CRM backend. `message` is the server's own text when it sent one."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.status_code}: {self.message}"


# --- Authentication ---

class InvalidCredentials(ApiError):
    def __init__(self, message: str = "Invalid email or password", status_code: int = 401):
        super().__init__(status_code, message)


class EmailNotVerified(ApiError):
    def __init__(self, email: str, message: str = "EMAIL_NOT_VERIFIED"):
        self.email = email
        super().__init__(403, message)


class TokenExpired(CrmError):
    def __init__(self, message: str = "Access token is missing, expired or was rejected"):
        super().__init__(message)


class RefreshFailed(CrmError):
    def __init__(self, message: str = "Failed to refresh token", status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


# --- Client-side validation ---

class ValidationError(CrmError):
    """Per-field form errors. Raised before any network call is made."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        super().__init__("; ".join(f"{field}: {msg}" for field, msg in self.errors.items()))


class InvalidStageTransition(ValidationError):
    def __init__(self, opportunity_id: str, from_stage: str, to_stage: str):
        self.opportunity_id = opportunity_id
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(
            {"pipelineStage": f"Opportunity {opportunity_id} is closed ({from_stage}) and cannot move to {to_stage}"}
        )


# --- Lists and lookups ---

class LoadError(CrmError):
    """A list fetch failed. The caller may retry by loading again."""


class OpportunityNotFound(CrmError):
    def __init__(self, opportunity_id: str):
        self.opportunity_id = opportunity_id
        super().__init__(f"Opportunity {opportunity_id} not found")


class AgentNotFound(CrmError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__("Agent not found")
