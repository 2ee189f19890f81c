# src/crm_portal_bff/accounts.py
"""Signup and password-reset flows. None of these need a session."""

import logging
import typing

from .api_client import CrmApiClient
from .models import RegisterResult
from .storage import TokenStore
from .validators import (
    EmailCodeForm,
    ForgotPasswordForm,
    ResetPasswordForm,
    SignupForm,
    validate_form,
)

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(self, api: CrmApiClient, store: TokenStore):
        self.api = api
        self.store = store

    async def signup(self, data: typing.Any) -> RegisterResult:
        form = validate_form(SignupForm, data)
        result = await self.api.register(form.to_register_payload())
        # Kept for the onboarding wizard, which pre-selects it after the first login.
        self.store.save_primary_license_type(form.primary_license_type)
        logger.info("Registered new CRM agent account")
        return result

    async def forgot_password(self, data: typing.Any) -> None:
        form = validate_form(ForgotPasswordForm, data)
        await self.api.forgot_password(form.email, is_resend=form.is_resend)

    async def verify_reset_code(self, data: typing.Any) -> None:
        form = validate_form(EmailCodeForm, data)
        await self.api.verify_password_reset_code(form.email, form.code)

    async def reset_password(self, data: typing.Any) -> None:
        form = validate_form(ResetPasswordForm, data)
        await self.api.reset_password(form.email, form.password, form.code)

    def saved_license_type(self) -> typing.Optional[str]:
        return self.store.primary_license_type()
