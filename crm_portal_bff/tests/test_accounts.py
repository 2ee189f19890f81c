# tests/test_accounts.py

import pytest

from crm_portal_bff.accounts import AccountService
from crm_portal_bff.exceptions import ApiError, ValidationError

from .conftest import request_json


@pytest.fixture
def accounts(api, store) -> AccountService:
    return AccountService(api, store)


async def test_signup_registers_and_remembers_license_type(accounts, backend):
    backend.on("POST", "/auth/crm/register", status=201, json={"success": True, "message": "Check your email"})

    result = await accounts.signup({
        "firstName": "Jane",
        "lastName": "Doe",
        "email": "jane@example.com",
        "primaryLicenseType": "LIFE",
        "password": "longenough",
        "confirmPassword": "longenough",
        "agreeToTerms": True,
    })

    assert result.message == "Check your email"
    assert accounts.saved_license_type() == "LIFE"
    body = request_json(backend.calls("POST", "/auth/crm/register")[0])
    assert body["primaryLicenseType"] == "LIFE"
    assert body["confirm_password"] == "longenough"


async def test_rejected_signup_remembers_nothing(accounts, backend):
    backend.on("POST", "/auth/crm/register", status=409, json={"message": "Email already registered"})

    with pytest.raises(ApiError) as exc_info:
        await accounts.signup({
            "firstName": "Jane",
            "lastName": "Doe",
            "email": "jane@example.com",
            "primaryLicenseType": "LIFE",
            "password": "longenough",
            "confirmPassword": "longenough",
            "agreeToTerms": True,
        })

    assert exc_info.value.status_code == 409
    assert accounts.saved_license_type() is None


async def test_invalid_signup_makes_no_request(accounts, backend):
    with pytest.raises(ValidationError):
        await accounts.signup({"email": "jane@example.com"})
    assert backend.requests == []
    assert accounts.saved_license_type() is None


async def test_forgot_password_sends_resend_flag(accounts, backend):
    backend.on("POST", "/auth/crm/forgot/password", json={"success": True})

    await accounts.forgot_password({"email": "jane@example.com", "isResend": True})

    assert request_json(backend.calls("POST", "/auth/crm/forgot/password")[0]) == {
        "email": "jane@example.com",
        "isResend": True,
    }


async def test_reset_flow(accounts, backend):
    backend.on("POST", "/auth/verify/password-reset-code", json={"success": True})
    backend.on("POST", "/auth/reset/password", json={"success": True})

    await accounts.verify_reset_code({"email": "jane@example.com", "code": "123456"})
    await accounts.reset_password({
        "email": "jane@example.com",
        "code": "123456",
        "password": "newpassword",
        "confirmPassword": "newpassword",
    })

    assert request_json(backend.calls("POST", "/auth/reset/password")[0]) == {
        "email": "jane@example.com",
        "password": "newpassword",
        "code": "123456",
    }


async def test_wrong_code_surfaces_server_message(accounts, backend):
    backend.on("POST", "/auth/verify/password-reset-code", status=400, json={"message": "Code expired"})

    with pytest.raises(ApiError) as exc_info:
        await accounts.verify_reset_code({"email": "jane@example.com", "code": "000000"})
    assert exc_info.value.message == "Code expired"
