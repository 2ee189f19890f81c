# src/crm_portal_bff/validators.py
"""
Client-side form validation.

Forms are pydantic models; ``validate_form`` turns pydantic's error list into
a ``ValidationError`` keyed by the form's camelCase field names, one message
per field. Nothing in here touches the network.
"""

import re
import typing

from pydantic import ValidationError as PydanticValidationError
from pydantic import ConfigDict, ValidationInfo, field_validator

from .models import CrmModel
from .exceptions import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

FormT = typing.TypeVar("FormT", bound=CrmModel)


# --- Field rules ---

def required(value: str) -> str:
    if value is None or not str(value).strip():
        raise ValueError("This field is required")
    return value


def email(value: str) -> str:
    value = required(value).strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError("Please enter a valid email address")
    return value


def min_length(value: str, length: int) -> str:
    value = required(value)
    if len(value.strip()) < length:
        raise ValueError(f"Must be at least {length} characters")
    return value


def password_match(value: str, password: typing.Optional[str]) -> str:
    value = required(value)
    if password is not None and value != password:
        raise ValueError("Passwords do not match")
    return value


def _field_errors(exc: PydanticValidationError) -> typing.Dict[str, str]:
    errors: typing.Dict[str, str] = {}
    for err in exc.errors():
        field = str(err["loc"][0]) if err["loc"] else "form"
        if err["type"] == "value_error":
            message = str(err["ctx"]["error"])
        elif err["type"] == "missing":
            message = "This field is required"
        else:
            message = err["msg"]
        errors.setdefault(field, message)
    return errors


def validate_form(form_cls: typing.Type[FormT], data: typing.Any) -> FormT:
    if isinstance(data, form_cls):
        data = data.model_dump()
    try:
        return form_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError(_field_errors(e)) from None


# --- Forms ---

class FormModel(CrmModel):
    # Empty fields are left at their defaults and still have to pass their rules.
    model_config = ConfigDict(validate_default=True)


class LoginForm(FormModel):
    email: str = ""
    password: str = ""
    remember_me: bool = False

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return email(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        return min_length(v, 6)


class SignupForm(FormModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    primary_license_type: str = ""
    password: str = ""
    confirm_password: str = ""
    agree_to_terms: bool = False

    @field_validator("first_name", "last_name")
    @classmethod
    def _names(cls, v):
        return min_length(v, 2).strip()

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return email(v)

    @field_validator("primary_license_type")
    @classmethod
    def _license(cls, v):
        return required(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        return min_length(v, 8)

    @field_validator("confirm_password")
    @classmethod
    def _confirm(cls, v, info: ValidationInfo):
        return password_match(v, info.data.get("password"))

    @field_validator("agree_to_terms")
    @classmethod
    def _terms(cls, v):
        if not v:
            raise ValueError("You must accept the terms and conditions")
        return v

    def to_register_payload(self) -> typing.Dict[str, str]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "password": self.password,
            "confirm_password": self.confirm_password,
            "primaryLicenseType": self.primary_license_type,
        }


class EmailCodeForm(FormModel):
    """Email verification and password-reset code check share this shape."""

    email: str = ""
    code: str = ""

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return email(v)

    @field_validator("code")
    @classmethod
    def _code(cls, v):
        return required(v).strip()


class ForgotPasswordForm(FormModel):
    email: str = ""
    is_resend: bool = False

    @field_validator("email")
    @classmethod
    def _email(cls, v):
        return email(v)


class ResetPasswordForm(EmailCodeForm):
    password: str = ""
    confirm_password: str = ""

    @field_validator("password")
    @classmethod
    def _password(cls, v):
        return min_length(v, 8)

    @field_validator("confirm_password")
    @classmethod
    def _confirm(cls, v, info: ValidationInfo):
        return password_match(v, info.data.get("password"))
