# src/crm_portal_bff/onboarding.py
"""
Agent onboarding wizard: registration type, profile, review & submit.

Newly registered agents land here until an admin approves them. The wizard
prefills from the signed-in user and from the license type chosen at signup.
"""

import asyncio
import enum
import logging
import typing

from pydantic import field_validator

from .api_client import CrmApiClient
from .exceptions import CrmError, ValidationError
from .models import CrmModel, LookupItem, LookupKind, ProfileUpdate, User
from .validators import validate_form

logger = logging.getLogger(__name__)


class OnboardingStep(int, enum.Enum):
    REGISTRATION_TYPE = 1
    PROFILE = 2
    REVIEW = 3

    @property
    def label(self) -> str:
        return {1: "Registration Type", 2: "Profile Fillup", 3: "Review & Submit"}[self.value]


class RegistrationType(str, enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    BUSINESS = "BUSINESS"
    EMPLOYEE = "EMPLOYEE"


REGISTRATION_TYPE_DESCRIPTIONS = {
    RegistrationType.INDIVIDUAL: "Operate independently under your own brand.",
    RegistrationType.BUSINESS: "Register your business structure.",
    RegistrationType.EMPLOYEE: "Work directly with an existing agency team.",
}


def _whole_number(value: str) -> typing.Optional[int]:
    value = value.strip()
    # ASCII only: str.isdigit() also accepts superscripts that int() rejects
    if value.isascii() and value.isdigit():
        return int(value)
    return None


class OnboardingForm(CrmModel):
    registration_type: typing.Optional[RegistrationType] = None
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    mobile: str = ""
    primary_license_type: str = ""
    resident_state: str = ""
    license_number: str = ""
    years_licensed: str = ""
    prior_products_sold: str = ""
    current_company: str = ""

    @field_validator("years_licensed", mode="before")
    @classmethod
    def accept_number(cls, v: typing.Any) -> typing.Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class OnboardingWizard:
    def __init__(
        self,
        user: User,
        license_types: typing.Sequence[LookupItem] = (),
        regions: typing.Sequence[LookupItem] = (),
        saved_license_type: typing.Optional[str] = None,
    ):
        self.user = user
        self.license_types = list(license_types)
        self.regions = list(regions)
        self.step = OnboardingStep.REGISTRATION_TYPE
        self.submitted = False

        self.form = OnboardingForm(
            first_name=user.first_name or "",
            last_name=user.last_name or "",
            email=user.email or "",
        )
        # Only pre-select the signup choice if it is still an offered option.
        if saved_license_type and any(item.value == saved_license_type for item in self.license_types):
            self.form = self.form.model_copy(update={"primary_license_type": saved_license_type})

    @classmethod
    async def start(
        cls, api: CrmApiClient, user: User, saved_license_type: typing.Optional[str] = None
    ) -> "OnboardingWizard":
        try:
            license_types, regions = await asyncio.gather(
                api.get_lookup(LookupKind.LICENSE_TYPES),
                api.get_lookup(LookupKind.REGIONS),
            )
        except CrmError as e:
            # The wizard still works; the selects are just empty.
            logger.error("Failed to fetch onboarding lookups: %s", e)
            license_types, regions = [], []
        return cls(user, license_types, regions, saved_license_type)

    # --- Form state ---

    def update(self, fields: typing.Mapping[str, typing.Any]) -> OnboardingForm:
        """Applies the given fields (camelCase or snake_case) on top of the current form."""
        incoming = validate_form(OnboardingForm, dict(fields))
        changes = {name: getattr(incoming, name) for name in incoming.model_fields_set}
        self.form = self.form.model_copy(update=changes)
        return self.form

    def step_errors(self, step: typing.Optional[OnboardingStep] = None) -> typing.Dict[str, str]:
        step = step or self.step
        errors: typing.Dict[str, str] = {}
        if step is OnboardingStep.REGISTRATION_TYPE:
            if self.form.registration_type is None:
                errors["registrationType"] = "Please choose a registration type"
        elif step is OnboardingStep.PROFILE:
            if not self.form.first_name.strip():
                errors["firstName"] = "This field is required"
            if not self.form.last_name.strip():
                errors["lastName"] = "This field is required"
            if not self.form.primary_license_type:
                errors["primaryLicenseType"] = "This field is required"
            if self.form.years_licensed.strip() and _whole_number(self.form.years_licensed) is None:
                errors["yearsLicensed"] = "Must be a whole number"
        return errors

    def is_step_valid(self, step: typing.Optional[OnboardingStep] = None) -> bool:
        return not self.step_errors(step)

    def next(self) -> OnboardingStep:
        errors = self.step_errors()
        if errors:
            raise ValidationError(errors)
        if self.step is not OnboardingStep.REVIEW:
            self.step = OnboardingStep(self.step.value + 1)
        return self.step

    def back(self) -> OnboardingStep:
        if self.step is not OnboardingStep.REGISTRATION_TYPE:
            self.step = OnboardingStep(self.step.value - 1)
        return self.step

    # --- Submit ---

    def to_profile_update(self) -> ProfileUpdate:
        form = self.form
        return ProfileUpdate(
            first_name=form.first_name.strip(),
            last_name=form.last_name.strip(),
            mobile=form.mobile.strip() or None,
            registration_type=form.registration_type.value if form.registration_type else None,
            primary_license_type=form.primary_license_type or None,
            resident_state=form.resident_state or None,
            license_number=form.license_number.strip() or None,
            years_licensed=_whole_number(form.years_licensed),
            prior_products_sold=form.prior_products_sold or None,
            current_company=form.current_company.strip() or None,
        )

    async def submit(self, api: CrmApiClient, token: str) -> User:
        if self.step is not OnboardingStep.REVIEW:
            raise ValidationError({"step": "Complete every step before submitting"})
        errors = {}
        for step in (OnboardingStep.REGISTRATION_TYPE, OnboardingStep.PROFILE):
            errors.update(self.step_errors(step))
        if errors:
            raise ValidationError(errors)

        user = await api.update_profile(token, self.user.id, self.to_profile_update())
        self.user = user
        self.submitted = True
        logger.info("Onboarding profile submitted for user %s", user.id)
        return user
