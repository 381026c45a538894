from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.jwt import get_password_hash
from ..config import settings
from ..models.models import Profile, Resident, User
from .linking_codes import normalize_linking_code, validate_linking_code_and_apartment

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

STEP_LINKING_CODE = 1
STEP_PERSONAL_DATA = 2
STEP_CREDENTIALS = 3
STEP_REVIEW = 4


class RegistrationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    TIMED_OUT_ASSUME_SUCCESS = "timed_out_assume_success"
    FAILED = "failed"


OUTCOME_MESSAGES = {
    RegistrationOutcome.CONFIRMED: "Registration completed. Check your email to confirm the account.",
    RegistrationOutcome.TIMED_OUT_ASSUME_SUCCESS: (
        "Your account was created. If you have trouble signing in, contact support."
    ),
    RegistrationOutcome.FAILED: "Your account was created but could not be verified. Contact support.",
}


@dataclass
class RegistrationData:
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""
    linking_code: str = ""
    apartment_number: str = ""
    floor: str = ""
    family_members: str = ""
    parking_spaces: str = ""
    password: str = ""
    confirm_password: str = ""

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "RegistrationData":
        known = {key: "" if value is None else str(value) for key, value in values.items() if key in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    delay_seconds: float = 1.5

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.registration_confirm_attempts,
            delay_seconds=settings.registration_confirm_delay_seconds,
        )


@dataclass
class RegistrationResult:
    outcome: RegistrationOutcome
    user_id: int
    attempts: int
    message: str
    condominium_id: Optional[int] = None
    condominium_name: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome != RegistrationOutcome.FAILED


class RegistrationError(ValueError):
    """Registration input was rejected before an account was created."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


def validate_personal_data(data: RegistrationData) -> Optional[str]:
    required = (data.first_name, data.last_name, data.email, data.phone)
    if any(not value.strip() for value in required):
        return "Fill in all required personal fields."
    try:
        validate_email(data.email.strip(), check_deliverability=False)
    except EmailNotValidError:
        return "Enter a valid email address."
    return None


def validate_credentials(data: RegistrationData) -> Optional[str]:
    if not data.password or not data.confirm_password:
        return "Fill in the password and its confirmation."
    if len(data.password) < MIN_PASSWORD_LENGTH:
        return f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
    if data.password != data.confirm_password:
        return "Password confirmation does not match."
    return None


def _count(value: str) -> int:
    try:
        return max(0, int((value or "0").strip() or "0"))
    except ValueError:
        return 0


def build_signup_metadata(data: RegistrationData) -> Dict[str, Any]:
    return {
        "first_name": data.first_name.strip(),
        "last_name": data.last_name.strip(),
        "phone": data.phone.strip(),
        "linking_code": normalize_linking_code(data.linking_code),
        "apartment_number": data.apartment_number.strip(),
        "floor": data.floor.strip(),
        "family_members": [{"name": None} for _ in range(_count(data.family_members))],
        "parking_spaces": [
            {"number": f"P{index + 1}", "type": "Atribuído"} for index in range(_count(data.parking_spaces))
        ],
    }


def is_email_available(session: Session, email: str) -> bool:
    normalized = (email or "").strip().lower()
    return session.query(User.id).filter(func.lower(User.email) == normalized).first() is None


def sign_up(session: Session, data: RegistrationData) -> User:
    """Create the account; profile and resident rows follow from the users trigger."""
    email = data.email.strip()
    if not is_email_available(session, email):
        raise RegistrationError("This email is already registered.", code="EMAIL_TAKEN")
    user = User(
        email=email.lower(),
        hashed_password=get_password_hash(data.password),
        user_metadata=build_signup_metadata(data),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Account %s created through resident registration", user.id)
    return user


def registration_materialized(session: Session, user_id: int) -> bool:
    session.expire_all()
    profile = session.query(Profile).filter(Profile.user_id == user_id).first()
    if profile is None:
        return False
    return session.query(Resident.id).filter(Resident.profile_id == profile.id).first() is not None


def confirm_registration(
    probe: Callable[[], bool],
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[RegistrationOutcome, int]:
    """Poll until the profile and resident rows exist.

    Waits before every probe. Returns ``(outcome, attempts)``.
    """
    policy = policy or RetryPolicy.from_settings()
    for attempt in range(1, policy.max_attempts + 1):
        sleep(policy.delay_seconds)
        try:
            if probe():
                return RegistrationOutcome.CONFIRMED, attempt
        except Exception:
            logger.exception("Registration confirmation probe failed on attempt %s", attempt)
            return RegistrationOutcome.FAILED, attempt
        logger.debug("Registration not materialized yet (attempt %s/%s)", attempt, policy.max_attempts)
    logger.warning("Registration not confirmed after %s attempts; assuming success", policy.max_attempts)
    return RegistrationOutcome.TIMED_OUT_ASSUME_SUCCESS, policy.max_attempts


def register_resident(
    session: Session,
    data: RegistrationData,
    probe_session_factory: Optional[Callable[[], Session]] = None,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RegistrationResult:
    """Run every registration check server-side, create the account, then confirm it."""
    validation = validate_linking_code_and_apartment(session, data.linking_code, data.apartment_number)
    if not validation["success"]:
        raise RegistrationError(validation["error"], code=validation["code"])
    for check in (validate_personal_data, validate_credentials):
        error = check(data)
        if error:
            raise RegistrationError(error, code="INVALID_INPUT")

    user = sign_up(session, data)
    user_id = user.id

    def probe() -> bool:
        if probe_session_factory is None:
            return registration_materialized(session, user_id)
        probe_session = probe_session_factory()
        try:
            return registration_materialized(probe_session, user_id)
        finally:
            probe_session.close()

    outcome, attempts = confirm_registration(probe, policy=policy, sleep=sleep)
    return RegistrationResult(
        outcome=outcome,
        user_id=user_id,
        attempts=attempts,
        message=OUTCOME_MESSAGES[outcome],
        condominium_id=validation["condominium_id"],
        condominium_name=validation["condominium_name"],
    )


class RegistrationWizard:
    """Step-by-step resident sign-up.

    ``validator`` checks code and apartment (one call) and ``completer``
    performs the sign-up. The wizard never moves past a step whose
    validation fails.
    """

    def __init__(
        self,
        validator: Callable[[str, str], Mapping[str, Any]],
        completer: Callable[[RegistrationData], RegistrationResult],
    ) -> None:
        self.validator = validator
        self.completer = completer
        self.reset()

    def reset(self) -> None:
        self.data = RegistrationData()
        self.current_step = STEP_LINKING_CODE
        self.validation_result: Optional[Mapping[str, Any]] = None
        self.result: Optional[RegistrationResult] = None
        self.errors: List[str] = []

    @property
    def last_error(self) -> Optional[str]:
        return self.errors[-1] if self.errors else None

    @property
    def is_complete(self) -> bool:
        return self.result is not None and self.result.success

    def update(self, **fields: str) -> None:
        for key, value in fields.items():
            if key not in RegistrationData.__dataclass_fields__:
                raise AttributeError(f"Unknown registration field: {key}")
            setattr(self.data, key, value)

    def _fail(self, message: str) -> bool:
        self.errors.append(message)
        return False

    def validate_linking_code(self) -> bool:
        if not self.data.linking_code.strip() or not self.data.apartment_number.strip():
            return self._fail("Fill in the linking code and the apartment number.")
        try:
            result = self.validator(self.data.linking_code.strip(), self.data.apartment_number.strip())
        except Exception:
            logger.exception("Linking code validation call failed")
            self.validation_result = None
            return self._fail("Validation failed unexpectedly. Try again.")
        self.validation_result = result
        if not result.get("success"):
            return self._fail(result.get("error") or "Invalid linking code or apartment.")
        return True

    def next_step(self) -> bool:
        if self.current_step == STEP_LINKING_CODE and not self.validate_linking_code():
            return False
        if self.current_step == STEP_PERSONAL_DATA:
            error = validate_personal_data(self.data)
            if error:
                return self._fail(error)
        if self.current_step == STEP_CREDENTIALS:
            error = validate_credentials(self.data)
            if error:
                return self._fail(error)
        if self.current_step == STEP_REVIEW:
            return self.complete()
        self.current_step += 1
        return True

    def prev_step(self) -> None:
        if self.current_step > STEP_LINKING_CODE:
            self.current_step -= 1

    def complete(self) -> bool:
        if not (self.validation_result and self.validation_result.get("success")):
            return self._fail("Validate the linking code first.")
        for check in (validate_personal_data, validate_credentials):
            error = check(self.data)
            if error:
                return self._fail(error)
        try:
            self.result = self.completer(self.data)
        except RegistrationError as exc:
            return self._fail(str(exc))
        return self.result.success
