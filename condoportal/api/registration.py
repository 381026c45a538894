from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import config as app_config
from ..api.dependencies import get_db
from ..core.errors import BusinessRuleRejection
from ..core.rate_limit import rate_limit_dependency
from ..schemas.schemas import (
    EmailAvailability,
    LinkingCodeValidationRequest,
    LinkingCodeValidationResult,
    RegistrationRequest,
    RegistrationResponse,
)
from ..services.linking_codes import validate_linking_code_and_apartment
from ..services.registration import (
    RegistrationData,
    RegistrationError,
    is_email_available,
    register_resident,
)

router = APIRouter()

# Anonymous endpoints; the linking code is the only secret a resident needs.
validate_code_limit = rate_limit_dependency("registration.validate", limit=10, window_seconds=60)
register_limit = rate_limit_dependency("registration.register", limit=5, window_seconds=300)


@router.post(
    "/validate-code",
    response_model=LinkingCodeValidationResult,
    dependencies=[Depends(validate_code_limit)],
)
def validate_code(payload: LinkingCodeValidationRequest, db: Session = Depends(get_db)):
    return validate_linking_code_and_apartment(db, payload.linking_code, payload.apartment_number)


@router.get("/email-available", response_model=EmailAvailability)
def email_available(email: str = Query(..., min_length=3), db: Session = Depends(get_db)):
    return EmailAvailability(email=email, available=is_email_available(db, email))


@router.post(
    "/register",
    response_model=RegistrationResponse,
    status_code=201,
    dependencies=[Depends(register_limit)],
)
def register(payload: RegistrationRequest, db: Session = Depends(get_db)):
    data = RegistrationData.from_mapping(payload.model_dump())
    try:
        result = register_resident(db, data, probe_session_factory=app_config.SessionLocal)
    except RegistrationError as exc:
        status_code = 409 if exc.code in ("EMAIL_TAKEN", "APARTMENT_TAKEN") else 400
        raise BusinessRuleRejection(str(exc), code=exc.code, status_code=status_code) from exc
    return RegistrationResponse(
        success=result.success,
        outcome=result.outcome.value,
        user_id=result.user_id,
        attempts=result.attempts,
        message=result.message,
        condominium_id=result.condominium_id,
        condominium_name=result.condominium_name,
    )
