import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..constants import PAYMENT_PENDING
from ..models.models import Condominium, Payment, Resident
from ..utils.pdf_utils import month_label

logger = logging.getLogger(__name__)


def default_fee_description(reference_month: date) -> str:
    return f"Quota mensal - {month_label(reference_month)}"


def generate_monthly_payments(
    session: Session,
    condominium_id: int,
    reference_month: date,
    amount: Optional[Any] = None,
    description: Optional[str] = None,
    due_days: Optional[int] = None,
) -> int:
    """Create the month's pending fee for every resident that lacks one.

    Returns the number of payments created.
    """
    condominium = session.get(Condominium, condominium_id)
    if condominium is None:
        raise LookupError(f"Condominium {condominium_id} not found")

    reference_month = reference_month.replace(day=1)
    amount = Decimal(str(amount)) if amount is not None else Decimal(str(condominium.current_monthly_fee or 0))
    if amount <= 0:
        raise ValueError("Monthly fee must be greater than zero")
    due_days = settings.monthly_fee_due_days if due_days is None else due_days
    due_date = reference_month + timedelta(days=due_days)
    description = description or default_fee_description(reference_month)

    already_billed = {
        resident_id
        for (resident_id,) in session.query(Payment.resident_id).filter(
            Payment.condominium_id == condominium_id,
            Payment.reference_month == reference_month,
        )
    }
    residents: List[Resident] = (
        session.query(Resident)
        .filter(Resident.condominium_id == condominium_id)
        .order_by(Resident.apartment_number.asc())
        .all()
    )

    created = 0
    for resident in residents:
        if resident.id in already_billed:
            continue
        session.add(
            Payment(
                condominium_id=condominium_id,
                resident_id=resident.id,
                amount=amount,
                currency=condominium.currency,
                description=description,
                reference_month=reference_month,
                due_date=due_date,
                status=PAYMENT_PENDING,
            )
        )
        created += 1
    session.commit()
    logger.info(
        "Generated %s monthly payments for condominium %s (%s)",
        created,
        condominium_id,
        reference_month.isoformat(),
    )
    return created


def get_payment_for_condominium(session: Session, condominium_id: int, payment_id: int) -> Optional[Payment]:
    return (
        session.query(Payment)
        .filter(Payment.id == payment_id, Payment.condominium_id == condominium_id)
        .first()
    )


def list_resident_payments(session: Session, resident_id: int) -> List[Payment]:
    return (
        session.query(Payment)
        .filter(Payment.resident_id == resident_id)
        .order_by(Payment.reference_month.desc(), Payment.id.desc())
        .all()
    )
