from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy.orm import Session, joinedload

from ..constants import CAMPAIGN_ACTIVE, CAMPAIGN_STATUSES, CONTRIBUTION_PAID, CONTRIBUTION_PENDING
from ..models.models import Resident, SpecificCampaign, SpecificContribution
from ..utils.currency import ensure_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CONTRIBUTION_STATUSES = (CONTRIBUTION_PENDING, CONTRIBUTION_PAID)


def campaign_analytics(target_amount: Any, contributions: Iterable[Any]) -> Dict[str, Any]:
    """Fundraising figures for one campaign from its contribution rows."""
    target = ensure_decimal(target_amount)
    contributions = list(contributions)
    paid = [c for c in contributions if c.status == CONTRIBUTION_PAID]
    pending = [c for c in contributions if c.status == CONTRIBUTION_PENDING]
    total_raised = sum((ensure_decimal(c.amount) for c in paid), ZERO)
    total_pending = sum((ensure_decimal(c.amount) for c in pending), ZERO)
    if target > 0:
        progress = int((total_raised / target * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    else:
        progress = 0
    average = (total_raised / len(paid)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) if paid else ZERO
    return {
        "total_raised": total_raised,
        "total_pending": total_pending,
        "remaining_amount": target - total_raised,
        "progress_percentage": progress,
        "total_contributors": len(contributions),
        "paid_contributors": len({c.resident_id for c in paid}),
        "pending_contributors": len({c.resident_id for c in pending}),
        "paid_contributions_count": len(paid),
        "pending_contributions_count": len(pending),
        "average_contribution": average,
    }


def _campaign_payload(campaign: SpecificCampaign) -> Dict[str, Any]:
    payload = {
        "id": campaign.id,
        "condominium_id": campaign.condominium_id,
        "title": campaign.title,
        "description": campaign.description,
        "target_amount": ensure_decimal(campaign.target_amount),
        "start_date": campaign.start_date,
        "end_date": campaign.end_date,
        "status": campaign.status,
        "created_at": campaign.created_at,
    }
    payload.update(campaign_analytics(campaign.target_amount, campaign.contributions))
    return payload


def list_campaigns(session: Session, condominium_id: int) -> List[Dict[str, Any]]:
    campaigns = (
        session.query(SpecificCampaign)
        .options(joinedload(SpecificCampaign.contributions))
        .filter(SpecificCampaign.condominium_id == condominium_id)
        .order_by(SpecificCampaign.created_at.desc(), SpecificCampaign.id.desc())
        .all()
    )
    return [_campaign_payload(campaign) for campaign in campaigns]


def get_campaign_report(session: Session, campaign_id: int, condominium_id: int) -> Optional[Dict[str, Any]]:
    campaign = (
        session.query(SpecificCampaign)
        .options(
            joinedload(SpecificCampaign.contributions)
            .joinedload(SpecificContribution.resident)
            .joinedload(Resident.profile)
        )
        .filter(SpecificCampaign.id == campaign_id, SpecificCampaign.condominium_id == condominium_id)
        .first()
    )
    if campaign is None:
        return None
    contributions = []
    for contribution in campaign.contributions:
        resident = contribution.resident
        contributions.append(
            {
                "id": contribution.id,
                "resident_id": contribution.resident_id,
                "resident_name": resident.display_name if resident else None,
                "apartment_number": resident.apartment_number if resident else None,
                "amount": ensure_decimal(contribution.amount),
                "status": contribution.status,
                "payment_date": contribution.payment_date,
                "notes": contribution.notes,
                "created_at": contribution.created_at,
            }
        )
    return {"campaign": _campaign_payload(campaign), "contributions": contributions}


def create_campaign(
    session: Session,
    condominium_id: int,
    data: Mapping[str, Any],
    created_by_user_id: Optional[int] = None,
) -> SpecificCampaign:
    target = ensure_decimal(data.get("target_amount"))
    if target <= 0:
        raise ValueError("Target amount must be greater than zero")
    start_date = data.get("start_date") or date.today()
    end_date = data.get("end_date")
    if end_date is not None and end_date < start_date:
        raise ValueError("End date cannot be before the start date")
    status = data.get("status") or CAMPAIGN_ACTIVE
    if status not in CAMPAIGN_STATUSES:
        raise ValueError(f"Unknown campaign status: {status}")
    campaign = SpecificCampaign(
        condominium_id=condominium_id,
        title=data["title"],
        description=data.get("description"),
        target_amount=target,
        start_date=start_date,
        end_date=end_date,
        status=status,
        created_by_user_id=created_by_user_id,
    )
    session.add(campaign)
    session.commit()
    session.refresh(campaign)
    logger.info("Campaign %s created for condominium %s", campaign.id, condominium_id)
    return campaign


def update_campaign_status(session: Session, campaign: SpecificCampaign, status: str) -> SpecificCampaign:
    if status not in CAMPAIGN_STATUSES:
        raise ValueError(f"Unknown campaign status: {status}")
    campaign.status = status
    session.commit()
    session.refresh(campaign)
    return campaign


def add_contribution(
    session: Session,
    campaign: SpecificCampaign,
    resident_id: int,
    amount: Any,
    status: str = CONTRIBUTION_PENDING,
    payment_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> SpecificContribution:
    amount = ensure_decimal(amount)
    if amount <= 0:
        raise ValueError("Contribution amount must be greater than zero")
    if status not in CONTRIBUTION_STATUSES:
        raise ValueError(f"Unknown contribution status: {status}")
    resident = session.get(Resident, resident_id)
    if resident is None or resident.condominium_id != campaign.condominium_id:
        raise LookupError("Resident not found in this condominium")
    if status == CONTRIBUTION_PAID and payment_date is None:
        payment_date = date.today()
    contribution = SpecificContribution(
        campaign_id=campaign.id,
        condominium_id=campaign.condominium_id,
        resident_id=resident_id,
        amount=amount,
        status=status,
        payment_date=payment_date,
        notes=notes,
    )
    session.add(contribution)
    session.commit()
    session.refresh(contribution)
    return contribution


def update_contribution_status(
    session: Session,
    contribution: SpecificContribution,
    status: str,
    payment_date: Optional[date] = None,
) -> SpecificContribution:
    if status not in CONTRIBUTION_STATUSES:
        raise ValueError(f"Unknown contribution status: {status}")
    contribution.status = status
    if payment_date is not None:
        contribution.payment_date = payment_date
    elif status == CONTRIBUTION_PAID and contribution.payment_date is None:
        contribution.payment_date = date.today()
    session.commit()
    session.refresh(contribution)
    return contribution
