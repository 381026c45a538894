from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse, StreamingResponse
from sqlalchemy.orm import Session

from ..api.dependencies import get_db, load_condominium, require_manager, resolve_condominium_id
from ..auth.jwt import get_current_user
from ..models.models import SpecificCampaign, SpecificContribution, User
from ..schemas.schemas import (
    CampaignCreate,
    CampaignRead,
    CampaignReportRead,
    CampaignStatusUpdate,
    ContributionCreate,
    ContributionRead,
    ContributionStatusUpdate,
)
from ..services import campaigns as campaign_service
from ..services.audit import audit_log
from ..utils.csv_utils import contributions_to_csv
from ..utils.pdf_utils import generate_campaign_report_pdf

router = APIRouter()


def _load_campaign(db: Session, condominium_id: int, campaign_id: int) -> SpecificCampaign:
    campaign = (
        db.query(SpecificCampaign)
        .filter(SpecificCampaign.id == campaign_id, SpecificCampaign.condominium_id == condominium_id)
        .first()
    )
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


def _report_or_404(db: Session, condominium_id: int, campaign_id: int) -> dict:
    report = campaign_service.get_campaign_report(db, campaign_id, condominium_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return report


def _contribution_read(report: dict, contribution_id: int) -> dict:
    return next(item for item in report["contributions"] if item["id"] == contribution_id)


@router.get("/", response_model=List[CampaignRead])
def list_campaigns(
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return campaign_service.list_campaigns(db, resolve_condominium_id(user, condominium_id))


@router.post("/", response_model=CampaignRead, status_code=201)
def create_campaign(
    payload: CampaignCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    try:
        campaign = campaign_service.create_campaign(db, condominium_id, payload.model_dump(), actor.id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    audit_log(
        db_session=db,
        actor_user_id=actor.id,
        action="campaign.create",
        target_entity_type="SpecificCampaign",
        target_entity_id=str(campaign.id),
        after={"title": campaign.title, "target_amount": campaign.target_amount},
    )
    db.commit()
    return _report_or_404(db, condominium_id, campaign.id)["campaign"]


@router.get("/{campaign_id}/report", response_model=CampaignReportRead)
def campaign_report(
    campaign_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
):
    return _report_or_404(db, resolve_condominium_id(user, condominium_id), campaign_id)


@router.get("/{campaign_id}/report.csv")
def campaign_report_csv(
    campaign_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
) -> StreamingResponse:
    report = _report_or_404(db, resolve_condominium_id(user, condominium_id), campaign_id)
    filename = f"campaign-{campaign_id}-contributions.csv"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(
        iter([contributions_to_csv(report["contributions"])]),
        media_type="text/csv",
        headers=headers,
    )


@router.get("/{campaign_id}/report.pdf")
def campaign_report_pdf(
    campaign_id: int,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_manager),
) -> FileResponse:
    condominium_id = resolve_condominium_id(user, condominium_id)
    report = _report_or_404(db, condominium_id, campaign_id)
    condominium = load_condominium(db, condominium_id)
    pdf_path = generate_campaign_report_pdf(report, condominium.currency)
    return FileResponse(path=pdf_path, media_type="application/pdf", filename=f"campanha_{campaign_id}.pdf")


@router.put("/{campaign_id}/status", response_model=CampaignRead)
def update_status(
    campaign_id: int,
    payload: CampaignStatusUpdate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    campaign = _load_campaign(db, condominium_id, campaign_id)
    campaign_service.update_campaign_status(db, campaign, payload.status)
    return _report_or_404(db, condominium_id, campaign_id)["campaign"]


@router.post("/{campaign_id}/contributions", response_model=ContributionRead, status_code=201)
def add_contribution(
    campaign_id: int,
    payload: ContributionCreate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    campaign = _load_campaign(db, condominium_id, campaign_id)
    try:
        contribution = campaign_service.add_contribution(
            db,
            campaign,
            resident_id=payload.resident_id,
            amount=payload.amount,
            status=payload.status,
            payment_date=payload.payment_date,
            notes=payload.notes,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    report = _report_or_404(db, condominium_id, campaign_id)
    return _contribution_read(report, contribution.id)


@router.put("/contributions/{contribution_id}/status", response_model=ContributionRead)
def update_contribution_status(
    contribution_id: int,
    payload: ContributionStatusUpdate,
    condominium_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
    actor: User = Depends(require_manager),
):
    condominium_id = resolve_condominium_id(actor, condominium_id)
    contribution = (
        db.query(SpecificContribution)
        .filter(
            SpecificContribution.id == contribution_id,
            SpecificContribution.condominium_id == condominium_id,
        )
        .first()
    )
    if not contribution:
        raise HTTPException(status_code=404, detail="Contribution not found")
    campaign_service.update_contribution_status(db, contribution, payload.status, payload.payment_date)
    report = _report_or_404(db, condominium_id, contribution.campaign_id)
    return _contribution_read(report, contribution.id)
