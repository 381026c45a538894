from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from condoportal.api.dependencies import get_db
from condoportal.auth.jwt import get_current_user
from condoportal.main import app
from condoportal.models.models import AuditLog
from condoportal.services.campaigns import (
    add_contribution,
    campaign_analytics,
    create_campaign,
    get_campaign_report,
    list_campaigns,
    update_contribution_status,
)


def _override_get_db(session):
    def _inner():
        try:
            yield session
        finally:
            pass

    return _inner


def _override_user(user):
    def _inner():
        return user

    return _inner


def _contribution(resident_id, amount, status):
    return SimpleNamespace(resident_id=resident_id, amount=Decimal(amount), status=status)


def test_analytics_split_paid_and_pending():
    analytics = campaign_analytics(
        Decimal("100000"),
        [
            _contribution(1, "30000", "paid"),
            _contribution(2, "12500", "paid"),
            _contribution(2, "2500", "pending"),
            _contribution(3, "5000", "pending"),
        ],
    )

    assert analytics["total_raised"] == Decimal("42500")
    assert analytics["total_pending"] == Decimal("7500")
    assert analytics["remaining_amount"] == Decimal("57500")
    assert analytics["progress_percentage"] == 43
    assert analytics["total_contributors"] == 4
    assert analytics["paid_contributors"] == 2
    assert analytics["pending_contributors"] == 2
    assert analytics["paid_contributions_count"] == 2
    assert analytics["average_contribution"] == Decimal("21250.00")


def test_analytics_without_contributions_or_target():
    empty = campaign_analytics(Decimal("5000"), [])
    assert empty["progress_percentage"] == 0
    assert empty["average_contribution"] == Decimal("0")
    assert empty["remaining_amount"] == Decimal("5000")

    overfunded = campaign_analytics(Decimal("0"), [_contribution(1, "100", "paid")])
    assert overfunded["progress_percentage"] == 0
    assert overfunded["remaining_amount"] == Decimal("-100")


def test_campaign_validation(db_session, create_condominium):
    condominium = create_condominium()

    with pytest.raises(ValueError):
        create_campaign(db_session, condominium.id, {"title": "Pintura", "target_amount": 0})
    with pytest.raises(ValueError):
        create_campaign(
            db_session,
            condominium.id,
            {"title": "Pintura", "target_amount": "500000", "start_date": date(2025, 5, 1), "end_date": date(2025, 4, 1)},
        )
    with pytest.raises(ValueError):
        create_campaign(db_session, condominium.id, {"title": "Pintura", "target_amount": "1", "status": "paused"})


def test_contributions_feed_the_report(db_session, create_condominium, create_resident):
    condominium = create_condominium()
    other = create_condominium()
    ana = create_resident(condominium, apartment="1A")
    rui = create_resident(condominium, apartment="2B", first_name="Rui")
    outsider = create_resident(other, apartment="9Z")
    campaign = create_campaign(
        db_session,
        condominium.id,
        {"title": "Gerador novo", "target_amount": Decimal("200000"), "start_date": date(2025, 1, 10)},
    )

    add_contribution(db_session, campaign, ana.id, "50000", status="paid", payment_date=date(2025, 2, 1))
    pending = add_contribution(db_session, campaign, rui.id, Decimal("25000"))
    with pytest.raises(LookupError):
        add_contribution(db_session, campaign, outsider.id, "1000")
    with pytest.raises(ValueError):
        add_contribution(db_session, campaign, ana.id, "-5")

    report = get_campaign_report(db_session, campaign.id, condominium.id)
    assert report["campaign"]["total_raised"] == Decimal("50000")
    assert report["campaign"]["progress_percentage"] == 25
    assert {item["apartment_number"] for item in report["contributions"]} == {"1A", "2B"}
    assert get_campaign_report(db_session, campaign.id, other.id) is None

    update_contribution_status(db_session, pending, "paid")
    assert pending.payment_date == date.today()
    summary = list_campaigns(db_session, condominium.id)[0]
    assert summary["total_raised"] == Decimal("75000")
    assert summary["pending_contributions_count"] == 0
    assert list_campaigns(db_session, other.id) == []


def test_campaign_endpoints(db_session, create_condominium, create_user, create_resident):
    condominium = create_condominium()
    other = create_condominium()
    coordinator = create_user(role="coordinator", condominium=condominium)
    ana = create_resident(condominium, apartment="1A")
    outsider = create_resident(other, apartment="9Z")
    resident_user = ana.profile.user
    ana_id, outsider_id = ana.id, outsider.id

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(coordinator)
    try:
        resp = client.post(
            "/campaigns/",
            json={"title": "Impermeabilização", "target_amount": "80000", "start_date": "2025-03-01"},
        )
        assert resp.status_code == 201
        campaign = resp.json()
        assert campaign["progress_percentage"] == 0
        assert db_session.query(AuditLog).filter(AuditLog.action == "campaign.create").count() == 1

        contributions_url = f"/campaigns/{campaign['id']}/contributions"
        resp = client.post(contributions_url, json={"resident_id": ana_id, "amount": "20000", "status": "paid"})
        assert resp.status_code == 201
        assert resp.json()["resident_name"] == "Ana Silva"
        contribution_id = resp.json()["id"]
        assert client.post(contributions_url, json={"resident_id": outsider_id, "amount": "10"}).status_code == 404

        resp = client.get(f"/campaigns/{campaign['id']}/report")
        assert resp.status_code == 200
        body = resp.json()
        assert Decimal(str(body["campaign"]["total_raised"])) == Decimal("20000")
        assert body["campaign"]["progress_percentage"] == 25

        resp = client.get(f"/campaigns/{campaign['id']}/report.csv")
        assert resp.status_code == 200
        lines = resp.text.splitlines()
        assert lines[0] == "resident_name,apartment_number,amount,status,payment_date,notes"
        assert lines[1].startswith("Ana Silva,1A,20000")

        resp = client.get(f"/campaigns/{campaign['id']}/report.pdf")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.content.startswith(b"%PDF")

        resp = client.put(f"/campaigns/contributions/{contribution_id}/status", json={"status": "pending"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "pending"

        resp = client.put(f"/campaigns/{campaign['id']}/status", json={"status": "completed"})
        assert resp.json()["status"] == "completed"
        assert client.put(f"/campaigns/{campaign['id']}/status", json={"status": "paused"}).status_code == 422
        assert client.get("/campaigns/999/report").status_code == 404

        app.dependency_overrides[get_current_user] = _override_user(resident_user)
        assert [item["title"] for item in client.get("/campaigns/").json()] == ["Impermeabilização"]
        assert client.get(f"/campaigns/{campaign['id']}/report").status_code == 403
    finally:
        app.dependency_overrides.clear()
        client.close()
