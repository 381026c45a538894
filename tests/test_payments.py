from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from condoportal.api.dependencies import get_db
from condoportal.auth.jwt import get_current_user
from condoportal.main import app
from condoportal.models.models import AuditLog, Payment, Profile, User
from condoportal.services.payments import generate_monthly_payments, list_resident_payments


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


def _resident_user(session, resident):
    profile = session.get(Profile, resident.profile_id)
    return session.get(User, profile.user_id)


def test_generate_monthly_payments_bills_each_resident_once(db_session, create_condominium, create_resident):
    condominium = create_condominium(fee=Decimal("25000.00"))
    first = create_resident(condominium, apartment="101")
    create_resident(condominium, apartment="102", first_name="Carla")

    created = generate_monthly_payments(db_session, condominium.id, date(2025, 3, 17))
    repeated = generate_monthly_payments(db_session, condominium.id, date(2025, 3, 1))

    assert created == 2
    assert repeated == 0
    payments = list_resident_payments(db_session, first.id)
    assert len(payments) == 1
    payment = payments[0]
    assert payment.reference_month == date(2025, 3, 1)
    assert payment.due_date == date(2025, 3, 1) + timedelta(days=10)
    assert payment.amount == Decimal("25000.00")
    assert payment.currency == "AOA"
    assert payment.status == "pending"
    assert payment.description == "Quota mensal - Março 2025"


def test_generate_monthly_payments_accepts_amount_override(db_session, create_condominium, create_resident):
    condominium = create_condominium(fee=Decimal("25000.00"), currency="EUR")
    resident = create_resident(condominium)

    generate_monthly_payments(
        db_session, condominium.id, date(2025, 4, 1), amount="120.50", description="Quota extra", due_days=5
    )

    payment = list_resident_payments(db_session, resident.id)[0]
    assert payment.amount == Decimal("120.50")
    assert payment.currency == "EUR"
    assert payment.description == "Quota extra"
    assert payment.due_date == date(2025, 4, 6)


def test_generate_monthly_payments_requires_a_fee(db_session, create_condominium, create_resident):
    condominium = create_condominium(fee=Decimal("0"))
    create_resident(condominium)

    with pytest.raises(ValueError):
        generate_monthly_payments(db_session, condominium.id, date(2025, 3, 1))
    with pytest.raises(LookupError):
        generate_monthly_payments(db_session, 999, date(2025, 3, 1))


def test_coordinator_generates_and_reviews_payments(db_session, create_condominium, create_resident, create_user):
    condominium = create_condominium()
    create_resident(condominium, apartment="101")
    create_resident(condominium, apartment="102", first_name="Carla")
    coordinator = create_user(role="coordinator", condominium=condominium)

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(coordinator)
    try:
        resp = client.post("/finance/payments/generate", json={"reference_month": "2025-03-01"})
        assert resp.status_code == 201
        assert resp.json() == {"created": 2, "reference_month": "2025-03-01"}

        audit = db_session.query(AuditLog).filter(AuditLog.action == "payments.generate").one()
        assert audit.actor_user_id == coordinator.id

        resp = client.get("/finance/summary", params={"month": 3, "year": 2025})
        assert resp.status_code == 200
        body = resp.json()
        assert body["stats"]["current_month"] == 3
        assert Decimal(str(body["stats"]["total_overdue"])) == Decimal("50000")
        assert {payment["apartment_number"] for payment in body["payments"]} == {"101", "102"}
        assert all(payment["status"] == "overdue" for payment in body["payments"])

        resp = client.get("/finance/payments/export.csv", params={"month": 3, "year": 2025})
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        lines = resp.text.strip().splitlines()
        assert lines[0].startswith("id,apartment_number,resident_name")
        assert len(lines) == 3
    finally:
        app.dependency_overrides.clear()
        client.close()


def test_resident_cannot_read_condominium_summary(db_session, create_condominium, create_resident):
    condominium = create_condominium()
    resident = create_resident(condominium)
    user = _resident_user(db_session, resident)

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(user)
    try:
        resp = client.get("/finance/summary")
        assert resp.status_code == 403
    finally:
        app.dependency_overrides.clear()
        client.close()


def test_coordinator_cannot_target_another_condominium(db_session, create_condominium, create_user):
    condominium = create_condominium()
    other = create_condominium()
    coordinator = create_user(role="coordinator", condominium=condominium)

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(coordinator)
    try:
        resp = client.get("/finance/payments", params={"condominium_id": other.id})
        assert resp.status_code == 403
    finally:
        app.dependency_overrides.clear()
        client.close()


def test_mark_paid_and_download_receipt(db_session, create_condominium, create_resident, create_user):
    condominium = create_condominium()
    owner = create_resident(condominium, apartment="101")
    neighbour = create_resident(condominium, apartment="102", first_name="Carla")
    coordinator = create_user(role="coordinator", condominium=condominium)
    generate_monthly_payments(db_session, condominium.id, date(2025, 3, 1))
    payment = db_session.query(Payment).filter(Payment.resident_id == owner.id).one()
    payment_id = payment.id

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(_resident_user(db_session, owner))
    try:
        resp = client.get(f"/finance/payments/{payment_id}/receipt")
        assert resp.status_code == 400

        app.dependency_overrides[get_current_user] = _override_user(coordinator)
        resp = client.post(f"/finance/payments/{payment_id}/mark-paid")
        assert resp.status_code == 200
        assert resp.json()["status"] == "paid"
        assert resp.json()["payment_date"] == date.today().isoformat()

        app.dependency_overrides[get_current_user] = _override_user(_resident_user(db_session, owner))
        resp = client.get(f"/finance/payments/{payment_id}/receipt")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.content.startswith(b"%PDF")

        mine = client.get("/finance/payments/mine")
        assert mine.status_code == 200
        assert [item["id"] for item in mine.json()] == [payment_id]
        assert mine.json()[0]["status"] == "paid"

        app.dependency_overrides[get_current_user] = _override_user(_resident_user(db_session, neighbour))
        resp = client.get(f"/finance/payments/{payment_id}/receipt")
        assert resp.status_code == 403
    finally:
        app.dependency_overrides.clear()
        client.close()


def test_mark_paid_unknown_payment_returns_404(db_session, create_condominium, create_user):
    condominium = create_condominium()
    coordinator = create_user(role="coordinator", condominium=condominium)

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(coordinator)
    try:
        resp = client.post("/finance/payments/4242/mark-paid")
        assert resp.status_code == 404
    finally:
        app.dependency_overrides.clear()
        client.close()


def test_mark_paid_twice_is_rejected(db_session, create_condominium, create_resident, create_user):
    condominium = create_condominium()
    resident = create_resident(condominium)
    coordinator = create_user(role="coordinator", condominium=condominium)
    generate_monthly_payments(db_session, condominium.id, date(2025, 3, 1))
    payment = db_session.query(Payment).filter(Payment.resident_id == resident.id).one()
    payment.status = "paid"
    payment.payment_date = date(2025, 3, 5)
    db_session.commit()

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(coordinator)
    try:
        resp = client.post(f"/finance/payments/{payment.id}/mark-paid")
        assert resp.status_code == 400
        assert resp.json()["code"] == "ALREADY_PAID"
    finally:
        app.dependency_overrides.clear()
        client.close()

    db_session.refresh(payment)
    assert payment.payment_date == date(2025, 3, 5)
    assert db_session.query(AuditLog).filter(AuditLog.action == "payment.mark_paid").count() == 0


def test_expense_endpoints_report_validation(db_session, create_condominium, create_user):
    condominium = create_condominium()
    coordinator = create_user(role="coordinator", condominium=condominium)

    client = TestClient(app)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_current_user] = _override_user(coordinator)
    try:
        resp = client.post(
            "/finance/expenses",
            json={
                "category": "manutencao",
                "description": "Bomba de água",
                "amount": "8000.00",
                "expense_date": "2025-03-02",
            },
        )
        assert resp.status_code == 201
        assert resp.json()["status"] == "pending"
        expense_id = resp.json()["expense_id"]

        resp = client.post(f"/finance/expenses/{expense_id}/approve")
        assert resp.status_code == 400
        assert resp.json()["code"] == "INSUFFICIENT_BALANCE"

        resp = client.post("/finance/expenses/999/approve")
        assert resp.status_code == 404

        resp = client.post(
            "/finance/expenses",
            json={"category": "x", "description": "x", "amount": "-1", "expense_date": "2025-03-02"},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Expense amount must be greater than zero."
        assert body["code"] == "INVALID_AMOUNT"

        resp = client.get("/finance/expenses", params={"status": "pending"})
        assert [item["id"] for item in resp.json()] == [expense_id]

        resp = client.post("/finance/carryovers/process", json={"year": date.today().year})
        assert resp.status_code == 400
        assert resp.json()["code"] == "YEAR_NOT_CLOSED"
    finally:
        app.dependency_overrides.clear()
        client.close()
