from datetime import date
from decimal import Decimal

from condoportal.models.models import AnnualCarryover, Expense, Payment
from condoportal.services.balance import (
    approve_pending_expense,
    create_expense_with_validation,
    get_available_balance,
    list_carryovers,
    process_annual_carryover,
    record_carryover_usage,
)

TODAY = date(2025, 6, 15)


def _paid_fee(session, condominium, resident, amount, reference_month):
    session.add(
        Payment(
            condominium_id=condominium.id,
            resident_id=resident.id,
            amount=Decimal(amount),
            currency="AOA",
            description="Quota mensal",
            reference_month=reference_month,
            due_date=reference_month.replace(day=10),
            payment_date=reference_month.replace(day=5),
            status="paid",
        )
    )
    session.commit()


def _carryover(session, condominium, year, balance):
    session.add(
        AnnualCarryover(
            condominium_id=condominium.id,
            reference_year=year,
            amount_received=Decimal(balance),
            carryover_amount=Decimal(balance),
            current_balance=Decimal(balance),
        )
    )
    session.commit()


def test_available_balance_combines_revenue_expenses_and_carryover(
    db_session, create_condominium, create_resident
):
    condominium = create_condominium()
    resident = create_resident(condominium)
    _paid_fee(db_session, condominium, resident, "25000.00", date(2025, 1, 1))
    _paid_fee(db_session, condominium, resident, "25000.00", date(2025, 2, 1))
    _paid_fee(db_session, condominium, resident, "25000.00", date(2024, 12, 1))
    db_session.add(
        Expense(
            condominium_id=condominium.id,
            category="manutencao",
            description="Reparação do portão",
            amount=Decimal("10000.00"),
            expense_date=date(2025, 3, 1),
        )
    )
    db_session.add(
        Expense(
            condominium_id=condominium.id,
            category="manutencao",
            description="Pintura pendente",
            amount=Decimal("7000.00"),
            expense_date=date(2025, 3, 1),
            status="pending",
        )
    )
    db_session.commit()
    _carryover(db_session, condominium, 2024, "5000.00")

    snapshot = get_available_balance(db_session, condominium.id, today=TODAY)

    assert snapshot["year"] == 2025
    assert snapshot["current_revenue"] == Decimal("50000")
    assert snapshot["approved_expenses"] == Decimal("10000")
    assert snapshot["carryover_total"] == Decimal("5000")
    assert snapshot["available_balance"] == Decimal("45000")


def test_expense_within_balance_is_approved(db_session, create_condominium, create_resident):
    condominium = create_condominium()
    resident = create_resident(condominium)
    _paid_fee(db_session, condominium, resident, "25000.00", date(2025, 1, 1))

    result = create_expense_with_validation(
        db_session,
        condominium.id,
        category="limpeza",
        description="Limpeza geral",
        amount="20000.00",
        expense_date=TODAY,
    )

    assert result["success"] is True
    assert result["status"] == "approved"
    assert result["validation"]["source_balance"] == Decimal("25000")
    assert db_session.get(Expense, result["expense_id"]).status == "approved"


def test_expense_over_balance_is_recorded_as_pending(db_session, create_condominium):
    condominium = create_condominium()

    result = create_expense_with_validation(
        db_session,
        condominium.id,
        category="obras",
        description="Substituição do elevador",
        amount=Decimal("500000.00"),
        expense_date=TODAY,
    )

    assert result["success"] is True
    assert result["status"] == "pending"
    assert "pending" in result["message"]


def test_expense_rejects_non_positive_amount_and_unknown_source(db_session, create_condominium):
    condominium = create_condominium()

    zero = create_expense_with_validation(
        db_session, condominium.id, category="x", description="x", amount=0, expense_date=TODAY
    )
    unknown = create_expense_with_validation(
        db_session,
        condominium.id,
        category="x",
        description="x",
        amount=10,
        expense_date=TODAY,
        funding_source="donations",
    )

    assert zero == {"success": False, "error": zero["error"], "code": "INVALID_AMOUNT"}
    assert unknown["code"] == "INVALID_FUNDING_SOURCE"
    assert db_session.query(Expense).count() == 0


def test_pending_expense_is_approved_once_revenue_arrives(db_session, create_condominium, create_resident):
    condominium = create_condominium()
    resident = create_resident(condominium)
    pending = create_expense_with_validation(
        db_session,
        condominium.id,
        category="jardinagem",
        description="Corte de relva",
        amount="15000.00",
        expense_date=TODAY,
    )
    assert pending["status"] == "pending"

    refused = approve_pending_expense(db_session, condominium.id, pending["expense_id"])
    assert refused["code"] == "INSUFFICIENT_BALANCE"

    _paid_fee(db_session, condominium, resident, "25000.00", date(2025, 5, 1))
    approved = approve_pending_expense(db_session, condominium.id, pending["expense_id"])

    assert approved["success"] is True
    assert approve_pending_expense(db_session, condominium.id, pending["expense_id"])["code"] == "ALREADY_APPROVED"
    assert approve_pending_expense(db_session, condominium.id, 999)["code"] == "NOT_FOUND"


def test_carryover_requires_a_finished_year(db_session, create_condominium):
    condominium = create_condominium()

    result = process_annual_carryover(db_session, condominium.id, 2025, today=TODAY)

    assert result["success"] is False
    assert result["code"] == "YEAR_NOT_CLOSED"


def test_carryover_stores_what_remains_of_the_year(db_session, create_condominium, create_resident):
    condominium = create_condominium()
    resident = create_resident(condominium)
    _paid_fee(db_session, condominium, resident, "25000.00", date(2024, 11, 1))
    _paid_fee(db_session, condominium, resident, "25000.00", date(2024, 12, 1))
    db_session.add(
        Expense(
            condominium_id=condominium.id,
            category="seguros",
            description="Seguro do edifício",
            amount=Decimal("12000.00"),
            expense_date=date(2024, 12, 20),
        )
    )
    db_session.commit()

    result = process_annual_carryover(db_session, condominium.id, 2024, today=TODAY)
    again = process_annual_carryover(db_session, condominium.id, 2024, today=TODAY)

    assert result["carryover_amount"] == Decimal("38000")
    assert result["current_balance"] == Decimal("38000")
    assert again["success"] is True
    assert len(list_carryovers(db_session, condominium.id)) == 1


def test_carryover_funded_expense_consumes_oldest_year_first(db_session, create_condominium):
    condominium = create_condominium()
    _carryover(db_session, condominium, 2023, "3000.00")
    _carryover(db_session, condominium, 2024, "10000.00")

    result = create_expense_with_validation(
        db_session,
        condominium.id,
        category="obras",
        description="Impermeabilização",
        amount="5000.00",
        expense_date=TODAY,
        funding_source="carryover",
    )

    assert result["status"] == "approved"
    rows = {row.reference_year: row for row in list_carryovers(db_session, condominium.id)}
    assert rows[2023].current_balance == Decimal("0")
    assert rows[2023].amount_used == Decimal("3000")
    assert rows[2024].current_balance == Decimal("8000")
    assert rows[2024].amount_used == Decimal("2000")
    assert get_available_balance(db_session, condominium.id, today=TODAY)["carryover_total"] == Decimal("8000")


def test_carryover_usage_checks_remaining_balance(db_session, create_condominium):
    condominium = create_condominium()
    _carryover(db_session, condominium, 2024, "4000.00")

    too_much = record_carryover_usage(db_session, condominium.id, 2024, "5000")
    used = record_carryover_usage(db_session, condominium.id, 2024, "1500")
    missing = record_carryover_usage(db_session, condominium.id, 2022, "10")

    assert too_much["code"] == "INSUFFICIENT_CARRYOVER"
    assert too_much["current_balance"] == Decimal("4000")
    assert used["success"] is True
    assert used["current_balance"] == Decimal("2500")
    assert used["amount_used"] == Decimal("1500")
    assert missing["code"] == "NOT_FOUND"
