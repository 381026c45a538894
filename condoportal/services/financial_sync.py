from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..constants import MONTH_NAMES, PAYMENT_OVERDUE, PAYMENT_PAID, PAYMENT_PENDING
from ..models.models import Condominium, Payment, Resident
from ..utils.currency import ensure_decimal
from .balance import get_available_balance
from .change_feed import DELETE, UPDATE, ChangeEvent, ChangeFeed, Subscription, change_feed

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _as_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def correct_reference_month(description: Optional[str], reference_month: date) -> date:
    """Override the stored month with any month name written in the description.

    Names are checked in calendar order and every match overrides the month,
    so the last table entry found wins. The year is always the stored one.
    """
    month = reference_month.month
    text = (description or "").lower()
    for index, name in enumerate(MONTH_NAMES):
        if name in text:
            month = index + 1
    return date(reference_month.year, month, 1)


def derive_payment_status(status: str, due_date: Optional[date], today: Optional[date] = None) -> str:
    today = today or date.today()
    if status == PAYMENT_PENDING and due_date is not None and due_date <= today:
        return PAYMENT_OVERDUE
    return status


@dataclass(frozen=True)
class PaymentRecord:
    id: int
    resident_id: int
    amount: Decimal
    currency: str
    description: str
    stored_status: str
    status: str
    reference_month: date
    due_date: Optional[date]
    payment_date: Optional[date]
    apartment_number: Optional[str] = None
    resident_name: Optional[str] = None


def build_payment_record(
    row: Mapping[str, Any],
    today: Optional[date] = None,
    apartment_number: Optional[str] = None,
    resident_name: Optional[str] = None,
) -> PaymentRecord:
    """Normalize a raw payment row into the form the totals are computed from."""
    due_date = _as_date(row.get("due_date"))
    stored_status = row.get("status") or PAYMENT_PENDING
    return PaymentRecord(
        id=row["id"],
        resident_id=row.get("resident_id"),
        amount=ensure_decimal(row.get("amount")),
        currency=row.get("currency") or settings.default_currency,
        description=row.get("description") or "",
        stored_status=stored_status,
        status=derive_payment_status(stored_status, due_date, today),
        reference_month=correct_reference_month(row.get("description"), _as_date(row["reference_month"])),
        due_date=due_date,
        payment_date=_as_date(row.get("payment_date")),
        apartment_number=apartment_number,
        resident_name=resident_name,
    )


def filter_payments_by_month(records: Iterable[PaymentRecord], month: int, year: int) -> List[PaymentRecord]:
    return [
        record
        for record in records
        if record.reference_month.month == month and record.reference_month.year == year
    ]


def summarize_payments(records: Iterable[PaymentRecord], month: int, year: int) -> Dict[str, Decimal]:
    totals = {"total_received": ZERO, "total_pending": ZERO, "total_overdue": ZERO}
    for record in filter_payments_by_month(records, month, year):
        if record.status == PAYMENT_PAID:
            totals["total_received"] += record.amount
        elif record.status == PAYMENT_PENDING:
            totals["total_pending"] += record.amount
        elif record.status == PAYMENT_OVERDUE:
            totals["total_overdue"] += record.amount
    return totals


@dataclass(frozen=True)
class FinancialStats:
    current_revenue: Decimal
    approved_expenses: Decimal
    available_balance: Decimal
    carryover_total: Decimal
    balance_year: int
    total_received: Decimal
    total_pending: Decimal
    total_overdue: Decimal
    current_monthly_fee: Decimal
    currency: str
    current_month: int
    current_year: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "current_revenue": self.current_revenue,
            "approved_expenses": self.approved_expenses,
            "available_balance": self.available_balance,
            "carryover_total": self.carryover_total,
            "balance_year": self.balance_year,
            "total_received": self.total_received,
            "total_pending": self.total_pending,
            "total_overdue": self.total_overdue,
            "current_monthly_fee": self.current_monthly_fee,
            "currency": self.currency,
            "current_month": self.current_month,
            "current_year": self.current_year,
        }


def _resolve_period(month: Optional[int], year: Optional[int], today: date) -> Tuple[int, int]:
    month = month or today.month
    year = year or today.year
    if not 1 <= month <= 12:
        raise ValueError("month must be between 1 and 12")
    return month, year


def _resident_labels(resident: Optional[Resident]) -> Tuple[Optional[str], Optional[str]]:
    if resident is None:
        return None, None
    name = resident.profile.full_name if resident.profile else None
    return resident.apartment_number, name


def _payment_row(payment: Payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "resident_id": payment.resident_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "description": payment.description,
        "status": payment.status,
        "reference_month": payment.reference_month,
        "due_date": payment.due_date,
        "payment_date": payment.payment_date,
    }


def fetch_payment_records(session: Session, condominium_id: int, today: Optional[date] = None) -> List[PaymentRecord]:
    payments = (
        session.query(Payment)
        .options(joinedload(Payment.resident).joinedload(Resident.profile))
        .filter(Payment.condominium_id == condominium_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    records = []
    for payment in payments:
        apartment, name = _resident_labels(payment.resident)
        records.append(build_payment_record(_payment_row(payment), today, apartment, name))
    return records


def _load_condominium(session: Session, condominium_id: int) -> Condominium:
    condominium = session.get(Condominium, condominium_id)
    if condominium is None:
        raise LookupError(f"Condominium {condominium_id} not found")
    return condominium


def _compose_stats(
    snapshot: Mapping[str, Any],
    fee: Decimal,
    currency: str,
    records: Iterable[PaymentRecord],
    month: int,
    year: int,
) -> FinancialStats:
    totals = summarize_payments(records, month, year)
    return FinancialStats(
        current_revenue=ensure_decimal(snapshot.get("current_revenue")),
        approved_expenses=ensure_decimal(snapshot.get("approved_expenses")),
        available_balance=ensure_decimal(snapshot.get("available_balance")),
        carryover_total=ensure_decimal(snapshot.get("carryover_total")),
        balance_year=snapshot.get("year") or year,
        total_received=totals["total_received"],
        total_pending=totals["total_pending"],
        total_overdue=totals["total_overdue"],
        current_monthly_fee=fee,
        currency=currency,
        current_month=month,
        current_year=year,
    )


def compute_financial_stats(
    session: Session,
    condominium_id: int,
    month: Optional[int] = None,
    year: Optional[int] = None,
    today: Optional[date] = None,
) -> Tuple[FinancialStats, List[PaymentRecord]]:
    """Return the stats for the period and the normalized payments of that period."""
    today = today or date.today()
    month, year = _resolve_period(month, year, today)
    snapshot = get_available_balance(session, condominium_id, today=today)
    condominium = _load_condominium(session, condominium_id)
    records = fetch_payment_records(session, condominium_id, today)
    stats = _compose_stats(
        snapshot,
        ensure_decimal(condominium.current_monthly_fee),
        condominium.currency or settings.default_currency,
        records,
        month,
        year,
    )
    return stats, filter_payments_by_month(records, month, year)


def mark_payment_as_paid(session: Session, payment_id: int, today: Optional[date] = None) -> Payment:
    payment = session.get(Payment, payment_id)
    if payment is None:
        raise LookupError(f"Payment {payment_id} not found")
    payment.status = PAYMENT_PAID
    payment.payment_date = today or date.today()
    session.commit()
    session.refresh(payment)
    logger.info("Payment %s marked as paid", payment_id)
    return payment


class Debouncer:
    """Coalesce a burst of calls into a single delayed invocation."""

    def __init__(
        self,
        delay_seconds: float,
        callback: Callable[[], None],
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self.delay_seconds = delay_seconds
        self.callback = callback
        self._timer_factory = timer_factory
        self._timer = None
        self._lock = threading.Lock()

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self._timer_factory(self.delay_seconds, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self.callback()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        return self._timer is not None


class FinancialSyncView:
    """Live financial figures for one condominium and period.

    Payment changes are applied at once to a cache keyed by payment id and the
    totals recomputed locally. Every change, payments included, also schedules
    a debounced full refresh, which is where the balance snapshot comes from.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        condominium_id: int,
        month: Optional[int] = None,
        year: Optional[int] = None,
        feed: ChangeFeed = change_feed,
        debounce_ms: Optional[int] = None,
        timer_factory: Callable[..., Any] = threading.Timer,
        on_change: Optional[Callable[[FinancialStats], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        today_provider: Callable[[], date] = date.today,
    ) -> None:
        self.session_factory = session_factory
        self.condominium_id = condominium_id
        self.month = month
        self.year = year
        self.feed = feed
        self.on_change = on_change
        self.on_error = on_error
        self.today_provider = today_provider
        delay_ms = settings.realtime_debounce_ms if debounce_ms is None else debounce_ms
        self.debouncer = Debouncer(delay_ms / 1000, self.refresh, timer_factory=timer_factory)

        self.stats: Optional[FinancialStats] = None
        self.error: Optional[Exception] = None
        self.refresh_count = 0
        self._records: Dict[int, PaymentRecord] = {}
        self._residents: Dict[int, Tuple[Optional[str], Optional[str]]] = {}
        self._snapshot: Dict[str, Any] = {}
        self._fee: Decimal = ZERO
        self._currency: str = settings.default_currency
        self._subscriptions: List[Subscription] = []
        self._lock = threading.RLock()

    @property
    def payments(self) -> List[PaymentRecord]:
        """Normalized payments of the selected period, newest first."""
        with self._lock:
            month, year = self._period()
            records = sorted(self._records.values(), key=lambda record: record.id, reverse=True)
            return filter_payments_by_month(records, month, year)

    def _period(self) -> Tuple[int, int]:
        return _resolve_period(self.month, self.year, self.today_provider())

    def start(self) -> Optional[FinancialStats]:
        stats = self.refresh()
        if not self._subscriptions:
            tenant = ("condominium_id", self.condominium_id)
            self._subscriptions = [
                self.feed.subscribe("payments", self._on_payment_change, column_filter=tenant),
                self.feed.subscribe(
                    "condominiums",
                    self._on_summary_change,
                    event_type=UPDATE,
                    column_filter=("id", self.condominium_id),
                ),
                self.feed.subscribe("expenses", self._on_summary_change, column_filter=tenant),
            ]
        return stats

    def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        self.debouncer.cancel()

    def select_period(self, month: Optional[int], year: Optional[int]) -> Optional[FinancialStats]:
        self.month = month
        self.year = year
        with self._lock:
            if self.stats is None:
                return self.refresh()
            return self._recompute()

    def refresh(self) -> Optional[FinancialStats]:
        today = self.today_provider()
        try:
            month, year = self._period()
            session = self.session_factory()
            try:
                snapshot = get_available_balance(session, self.condominium_id, today=today)
                condominium = _load_condominium(session, self.condominium_id)
                payments = (
                    session.query(Payment)
                    .options(joinedload(Payment.resident).joinedload(Resident.profile))
                    .filter(Payment.condominium_id == self.condominium_id)
                    .all()
                )
                residents = {
                    resident.id: _resident_labels(resident)
                    for resident in session.query(Resident)
                    .options(joinedload(Resident.profile))
                    .filter(Resident.condominium_id == self.condominium_id)
                }
                records = {}
                for payment in payments:
                    apartment, name = residents.get(payment.resident_id, (None, None))
                    records[payment.id] = build_payment_record(_payment_row(payment), today, apartment, name)
                fee = ensure_decimal(condominium.current_monthly_fee)
                currency = condominium.currency or settings.default_currency
            finally:
                session.close()
        except Exception as exc:
            logger.exception("Financial sync failed for condominium %s", self.condominium_id)
            self.error = exc
            if self.on_error:
                self.on_error(exc)
            return None

        with self._lock:
            self._snapshot = snapshot
            self._residents = residents
            self._records = records
            self._fee = fee
            self._currency = currency
            self.error = None
            self.refresh_count += 1
            return self._recompute(month, year)

    def _recompute(self, month: Optional[int] = None, year: Optional[int] = None) -> FinancialStats:
        if month is None or year is None:
            month, year = self._period()
        self.stats = _compose_stats(self._snapshot, self._fee, self._currency, self._records.values(), month, year)
        if self.on_change:
            self.on_change(self.stats)
        return self.stats

    def _on_summary_change(self, change: ChangeEvent) -> None:
        logger.debug("Financial sync scheduling refresh after %s on %s", change.event_type, change.table)
        self.debouncer.trigger()

    def _apply_payment_change(self, change: ChangeEvent) -> None:
        if change.event_type == DELETE:
            self._records.pop(change.old.get("id"), None)
            self._recompute()
            return
        row = change.new
        resident_id = row.get("resident_id")
        if resident_id in self._residents:
            apartment, name = self._residents[resident_id]
            record = build_payment_record(row, self.today_provider(), apartment, name)
            self._records[record.id] = record
            self._recompute()

    def _on_payment_change(self, change: ChangeEvent) -> None:
        with self._lock:
            if self.stats is not None:
                self._apply_payment_change(change)
        # Unknown residents and the balance snapshot both need a full fetch.
        self.debouncer.trigger()

