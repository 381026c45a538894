from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base
from ..constants import (
    CAMPAIGN_ACTIVE,
    CONTRIBUTION_PENDING,
    EXPENSE_APPROVED,
    FUNDING_CURRENT_REVENUE,
    OCCURRENCE_OPEN,
    PAYMENT_PENDING,
    ROLE_RESIDENT,
)

MONEY = Numeric(12, 2)


def utcnow():
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    user_metadata = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)

    profile = orm_relationship("Profile", back_populates="user", uselist=False, cascade="all, delete-orphan")
    audit_logs = orm_relationship("AuditLog", back_populates="actor")

    @property
    def role(self) -> str | None:
        return self.profile.role if self.profile else None

    @property
    def condominium_id(self) -> int | None:
        return self.profile.condominium_id if self.profile else None

    def has_role(self, role_name: str) -> bool:
        return self.role == role_name

    def has_any_role(self, *role_names: str) -> bool:
        return self.role in set(role_names)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True, nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)

    actor = orm_relationship("User", back_populates="audit_logs")


class Condominium(TimestampMixin, Base):
    __tablename__ = "condominiums"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    currency = Column(String(3), nullable=False, default="AOA")
    current_monthly_fee = Column(MONEY, nullable=True, default=Decimal("0"))
    apartment_count = Column(Integer, nullable=True)
    payment_plan = Column(String, nullable=True)
    resident_linking_code = Column(String(16), unique=True, index=True, nullable=False)

    # Banking details for the regular monthly fee.
    fee_bank = Column(String, nullable=True)
    fee_iban = Column(String, nullable=True)
    fee_beneficiary = Column(String, nullable=True)
    # Banking details for specific contribution campaigns.
    campaign_bank = Column(String, nullable=True)
    campaign_iban = Column(String, nullable=True)
    campaign_beneficiary = Column(String, nullable=True)

    profiles = orm_relationship("Profile", back_populates="condominium")
    residents = orm_relationship("Resident", back_populates="condominium", cascade="all, delete-orphan")
    payments = orm_relationship("Payment", back_populates="condominium", cascade="all, delete-orphan")
    expenses = orm_relationship("Expense", back_populates="condominium", cascade="all, delete-orphan")
    employees = orm_relationship("Employee", back_populates="condominium", cascade="all, delete-orphan")
    carryovers = orm_relationship("AnnualCarryover", back_populates="condominium", cascade="all, delete-orphan")


class Profile(TimestampMixin, Base):
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=True, index=True)
    role = Column(String, nullable=False, default=ROLE_RESIDENT, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    apartment_number = Column(String, nullable=True)
    floor = Column(String, nullable=True)
    must_change_password = Column(Boolean, default=False, nullable=False)

    user = orm_relationship("User", back_populates="profile")
    condominium = orm_relationship("Condominium", back_populates="profiles")
    resident = orm_relationship("Resident", back_populates="profile", uselist=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Resident(TimestampMixin, Base):
    __tablename__ = "residents"
    __table_args__ = (UniqueConstraint("condominium_id", "apartment_number", name="uq_resident_apartment"),)

    id = Column(Integer, primary_key=True, index=True)
    profile_id = Column(Integer, ForeignKey("profiles.id", ondelete="CASCADE"), unique=True, nullable=False)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    apartment_number = Column(String, nullable=False)
    floor = Column(String, nullable=True)
    family_members = Column(JSON, nullable=False, default=list)
    parking_spaces = Column(JSON, nullable=False, default=list)
    is_owner = Column(Boolean, default=False, nullable=False)
    move_in_date = Column(Date, nullable=True)
    document_number = Column(String, nullable=True)
    emergency_contact_name = Column(String, nullable=True)
    emergency_contact_phone = Column(String, nullable=True)

    profile = orm_relationship("Profile", back_populates="resident")
    condominium = orm_relationship("Condominium", back_populates="residents")
    payments = orm_relationship("Payment", back_populates="resident", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        return self.profile.full_name if self.profile else f"Apartamento {self.apartment_number}"


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    resident_id = Column(Integer, ForeignKey("residents.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    currency = Column(String(3), nullable=False, default="AOA")
    description = Column(String, nullable=False, default="")
    reference_month = Column(Date, nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    payment_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default=PAYMENT_PENDING)

    condominium = orm_relationship("Condominium", back_populates="payments")
    resident = orm_relationship("Resident", back_populates="payments")


class Expense(TimestampMixin, Base):
    __tablename__ = "expenses"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    category = Column(String, nullable=False)
    description = Column(String, nullable=False)
    amount = Column(MONEY, nullable=False)
    expense_date = Column(Date, nullable=False)
    funding_source = Column(String, nullable=False, default=FUNDING_CURRENT_REVENUE)
    status = Column(String, nullable=False, default=EXPENSE_APPROVED)
    service_provider_id = Column(Integer, ForeignKey("service_providers.id"), nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    condominium = orm_relationship("Condominium", back_populates="expenses")
    service_provider = orm_relationship("ServiceProvider")


class AnnualCarryover(TimestampMixin, Base):
    __tablename__ = "annual_carryovers"
    __table_args__ = (UniqueConstraint("condominium_id", "reference_year", name="uq_carryover_year"),)

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    reference_year = Column(Integer, nullable=False)
    amount_received = Column(MONEY, nullable=False, default=Decimal("0"))
    amount_expenses = Column(MONEY, nullable=False, default=Decimal("0"))
    carryover_amount = Column(MONEY, nullable=False, default=Decimal("0"))
    amount_used = Column(MONEY, nullable=False, default=Decimal("0"))
    current_balance = Column(MONEY, nullable=False, default=Decimal("0"))

    condominium = orm_relationship("Condominium", back_populates="carryovers")


class Employee(TimestampMixin, Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    position = Column(String, nullable=False)
    base_salary = Column(MONEY, nullable=False)
    document_number = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    hire_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    condominium = orm_relationship("Condominium", back_populates="employees")
    payroll_entries = orm_relationship("PayrollEntry", back_populates="employee", cascade="all, delete-orphan")


class PayrollEntry(TimestampMixin, Base):
    __tablename__ = "payroll_entries"
    __table_args__ = (UniqueConstraint("employee_id", "reference_month", name="uq_payroll_employee_month"),)

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    reference_month = Column(Date, nullable=False)
    base_salary = Column(MONEY, nullable=False, default=Decimal("0"))
    allowances = Column(MONEY, nullable=False, default=Decimal("0"))
    overtime_hours = Column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    overtime_rate = Column(MONEY, nullable=False, default=Decimal("0"))
    overtime_amount = Column(MONEY, nullable=False, default=Decimal("0"))
    deductions = Column(MONEY, nullable=False, default=Decimal("0"))
    social_security_deduction = Column(MONEY, nullable=False, default=Decimal("0"))
    income_tax_deduction = Column(MONEY, nullable=False, default=Decimal("0"))
    other_deductions = Column(MONEY, nullable=False, default=Decimal("0"))
    gross_salary = Column(MONEY, nullable=False, default=Decimal("0"))
    net_salary = Column(MONEY, nullable=False, default=Decimal("0"))
    payment_status = Column(String, nullable=False, default=PAYMENT_PENDING)
    payment_date = Column(Date, nullable=True)
    expense_id = Column(Integer, ForeignKey("expenses.id"), nullable=True)
    notes = Column(Text, nullable=True)

    employee = orm_relationship("Employee", back_populates="payroll_entries")
    expense = orm_relationship("Expense")


class Announcement(TimestampMixin, Base):
    __tablename__ = "announcements"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_urgent = Column(Boolean, default=False, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    published = Column(Boolean, default=False, nullable=False)
    published_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=True)


class Document(TimestampMixin, Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    file_path = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=True)
    is_public = Column(Boolean, default=False, nullable=False)
    uploaded_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)


class ServiceProvider(TimestampMixin, Base):
    __tablename__ = "service_providers"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    service_type = Column(String, nullable=False)
    contact_person = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    document_number = Column(String, nullable=True)
    is_authorized = Column(Boolean, default=False, nullable=False)


class SpaceReservation(TimestampMixin, Base):
    __tablename__ = "space_reservations"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    resident_id = Column(Integer, ForeignKey("residents.id", ondelete="CASCADE"), nullable=False)
    space_name = Column(String, nullable=False)
    reservation_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    purpose = Column(String, nullable=True)
    approved = Column(Boolean, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    rejection_reason = Column(Text, nullable=True)

    resident = orm_relationship("Resident")


class Visitor(TimestampMixin, Base):
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    resident_id = Column(Integer, ForeignKey("residents.id", ondelete="CASCADE"), nullable=False)
    name = Column(String, nullable=False)
    document_number = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    purpose = Column(String, nullable=True)
    visit_date = Column(Date, nullable=False)
    visit_time = Column(Time, nullable=True)
    approved = Column(Boolean, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    resident = orm_relationship("Resident")
    passes = orm_relationship("VisitorPass", back_populates="visitor", cascade="all, delete-orphan")


class VisitorPass(TimestampMixin, Base):
    __tablename__ = "visitor_passes"

    id = Column(Integer, primary_key=True, index=True)
    visitor_id = Column(Integer, ForeignKey("visitors.id", ondelete="CASCADE"), nullable=False)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    token = Column(String, unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    visitor = orm_relationship("Visitor", back_populates="passes")


class SpecificCampaign(TimestampMixin, Base):
    __tablename__ = "specific_campaigns"

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    target_amount = Column(MONEY, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default=CAMPAIGN_ACTIVE)
    created_by_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    contributions = orm_relationship(
        "SpecificContribution",
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by="SpecificContribution.created_at",
    )


class SpecificContribution(TimestampMixin, Base):
    __tablename__ = "specific_contributions"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("specific_campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    resident_id = Column(Integer, ForeignKey("residents.id", ondelete="CASCADE"), nullable=False)
    amount = Column(MONEY, nullable=False)
    status = Column(String, nullable=False, default=CONTRIBUTION_PENDING)
    payment_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    campaign = orm_relationship("SpecificCampaign", back_populates="contributions")
    resident = orm_relationship("Resident")


class Message(TimestampMixin, Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    message_type = Column(String, nullable=False, default="text")
    client_message_id = Column(String, nullable=True, index=True)
    attachment_url = Column(String, nullable=True)
    read_at = Column(DateTime, nullable=True)


class Occurrence(TimestampMixin, Base):
    __tablename__ = "occurrences"
    __table_args__ = (UniqueConstraint("condominium_id", "occurrence_number", name="uq_occurrence_number"),)

    id = Column(Integer, primary_key=True, index=True)
    condominium_id = Column(Integer, ForeignKey("condominiums.id"), nullable=False, index=True)
    occurrence_number = Column(Integer, nullable=False)
    reported_by_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String, nullable=False, default="reclamacao")
    priority = Column(String, nullable=False, default="media")
    location = Column(String, nullable=True)
    images = Column(JSON, nullable=False, default=list)
    status = Column(String, nullable=False, default=OCCURRENCE_OPEN, index=True)
    assigned_to = Column(String, nullable=True)
    resolution_notes = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    reporter = orm_relationship("User")

    @property
    def reporter_name(self) -> str | None:
        profile = self.reporter.profile if self.reporter else None
        return profile.full_name if profile else None
