from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

CurrencyCode = Literal["AOA", "EUR", "BRL", "MZN"]


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ProfileRead(ORMModel):
    id: int
    user_id: int
    role: str
    condominium_id: Optional[int] = None
    first_name: str
    last_name: str
    phone: Optional[str] = None
    apartment_number: Optional[str] = None
    floor: Optional[str] = None
    must_change_password: bool = False


class UserRead(ORMModel):
    id: int
    email: EmailStr
    is_active: bool
    created_at: datetime
    profile: Optional[ProfileRead] = None


class Token(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    role: Optional[str] = None
    condominium_id: Optional[int] = None
    expires_in: Optional[int] = None
    refresh_expires_in: Optional[int] = None


class TokenRefreshRequest(BaseModel):
    refresh_token: str


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(min_length=6)


class CondominiumBase(BaseModel):
    name: str
    address: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    currency: CurrencyCode = "AOA"
    current_monthly_fee: Decimal = Field(default=Decimal("0"), ge=0)
    apartment_count: Optional[int] = Field(default=None, ge=0)
    payment_plan: Optional[str] = None
    fee_bank: Optional[str] = None
    fee_iban: Optional[str] = None
    fee_beneficiary: Optional[str] = None
    campaign_bank: Optional[str] = None
    campaign_iban: Optional[str] = None
    campaign_beneficiary: Optional[str] = None


class CondominiumCreate(CondominiumBase):
    pass


class CondominiumUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    currency: Optional[CurrencyCode] = None
    current_monthly_fee: Optional[Decimal] = Field(default=None, ge=0)
    apartment_count: Optional[int] = Field(default=None, ge=0)
    payment_plan: Optional[str] = None
    fee_bank: Optional[str] = None
    fee_iban: Optional[str] = None
    fee_beneficiary: Optional[str] = None
    campaign_bank: Optional[str] = None
    campaign_iban: Optional[str] = None
    campaign_beneficiary: Optional[str] = None


class CondominiumRead(ORMModel, CondominiumBase):
    id: int
    resident_linking_code: str
    created_at: datetime


class CoordinatorCreate(BaseModel):
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    password: str = Field(min_length=6)


class CoordinatorPasswordReset(BaseModel):
    new_password: Optional[str] = Field(default=None, min_length=6)


class CoordinatorPasswordResetResult(BaseModel):
    success: bool
    new_password: str
    must_change_password: bool


class LinkingCodeRegenerated(BaseModel):
    success: bool
    old_code: str
    new_code: str
    attempts: int


class LinkingCodeValidationRequest(BaseModel):
    linking_code: str
    apartment_number: str


class LinkingCodeValidationResult(BaseModel):
    success: bool
    condominium_id: Optional[int] = None
    condominium_name: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


class RegistrationRequest(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    phone: str = Field(min_length=1)
    linking_code: str
    apartment_number: str
    floor: str = ""
    family_members: int = Field(default=0, ge=0, le=50)
    parking_spaces: int = Field(default=0, ge=0, le=20)
    password: str = Field(min_length=6)
    confirm_password: str

    @model_validator(mode="after")
    def passwords_match(self) -> "RegistrationRequest":
        if self.password != self.confirm_password:
            raise ValueError("Password confirmation does not match")
        return self


class RegistrationResponse(BaseModel):
    success: bool
    outcome: str
    user_id: int
    attempts: int
    message: str
    condominium_id: Optional[int] = None
    condominium_name: Optional[str] = None


class EmailAvailability(BaseModel):
    email: str
    available: bool


class ResidentRead(ORMModel):
    id: int
    profile_id: int
    condominium_id: int
    apartment_number: str
    floor: Optional[str] = None
    family_members: List[Dict[str, Any]] = []
    parking_spaces: List[Dict[str, Any]] = []
    is_owner: bool
    move_in_date: Optional[date] = None
    document_number: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    display_name: str


class ResidentUpdate(BaseModel):
    floor: Optional[str] = None
    family_members: Optional[List[Dict[str, Any]]] = None
    parking_spaces: Optional[List[Dict[str, Any]]] = None
    is_owner: Optional[bool] = None
    move_in_date: Optional[date] = None
    document_number: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None


class FinancialSummaryRead(BaseModel):
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


class PaymentRecordRead(ORMModel):
    id: int
    resident_id: int
    amount: Decimal
    currency: str
    description: str
    status: str
    reference_month: date
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    apartment_number: Optional[str] = None
    resident_name: Optional[str] = None


class FinancialOverview(BaseModel):
    stats: FinancialSummaryRead
    payments: List[PaymentRecordRead]


class PaymentRead(ORMModel):
    id: int
    condominium_id: int
    resident_id: int
    amount: Decimal
    currency: str
    description: str
    reference_month: date
    due_date: date
    payment_date: Optional[date] = None
    status: str


class MonthlyPaymentsRequest(BaseModel):
    reference_month: date
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = None
    due_days: Optional[int] = Field(default=None, ge=0, le=60)


class MonthlyPaymentsResult(BaseModel):
    created: int
    reference_month: date


class BalanceRead(BaseModel):
    year: int
    current_revenue: Decimal
    approved_expenses: Decimal
    carryover_total: Decimal
    available_balance: Decimal


class ExpenseCreate(BaseModel):
    category: str
    description: str
    amount: Decimal
    expense_date: date
    funding_source: str = "current_revenue"
    service_provider_id: Optional[int] = None


class ExpenseRead(ORMModel):
    id: int
    condominium_id: int
    category: str
    description: str
    amount: Decimal
    expense_date: date
    funding_source: str
    status: str
    service_provider_id: Optional[int] = None
    created_by_user_id: Optional[int] = None
    created_at: datetime


class CarryoverProcessRequest(BaseModel):
    year: int = Field(ge=2000, le=2100)


class CarryoverUsageRequest(BaseModel):
    origin_year: int
    amount: Decimal


class CarryoverRead(ORMModel):
    id: int
    reference_year: int
    amount_received: Decimal
    amount_expenses: Decimal
    carryover_amount: Decimal
    amount_used: Decimal
    current_balance: Decimal


class EmployeeBase(BaseModel):
    name: str
    position: str
    base_salary: Decimal = Field(ge=0)
    document_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    hire_date: date


class EmployeeCreate(EmployeeBase):
    is_active: bool = True


class EmployeeUpdate(BaseModel):
    name: Optional[str] = None
    position: Optional[str] = None
    base_salary: Optional[Decimal] = Field(default=None, ge=0)
    document_number: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = None
    hire_date: Optional[date] = None


class EmployeeRead(ORMModel, EmployeeBase):
    id: int
    condominium_id: int
    is_active: bool


class PayrollGenerateRequest(BaseModel):
    reference_month: date


class PayrollGenerateResult(BaseModel):
    success: bool
    entries_created: int
    total_amount: Decimal
    currency: str
    reference_month: date


class PayrollEntryUpdate(BaseModel):
    base_salary: Optional[Decimal] = Field(default=None, ge=0)
    allowances: Optional[Decimal] = Field(default=None, ge=0)
    overtime_hours: Optional[Decimal] = Field(default=None, ge=0)
    overtime_rate: Optional[Decimal] = Field(default=None, ge=0)
    overtime_amount: Optional[Decimal] = Field(default=None, ge=0)
    deductions: Optional[Decimal] = Field(default=None, ge=0)
    social_security_deduction: Optional[Decimal] = Field(default=None, ge=0)
    income_tax_deduction: Optional[Decimal] = Field(default=None, ge=0)
    other_deductions: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class PayrollEmployeeSummary(ORMModel):
    name: str
    position: str


class PayrollEntryRead(ORMModel):
    id: int
    employee_id: int
    reference_month: date
    base_salary: Decimal
    allowances: Decimal
    overtime_hours: Decimal
    overtime_rate: Decimal
    overtime_amount: Decimal
    deductions: Decimal
    social_security_deduction: Decimal
    income_tax_deduction: Decimal
    other_deductions: Decimal
    gross_salary: Decimal
    net_salary: Decimal
    payment_status: str
    payment_date: Optional[date] = None
    expense_id: Optional[int] = None
    notes: Optional[str] = None
    employee: Optional[PayrollEmployeeSummary] = None


class PayrollPaymentResult(BaseModel):
    success: bool
    expense_id: int
    amount: Decimal


class PayrollStatsRead(BaseModel):
    total_entries: int
    total_gross: Decimal
    total_net: Decimal
    total_deductions: Decimal
    paid_count: int
    pending_count: int


class CampaignCreate(BaseModel):
    title: str
    description: Optional[str] = None
    target_amount: Decimal = Field(gt=0)
    start_date: date
    end_date: Optional[date] = None


class CampaignStatusUpdate(BaseModel):
    status: Literal["active", "completed", "cancelled"]


class CampaignRead(BaseModel):
    id: int
    condominium_id: int
    title: str
    description: Optional[str] = None
    target_amount: Decimal
    start_date: date
    end_date: Optional[date] = None
    status: str
    total_raised: Decimal
    total_pending: Decimal
    remaining_amount: Decimal
    progress_percentage: int
    total_contributors: int
    paid_contributors: int
    pending_contributors: int
    paid_contributions_count: int
    pending_contributions_count: int
    average_contribution: Decimal


class ContributionCreate(BaseModel):
    resident_id: int
    amount: Decimal = Field(gt=0)
    status: Literal["pending", "paid"] = "pending"
    payment_date: Optional[date] = None
    notes: Optional[str] = None


class ContributionStatusUpdate(BaseModel):
    status: Literal["pending", "paid"]
    payment_date: Optional[date] = None


class ContributionRead(BaseModel):
    id: int
    resident_id: int
    resident_name: Optional[str] = None
    apartment_number: Optional[str] = None
    amount: Decimal
    status: str
    payment_date: Optional[date] = None
    notes: Optional[str] = None


class CampaignReportRead(BaseModel):
    campaign: CampaignRead
    contributions: List[ContributionRead]


class MessageCreate(BaseModel):
    recipient_id: int
    content: str = Field(min_length=1, max_length=5000)
    client_message_id: Optional[str] = Field(default=None, max_length=64)


class MessageRead(ORMModel):
    id: int
    sender_id: int
    recipient_id: int
    content: str
    message_type: str
    client_message_id: Optional[str] = None
    created_at: datetime
    read_at: Optional[datetime] = None


class ConversationSummary(BaseModel):
    peer_id: int
    last_message: MessageRead
    unread_count: int


class AnnouncementCreate(BaseModel):
    title: str
    content: str
    is_urgent: bool = False
    priority: int = 0
    published: bool = False
    expires_at: Optional[datetime] = None


class AnnouncementUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    is_urgent: Optional[bool] = None
    priority: Optional[int] = None
    published: Optional[bool] = None
    expires_at: Optional[datetime] = None


class AnnouncementRead(ORMModel):
    id: int
    condominium_id: int
    title: str
    content: str
    is_urgent: bool
    priority: int
    published: bool
    published_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class DocumentCreate(BaseModel):
    title: str
    description: Optional[str] = None
    file_path: str
    file_type: str
    file_size: Optional[int] = Field(default=None, ge=0)
    is_public: bool = False


class DocumentRead(ORMModel):
    id: int
    condominium_id: int
    title: str
    description: Optional[str] = None
    file_path: str
    file_type: str
    file_size: Optional[int] = None
    is_public: bool
    created_at: datetime


class ServiceProviderCreate(BaseModel):
    name: str
    service_type: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    document_number: Optional[str] = None
    is_authorized: bool = False


class ServiceProviderUpdate(BaseModel):
    name: Optional[str] = None
    service_type: Optional[str] = None
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    document_number: Optional[str] = None
    is_authorized: Optional[bool] = None


class ServiceProviderRead(ORMModel):
    id: int
    condominium_id: int
    name: str
    service_type: str
    contact_person: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    document_number: Optional[str] = None
    is_authorized: bool


class ReservationCreate(BaseModel):
    space_name: str
    reservation_date: date
    start_time: time
    end_time: time
    purpose: Optional[str] = None

    @model_validator(mode="after")
    def ends_after_start(self) -> "ReservationCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class ApprovalDecision(BaseModel):
    approved: bool
    rejection_reason: Optional[str] = None


class ReservationRead(ORMModel):
    id: int
    condominium_id: int
    resident_id: int
    space_name: str
    reservation_date: date
    start_time: time
    end_time: time
    purpose: Optional[str] = None
    approved: Optional[bool] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None


class VisitorCreate(BaseModel):
    name: str
    document_number: Optional[str] = None
    phone: Optional[str] = None
    purpose: Optional[str] = None
    visit_date: date
    visit_time: Optional[time] = None


class VisitorRead(ORMModel):
    id: int
    condominium_id: int
    resident_id: int
    name: str
    document_number: Optional[str] = None
    phone: Optional[str] = None
    purpose: Optional[str] = None
    visit_date: date
    visit_time: Optional[time] = None
    approved: Optional[bool] = None
    approved_at: Optional[datetime] = None


class VisitorPassCreate(BaseModel):
    hours: int = Field(default=12, ge=1, le=24 * 7)


class VisitorPassRead(ORMModel):
    id: int
    visitor_id: int
    token: str
    expires_at: datetime
    used_at: Optional[datetime] = None


class VisitorPassScan(BaseModel):
    token: str


OccurrenceCategory = Literal["reclamacao", "manutencao", "sugestao", "seguranca"]
OccurrencePriority = Literal["baixa", "media", "alta", "urgente"]
OccurrenceStatus = Literal["aberta", "em_andamento", "resolvida"]


class OccurrenceCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    category: OccurrenceCategory = "reclamacao"
    priority: OccurrencePriority = "media"
    location: Optional[str] = None
    images: List[str] = Field(default_factory=list)


class OccurrenceUpdate(BaseModel):
    status: Optional[OccurrenceStatus] = None
    priority: Optional[OccurrencePriority] = None
    assigned_to: Optional[str] = None
    resolution_notes: Optional[str] = None


class OccurrenceRead(ORMModel):
    id: int
    condominium_id: int
    occurrence_number: int
    reported_by_user_id: int
    reporter_name: Optional[str] = None
    title: str
    description: str
    category: str
    priority: str
    location: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    status: str
    assigned_to: Optional[str] = None
    resolution_notes: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
