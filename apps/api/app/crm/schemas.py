from __future__ import annotations

import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Annotated, Any, ClassVar, Generic, TypeVar
from uuid import UUID

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, model_validator

from app.crm.models import ActivityType, DealStage, TaskPriority, TaskStatus


STAGE_LABELS: dict[DealStage, str] = {
    DealStage.LEAD: "Lead",
    DealStage.QUALIFIED: "Qualified",
    DealStage.PROPOSAL: "Proposal",
    DealStage.NEGOTIATION: "Negotiation",
    DealStage.CLOSED_WON: "Closed Won",
    DealStage.CLOSED_LOST: "Closed Lost",
}

_LEADING_DECIMAL = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_LEADING_INTEGER = re.compile(r"^\s*[+-]?\d+")

MAX_DEAL_VALUE = Decimal("1e15")


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def strip_text(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def assume_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_deal_value(value: Any) -> Any:
    """Leading number of the submitted text; anything unparsable is stored as 0."""

    if value is None:
        return None
    if isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, (int, float, Decimal)):
        raw = str(value)
    else:
        match = _LEADING_DECIMAL.match(str(value))
        if match is None:
            return Decimal("0")
        raw = match.group(0).strip()
    try:
        parsed = Decimal(raw)
    except InvalidOperation:
        return Decimal("0")
    if not parsed.is_finite() or abs(parsed) >= MAX_DEAL_VALUE:
        return Decimal("0")
    return parsed


def parse_probability(value: Any) -> Any:
    """Leading integer of the submitted text, clamped to 0..100."""

    if value is None:
        return None
    if isinstance(value, bool):
        return 0
    try:
        if isinstance(value, (int, float, Decimal)):
            parsed = int(value)
        else:
            match = _LEADING_INTEGER.match(str(value))
            parsed = int(Decimal(match.group(0).strip())) if match else 0
    except (OverflowError, ValueError, InvalidOperation):
        return 0
    return max(0, min(100, parsed))


RequiredText = Annotated[str, BeforeValidator(strip_text), Field(min_length=1)]
OptionalText = Annotated[str | None, BeforeValidator(blank_to_none)]
OptionalEmail = Annotated[EmailStr | None, BeforeValidator(blank_to_none)]
OptionalRef = Annotated[UUID | None, BeforeValidator(blank_to_none)]
OptionalDate = Annotated[date | None, BeforeValidator(blank_to_none)]
OptionalDateTime = Annotated[datetime | None, BeforeValidator(blank_to_none), AfterValidator(assume_utc)]
UtcDateTime = Annotated[datetime, AfterValidator(assume_utc)]
DealValue = Annotated[Decimal, BeforeValidator(parse_deal_value)]
Probability = Annotated[int, BeforeValidator(parse_probability)]


class _PartialUpdate(BaseModel):
    """Edits carry only the fields the form changed; required text may not be cleared."""

    required_fields: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_cleared_required_fields(self) -> "_PartialUpdate":
        for field_name in self.required_fields:
            if field_name in self.model_fields_set and getattr(self, field_name) is None:
                raise ValueError(f"{field_name} cannot be empty")
        return self


class CompanyCreate(BaseModel):
    name: RequiredText
    industry: OptionalText = None
    website: OptionalText = None
    phone: OptionalText = None
    email: OptionalEmail = None
    address: OptionalText = None
    notes: OptionalText = None


class CompanyUpdate(_PartialUpdate):
    required_fields: ClassVar[tuple[str, ...]] = ("name",)

    name: RequiredText | None = None
    industry: OptionalText = None
    website: OptionalText = None
    phone: OptionalText = None
    email: OptionalEmail = None
    address: OptionalText = None
    notes: OptionalText = None


class CompanySummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str


class CompanyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    industry: str | None
    website: str | None
    phone: str | None
    email: str | None
    address: str | None
    notes: str | None
    user_id: UUID
    created_at: UtcDateTime
    updated_at: UtcDateTime


class ContactCreate(BaseModel):
    first_name: RequiredText
    last_name: RequiredText
    email: OptionalEmail = None
    phone: OptionalText = None
    title: OptionalText = None
    company_id: OptionalRef = None
    notes: OptionalText = None


class ContactUpdate(_PartialUpdate):
    required_fields: ClassVar[tuple[str, ...]] = ("first_name", "last_name")

    first_name: RequiredText | None = None
    last_name: RequiredText | None = None
    email: OptionalEmail = None
    phone: OptionalText = None
    title: OptionalText = None
    company_id: OptionalRef = None
    notes: OptionalText = None


class ContactSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str


class ContactRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    title: str | None
    company_id: UUID | None
    notes: str | None
    user_id: UUID
    created_at: UtcDateTime
    updated_at: UtcDateTime
    company: CompanySummary | None = None


class DealCreate(BaseModel):
    title: RequiredText
    value: DealValue = Decimal("0")
    stage: DealStage = DealStage.LEAD
    probability: Probability = 0
    expected_close_date: OptionalDate = None
    company_id: OptionalRef = None
    contact_id: OptionalRef = None
    notes: OptionalText = None


class DealUpdate(_PartialUpdate):
    required_fields: ClassVar[tuple[str, ...]] = ("title", "value", "stage", "probability")

    title: RequiredText | None = None
    value: DealValue | None = None
    stage: DealStage | None = None
    probability: Probability | None = None
    expected_close_date: OptionalDate = None
    company_id: OptionalRef = None
    contact_id: OptionalRef = None
    notes: OptionalText = None


class DealStageChange(BaseModel):
    stage: DealStage


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    value: Decimal
    stage: DealStage
    stage_label: str = ""
    probability: int
    expected_close_date: date | None
    company_id: UUID | None
    contact_id: UUID | None
    notes: str | None
    user_id: UUID
    created_at: UtcDateTime
    updated_at: UtcDateTime
    company: CompanySummary | None = None
    contact: ContactSummary | None = None

    @model_validator(mode="after")
    def _fill_stage_label(self) -> "DealRead":
        self.stage_label = STAGE_LABELS[self.stage]
        return self


class TaskCreate(BaseModel):
    title: RequiredText
    description: OptionalText = None
    due_date: OptionalDateTime = None
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    contact_id: OptionalRef = None
    company_id: OptionalRef = None
    deal_id: OptionalRef = None


class TaskUpdate(_PartialUpdate):
    required_fields: ClassVar[tuple[str, ...]] = ("title", "priority", "status")

    title: RequiredText | None = None
    description: OptionalText = None
    due_date: OptionalDateTime = None
    priority: TaskPriority | None = None
    status: TaskStatus | None = None
    contact_id: OptionalRef = None
    company_id: OptionalRef = None
    deal_id: OptionalRef = None


class TaskStatusChange(BaseModel):
    status: TaskStatus


class TaskRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    title: str
    description: str | None
    due_date: UtcDateTime | None
    priority: TaskPriority
    status: TaskStatus
    contact_id: UUID | None
    company_id: UUID | None
    deal_id: UUID | None
    user_id: UUID
    created_at: UtcDateTime
    updated_at: UtcDateTime
    is_overdue: bool = False


class ActivityCreate(BaseModel):
    type: ActivityType = ActivityType.NOTE
    subject: RequiredText
    description: OptionalText = None
    activity_date: OptionalDateTime = None
    contact_id: OptionalRef = None
    company_id: OptionalRef = None
    deal_id: OptionalRef = None


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: ActivityType
    subject: str
    description: str | None
    activity_date: UtcDateTime
    contact_id: UUID | None
    company_id: UUID | None
    deal_id: UUID | None
    user_id: UUID
    created_at: UtcDateTime


ItemT = TypeVar("ItemT")


class ListView(BaseModel, Generic[ItemT]):
    items: list[ItemT]
    count: int
    empty_message: str | None = None


class DealBoardColumn(BaseModel):
    stage: DealStage
    label: str
    deals: list[DealRead]
    count: int
    total_value: Decimal


class DealBoard(BaseModel):
    columns: list[DealBoardColumn]
    total_deals: int
    pipeline_value: Decimal


class ActivityDay(BaseModel):
    day: date
    activities: list[ActivityRead]
    count: int


class ActivityTimeline(BaseModel):
    days: list[ActivityDay]
    count: int
    empty_message: str | None = None


class OptionItem(BaseModel):
    id: UUID
    label: str


class FormOptions(BaseModel):
    companies: list[OptionItem]
    contacts: list[OptionItem]


class StageBreakdown(BaseModel):
    stage: DealStage
    label: str
    count: int
    percentage: float


class DashboardRead(BaseModel):
    total_contacts: int
    total_companies: int
    total_deals: int
    total_deal_value: Decimal
    active_tasks: int
    overdue_tasks: int
    completed_tasks: int
    recent_activities: int
    deals_by_stage: list[StageBreakdown]
    deals_by_stage_empty_message: str | None = None
    average_deal_value: int
    contacts_per_company: float
    task_completion_rate: int
    completed_task_rate: int
