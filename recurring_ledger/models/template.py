"""
Core Data Models for Recurring Ledger

These models define the schemas for everything the scheduler reads or writes:
1. RecurringTemplate - the "Netflix ₹500/month" definition (read from the template store)
   RejectedTemplate - an active record too broken to validate (reported as skipped)
2. LedgerTransaction - one concrete occurrence (appended to the ledger store)
3. MaterializationOutcome / BatchStats - what a run reports back

DESIGN DECISION: Template records arrive from stores that have lived through
several schema versions (legacy ``isActive`` flag, ``nextDate`` instead of
``nextRunDate``, camelCase keys). All of that is normalized ONCE, in the
template model's pre-validation hook. Code downstream only ever sees the
canonical ``status`` enum and snake_case fields.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Frequency(str, Enum):
    """
    How often a template recurs.

    NOTE: MONTHLY means a fixed 30-day period counted from the anchor date,
    not "same day each calendar month". See scheduling.recurrence.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TemplateStatus(str, Enum):
    """
    Template lifecycle status.

    CRITICAL: This subsystem only READS status. Pausing and cancelling
    happen elsewhere. Only ACTIVE templates are ever materialized.
    """
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class TransactionKind(str, Enum):
    """Direction of money for a template and its transactions."""
    EXPENSE = "expense"
    INCOME = "income"


class OutcomeKind(str, Enum):
    """Result of materializing one occurrence."""
    CREATED = "created"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    FAILED = "failed"


DEFAULT_FREQUENCY = Frequency.MONTHLY
AUTO_GENERATED_NOTE = "auto-generated"


class MalformedTemplateError(ValueError):
    """
    Template data cannot be scheduled (missing or unparseable next run date).

    This is a data quality issue, not an operational fault: the driver
    counts it as skipped, never as an error.
    """

    def __init__(self, template_id: str, reason: str):
        self.template_id = template_id
        self.reason = reason
        super().__init__(f"Template {template_id} is malformed: {reason}")


# =============================================================================
# RECORD NORMALIZATION HELPERS
# =============================================================================

# Record keys accepted for each canonical field, most authoritative first.
_FIELD_SOURCES = {
    "next_run_date": ("next_run_date", "nextRunDate", "nextDate", "next_date"),
    "anchor_date": ("anchor_date", "startDate", "start_date"),
    "payment_method": ("payment_method", "paymentMethod"),
    "kind": ("kind", "type"),
    "user_id": ("user_id", "userId"),
}

_LEGACY_KEYS = {
    key for keys in _FIELD_SOURCES.values() for key in keys
} | {"isActive", "is_active"}


def parse_calendar_date(value: Any) -> Optional[date]:
    """
    Parse a stored date into a calendar date, dropping any time-of-day.

    Accepts ``date``, ``datetime`` and ISO strings ("2024-01-31" or
    "2024-01-31T10:30:00"). Returns None for anything else instead of
    raising, so callers can decide whether a missing date is fatal.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _first_present(record: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = record.get(key)
        if not _is_blank(value):
            return value
    return None


def _coerce_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip():
        return value.strip().lower() in ("true", "1", "yes")
    return None


def _normalize_status(status: Any, is_active: Any) -> TemplateStatus:
    """
    Fold the legacy ``isActive`` flag into the status enum.

    A recognized status always wins. Otherwise (no status, or one this
    subsystem doesn't know such as "archived") ``isActive=True`` means
    active, and anything else is not eligible.
    """
    if isinstance(status, str):
        status = status.strip().lower()
    try:
        return TemplateStatus(status)
    except ValueError:
        pass
    if _coerce_flag(is_active) is True:
        return TemplateStatus.ACTIVE
    return TemplateStatus.PAUSED


def record_is_active(record: dict) -> bool:
    """Eligibility of a raw store record, decided without full validation."""
    status = _normalize_status(
        record.get("status"),
        record.get("isActive", record.get("is_active")),
    )
    return status == TemplateStatus.ACTIVE


# =============================================================================
# TEMPLATE MODEL
# =============================================================================

class RecurringTemplate(BaseModel):
    """
    A recurring payment definition.

    The anchor date is the permanent reference point for recurrence math
    and is never mutated. ``next_run_date`` only ever moves forward.

    ``next_run_date`` may be None when the stored value is missing or
    unparseable; such templates are rejected by ``require_next_run``.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        frozen=True,
        extra="ignore",
    )

    id: str = Field(
        ...,
        min_length=1,
        description="Opaque template identifier"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Owner of the template"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name, copied into generated transactions"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Amount in INR"
    )
    kind: TransactionKind = Field(
        default=TransactionKind.EXPENSE,
        description="Expense or income"
    )
    frequency: Frequency = Field(
        default=DEFAULT_FREQUENCY,
        description="Recurrence cadence"
    )
    anchor_date: Optional[date] = Field(
        default=None,
        description="Original start date (never mutated)"
    )
    next_run_date: Optional[date] = Field(
        default=None,
        description="Calendar date of the next due occurrence"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    payment_method: Optional[str] = Field(
        default=None,
        max_length=100,
    )
    status: TemplateStatus = Field(
        default=TemplateStatus.ACTIVE,
        description="Lifecycle status (read-only here)"
    )

    @model_validator(mode='before')
    @classmethod
    def normalize_record(cls, data: Any, info: ValidationInfo) -> Any:
        """Map legacy and camelCase record keys onto canonical fields."""
        if not isinstance(data, dict):
            return data

        context = info.context or {}
        normalized = {
            key: value
            for key, value in data.items()
            if key not in _LEGACY_KEYS and not _is_blank(value)
        }
        for field_name, keys in _FIELD_SOURCES.items():
            value = _first_present(data, keys)
            if value is not None:
                normalized[field_name] = value

        next_run = parse_calendar_date(normalized.get("next_run_date"))
        normalized["next_run_date"] = next_run
        # Older records have no start date; the first scheduled run is the anchor.
        normalized["anchor_date"] = (
            parse_calendar_date(normalized.get("anchor_date")) or next_run
        )

        if "frequency" in normalized and isinstance(normalized["frequency"], str):
            normalized["frequency"] = normalized["frequency"].strip().lower()
        normalized.setdefault(
            "frequency", context.get("default_frequency", DEFAULT_FREQUENCY)
        )
        if isinstance(normalized.get("kind"), str):
            normalized["kind"] = normalized["kind"].strip().lower()

        normalized["status"] = _normalize_status(
            data.get("status"),
            data.get("isActive", data.get("is_active")),
        )
        return normalized

    @classmethod
    def from_record(
        cls,
        record: dict,
        default_frequency: Frequency = DEFAULT_FREQUENCY,
    ) -> "RecurringTemplate":
        """
        Build a template from a raw store record.

        Every store goes through here, so legacy fields are normalized
        exactly once at the read boundary.
        """
        return cls.model_validate(
            record,
            context={"default_frequency": default_frequency},
        )

    @property
    def is_active(self) -> bool:
        return self.status == TemplateStatus.ACTIVE

    def require_next_run(self) -> date:
        """
        Get the next run date or explain why the template can't be scheduled.

        Raises:
            MalformedTemplateError: next run date missing, unparseable,
                or earlier than the anchor date
        """
        if self.next_run_date is None:
            raise MalformedTemplateError(
                self.id, "missing or unparseable next run date"
            )
        if self.anchor_date and self.next_run_date < self.anchor_date:
            raise MalformedTemplateError(
                self.id,
                f"next run date {self.next_run_date} is before "
                f"anchor date {self.anchor_date}",
            )
        return self.next_run_date


class RejectedTemplate(BaseModel):
    """
    An active template record that failed validation.

    Stores list these next to valid templates so the driver can count and
    audit them as skipped. They are never scheduled.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    reason: str

    @classmethod
    def from_validation_error(
        cls,
        record: dict,
        error: ValidationError,
    ) -> "RejectedTemplate":
        reason = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'record'}: {err['msg']}"
            for err in error.errors()
        )
        return cls(id=str(record.get("id") or "<missing id>"), reason=reason)


def load_active(
    record: dict,
    default_frequency: Frequency = DEFAULT_FREQUENCY,
) -> Optional[Union[RecurringTemplate, RejectedTemplate]]:
    """
    Turn a raw store record into a ``list_active`` entry.

    Returns the template if it is active, a RejectedTemplate if the record
    is active but invalid, and None for anything not eligible.
    """
    try:
        template = RecurringTemplate.from_record(
            record, default_frequency=default_frequency
        )
    except ValidationError as e:
        if record_is_active(record):
            return RejectedTemplate.from_validation_error(record, e)
        return None
    return template if template.is_active else None


# =============================================================================
# LEDGER TRANSACTION MODEL
# =============================================================================

class LedgerTransaction(BaseModel):
    """
    One concrete ledger entry generated from a template occurrence.

    CRITICAL: Created once per due occurrence and never mutated afterwards.
    ``recurring_template_id`` is a back-reference, not ownership.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        default_factory=lambda: uuid4().hex,
        description="Transaction identifier"
    )
    user_id: str
    recurring_template_id: str = Field(
        ...,
        min_length=1,
        description="Template this occurrence was generated from"
    )
    title: str = Field(..., min_length=1, max_length=200)
    transaction_date: date = Field(
        ...,
        description="Calendar date of the occurrence"
    )
    amount: Decimal = Field(..., gt=0, description="Amount in INR")
    kind: TransactionKind
    category: str
    payment_method: Optional[str] = None
    note: str = AUTO_GENERATED_NOTE
    is_recurring: bool = True
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @classmethod
    def from_template(
        cls,
        user_id: str,
        template: RecurringTemplate,
        due_date: date,
        created_at: Optional[datetime] = None,
        note: str = AUTO_GENERATED_NOTE,
    ) -> "LedgerTransaction":
        """Copy the descriptive template fields onto a new occurrence."""
        fields = dict(
            user_id=user_id,
            recurring_template_id=template.id,
            title=template.name,
            transaction_date=due_date,
            amount=template.amount,
            kind=template.kind,
            category=template.category,
            payment_method=template.payment_method,
            note=note,
        )
        if created_at is not None:
            fields["created_at"] = created_at
        return cls(**fields)


# =============================================================================
# RUN RESULT MODELS
# =============================================================================

class MaterializationOutcome(BaseModel):
    """Result of one ``Materializer.materialize`` call."""
    model_config = ConfigDict(frozen=True)

    kind: OutcomeKind
    transaction_id: Optional[str] = None
    reason: Optional[str] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def created(cls, transaction_id: str) -> "MaterializationOutcome":
        return cls(kind=OutcomeKind.CREATED, transaction_id=transaction_id)

    @classmethod
    def skipped_duplicate(cls, reason: str) -> "MaterializationOutcome":
        return cls(kind=OutcomeKind.SKIPPED_DUPLICATE, reason=reason)

    @classmethod
    def failed(cls, error: Exception) -> "MaterializationOutcome":
        return cls(
            kind=OutcomeKind.FAILED,
            error_type=type(error).__name__,
            error_message=str(error),
        )


class BatchStats(BaseModel):
    """
    Aggregated counters for one batch run.

    This is the only thing ``run_batch`` returns to its caller.
    """

    created: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    errors: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.created + self.skipped + self.errors

    def to_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
        }
