"""
Core Data Models for Ledger Core

These models define the strict schemas for every document the engine
reads or writes. They are designed to:
1. Enforce type safety at runtime (money is an integer count of cents)
2. Provide clear validation error messages
3. Round-trip through the document store without losing fields
4. Keep the stored field names (camelCase) readable by the mobile client

DESIGN DECISION: Python attributes are snake_case, stored keys are camelCase.
Every document model goes through to_document() / from_document() so the
alias mapping lives in exactly one place.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ledger_core.validation.phone import normalize_phone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# Naive datetimes are taken to be UTC
UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Direction(str, Enum):
    """
    Which way the money moved, from the ledger owner's point of view.

    SENT adds to a recipient's net balance, RECEIVED subtracts from it.
    """
    SENT = "SENT"
    RECEIVED = "RECEIVED"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.SENT else -1


class RecipientStatus(str, Enum):
    """
    Recipient onboarding status.

    CRITICAL: INVITED -> JOINED happens exactly once and never reverts.
    """
    INVITED = "INVITED"  # Slot created by the admin
    JOINED = "JOINED"    # Recipient has logged in at least once


class AccessCodeStatus(str, Enum):
    """Access code lifecycle."""
    ACTIVE = "ACTIVE"
    USED = "USED"


class SessionRole(str, Enum):
    """Role carried by a resolved session."""
    ADMIN = "ADMIN"
    COWORKER = "COWORKER"


# =============================================================================
# IDENTITY SCHEME
# =============================================================================

class DerivedId(BaseModel):
    """
    An id derived deterministically from a normalized phone number.

    Admins and their ledgers use this so the identity can be rebuilt from
    the phone alone, without a directory lookup.
    """
    model_config = ConfigDict(frozen=True)

    prefix: str = Field(..., min_length=1)
    phone_normalized: str = Field(..., min_length=10)

    @property
    def value(self) -> str:
        return f"{self.prefix}_{self.phone_normalized}"

    def __str__(self) -> str:
        return self.value


class GeneratedId(BaseModel):
    """A random id for everything that is not phone-derived."""
    model_config = ConfigDict(frozen=True)

    value: str = Field(default_factory=lambda: str(uuid4()))

    def __str__(self) -> str:
        return self.value


def admin_id_for(phone_normalized: str) -> DerivedId:
    return DerivedId(prefix="admin", phone_normalized=phone_normalized)


def ledger_id_for(phone_normalized: str) -> DerivedId:
    return DerivedId(prefix="ledger", phone_normalized=phone_normalized)


def recipient_uid_for(phone_normalized: str) -> DerivedId:
    return DerivedId(prefix="recipient", phone_normalized=phone_normalized)


# =============================================================================
# DOCUMENT BASE
# =============================================================================

class LedgerDocument(BaseModel):
    """
    Base for every persisted document.

    Stored keys are camelCase; either spelling is accepted on input.
    Unknown stored keys are ignored so older or newer clients can coexist.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    def to_document(self) -> dict[str, Any]:
        """Convert to the dict written to the store (enums as plain strings)."""
        data = self.model_dump(by_alias=True)
        return {
            key: value.value if isinstance(value, Enum) else value
            for key, value in data.items()
        }

    @classmethod
    def from_document(cls, data: dict[str, Any]):
        """Build the model from a stored dict."""
        return cls.model_validate(data)


# =============================================================================
# IDENTITY DOCUMENTS
# =============================================================================

class AdminWhitelistEntry(LedgerDocument):
    """A phone number allowed to bootstrap an admin identity."""

    phone_number: str = Field(
        ...,
        min_length=1,
        description="Phone as configured; normalized before matching"
    )
    admin_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Name used when the admin is first created"
    )

    @field_validator('phone_number')
    @classmethod
    def validate_phone(cls, v: str) -> str:
        normalize_phone(v)
        return v

    @property
    def phone_normalized(self) -> str:
        return normalize_phone(self.phone_number)


class Admin(LedgerDocument):
    """A person who records transactions. Identity is derived from the phone."""

    admin_id: str = Field(..., min_length=1)
    admin_name: str = Field(..., min_length=1, max_length=200)
    admin_phone_normalized: Optional[str] = None
    created_at: Optional[UtcDatetime] = None


class Ledger(LedgerDocument):
    """A billing relationship owned by one admin. Never deleted."""

    ledger_id: str = Field(..., min_length=1)
    admin_id: str = Field(..., min_length=1)
    created_at: Optional[UtcDatetime] = None


class Recipient(LedgerDocument):
    """
    A counterparty tracked within a ledger.

    `deleting` is set before a cascade delete starts; a recipient in that
    state accepts no new transactions and cannot log in.
    """

    recipient_id: str = Field(..., min_length=1)
    ledger_id: str = Field(..., min_length=1)
    recipient_name: str = Field(..., min_length=1, max_length=200)
    phone_number: Optional[str] = Field(
        default=None,
        description="Phone as typed by the admin"
    )
    phone_normalized: Optional[str] = Field(
        default=None,
        description="Digits-only phone, the lookup key"
    )
    access_code: Optional[str] = None
    status: RecipientStatus = RecipientStatus.INVITED
    created_at: Optional[UtcDatetime] = None
    joined_at: Optional[UtcDatetime] = None
    joined_name: Optional[str] = None
    joined_uid: Optional[str] = None
    deleting: bool = False
    deletion_started_at: Optional[UtcDatetime] = None

    @property
    def is_joined(self) -> bool:
        return self.status == RecipientStatus.JOINED


class PhoneMapping(LedgerDocument):
    """
    Denormalized index: normalized phone -> recipient.

    Keyed by phone_normalized. May lag behind recipients; the identity
    directory rebuilds it when it is missing.
    """

    phone_normalized: str = Field(..., min_length=10)
    phone_number: Optional[str] = None
    recipient_id: str = Field(..., min_length=1)
    ledger_id: str = Field(..., min_length=1)
    recipient_name: str = Field(..., min_length=1)
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None


class AccessCode(LedgerDocument):
    """A one-time code that binds a person to a recipient slot."""

    code: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)
    ledger_id: str = Field(..., min_length=1)
    status: AccessCodeStatus = AccessCodeStatus.ACTIVE
    created_at: Optional[UtcDatetime] = None
    used_at: Optional[UtcDatetime] = None
    joined_name: Optional[str] = None


# =============================================================================
# TRANSACTIONS AND AGGREGATES
# =============================================================================

class LedgerTransaction(LedgerDocument):
    """
    An immutable financial event between a ledger and one of its recipients.

    CRITICAL: Created once, never mutated, only ever hard-deleted.
    txn_at is the business date chosen by the admin; created_at is the
    server write time. Both are kept.
    """

    txn_id: str = Field(..., min_length=1)
    ledger_id: str = Field(..., min_length=1)
    recipient_id: str = Field(..., min_length=1)
    direction: Direction
    amount_cents: int = Field(
        ...,
        gt=0,
        strict=True,
        description="Amount in minor units; always positive"
    )
    note: Optional[str] = Field(default=None, max_length=500)
    txn_at: UtcDatetime
    created_at: Optional[UtcDatetime] = None
    created_by_uid: str = Field(..., min_length=1)
    created_by_role: Literal["ADMIN"] = "ADMIN"
    recipient_name_snapshot: str = Field(..., min_length=1)

    @property
    def signed_cents(self) -> int:
        """Contribution to the recipient's net balance."""
        return self.direction.sign * self.amount_cents


class RecipientSummary(LedgerDocument):
    """Derived running balance for one recipient."""

    recipient_id: str = Field(..., min_length=1)
    ledger_id: str = Field(..., min_length=1)
    total_sent_cents: int = 0
    total_received_cents: int = 0
    net_cents: int = 0
    last_txn_at: Optional[UtcDatetime] = None


class LedgerSummary(LedgerDocument):
    """Derived running totals across every recipient in a ledger."""

    ledger_id: str = Field(..., min_length=1)
    total_sent_cents: int = 0
    total_received_cents: int = 0
    net_cents: int = 0
    last_txn_at: Optional[UtcDatetime] = None


class TransactionTotals(BaseModel):
    """Totals computed straight from raw transactions."""

    total_sent_cents: int = 0
    total_received_cents: int = 0
    net_cents: int = 0
    last_txn_at: Optional[datetime] = None
    count: int = 0

    def add(self, txn: LedgerTransaction) -> None:
        if txn.direction == Direction.SENT:
            self.total_sent_cents += txn.amount_cents
        else:
            self.total_received_cents += txn.amount_cents
        self.net_cents += txn.signed_cents
        self.count += 1
        if self.last_txn_at is None or txn.txn_at > self.last_txn_at:
            self.last_txn_at = txn.txn_at


# =============================================================================
# SESSIONS
# =============================================================================

class AdminSession(LedgerDocument):
    """Resolved identity for a whitelisted admin phone."""

    role: Literal[SessionRole.ADMIN] = SessionRole.ADMIN
    uid: str
    admin_id: str
    admin_name: str
    ledger_id: str


class RecipientSession(LedgerDocument):
    """Resolved identity for a registered recipient (coworker) phone or code."""

    role: Literal[SessionRole.COWORKER] = SessionRole.COWORKER
    uid: str
    ledger_id: str
    recipient_id: str
    recipient_name: str
    coworker_name: str
    access_code: Optional[str] = None


Session = Annotated[Union[AdminSession, RecipientSession], Field(discriminator="role")]


# =============================================================================
# OPERATION RESULTS
# =============================================================================

class CascadeReport(BaseModel):
    """What a recipient cascade delete removed."""

    recipient_id: str
    ledger_id: str
    transactions_deleted: int = Field(default=0, ge=0)
    phone_mappings_deleted: int = Field(default=0, ge=0)
    access_codes_deleted: int = Field(default=0, ge=0)
    summary_deleted: bool = False
    batches_committed: int = Field(default=0, ge=0)
    resumed: bool = Field(
        default=False,
        description="True when the recipient was already marked deleting"
    )
    ledger_summary: Optional[LedgerSummary] = None


class SummaryCorrection(BaseModel):
    """One summary whose stored values differed from its transactions."""

    recipient_id: Optional[str] = None  # None for the ledger summary
    stored_net_cents: Optional[int] = None
    actual_net_cents: Optional[int] = None


class ReconciliationReport(BaseModel):
    """Result of recomputing every summary in a ledger."""

    ledger_id: str
    reconciled_at: datetime = Field(default_factory=utc_now)
    recipients_checked: int = Field(default=0, ge=0)
    corrections: list[SummaryCorrection] = Field(default_factory=list)
    ledger_summary: Optional[LedgerSummary] = None

    @property
    def drift_found(self) -> bool:
        return len(self.corrections) > 0

    @model_validator(mode='after')
    def validate_counts(self) -> 'ReconciliationReport':
        recipient_corrections = [c for c in self.corrections if c.recipient_id]
        if len(recipient_corrections) > self.recipients_checked:
            raise ValueError("More recipient corrections than recipients checked")
        return self
