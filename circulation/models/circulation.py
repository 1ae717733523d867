"""
Core Data Models for Library Circulation

These models define the strict schemas for the records the engine owns:
books, members and loan transactions, plus the read-side views handed to
the desk UI.

DESIGN DECISION: available_copies is a computed field. It is serialized
for callers and persisted for query convenience, but it is never an input:
every business decision reads max(0, total - borrowed) fresh.

DESIGN DECISION: OVERDUE is never stored. A loan past its due date is
still ACTIVE in the store; LoanView projects it as OVERDUE at read time.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from circulation.clock import ensure_utc, utc_now


CENTS = Decimal("0.01")

DEFAULT_MEMBER_CAPACITY = 5


def available_copies(total_copies: int, borrowed_copies: int) -> int:
    """Copies on the shelf. Pure function of the two stored counts."""
    return max(0, total_copies - borrowed_copies)


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class MemberRole(str, Enum):
    """
    Account roles.

    Only MEMBER accounts borrow books; staff accounts have no capacity.
    """
    ADMIN = "ADMIN"
    LIBRARIAN = "LIBRARIAN"
    MEMBER = "MEMBER"


class TransactionType(str, Enum):
    """Kind of circulation record. Records created by a borrow are BORROW."""
    BORROW = "BORROW"
    RETURN = "RETURN"


class TransactionStatus(str, Enum):
    """
    Loan lifecycle status.

    ACTIVE -> RETURNED (terminal), ACTIVE -> CANCELLED (terminal, admin only).
    OVERDUE appears only in read-side views.
    """
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"
    CANCELLED = "CANCELLED"


# =============================================================================
# CORE RECORDS
# =============================================================================

class Book(BaseModel):
    """A catalog title and its copy counts."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    title: str
    author: str
    isbn: str
    genre: str = ""
    publisher: str = ""
    publication_year: Optional[int] = None
    description: Optional[str] = None

    total_copies: int = Field(..., ge=0)
    borrowed_copies: int = Field(default=0, ge=0)

    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @computed_field
    @property
    def available_copies(self) -> int:
        return available_copies(self.total_copies, self.borrowed_copies)

    @field_validator('created_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class Member(BaseModel):
    """
    A library account.

    Capacity is forced to 0 for staff roles so "meaningful only for MEMBER"
    holds at the schema level.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: str = Field(..., repr=False)
    full_name: str = ""
    email: str = ""
    role: MemberRole = MemberRole.MEMBER
    book_capacity: int = Field(default=DEFAULT_MEMBER_CAPACITY, ge=0)

    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)

    @field_validator('created_at')
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @model_validator(mode='after')
    def staff_have_no_capacity(self) -> 'Member':
        if self.role != MemberRole.MEMBER:
            self.book_capacity = 0
        return self

    @property
    def is_member(self) -> bool:
        return self.role == MemberRole.MEMBER


class Transaction(BaseModel):
    """
    One loan of one copy.

    The transaction references its book and member by id only; it never
    drives their lifecycle.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    book_id: str
    member_id: str

    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None

    type: TransactionType = TransactionType.BORROW
    status: TransactionStatus = TransactionStatus.ACTIVE
    fine_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    notes: Optional[str] = Field(default=None, max_length=1000)

    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator('borrow_date', 'due_date', 'return_date', 'created_at', 'updated_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    @field_validator('fine_amount')
    @classmethod
    def normalize_fine(cls, v: Decimal) -> Decimal:
        return to_money(v)

    @model_validator(mode='after')
    def validate_lifecycle(self) -> 'Transaction':
        """A return date exists exactly when the loan has been returned."""
        if self.status == TransactionStatus.OVERDUE:
            raise ValueError("OVERDUE is a display status and cannot be stored")

        returned = self.status == TransactionStatus.RETURNED
        if returned and self.return_date is None:
            raise ValueError("Returned transaction requires a return date")
        if not returned and self.return_date is not None:
            raise ValueError("Only returned transactions carry a return date")

        if self.due_date < self.borrow_date:
            raise ValueError("Due date cannot be before borrow date")
        if self.return_date and self.return_date < self.borrow_date:
            raise ValueError("Return date cannot be before borrow date")

        return self

    @property
    def is_open(self) -> bool:
        """An ACTIVE loan that has not been soft-deleted; the kind every count uses."""
        return self.status == TransactionStatus.ACTIVE and self.is_active


# =============================================================================
# INPUT SPECS
# =============================================================================

class BookSpec(BaseModel):
    """
    Caller-supplied book fields for add and full-replace update.

    Deliberately lenient: emptiness and ranges are checked by the
    validator so the caller gets every issue at once.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = ""
    author: str = ""
    isbn: str = ""
    genre: str = ""
    publisher: str = ""
    publication_year: Optional[int] = None
    description: Optional[str] = None
    total_copies: int = 1


class MemberSpec(BaseModel):
    """Caller-supplied account fields for registration and profile update."""
    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = ""
    password: str = Field(default="", repr=False)
    full_name: str = ""
    email: str = ""
    role: MemberRole = MemberRole.MEMBER
    book_capacity: Optional[int] = None


# =============================================================================
# READ-SIDE VIEWS
# =============================================================================

class LoanView(BaseModel):
    """A transaction as the desk sees it right now."""

    transaction: Transaction
    display_status: TransactionStatus
    is_overdue: bool
    days_overdue: int = Field(..., ge=0)
    current_fine: Decimal = Field(..., ge=0)
    book_title: Optional[str] = None
    member_username: Optional[str] = None


class CapacityInfo(BaseModel):
    """Borrowing headroom for one account."""

    member_id: str
    capacity: int
    active_loans: int
    remaining: int

    @property
    def summary(self) -> str:
        return (
            f"Capacity: {self.capacity}, Active loans: {self.active_loans}, "
            f"Remaining: {self.remaining}"
        )


class LibraryStatistics(BaseModel):
    """Counts for the dashboard header."""

    total_books: int
    total_members: int
    total_transactions: int
    available_books: int
    active_loans: int
    overdue_loans: int
    total_fines: Decimal
    generated_at: datetime


class ResyncReport(BaseModel):
    """Outcome of one full cache rebuild."""

    books: int
    members: int
    transactions: int
    repaired_book_ids: list[str] = Field(default_factory=list)
    completed_at: datetime


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = Field(
        default=None,
        description="Suggested fix if available"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (required fields, ranges)
    Stage 2: Semantic validation (plausibility checks)
    """

    subject: str = Field(
        ...,
        description="What was validated (e.g., 'book', 'member')"
    )
    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [issue.message for issue in self.issues if issue.severity == "warning"]
