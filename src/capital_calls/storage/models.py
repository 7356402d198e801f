"""Data models for storage."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal

ZERO = Decimal("0")

# Capital call lifecycle
STATUS_DRAFT = "Draft"
STATUS_SENT = "Sent"
STATUS_PARTIALLY_PAID = "Partially Paid"
STATUS_PAID = "Paid"

# Statuses whose allocations count as called capital
CALLED_STATUSES = (STATUS_SENT, STATUS_PAID, STATUS_PARTIALLY_PAID)

ALLOCATION_PENDING = "Pending"

FEE_BASE_NIC_PLUS_UNFUNDED = "nic_plus_unfunded"


@dataclass
class StructureRecord:
    """A pooled investment structure stored in the database."""

    id: str
    name: str
    gp_percentage: Decimal = ZERO
    base_currency: str = "USD"
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())


@dataclass
class InvestorRecord:
    """A raw structure-investor row. An investor may have several per structure."""

    id: int | None
    structure_id: str
    user_id: str
    ownership_percent: Decimal | None
    commitment: Decimal | None
    fee_discount: Decimal | None = None
    vat_exempt: bool = False


@dataclass
class CapitalCallRecord:
    """A cash call issued against a structure."""

    id: int | None
    structure_id: str
    total_call_amount: Decimal
    call_number: int | None = None
    call_date: str | None = None
    due_date: str | None = None
    notice_date: str | None = None
    deadline_date: str | None = None
    total_paid_amount: Decimal = ZERO
    total_unpaid_amount: Decimal | None = None
    status: str = STATUS_DRAFT
    purpose: str | None = None
    notes: str | None = None
    sent_date: str | None = None
    approval_status: str | None = None

    # Fee configuration
    management_fee_base: str | None = None  # None or "nic_plus_unfunded"
    management_fee_rate: Decimal | None = None  # percent p.a., legacy mode
    fee_rate_on_nic: Decimal | None = None  # percent p.a., dual-rate mode
    fee_rate_on_unfunded: Decimal | None = None  # percent p.a., dual-rate mode
    fee_period: str | None = None  # "annual", "quarterly", "semi-annual"
    vat_applicable: bool = False
    vat_rate: Decimal | None = None  # percent

    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())


@dataclass
class AllocationRecord:
    """One investor's obligation for one capital call."""

    id: int | None
    capital_call_id: int
    user_id: str

    # Fee breakdown
    principal_amount: Decimal
    management_fee_gross: Decimal = ZERO
    management_fee_discount: Decimal = ZERO  # discount (legacy) or GP offset (dual-rate)
    management_fee_net: Decimal = ZERO
    vat_amount: Decimal = ZERO
    total_due: Decimal = ZERO

    # Dual-rate breakdown, None in legacy mode
    nic_fee_amount: Decimal | None = None
    unfunded_fee_amount: Decimal | None = None
    fee_offset_amount: Decimal | None = None
    deemed_gp_contribution: Decimal | None = None

    # Payment tracking
    allocated_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    capital_paid: Decimal = ZERO
    fees_paid: Decimal = ZERO
    vat_paid: Decimal = ZERO
    remaining_amount: Decimal = ZERO
    status: str = ALLOCATION_PENDING
    due_date: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)
