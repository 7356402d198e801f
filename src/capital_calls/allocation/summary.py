"""Call-level totals and structure call history."""

from dataclasses import asdict, dataclass, field
from decimal import Decimal

from ..errors import CapitalCallNotFoundError
from ..storage.database import Database
from ..storage.models import CALLED_STATUSES, ZERO, AllocationRecord, CapitalCallRecord


def _total(allocations: list[AllocationRecord], attr: str) -> Decimal:
    return sum((getattr(a, attr) or ZERO for a in allocations), ZERO)


@dataclass
class CallSummary:
    """Totals across all allocations of one capital call."""

    call_id: int
    call_number: int
    structure_id: str
    status: str
    total_call_amount: Decimal
    investor_count: int

    # Billed
    total_principal: Decimal = ZERO
    total_fee_gross: Decimal = ZERO
    total_fee_discount: Decimal = ZERO
    total_fee_net: Decimal = ZERO
    total_vat: Decimal = ZERO
    total_due: Decimal = ZERO

    # Received
    capital_paid: Decimal = ZERO
    fees_paid: Decimal = ZERO
    vat_paid: Decimal = ZERO
    total_paid: Decimal = ZERO

    allocations: list[AllocationRecord] = field(default_factory=list)

    @property
    def capital_outstanding(self) -> Decimal:
        return self.total_principal - self.capital_paid

    @property
    def fees_outstanding(self) -> Decimal:
        return self.total_fee_net - self.fees_paid

    @property
    def vat_outstanding(self) -> Decimal:
        return self.total_vat - self.vat_paid

    @property
    def total_outstanding(self) -> Decimal:
        return self.total_due - self.total_paid

    def to_dict(self) -> dict:
        d = asdict(self)
        d["capital_outstanding"] = self.capital_outstanding
        d["fees_outstanding"] = self.fees_outstanding
        d["vat_outstanding"] = self.vat_outstanding
        d["total_outstanding"] = self.total_outstanding
        return d


def summarize_allocations(call: CapitalCallRecord, allocations: list[AllocationRecord]) -> CallSummary:
    """Roll a call's allocations up into billed, received and outstanding totals."""
    return CallSummary(
        call_id=call.id,
        call_number=call.call_number,
        structure_id=call.structure_id,
        status=call.status,
        total_call_amount=call.total_call_amount,
        investor_count=len(allocations),
        total_principal=_total(allocations, "principal_amount"),
        total_fee_gross=_total(allocations, "management_fee_gross"),
        total_fee_discount=_total(allocations, "management_fee_discount"),
        total_fee_net=_total(allocations, "management_fee_net"),
        total_vat=_total(allocations, "vat_amount"),
        total_due=_total(allocations, "total_due"),
        capital_paid=_total(allocations, "capital_paid"),
        fees_paid=_total(allocations, "fees_paid"),
        vat_paid=_total(allocations, "vat_paid"),
        total_paid=_total(allocations, "paid_amount"),
        allocations=allocations,
    )


def summarize_call(db: Database, call_id: int) -> CallSummary:
    """Load a call and its allocations and summarize them."""
    call = db.get_call(call_id)
    if call is None:
        raise CapitalCallNotFoundError(call_id)
    return summarize_allocations(call, db.list_allocations(capital_call_id=call_id))


@dataclass
class HistoryEntry:
    """One issued call in a structure's history."""

    call: CapitalCallRecord
    allocations: list[AllocationRecord]
    cumulative_called: Decimal  # total called through this call


def summarize_history(db: Database, structure_id: str) -> list[HistoryEntry]:
    """Issued (non-draft) calls of a structure in call-date order, with running called totals."""
    calls = db.list_calls(structure_id=structure_id, statuses=CALLED_STATUSES)
    allocations = db.list_allocations(structure_id=structure_id, call_statuses=CALLED_STATUSES)

    by_call: dict[int, list[AllocationRecord]] = {}
    for a in allocations:
        by_call.setdefault(a.capital_call_id, []).append(a)

    history: list[HistoryEntry] = []
    running = ZERO
    for call in calls:
        running += call.total_call_amount
        history.append(
            HistoryEntry(call=call, allocations=by_call.get(call.id, []), cumulative_called=running)
        )
    return history
