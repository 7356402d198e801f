"""Cumulative called capital per investor, from persisted allocations."""

from collections import defaultdict
from decimal import Decimal

from ..storage.database import Database
from ..storage.models import CALLED_STATUSES, ZERO


def cumulative_called_by_investor(
    db: Database,
    structure_id: str,
    user_id: str,
    exclude_call_id: int | None = None,
    before_call_number: int | None = None,
) -> Decimal:
    """
    Total principal previously called from one investor in a structure.

    Only calls that have gone out (Sent, Partially Paid, Paid) count; drafts
    are ignored.

    Args:
        db: Database instance
        structure_id: Structure ID
        user_id: Investor ID
        exclude_call_id: Call to leave out, e.g. the one being (re)computed
        before_call_number: Only count calls numbered below this one

    Returns:
        Sum of principal amounts, Decimal 0 when nothing qualifies
    """
    allocations = db.list_allocations(
        user_id=user_id,
        structure_id=structure_id,
        call_statuses=CALLED_STATUSES,
        exclude_call_id=exclude_call_id,
        before_call_number=before_call_number,
    )
    return sum((a.principal_amount or ZERO for a in allocations), ZERO)


def cumulative_called_by_structure(
    db: Database,
    structure_id: str,
    exclude_call_id: int | None = None,
    before_call_number: int | None = None,
) -> dict[str, Decimal]:
    """Cumulative called principal for every investor of a structure in one query."""
    allocations = db.list_allocations(
        structure_id=structure_id,
        call_statuses=CALLED_STATUSES,
        exclude_call_id=exclude_call_id,
        before_call_number=before_call_number,
    )

    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for a in allocations:
        totals[a.user_id] += a.principal_amount or ZERO
    return dict(totals)
