"""Allocation engine: roster aggregation, fee calculation, allocation building."""

from .builder import build_allocations, check_principal_conservation, create_allocations_for_call
from .cumulative import cumulative_called_by_investor, cumulative_called_by_structure
from .fees import FeeMode, period_fraction, select_fee_mode
from .roster import StructureInvestorProfile, aggregate_roster
from .summary import summarize_call, summarize_history

__all__ = [
    "FeeMode",
    "StructureInvestorProfile",
    "aggregate_roster",
    "build_allocations",
    "check_principal_conservation",
    "create_allocations_for_call",
    "cumulative_called_by_investor",
    "cumulative_called_by_structure",
    "period_fraction",
    "select_fee_mode",
    "summarize_call",
    "summarize_history",
]
