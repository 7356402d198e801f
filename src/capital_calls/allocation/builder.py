"""Build and persist per-investor allocations for a capital call."""

import logging
from decimal import ROUND_HALF_UP, Decimal

from ..config import Config
from ..errors import (
    CapitalCallNotFoundError,
    DuplicateAllocationError,
    EmptyRosterError,
    StructureNotFoundError,
)
from ..storage.database import Database
from ..storage.models import ALLOCATION_PENDING, ZERO, AllocationRecord, CapitalCallRecord
from .cumulative import cumulative_called_by_structure
from .fees import (
    FeeBreakdown,
    FeeMode,
    apply_fee_offset,
    calculate_dual_rate_gross,
    calculate_legacy_fee,
    period_fraction,
    select_fee_mode,
    total_fund_fee_gross,
    validate_fee_configuration,
    validate_profile,
    vat_on,
)
from .roster import StructureInvestorProfile, aggregate_roster

logger = logging.getLogger(__name__)

DEFAULT_QUANTUM = Decimal("0.01")


def quantize_money(value: Decimal | None, quantum: Decimal = DEFAULT_QUANTUM) -> Decimal | None:
    """Round to the money quantum using ROUND_HALF_UP."""
    if value is None:
        return None
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def _to_allocation(
    fee: FeeBreakdown, call: CapitalCallRecord, quantum: Decimal
) -> AllocationRecord:
    principal = quantize_money(fee.principal, quantum)
    nic_fee = quantize_money(fee.nic_fee, quantum)
    unfunded_fee = quantize_money(fee.unfunded_fee, quantum)
    fee_offset = quantize_money(fee.fee_offset, quantum)

    # Derived fields come from rounded parts so every stored row adds up:
    # gross - discount == net, total_due == principal + net + VAT
    if nic_fee is not None and unfunded_fee is not None:
        fee_gross = nic_fee + unfunded_fee
    else:
        fee_gross = quantize_money(fee.fee_gross, quantum)
    fee_discount = quantize_money(fee.fee_discount, quantum)
    fee_net = fee_gross - fee_discount
    vat = quantize_money(vat_on(fee_net, call, fee.vat_exempt), quantum)
    total_due = principal + fee_net + vat

    deemed_gp_contribution = None
    if fee_offset is not None:
        deemed_gp_contribution = -fee_offset if fee_offset else ZERO

    return AllocationRecord(
        id=None,
        capital_call_id=call.id,
        user_id=fee.user_id,
        principal_amount=principal,
        management_fee_gross=fee_gross,
        management_fee_discount=fee_discount,
        management_fee_net=fee_net,
        vat_amount=vat,
        total_due=total_due,
        nic_fee_amount=nic_fee,
        unfunded_fee_amount=unfunded_fee,
        fee_offset_amount=fee_offset,
        deemed_gp_contribution=deemed_gp_contribution,
        allocated_amount=total_due,
        paid_amount=ZERO,
        capital_paid=ZERO,
        fees_paid=ZERO,
        vat_paid=ZERO,
        remaining_amount=total_due,
        status=ALLOCATION_PENDING,
        due_date=call.due_date,
    )


def compute_fees(
    call: CapitalCallRecord,
    profiles: list[StructureInvestorProfile],
    gp_percentage: Decimal = ZERO,
    cumulative_called: dict[str, Decimal] | None = None,
) -> list[FeeBreakdown]:
    """
    Run the fee calculator for every investor of a call.

    Dual-rate calls run in two stages: every investor's gross fee is computed
    and summed before any GP offset is applied.

    Args:
        call: The capital call
        profiles: Aggregated investor profiles
        gp_percentage: GP ownership percentage of the structure
        cumulative_called: user_id -> principal called by earlier calls

    Returns:
        One FeeBreakdown per profile, in profile order
    """
    mode = select_fee_mode(call)
    fraction = period_fraction(call.fee_period)

    if mode != FeeMode.DUAL_RATE:
        return [calculate_legacy_fee(p, call, fraction) for p in profiles]

    cumulative_called = cumulative_called or {}
    grosses = [
        calculate_dual_rate_gross(p, call, fraction, cumulative_called.get(p.user_id, ZERO))
        for p in profiles
    ]
    fund_total = total_fund_fee_gross(grosses)
    logger.debug("Call %s fund fee gross: %s", call.id, fund_total)
    return [apply_fee_offset(g, call, gp_percentage, fund_total) for g in grosses]


def build_allocations(
    call: CapitalCallRecord,
    profiles: list[StructureInvestorProfile],
    gp_percentage: Decimal = ZERO,
    cumulative_called: dict[str, Decimal] | None = None,
    config: Config | None = None,
) -> list[AllocationRecord]:
    """
    Compute the allocation set of a call without touching storage.

    Raises:
        EmptyRosterError: If there are no profiles
        InvalidFeeConfigurationError: If the call or a profile is out of range
    """
    if not profiles:
        raise EmptyRosterError(call.structure_id)

    validate_fee_configuration(call, gp_percentage)
    for p in profiles:
        validate_profile(p)

    quantum = config.money_quantum if config else DEFAULT_QUANTUM
    fees = compute_fees(call, profiles, gp_percentage, cumulative_called)
    return [_to_allocation(f, call, quantum) for f in fees]


def create_allocations_for_call(
    db: Database,
    call_id: int,
    structure_id: str,
    config: Config | None = None,
) -> list[AllocationRecord]:
    """
    Build and persist the allocations of a call for every investor in a structure.

    Args:
        db: Database instance
        call_id: Capital call ID
        structure_id: Structure the call is issued against
        config: Configuration (money quantum)

    Returns:
        Persisted allocations

    Raises:
        CapitalCallNotFoundError: If the call does not exist in the structure
        StructureNotFoundError: If the structure does not exist
        DuplicateAllocationError: If the call already has allocations
        EmptyRosterError: If the structure has no investors
    """
    structure = db.get_structure(structure_id)
    if structure is None:
        raise StructureNotFoundError(structure_id)

    call = db.get_call(call_id)
    if call is None or call.structure_id != structure_id:
        raise CapitalCallNotFoundError(call_id)

    if db.has_allocations(call_id):
        logger.warning("Refusing to re-allocate call %s: allocations exist", call_id)
        raise DuplicateAllocationError(call_id)

    profiles = aggregate_roster(db.list_investor_records(structure_id))
    if not profiles:
        logger.warning("Refusing to allocate call %s: structure %s has no investors", call_id, structure_id)
        raise EmptyRosterError(structure_id)

    cumulative = None
    if select_fee_mode(call) == FeeMode.DUAL_RATE:
        # Calls issued later in the sequence are not part of this call's base
        cumulative = cumulative_called_by_structure(
            db, structure_id, exclude_call_id=call_id, before_call_number=call.call_number
        )

    allocations = build_allocations(
        call, profiles, structure.gp_percentage, cumulative, config
    )
    logger.info(
        "Allocating call %s (%s mode) across %d investors",
        call_id,
        select_fee_mode(call).value,
        len(allocations),
    )
    return db.insert_allocations(allocations)


def check_principal_conservation(
    call: CapitalCallRecord,
    allocations: list[AllocationRecord],
    config: Config | None = None,
) -> bool:
    """Whether allocated principal adds back to the call amount within tolerance."""
    tolerance = config.rounding_tolerance if config else DEFAULT_QUANTUM
    allocated = sum((a.principal_amount for a in allocations), ZERO)
    return abs(allocated - call.total_call_amount) <= tolerance * max(len(allocations), 1)
