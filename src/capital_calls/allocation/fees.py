"""Management fee and VAT computation for capital call allocations.

Two fee modes are supported:

- Legacy single-rate: an annual rate on the investor's principal for this
  call, reduced multiplicatively by the investor's fee discount.
- Dual-rate (NIC + Unfunded): one annual rate on net invested capital and
  another on unfunded commitment, each reduced by the fee discount in
  percentage points. The GP then absorbs a pro-rata offset of the fee, which
  needs every investor's gross fee first, so it runs in two stages.

All amounts are unrounded Decimals; rounding happens once at assembly.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from ..errors import InvalidFeeConfigurationError
from ..storage.models import FEE_BASE_NIC_PLUS_UNFUNDED, ZERO, CapitalCallRecord
from .roster import StructureInvestorProfile

HUNDRED = Decimal("100")

PERIOD_FRACTIONS = {
    "annual": Decimal("1"),
    "semi-annual": Decimal("0.5"),
    "quarterly": Decimal("0.25"),
}


class FeeMode(str, Enum):
    DUAL_RATE = "dual_rate"
    LEGACY = "legacy"
    NONE = "none"  # legacy mode without a fee rate


@dataclass
class FeeBreakdown:
    """Computed obligation of one investor, before rounding."""

    user_id: str
    principal: Decimal
    fee_gross: Decimal = ZERO
    fee_discount: Decimal = ZERO  # discount amount (legacy) or GP offset (dual-rate)
    fee_net: Decimal = ZERO
    vat: Decimal = ZERO
    total_due: Decimal = ZERO
    vat_exempt: bool = False

    # Dual-rate only
    nic_fee: Decimal | None = None
    unfunded_fee: Decimal | None = None
    fee_offset: Decimal | None = None
    deemed_gp_contribution: Decimal | None = None


@dataclass
class DualRateGross:
    """First-stage dual-rate result for one investor."""

    user_id: str
    principal: Decimal
    nic_base: Decimal
    unfunded_base: Decimal
    nic_fee: Decimal
    unfunded_fee: Decimal
    fee_gross: Decimal
    vat_exempt: bool


def select_fee_mode(call: CapitalCallRecord) -> FeeMode:
    """Pick the fee mode from a call's fee configuration."""
    if call.management_fee_base == FEE_BASE_NIC_PLUS_UNFUNDED and (
        call.fee_rate_on_nic is not None or call.fee_rate_on_unfunded is not None
    ):
        return FeeMode.DUAL_RATE
    if not call.management_fee_rate:
        return FeeMode.NONE
    return FeeMode.LEGACY


def period_fraction(fee_period: str | None) -> Decimal:
    """Fraction of the annual rate billed per call (1, 0.5 or 0.25)."""
    if not fee_period:
        return PERIOD_FRACTIONS["annual"]
    try:
        return PERIOD_FRACTIONS[fee_period]
    except KeyError:
        raise InvalidFeeConfigurationError(
            f"Unknown fee period: {fee_period!r} (expected one of {', '.join(PERIOD_FRACTIONS)})"
        ) from None


def validate_fee_configuration(call: CapitalCallRecord, gp_percentage: Decimal | None = None) -> None:
    """
    Reject fee configurations that cannot produce sane allocations.

    Raises:
        InvalidFeeConfigurationError: On negative rates, unknown fee base or
            period, a dual-rate call with no usable rate, or a GP percentage
            outside 0-100
    """
    if call.management_fee_base not in (None, FEE_BASE_NIC_PLUS_UNFUNDED):
        raise InvalidFeeConfigurationError(
            f"Unknown management fee base: {call.management_fee_base!r}"
        )

    period_fraction(call.fee_period)

    for name in ("management_fee_rate", "fee_rate_on_nic", "fee_rate_on_unfunded", "vat_rate"):
        value = getattr(call, name)
        if value is not None and value < 0:
            raise InvalidFeeConfigurationError(f"{name} cannot be negative: {value}")

    if call.total_call_amount is None or call.total_call_amount < 0:
        raise InvalidFeeConfigurationError(
            f"total_call_amount must be zero or positive: {call.total_call_amount}"
        )

    if select_fee_mode(call) == FeeMode.DUAL_RATE:
        if not call.fee_rate_on_nic and not call.fee_rate_on_unfunded:
            raise InvalidFeeConfigurationError(
                "Dual-rate fee base selected but both NIC and unfunded rates are zero"
            )
        if gp_percentage is not None and not (ZERO <= gp_percentage <= HUNDRED):
            raise InvalidFeeConfigurationError(
                f"GP percentage must be between 0 and 100: {gp_percentage}"
            )


def validate_profile(profile: StructureInvestorProfile) -> None:
    """Reject investor profiles with out-of-range terms."""
    if not (ZERO <= profile.fee_discount <= HUNDRED):
        raise InvalidFeeConfigurationError(
            f"Fee discount for {profile.user_id} must be between 0 and 100: {profile.fee_discount}"
        )
    if profile.ownership_percent < 0:
        raise InvalidFeeConfigurationError(
            f"Ownership for {profile.user_id} cannot be negative: {profile.ownership_percent}"
        )
    if profile.commitment < 0:
        raise InvalidFeeConfigurationError(
            f"Commitment for {profile.user_id} cannot be negative: {profile.commitment}"
        )


def principal_for(profile: StructureInvestorProfile, call: CapitalCallRecord) -> Decimal:
    """Investor's pro-rata share of the called amount."""
    return call.total_call_amount * (profile.ownership_percent / HUNDRED)


def vat_on(fee_net: Decimal, call: CapitalCallRecord, vat_exempt: bool) -> Decimal:
    """VAT charged on a net fee, zero for exempt investors."""
    if call.vat_applicable and not vat_exempt and call.vat_rate:
        return fee_net * (call.vat_rate / HUNDRED)
    return ZERO


def calculate_legacy_fee(
    profile: StructureInvestorProfile, call: CapitalCallRecord, fraction: Decimal
) -> FeeBreakdown:
    """Single-rate fee on the investor's principal for this call."""
    principal = principal_for(profile, call)
    result = FeeBreakdown(
        user_id=profile.user_id,
        principal=principal,
        total_due=principal,
        vat_exempt=profile.vat_exempt,
    )

    if not call.management_fee_rate:
        return result

    effective_rate = call.management_fee_rate * fraction
    result.fee_gross = principal * (effective_rate / HUNDRED)
    result.fee_discount = result.fee_gross * (profile.fee_discount / HUNDRED)
    result.fee_net = result.fee_gross - result.fee_discount
    result.vat = vat_on(result.fee_net, call, profile.vat_exempt)
    result.total_due = principal + result.fee_net + result.vat
    return result


def calculate_dual_rate_gross(
    profile: StructureInvestorProfile,
    call: CapitalCallRecord,
    fraction: Decimal,
    cumulative_called: Decimal = ZERO,
) -> DualRateGross:
    """
    First stage of the dual-rate fee: NIC and unfunded fees for one investor.

    Args:
        profile: Aggregated investor profile
        call: The capital call being allocated
        fraction: Period fraction of the annual rates
        cumulative_called: Principal already called from this investor by
            earlier non-draft calls

    Returns:
        DualRateGross with the investor's gross fee
    """
    nic_rate = call.fee_rate_on_nic or ZERO
    unfunded_rate = call.fee_rate_on_unfunded or ZERO

    # Discount comes off the rate in percentage points
    effective_nic_rate = max(ZERO, nic_rate - profile.fee_discount)
    effective_unfunded_rate = max(ZERO, unfunded_rate - profile.fee_discount)

    nic_base = cumulative_called
    unfunded_base = max(ZERO, profile.commitment - cumulative_called)

    nic_fee = nic_base * fraction * (effective_nic_rate / HUNDRED)
    unfunded_fee = unfunded_base * fraction * (effective_unfunded_rate / HUNDRED)

    return DualRateGross(
        user_id=profile.user_id,
        principal=principal_for(profile, call),
        nic_base=nic_base,
        unfunded_base=unfunded_base,
        nic_fee=nic_fee,
        unfunded_fee=unfunded_fee,
        fee_gross=nic_fee + unfunded_fee,
        vat_exempt=profile.vat_exempt,
    )


def total_fund_fee_gross(grosses: list[DualRateGross]) -> Decimal:
    """Sum of gross fees across every investor in the call."""
    return sum((g.fee_gross for g in grosses), ZERO)


def apply_fee_offset(
    gross: DualRateGross,
    call: CapitalCallRecord,
    gp_percentage: Decimal,
    fund_fee_gross: Decimal,
) -> FeeBreakdown:
    """Second stage of the dual-rate fee: GP offset, VAT and total due."""
    fee_offset = ZERO
    if gp_percentage > 0 and fund_fee_gross > 0:
        fee_offset = gross.fee_gross * (gp_percentage / HUNDRED)

    fee_net = gross.fee_gross - fee_offset
    vat = vat_on(fee_net, call, gross.vat_exempt)

    return FeeBreakdown(
        user_id=gross.user_id,
        principal=gross.principal,
        fee_gross=gross.fee_gross,
        fee_discount=fee_offset,
        fee_net=fee_net,
        vat=vat,
        total_due=gross.principal + fee_net + vat,
        vat_exempt=gross.vat_exempt,
        nic_fee=gross.nic_fee,
        unfunded_fee=gross.unfunded_fee,
        fee_offset=fee_offset,
        deemed_gp_contribution=-fee_offset if fee_offset else ZERO,
    )
