"""Capital call drawdown report generator."""

from decimal import Decimal

from ..allocation.fees import FeeMode, period_fraction, select_fee_mode
from ..allocation.summary import CallSummary, summarize_call
from ..storage.database import Database
from ..storage.models import CapitalCallRecord


def _format_money(value: Decimal | None, currency: str = "USD") -> str:
    """Format a money amount for display."""
    if value is None:
        return "-"
    if value < 0:
        return f"-{currency} {abs(value):,.2f}"
    return f"{currency} {value:,.2f}"


def _format_rate(rate: Decimal | None) -> str:
    if rate is None:
        return "N/A"
    return f"{rate.normalize():f}%"


def _fee_configuration_lines(call: CapitalCallRecord) -> list[str]:
    mode = select_fee_mode(call)
    lines = ["## Fee Configuration", ""]

    if mode == FeeMode.DUAL_RATE:
        lines.append("**Fee Base:** NIC + Unfunded Commitment")
        lines.append(f"**Rate on NIC:** {_format_rate(call.fee_rate_on_nic)}")
        lines.append(f"**Rate on Unfunded:** {_format_rate(call.fee_rate_on_unfunded)}")
    elif mode == FeeMode.LEGACY:
        lines.append("**Fee Base:** Called Capital")
        lines.append(f"**Management Fee Rate:** {_format_rate(call.management_fee_rate)}")
    else:
        lines.append("No management fee is charged on this call.")

    if mode != FeeMode.NONE:
        fraction = period_fraction(call.fee_period)
        lines.append(f"**Fee Period:** {call.fee_period or 'annual'} ({fraction.normalize():f} of annual rate)")

    if call.vat_applicable and call.vat_rate:
        lines.append(f"**VAT:** {_format_rate(call.vat_rate)}")
    lines.append("")
    return lines


def render_call_report(
    call: CapitalCallRecord, summary: CallSummary, structure_name: str, currency: str = "USD"
) -> str:
    """Render a call summary as markdown."""
    mode = select_fee_mode(call)
    lines: list[str] = []

    # Header
    lines.append(f"# {structure_name} - Capital Call #{call.call_number}")
    lines.append("")
    lines.append(f"**Status:** {call.status}")
    if call.call_date:
        lines.append(f"**Call Date:** {call.call_date}")
    if call.due_date:
        lines.append(f"**Due Date:** {call.due_date}")
    if call.purpose:
        lines.append(f"**Purpose:** {call.purpose}")
    lines.append(f"**Total Call Amount:** {_format_money(call.total_call_amount, currency)}")
    lines.append("")

    lines.extend(_fee_configuration_lines(call))

    # Per-investor breakdown
    lines.append("## Investor Allocations")
    lines.append("")
    if not summary.allocations:
        lines.append("No allocations have been created for this call.")
        lines.append("")
        return "\n".join(lines)

    discount_label = "GP Offset" if mode == FeeMode.DUAL_RATE else "Discount"
    lines.append(f"| Investor | Principal | Fee (Gross) | {discount_label} | Fee (Net) | VAT | Total Due |")
    lines.append("|----------|-----------|-------------|----------|-----------|-----|-----------|")
    for a in summary.allocations:
        lines.append(
            f"| {a.user_id} "
            f"| {_format_money(a.principal_amount, currency)} "
            f"| {_format_money(a.management_fee_gross, currency)} "
            f"| {_format_money(a.management_fee_discount, currency)} "
            f"| {_format_money(a.management_fee_net, currency)} "
            f"| {_format_money(a.vat_amount, currency)} "
            f"| {_format_money(a.total_due, currency)} |"
        )
    lines.append(
        f"| **Total** "
        f"| **{_format_money(summary.total_principal, currency)}** "
        f"| **{_format_money(summary.total_fee_gross, currency)}** "
        f"| **{_format_money(summary.total_fee_discount, currency)}** "
        f"| **{_format_money(summary.total_fee_net, currency)}** "
        f"| **{_format_money(summary.total_vat, currency)}** "
        f"| **{_format_money(summary.total_due, currency)}** |"
    )
    lines.append("")

    if mode == FeeMode.DUAL_RATE:
        lines.append("### Dual-Rate Detail")
        lines.append("")
        lines.append("| Investor | NIC Fee | Unfunded Fee | Deemed GP Contribution |")
        lines.append("|----------|---------|--------------|------------------------|")
        for a in summary.allocations:
            lines.append(
                f"| {a.user_id} "
                f"| {_format_money(a.nic_fee_amount, currency)} "
                f"| {_format_money(a.unfunded_fee_amount, currency)} "
                f"| {_format_money(a.deemed_gp_contribution, currency)} |"
            )
        lines.append("")

    # Collection status
    lines.append("## Collection")
    lines.append("")
    lines.append(f"- **Paid:** {_format_money(summary.total_paid, currency)}")
    lines.append(f"- **Capital Outstanding:** {_format_money(summary.capital_outstanding, currency)}")
    lines.append(f"- **Fees Outstanding:** {_format_money(summary.fees_outstanding, currency)}")
    lines.append(f"- **VAT Outstanding:** {_format_money(summary.vat_outstanding, currency)}")
    lines.append(f"- **Total Outstanding:** {_format_money(summary.total_outstanding, currency)}")
    lines.append("")

    return "\n".join(lines)


def generate_call_report(db: Database, call_id: int) -> str:
    """
    Generate a drawdown report for a capital call.

    Args:
        db: Database instance
        call_id: Capital call ID

    Returns:
        Markdown report as string
    """
    summary = summarize_call(db, call_id)
    call = db.get_call(call_id)
    structure = db.get_structure(call.structure_id)
    name = structure.name if structure else call.structure_id
    currency = structure.base_currency if structure else "USD"
    return render_call_report(call, summary, name, currency)
