"""Capital call allocation CLI."""

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

import click

from .config import Config, get_config, load_structures
from .errors import CapitalCallError


# =============================================================================
# Input Helpers
# =============================================================================


class DecimalType(click.ParamType):
    """Click parameter that parses money and rates as Decimal."""

    name = "decimal"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        try:
            return Decimal(str(value).replace(",", ""))
        except InvalidOperation:
            self.fail(f"{value!r} is not a valid number", param, ctx)


DECIMAL = DecimalType()


def validate_output_path(output: str, config: Config) -> Path:
    """
    Validate that an output path is safe (no path traversal).

    Args:
        output: User-provided output path
        config: Application config

    Returns:
        Validated absolute Path

    Raises:
        click.ClickException: If path is outside allowed directories
    """
    output_path = Path(output).resolve()

    allowed_bases = [
        config.base_dir.resolve(),
        config.artifacts_dir.resolve(),
        Path.cwd().resolve(),
        Path.home().resolve(),
    ]

    for base in allowed_bases:
        try:
            output_path.relative_to(base)
            return output_path
        except ValueError:
            continue

    raise click.ClickException(
        f"Output path must be within the project directory, artifacts, "
        f"current directory, or home directory. Got: {output_path}"
    )


def validate_iso_date(value: str | None) -> str | None:
    """Check a YYYY-MM-DD date string."""
    if value is None:
        return None
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise click.ClickException(f"Invalid date (expected YYYY-MM-DD): {value}") from None


from .allocation.builder import check_principal_conservation, create_allocations_for_call
from .allocation.cumulative import cumulative_called_by_investor, cumulative_called_by_structure
from .allocation.summary import summarize_call, summarize_history
from .reports.call_report import generate_call_report
from .storage.database import Database
from .storage.exports import export_to_csv, export_to_parquet
from .storage.models import (
    FEE_BASE_NIC_PLUS_UNFUNDED,
    CapitalCallRecord,
    InvestorRecord,
    StructureRecord,
)


def _print_markdown(content: str) -> None:
    """Print markdown content with rich formatting."""
    from rich.console import Console
    from rich.markdown import Markdown
    console = Console()
    console.print(Markdown(content))


def _fmt(value: Decimal | None) -> str:
    return "-" if value is None else f"{value:,.2f}"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """Capital Call Engine - per-investor principal, fee and VAT allocation."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = get_config()


@cli.command("init")
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the database if it does not exist."""
    config = ctx.obj["config"]
    with Database(config):
        pass
    click.echo(f"Database ready at: {config.db_path}")


@cli.command("sync-structures")
@click.pass_context
def sync_structures(ctx: click.Context) -> None:
    """Load structures and investor records from structures.yaml into the database."""
    config = ctx.obj["config"]
    try:
        structures = load_structures(config)
    except ValueError as e:
        raise click.ClickException(f"Invalid {config.structures_file.name}: {e}") from e

    if not structures:
        click.echo(f"No structures configured in {config.structures_file}.")
        return

    with Database(config) as db:
        for s in structures:
            db.upsert_structure(
                StructureRecord(
                    id=s.structure_id,
                    name=s.name,
                    gp_percentage=s.gp_percentage,
                    base_currency=s.base_currency,
                )
            )
            count = db.replace_investor_records(
                s.structure_id,
                [
                    InvestorRecord(
                        id=None,
                        structure_id=s.structure_id,
                        user_id=inv.user_id,
                        ownership_percent=inv.ownership_percent,
                        commitment=inv.commitment,
                        fee_discount=inv.fee_discount,
                        vat_exempt=inv.vat_exempt,
                    )
                    for inv in s.investors
                ],
            )
            click.echo(f"Synced {s.name}: {count} investor record(s)")


@cli.command("list-structures")
@click.pass_context
def list_structures(ctx: click.Context) -> None:
    """List structures in the database."""
    from rich.console import Console
    from rich.table import Table

    config = ctx.obj["config"]
    with Database(config) as db:
        structures = db.get_all_structures()
        if not structures:
            click.echo("No structures. Use 'sync-structures' to load them.")
            return

        console = Console()
        table = Table(title="Structures")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("GP %", justify="right")
        table.add_column("Currency")
        table.add_column("Investor Rows", justify="right")

        for s in structures:
            table.add_row(
                s.id,
                s.name,
                f"{s.gp_percentage}",
                s.base_currency,
                str(len(db.list_investor_records(s.id))),
            )

    console.print(table)


@cli.command("create-call")
@click.option("--structure", "structure_id", required=True, help="Structure ID")
@click.option("--amount", required=True, type=DECIMAL, help="Total call amount")
@click.option("--call-date", help="Call date (YYYY-MM-DD)")
@click.option("--due-date", help="Due date (YYYY-MM-DD)")
@click.option("--notice-date", help="Notice date (YYYY-MM-DD)")
@click.option("--deadline-date", help="Deadline date (YYYY-MM-DD)")
@click.option("--purpose", help="Purpose of the call")
@click.option("--fee-rate", type=DECIMAL, help="Annual management fee rate in percent (single-rate)")
@click.option("--nic-rate", type=DECIMAL, help="Annual fee rate on NIC in percent (dual-rate)")
@click.option("--unfunded-rate", type=DECIMAL, help="Annual fee rate on unfunded commitment in percent (dual-rate)")
@click.option(
    "--fee-period",
    type=click.Choice(["annual", "semi-annual", "quarterly"]),
    help="Billing period of the fee",
)
@click.option("--vat-rate", type=DECIMAL, help="VAT rate in percent (enables VAT)")
@click.pass_context
def create_call(
    ctx: click.Context,
    structure_id: str,
    amount: Decimal,
    call_date: str | None,
    due_date: str | None,
    notice_date: str | None,
    deadline_date: str | None,
    purpose: str | None,
    fee_rate: Decimal | None,
    nic_rate: Decimal | None,
    unfunded_rate: Decimal | None,
    fee_period: str | None,
    vat_rate: Decimal | None,
) -> None:
    """Create a draft capital call."""
    config = ctx.obj["config"]

    if amount <= 0:
        raise click.ClickException("Call amount must be positive")

    call = CapitalCallRecord(
        id=None,
        structure_id=structure_id,
        total_call_amount=amount,
        call_date=validate_iso_date(call_date),
        due_date=validate_iso_date(due_date),
        notice_date=validate_iso_date(notice_date),
        deadline_date=validate_iso_date(deadline_date),
        purpose=purpose,
        management_fee_base=FEE_BASE_NIC_PLUS_UNFUNDED if (nic_rate is not None or unfunded_rate is not None) else None,
        management_fee_rate=fee_rate,
        fee_rate_on_nic=nic_rate,
        fee_rate_on_unfunded=unfunded_rate,
        fee_period=fee_period,
        vat_applicable=vat_rate is not None,
        vat_rate=vat_rate,
    )

    with Database(config) as db:
        if db.get_structure(structure_id) is None:
            raise click.ClickException(f"Structure '{structure_id}' not found. Run 'sync-structures' first.")
        call_id = db.create_call(call)

    click.echo(f"Created capital call #{call.call_number} (ID: {call_id}) for {structure_id}")


@cli.command("allocate")
@click.option("--call", "call_id", required=True, type=int, help="Capital call ID")
@click.pass_context
def allocate(ctx: click.Context, call_id: int) -> None:
    """Compute and store per-investor allocations for a call."""
    config = ctx.obj["config"]

    with Database(config) as db:
        call = db.get_call(call_id)
        if call is None:
            raise click.ClickException(f"Capital call {call_id} not found")

        try:
            allocations = create_allocations_for_call(db, call_id, call.structure_id, config)
        except CapitalCallError as e:
            raise click.ClickException(str(e)) from e

        click.echo(f"Created {len(allocations)} allocation(s) for call #{call.call_number}")
        if not check_principal_conservation(call, allocations, config):
            click.echo(
                "  Warning: allocated principal does not add up to the call amount; "
                "check that ownership totals 100%"
            )

    _print_markdown(_allocations_markdown(allocations))


def _allocations_markdown(allocations) -> str:
    lines = [
        "| Investor | Principal | Fee (Net) | VAT | Total Due |",
        "|----------|-----------|-----------|-----|-----------|",
    ]
    for a in allocations:
        lines.append(
            f"| {a.user_id} | {_fmt(a.principal_amount)} | {_fmt(a.management_fee_net)} "
            f"| {_fmt(a.vat_amount)} | {_fmt(a.total_due)} |"
        )
    return "\n".join(lines)


@cli.command("show-call")
@click.option("--call", "call_id", required=True, type=int, help="Capital call ID")
@click.pass_context
def show_call(ctx: click.Context, call_id: int) -> None:
    """Show totals for a capital call."""
    config = ctx.obj["config"]

    with Database(config) as db:
        try:
            summary = summarize_call(db, call_id)
        except CapitalCallError as e:
            raise click.ClickException(str(e)) from e

    click.echo(f"Call #{summary.call_number} ({summary.status}) - {summary.structure_id}")
    click.echo(f"  Call amount:       {_fmt(summary.total_call_amount)}")
    click.echo(f"  Investors:         {summary.investor_count}")
    click.echo(f"  Principal:         {_fmt(summary.total_principal)}")
    click.echo(f"  Fees (net):        {_fmt(summary.total_fee_net)}")
    click.echo(f"  VAT:               {_fmt(summary.total_vat)}")
    click.echo(f"  Total due:         {_fmt(summary.total_due)}")
    click.echo(f"  Total outstanding: {_fmt(summary.total_outstanding)}")


@cli.command("mark-sent")
@click.option("--call", "call_id", required=True, type=int, help="Capital call ID")
@click.pass_context
def mark_sent(ctx: click.Context, call_id: int) -> None:
    """Mark a call as sent to investors."""
    config = ctx.obj["config"]

    with Database(config) as db:
        if not db.has_allocations(call_id):
            raise click.ClickException("Allocate the call before sending it")
        try:
            call = db.mark_call_sent(call_id)
        except CapitalCallError as e:
            raise click.ClickException(str(e)) from e

    click.echo(f"Call #{call.call_number} marked as {call.status}")


@cli.command("record-payment")
@click.option("--call", "call_id", required=True, type=int, help="Capital call ID")
@click.option("--amount", required=True, type=DECIMAL, help="Amount received")
@click.pass_context
def record_payment(ctx: click.Context, call_id: int, amount: Decimal) -> None:
    """Record a payment received against a call's totals."""
    config = ctx.obj["config"]

    if amount <= 0:
        raise click.ClickException("Payment amount must be positive")

    with Database(config) as db:
        try:
            call = db.update_payment_amounts(call_id, amount)
        except CapitalCallError as e:
            raise click.ClickException(str(e)) from e

    click.echo(
        f"Call #{call.call_number}: paid {_fmt(call.total_paid_amount)}, "
        f"unpaid {_fmt(call.total_unpaid_amount)} ({call.status})"
    )


@cli.command("cumulative")
@click.option("--structure", "structure_id", required=True, help="Structure ID")
@click.option("--investor", "user_id", help="Single investor ID")
@click.option("--exclude-call", type=int, help="Call ID to leave out")
@click.pass_context
def cumulative(ctx: click.Context, structure_id: str, user_id: str | None, exclude_call: int | None) -> None:
    """Show capital called so far (excluding drafts)."""
    config = ctx.obj["config"]

    with Database(config) as db:
        if user_id:
            total = cumulative_called_by_investor(db, structure_id, user_id, exclude_call)
            click.echo(f"{user_id}: {_fmt(total)}")
            return
        totals = cumulative_called_by_structure(db, structure_id, exclude_call)

    if not totals:
        click.echo("No capital has been called yet.")
        return
    for uid, total in sorted(totals.items()):
        click.echo(f"{uid}: {_fmt(total)}")


@cli.command("history")
@click.option("--structure", "structure_id", required=True, help="Structure ID")
@click.pass_context
def history(ctx: click.Context, structure_id: str) -> None:
    """Show issued calls of a structure with running called capital."""
    from rich.console import Console
    from rich.table import Table

    config = ctx.obj["config"]
    with Database(config) as db:
        entries = summarize_history(db, structure_id)

    if not entries:
        click.echo("No issued capital calls.")
        return

    console = Console()
    table = Table(title=f"Capital Call History - {structure_id}")
    table.add_column("#", justify="right")
    table.add_column("Date")
    table.add_column("Status")
    table.add_column("Amount", justify="right")
    table.add_column("Cumulative", justify="right")
    table.add_column("Investors", justify="right")

    for e in entries:
        table.add_row(
            str(e.call.call_number),
            e.call.call_date or "-",
            e.call.status,
            _fmt(e.call.total_call_amount),
            _fmt(e.cumulative_called),
            str(len(e.allocations)),
        )

    console.print(table)


@cli.command("export")
@click.option("--call", "call_id", required=True, type=int, help="Capital call ID")
@click.option("--format", "fmt", type=click.Choice(["csv", "parquet"]), default="csv", help="Output format")
@click.option("--output", "-o", type=click.Path(), help="Output directory (default: artifacts)")
@click.pass_context
def export(ctx: click.Context, call_id: int, fmt: str, output: str | None) -> None:
    """Export a call's allocations."""
    config = ctx.obj["config"]
    output_dir = validate_output_path(output, config) if output else config.artifacts_dir

    with Database(config) as db:
        call = db.get_call(call_id)
        if call is None:
            raise click.ClickException(f"Capital call {call_id} not found")
        if fmt == "parquet":
            path = export_to_parquet(db, call, output_dir)
        else:
            path = export_to_csv(db, call, output_dir)

    click.echo(f"Exported to: {path}")


@cli.command("report")
@click.option("--call", "call_id", required=True, type=int, help="Capital call ID")
@click.option("--output", "-o", type=click.Path(), help="Output file path")
@click.pass_context
def report(ctx: click.Context, call_id: int, output: str | None) -> None:
    """Generate a drawdown report for a call."""
    config = ctx.obj["config"]

    with Database(config) as db:
        try:
            report_md = generate_call_report(db, call_id)
        except CapitalCallError as e:
            raise click.ClickException(str(e)) from e

    if output:
        output_path = validate_output_path(output, config)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(report_md)
        click.echo(f"Report saved to: {output_path}")
    else:
        _print_markdown(report_md)


def main() -> None:
    """Main entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
