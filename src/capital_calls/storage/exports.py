"""Export allocations to CSV and Parquet formats."""

from pathlib import Path

import pandas as pd

from .database import Database
from .models import CapitalCallRecord

ALLOCATION_EXPORT_COLUMNS = [
    "user_id",
    "principal_amount",
    "management_fee_gross",
    "management_fee_discount",
    "management_fee_net",
    "vat_amount",
    "total_due",
    "nic_fee_amount",
    "unfunded_fee_amount",
    "fee_offset_amount",
    "deemed_gp_contribution",
    "paid_amount",
    "remaining_amount",
    "status",
    "due_date",
]

_MONEY_COLUMNS = [
    c for c in ALLOCATION_EXPORT_COLUMNS if c not in ("user_id", "status", "due_date")
]


def allocations_to_dataframe(db: Database, call_id: int) -> pd.DataFrame:
    """Convert allocations for a call to a DataFrame with float money columns."""
    allocations = db.list_allocations(capital_call_id=call_id)
    if not allocations:
        return pd.DataFrame(columns=ALLOCATION_EXPORT_COLUMNS)

    df = pd.DataFrame([{c: getattr(a, c) for c in ALLOCATION_EXPORT_COLUMNS} for a in allocations])
    # Parquet cannot store Decimal objects in an object column
    for col in _MONEY_COLUMNS:
        df[col] = pd.to_numeric(df[col].map(lambda v: None if v is None else float(v)))
    return df


def _export_filename(call: CapitalCallRecord, suffix: str) -> str:
    return f"{call.structure_id}_call_{call.call_number:03d}.{suffix}"


def export_to_csv(db: Database, call: CapitalCallRecord, output_path: Path) -> Path:
    """
    Export allocations for a call to CSV.

    Args:
        db: Database instance
        call: The capital call to export
        output_path: Directory to write the CSV file

    Returns:
        Path to the created CSV file
    """
    df = allocations_to_dataframe(db, call.id)
    output_path.mkdir(parents=True, exist_ok=True)

    csv_path = output_path / _export_filename(call, "csv")
    df.to_csv(csv_path, index=False)
    return csv_path


def export_to_parquet(db: Database, call: CapitalCallRecord, output_path: Path) -> Path:
    """
    Export allocations for a call to Parquet.

    Args:
        db: Database instance
        call: The capital call to export
        output_path: Directory to write the Parquet file

    Returns:
        Path to the created Parquet file
    """
    df = allocations_to_dataframe(db, call.id)
    output_path.mkdir(parents=True, exist_ok=True)

    parquet_path = output_path / _export_filename(call, "parquet")
    df.to_parquet(parquet_path, index=False)
    return parquet_path
