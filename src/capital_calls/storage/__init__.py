"""SQLite storage and data export."""

from .database import Database
from .exports import allocations_to_dataframe, export_to_csv, export_to_parquet
from .models import AllocationRecord, CapitalCallRecord, InvestorRecord, StructureRecord

__all__ = [
    "Database",
    "allocations_to_dataframe",
    "export_to_csv",
    "export_to_parquet",
    "AllocationRecord",
    "CapitalCallRecord",
    "InvestorRecord",
    "StructureRecord",
]
