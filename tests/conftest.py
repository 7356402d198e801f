"""Shared fixtures."""

from decimal import Decimal

import pytest

from capital_calls.config import Config
from capital_calls.storage.database import Database
from capital_calls.storage.models import CapitalCallRecord, InvestorRecord, StructureRecord


@pytest.fixture
def config(tmp_path):
    return Config(base_dir=tmp_path)


@pytest.fixture
def db(config):
    with Database(config) as database:
        yield database


def add_structure(db, structure_id="FUND-I", gp_percentage="0", investors=()):
    """Create a structure with raw investor rows given as dicts."""
    db.upsert_structure(
        StructureRecord(id=structure_id, name=f"{structure_id} LP", gp_percentage=Decimal(gp_percentage))
    )
    db.replace_investor_records(
        structure_id,
        [
            InvestorRecord(
                id=None,
                structure_id=structure_id,
                user_id=inv["user_id"],
                ownership_percent=Decimal(str(inv["ownership_percent"])),
                commitment=Decimal(str(inv.get("commitment", 0))),
                fee_discount=Decimal(str(inv.get("fee_discount", 0))),
                vat_exempt=inv.get("vat_exempt", False),
            )
            for inv in investors
        ],
    )


def add_call(db, structure_id="FUND-I", amount="1000000", **fee_fields):
    """Create a draft call, returning its ID."""
    call = CapitalCallRecord(
        id=None,
        structure_id=structure_id,
        total_call_amount=Decimal(amount),
        due_date="2026-03-31",
        **fee_fields,
    )
    return db.create_call(call)
