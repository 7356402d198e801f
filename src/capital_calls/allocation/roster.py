"""Collapse raw structure-investor rows into one profile per investor."""

from dataclasses import dataclass
from decimal import Decimal

from ..errors import RosterConflictError
from ..storage.models import ZERO, InvestorRecord


@dataclass
class StructureInvestorProfile:
    """An investor's aggregated standing commitment to one structure."""

    user_id: str
    ownership_percent: Decimal  # 0-100
    commitment: Decimal
    fee_discount: Decimal = ZERO  # percentage points
    vat_exempt: bool = False


def aggregate_roster(records: list[InvestorRecord]) -> list[StructureInvestorProfile]:
    """
    Aggregate raw investor records into one profile per investor.

    Ownership and commitment are summed across an investor's records. Fee
    discount and VAT exemption must agree across them.

    Args:
        records: Raw structure-investor rows, in storage order

    Returns:
        Profiles ordered by each investor's first appearance

    Raises:
        RosterConflictError: If an investor's records disagree on fee
            discount or VAT exemption
    """
    profiles: dict[str, StructureInvestorProfile] = {}

    for r in records:
        ownership = r.ownership_percent or ZERO
        commitment = r.commitment or ZERO
        fee_discount = r.fee_discount or ZERO
        vat_exempt = bool(r.vat_exempt)

        existing = profiles.get(r.user_id)
        if existing is None:
            profiles[r.user_id] = StructureInvestorProfile(
                user_id=r.user_id,
                ownership_percent=ownership,
                commitment=commitment,
                fee_discount=fee_discount,
                vat_exempt=vat_exempt,
            )
            continue

        if existing.fee_discount != fee_discount:
            raise RosterConflictError(
                r.user_id, "fee_discount", [existing.fee_discount, fee_discount]
            )
        if existing.vat_exempt != vat_exempt:
            raise RosterConflictError(r.user_id, "vat_exempt", [existing.vat_exempt, vat_exempt])

        existing.ownership_percent += ownership
        existing.commitment += commitment

    return list(profiles.values())
