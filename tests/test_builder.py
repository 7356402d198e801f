"""Tests for building and persisting capital call allocations."""

from decimal import Decimal

import pytest

from capital_calls.allocation.builder import (
    build_allocations,
    check_principal_conservation,
    create_allocations_for_call,
    quantize_money,
)
from capital_calls.allocation.roster import StructureInvestorProfile
from capital_calls.errors import (
    CapitalCallNotFoundError,
    DuplicateAllocationError,
    EmptyRosterError,
    StructureNotFoundError,
)
from capital_calls.storage.models import CapitalCallRecord

from conftest import add_call, add_structure

D = Decimal

TWO_INVESTORS = [
    {"user_id": "A", "ownership_percent": 40, "commitment": 4000000, "fee_discount": 50},
    {"user_id": "B", "ownership_percent": 60, "commitment": 6000000},
]


def by_user(allocations):
    return {a.user_id: a for a in allocations}


class TestScenarios:
    def test_legacy_without_fee(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        call_id = add_call(db)

        allocations = by_user(create_allocations_for_call(db, call_id, "FUND-I", config))

        assert allocations["A"].principal_amount == D("400000")
        assert allocations["A"].management_fee_net == 0
        assert allocations["A"].vat_amount == 0
        assert allocations["A"].total_due == D("400000")
        assert allocations["B"].principal_amount == D("600000")
        assert allocations["B"].total_due == D("600000")

    def test_legacy_with_fee_and_vat(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        call_id = add_call(
            db,
            management_fee_rate=D("2"),
            fee_period="quarterly",
            vat_applicable=True,
            vat_rate=D("10"),
        )

        allocations = by_user(create_allocations_for_call(db, call_id, "FUND-I", config))

        a = allocations["A"]
        assert a.management_fee_gross == D("2000")
        assert a.management_fee_discount == D("1000")
        assert a.management_fee_net == D("1000")
        assert a.vat_amount == D("100")
        assert a.total_due == D("401100")
        assert a.nic_fee_amount is None

        b = allocations["B"]
        assert b.management_fee_gross == D("3000")
        assert b.management_fee_net == D("3000")
        assert b.vat_amount == D("300")
        assert b.total_due == D("603300")

    def test_dual_rate_first_call(self, db, config):
        add_structure(
            db,
            gp_percentage="10",
            investors=[{"user_id": "A", "ownership_percent": 100, "commitment": 1000000}],
        )
        call_id = add_call(
            db,
            amount="200000",
            management_fee_base="nic_plus_unfunded",
            fee_rate_on_nic=D("2"),
            fee_rate_on_unfunded=D("1"),
        )

        (a,) = create_allocations_for_call(db, call_id, "FUND-I", config)

        assert a.nic_fee_amount == 0
        assert a.unfunded_fee_amount == D("10000")
        assert a.management_fee_gross == D("10000")
        assert a.fee_offset_amount == D("1000")
        assert a.deemed_gp_contribution == D("-1000")
        assert a.management_fee_net == D("9000")
        assert a.total_due == D("209000")

    def test_empty_roster(self, db, config):
        add_structure(db, investors=[])
        call_id = add_call(db)

        with pytest.raises(EmptyRosterError):
            create_allocations_for_call(db, call_id, "FUND-I", config)
        assert db.list_allocations(capital_call_id=call_id) == []


class TestAllocationRecords:
    def test_pending_with_call_due_date(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        call_id = add_call(db, management_fee_rate=D("2"))

        for a in create_allocations_for_call(db, call_id, "FUND-I", config):
            assert a.id is not None
            assert a.capital_call_id == call_id
            assert a.status == "Pending"
            assert a.due_date == "2026-03-31"
            assert a.paid_amount == 0
            assert a.allocated_amount == a.total_due
            assert a.remaining_amount == a.total_due

    def test_total_due_is_sum_of_rounded_parts(self):
        call = CapitalCallRecord(
            id=7,
            structure_id="FUND-I",
            total_call_amount=D("1000"),
            management_fee_rate=D("1.3"),
            fee_period="quarterly",
            vat_applicable=True,
            vat_rate=D("7.7"),
        )
        third = D("100") / D("3")
        profiles = [
            StructureInvestorProfile(user_id=u, ownership_percent=third, commitment=D("0"))
            for u in ("A", "B", "C")
        ]

        allocations = build_allocations(call, profiles)

        for a in allocations:
            assert a.total_due == a.principal_amount + a.management_fee_net + a.vat_amount
            assert a.principal_amount == D("333.33")
        assert check_principal_conservation(call, allocations)

    def test_conservation_flags_short_roster(self):
        call = CapitalCallRecord(id=1, structure_id="FUND-I", total_call_amount=D("1000"))
        profiles = [StructureInvestorProfile(user_id="A", ownership_percent=D("90"), commitment=D("0"))]
        assert not check_principal_conservation(call, build_allocations(call, profiles))

    def test_vat_exempt_investor(self, db, config):
        add_structure(
            db,
            investors=[
                {"user_id": "A", "ownership_percent": 50, "vat_exempt": True},
                {"user_id": "B", "ownership_percent": 50},
            ],
        )
        call_id = add_call(db, management_fee_rate=D("2"), vat_applicable=True, vat_rate=D("20"))

        allocations = by_user(create_allocations_for_call(db, call_id, "FUND-I", config))
        assert allocations["A"].vat_amount == 0
        assert allocations["B"].vat_amount == D("2000")

    def test_vat_exempt_investor_dual_rate(self, db, config):
        add_structure(
            db,
            gp_percentage="10",
            investors=[
                {"user_id": "A", "ownership_percent": 50, "commitment": 500000, "vat_exempt": True},
                {"user_id": "B", "ownership_percent": 50, "commitment": 500000},
            ],
        )
        call_id = add_call(
            db,
            amount="100000",
            management_fee_base="nic_plus_unfunded",
            fee_rate_on_unfunded=D("1"),
            vat_applicable=True,
            vat_rate=D("10"),
        )

        allocations = by_user(create_allocations_for_call(db, call_id, "FUND-I", config))

        a, b = allocations["A"], allocations["B"]
        assert a.management_fee_net == b.management_fee_net == D("4500")
        assert a.vat_amount == 0
        assert a.total_due == D("54500")
        assert b.vat_amount == D("450")
        assert b.total_due == D("54950")

    def test_build_refuses_empty_profiles(self):
        call = CapitalCallRecord(id=1, structure_id="FUND-I", total_call_amount=D("1000"))
        with pytest.raises(EmptyRosterError):
            build_allocations(call, [])


class TestIdempotency:
    def test_second_build_rejected(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        call_id = add_call(db, management_fee_rate=D("2"))

        first = create_allocations_for_call(db, call_id, "FUND-I", config)
        with pytest.raises(DuplicateAllocationError):
            create_allocations_for_call(db, call_id, "FUND-I", config)

        assert db.list_allocations(capital_call_id=call_id) == first

    def test_unique_key_rejects_concurrent_insert(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        call_id = add_call(db)
        call = db.get_call(call_id)
        profiles = [
            StructureInvestorProfile(user_id="A", ownership_percent=D("40"), commitment=D("0")),
            StructureInvestorProfile(user_id="B", ownership_percent=D("60"), commitment=D("0")),
        ]

        db.insert_allocations(build_allocations(call, profiles[:1]))
        with pytest.raises(DuplicateAllocationError):
            db.insert_allocations(build_allocations(call, profiles))

        # Whole second batch rolled back
        assert [a.user_id for a in db.list_allocations(capital_call_id=call_id)] == ["A"]


class TestFailures:
    def test_call_not_found(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        with pytest.raises(CapitalCallNotFoundError):
            create_allocations_for_call(db, 999, "FUND-I", config)

    def test_structure_not_found(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        call_id = add_call(db)
        with pytest.raises(StructureNotFoundError):
            create_allocations_for_call(db, call_id, "FUND-II", config)

    def test_call_from_other_structure(self, db, config):
        add_structure(db, investors=TWO_INVESTORS)
        add_structure(db, structure_id="FUND-II", investors=TWO_INVESTORS)
        call_id = add_call(db)
        with pytest.raises(CapitalCallNotFoundError):
            create_allocations_for_call(db, call_id, "FUND-II", config)


class TestCumulativeBase:
    DUAL = dict(
        management_fee_base="nic_plus_unfunded",
        fee_rate_on_nic=D("2"),
        fee_rate_on_unfunded=D("1"),
    )

    def _setup(self, db):
        add_structure(
            db,
            investors=[{"user_id": "A", "ownership_percent": 100, "commitment": 1000000}],
        )

    def test_later_call_uses_previously_called_capital(self, db, config):
        self._setup(db)
        first = add_call(db, amount="200000", **self.DUAL)
        create_allocations_for_call(db, first, "FUND-I", config)
        db.mark_call_sent(first)

        second = add_call(db, amount="100000", **self.DUAL)
        (a,) = create_allocations_for_call(db, second, "FUND-I", config)

        assert a.nic_fee_amount == D("4000")
        assert a.unfunded_fee_amount == D("8000")
        assert a.management_fee_net == D("12000")
        assert a.total_due == D("112000")

    def test_draft_calls_do_not_count(self, db, config):
        self._setup(db)
        first = add_call(db, amount="200000", **self.DUAL)
        create_allocations_for_call(db, first, "FUND-I", config)

        second = add_call(db, amount="100000", **self.DUAL)
        (a,) = create_allocations_for_call(db, second, "FUND-I", config)

        assert a.nic_fee_amount == 0
        assert a.unfunded_fee_amount == D("10000")

    def test_later_numbered_calls_do_not_count(self, db, config):
        self._setup(db)
        first = add_call(db, amount="200000", **self.DUAL)
        second = add_call(db, amount="100000", **self.DUAL)
        create_allocations_for_call(db, second, "FUND-I", config)
        db.mark_call_sent(second)

        (a,) = create_allocations_for_call(db, first, "FUND-I", config)

        assert a.nic_fee_amount == 0
        assert a.unfunded_fee_amount == D("10000")


class TestFeeRounding:
    def test_legacy_net_is_gross_less_discount(self):
        call = CapitalCallRecord(
            id=1,
            structure_id="FUND-I",
            total_call_amount=D("1.25"),
            management_fee_rate=D("2"),
            vat_applicable=True,
            vat_rate=D("25"),
        )
        profile = StructureInvestorProfile(
            user_id="A", ownership_percent=D("100"), commitment=D("0"), fee_discount=D("50")
        )

        (a,) = build_allocations(call, [profile])

        assert a.management_fee_gross == D("0.03")
        assert a.management_fee_discount == D("0.01")
        assert a.management_fee_gross - a.management_fee_discount == a.management_fee_net
        # VAT follows the stored net fee
        assert a.vat_amount == D("0.01")
        assert a.total_due == a.principal_amount + a.management_fee_net + a.vat_amount

    def test_dual_rate_net_is_gross_less_offset(self):
        call = CapitalCallRecord(
            id=1,
            structure_id="FUND-I",
            total_call_amount=D("1.25"),
            management_fee_base="nic_plus_unfunded",
            fee_rate_on_nic=D("2"),
            fee_rate_on_unfunded=D("2"),
        )
        profile = StructureInvestorProfile(user_id="A", ownership_percent=D("100"), commitment=D("1.25"))

        (a,) = build_allocations(call, [profile], D("50"), {"A": D("0.625")})

        assert a.management_fee_gross == a.nic_fee_amount + a.unfunded_fee_amount
        assert a.management_fee_discount == a.fee_offset_amount
        assert a.management_fee_gross - a.fee_offset_amount == a.management_fee_net
        assert a.deemed_gp_contribution == -a.fee_offset_amount

    def test_persisted_rows_add_up(self, db, config):
        third = D("100") / D("3")
        add_structure(
            db,
            gp_percentage="7",
            investors=[
                {"user_id": u, "ownership_percent": third, "commitment": 333333.33, "fee_discount": d}
                for u, d in (("A", "0.3"), ("B", "0"), ("C", "0.15"))
            ],
        )
        call_id = add_call(
            db,
            amount="1000",
            management_fee_base="nic_plus_unfunded",
            fee_rate_on_nic=D("1.7"),
            fee_rate_on_unfunded=D("1.3"),
            fee_period="quarterly",
            vat_applicable=True,
            vat_rate=D("7.7"),
        )
        create_allocations_for_call(db, call_id, "FUND-I", config)

        for a in db.list_allocations(capital_call_id=call_id):
            assert a.management_fee_gross - a.management_fee_discount == a.management_fee_net
            assert a.total_due == a.principal_amount + a.management_fee_net + a.vat_amount


class TestQuantize:
    def test_half_up(self):
        assert quantize_money(D("1.005")) == D("1.01")
        assert quantize_money(D("2.344")) == D("2.34")
        assert quantize_money(None) is None
