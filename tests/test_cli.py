"""Tests for the command line interface."""

import pytest
from click.testing import CliRunner

from capital_calls.cli import cli

STRUCTURES_YAML = """\
structures:
  - id: FUND-I
    name: Fund I
    gp_percentage: 10
    investors:
      - user_id: A
        ownership_percent: 40
        commitment: 400000
        fee_discount: 50
      - user_id: B
        ownership_percent: 60
        commitment: 600000
"""


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.setenv("CAPITAL_CALLS_HOME", str(tmp_path))
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "structures.yaml").write_text(STRUCTURES_YAML)
    return CliRunner()


def invoke(runner, *args):
    result = runner.invoke(cli, list(args), obj={})
    return result


class TestWorkflow:
    def test_create_allocate_and_pay(self, runner):
        assert invoke(runner, "sync-structures").exit_code == 0

        result = invoke(
            runner,
            "create-call",
            "--structure", "FUND-I",
            "--amount", "1,000,000",
            "--fee-rate", "2",
            "--fee-period", "quarterly",
            "--vat-rate", "10",
        )
        assert result.exit_code == 0, result.output
        assert "Created capital call #1 (ID: 1)" in result.output

        result = invoke(runner, "allocate", "--call", "1")
        assert result.exit_code == 0, result.output
        assert "Created 2 allocation(s)" in result.output

        result = invoke(runner, "show-call", "--call", "1")
        assert "1,004,400.00" in result.output

        result = invoke(runner, "allocate", "--call", "1")
        assert result.exit_code != 0
        assert "already exist" in result.output

        assert invoke(runner, "mark-sent", "--call", "1").exit_code == 0
        result = invoke(runner, "cumulative", "--structure", "FUND-I", "--investor", "A")
        assert "A: 400,000.00" in result.output

        result = invoke(runner, "record-payment", "--call", "1", "--amount", "250000")
        assert "Partially Paid" in result.output

    def test_allocate_unknown_call(self, runner):
        invoke(runner, "sync-structures")
        result = invoke(runner, "allocate", "--call", "9")
        assert result.exit_code != 0
        assert "not found" in result.output

    def test_create_call_unknown_structure(self, runner):
        result = invoke(runner, "create-call", "--structure", "NOPE", "--amount", "100")
        assert result.exit_code != 0
        assert "not found" in result.output

    def test_bad_amount(self, runner):
        result = invoke(runner, "create-call", "--structure", "FUND-I", "--amount", "lots")
        assert result.exit_code != 0
        assert "not a valid number" in result.output

    def test_sync_rejects_invalid_structures_file(self, runner, tmp_path):
        (tmp_path / "data" / "structures.yaml").write_text("structures:\n  - name: Nameless\n")
        result = invoke(runner, "sync-structures")
        assert result.exit_code != 0
        assert "missing required field 'id'" in result.output
