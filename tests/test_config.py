"""Tests for configuration and the structures file."""

from decimal import Decimal

import pytest

from capital_calls.config import Config, InvestorEntry, Structure, load_structures, save_structures


class TestConfig:
    def test_paths(self, tmp_path):
        config = Config(base_dir=tmp_path)
        assert config.db_path == tmp_path / "data" / "capital_calls.db"
        assert config.structures_file == tmp_path / "data" / "structures.yaml"
        assert config.data_dir.is_dir()
        assert config.artifacts_dir.is_dir()

    def test_home_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("CAPITAL_CALLS_HOME", str(tmp_path / "home"))
        config = Config()
        assert config.base_dir == tmp_path / "home"


class TestStructuresFile:
    def test_missing_file(self, tmp_path):
        assert load_structures(Config(base_dir=tmp_path)) == []

    def test_round_trip(self, tmp_path):
        config = Config(base_dir=tmp_path)
        structures = [
            Structure(
                structure_id="PP-1",
                name="Proximity Parks I",
                gp_percentage=Decimal("2.5"),
                investors=[
                    InvestorEntry("lp-1", Decimal("60"), Decimal("6000000"), Decimal("0.25")),
                    InvestorEntry("lp-2", Decimal("40"), Decimal("4000000"), vat_exempt=True),
                ],
            )
        ]
        save_structures(config, structures)
        assert load_structures(config) == structures

    def test_numbers_in_yaml(self, tmp_path):
        config = Config(base_dir=tmp_path)
        config.structures_file.write_text(
            "structures:\n"
            "  - id: FUND-I\n"
            "    gp_percentage: 10\n"
            "    investors:\n"
            "      - user_id: 17\n"
            "        ownership_percent: 100\n"
            "        commitment: 1000000.50\n"
        )
        (structure,) = load_structures(config)
        assert structure.name == "FUND-I"
        assert structure.gp_percentage == Decimal("10")
        inv = structure.investors[0]
        assert inv.user_id == "17"
        assert inv.commitment == Decimal("1000000.5")
        assert inv.fee_discount == 0
        assert inv.vat_exempt is False

    def test_vat_exempt_must_be_boolean(self, tmp_path):
        config = Config(base_dir=tmp_path)
        config.structures_file.write_text(
            "structures:\n"
            "  - id: FUND-I\n"
            "    investors:\n"
            "      - user_id: A\n"
            "        ownership_percent: 100\n"
            '        vat_exempt: "false"\n'
        )
        with pytest.raises(ValueError, match="vat_exempt must be true or false"):
            load_structures(config)

    def test_boolean_vat_exempt(self, tmp_path):
        config = Config(base_dir=tmp_path)
        config.structures_file.write_text(
            "structures:\n"
            "  - id: FUND-I\n"
            "    investors:\n"
            "      - user_id: A\n"
            "        ownership_percent: 100\n"
            "        vat_exempt: yes\n"
        )
        (structure,) = load_structures(config)
        assert structure.investors[0].vat_exempt is True

    def test_missing_structure_id(self, tmp_path):
        config = Config(base_dir=tmp_path)
        config.structures_file.write_text("structures:\n  - name: Nameless\n")
        with pytest.raises(ValueError, match="missing required field 'id'"):
            load_structures(config)

    def test_missing_user_id(self, tmp_path):
        config = Config(base_dir=tmp_path)
        config.structures_file.write_text(
            "structures:\n"
            "  - id: FUND-I\n"
            "    investors:\n"
            "      - ownership_percent: 100\n"
        )
        with pytest.raises(ValueError, match="missing required field 'user_id'"):
            load_structures(config)

    def test_malformed_number(self, tmp_path):
        config = Config(base_dir=tmp_path)
        config.structures_file.write_text(
            "structures:\n"
            "  - id: FUND-I\n"
            "    gp_percentage: ten\n"
        )
        with pytest.raises(ValueError, match="gp_percentage must be a number"):
            load_structures(config)
