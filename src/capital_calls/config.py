"""Configuration management for the capital call engine."""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path

import yaml


def _get_base_dir() -> Path:
    """Get the working directory for data and artifacts."""
    home = os.environ.get("CAPITAL_CALLS_HOME", "")
    if home:
        return Path(home).expanduser()
    # __file__ is config.py in src/capital_calls/, so .parent.parent.parent = project root
    return Path(__file__).parent.parent.parent


@dataclass
class Config:
    """Application configuration."""

    base_dir: Path = field(default_factory=_get_base_dir)
    data_dir: Path = field(init=False)
    artifacts_dir: Path = field(init=False)
    db_path: Path = field(init=False)
    structures_file: Path = field(init=False)

    # Money handling
    money_quantum: Decimal = Decimal("0.01")  # round to cents
    rounding_tolerance: Decimal = Decimal("0.01")  # per allocation

    # Defaults
    default_currency: str = "USD"

    def __post_init__(self) -> None:
        self.data_dir = self.base_dir / "data"
        self.artifacts_dir = self.base_dir / "artifacts"
        self.db_path = self.data_dir / "capital_calls.db"
        self.structures_file = self.data_dir / "structures.yaml"

        # Ensure directories exist
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.artifacts_dir.mkdir(parents=True, exist_ok=True)


@dataclass
class InvestorEntry:
    """A raw investor commitment line as declared in the structures file."""

    user_id: str
    ownership_percent: Decimal
    commitment: Decimal
    fee_discount: Decimal = Decimal("0")
    vat_exempt: bool = False


@dataclass
class Structure:
    """A pooled investment structure declared in the structures file."""

    structure_id: str
    name: str
    gp_percentage: Decimal = Decimal("0")
    base_currency: str = "USD"
    investors: list[InvestorEntry] = field(default_factory=list)


def _to_decimal(value, name: str) -> Decimal:
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _to_bool(value, name: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    raise ValueError(f"{name} must be true or false, got {value!r}")


def _require(data: dict, key: str, where: str) -> str:
    value = data.get(key)
    if value is None or str(value).strip() == "":
        raise ValueError(f"{where} is missing required field '{key}'")
    return str(value)


def _parse_structure(sd: dict, index: int, config: Config) -> Structure:
    if not isinstance(sd, dict):
        raise ValueError(f"Structure entry {index} must be a mapping")
    structure_id = _require(sd, "id", f"Structure entry {index}")
    where = f"Structure '{structure_id}'"

    investors = []
    for i, inv in enumerate(sd.get("investors") or []):
        if not isinstance(inv, dict):
            raise ValueError(f"{where} investor {i} must be a mapping")
        user_id = _require(inv, "user_id", f"{where} investor {i}")
        inv_where = f"{where} investor '{user_id}'"
        investors.append(
            InvestorEntry(
                user_id=user_id,
                ownership_percent=_to_decimal(inv.get("ownership_percent"), f"{inv_where} ownership_percent"),
                commitment=_to_decimal(inv.get("commitment"), f"{inv_where} commitment"),
                fee_discount=_to_decimal(inv.get("fee_discount"), f"{inv_where} fee_discount"),
                vat_exempt=_to_bool(inv.get("vat_exempt"), f"{inv_where} vat_exempt"),
            )
        )

    return Structure(
        structure_id=structure_id,
        name=str(sd.get("name") or structure_id),
        gp_percentage=_to_decimal(sd.get("gp_percentage"), f"{where} gp_percentage"),
        base_currency=sd.get("base_currency", config.default_currency),
        investors=investors,
    )


def load_structures(config: Config) -> list[Structure]:
    """
    Load structures and their investor records from the YAML config file.

    Raises:
        ValueError: If an entry lacks an ID or holds a malformed number or flag
    """
    if not config.structures_file.exists():
        return []

    with open(config.structures_file) as f:
        data = yaml.safe_load(f) or {}

    structures_data = data.get("structures") or []
    return [_parse_structure(sd, i, config) for i, sd in enumerate(structures_data)]


def save_structures(config: Config, structures: list[Structure]) -> None:
    """Save structures to the YAML config file."""
    data = {
        "structures": [
            {
                "id": s.structure_id,
                "name": s.name,
                "gp_percentage": str(s.gp_percentage),
                "base_currency": s.base_currency,
                "investors": [
                    {
                        "user_id": inv.user_id,
                        "ownership_percent": str(inv.ownership_percent),
                        "commitment": str(inv.commitment),
                        "fee_discount": str(inv.fee_discount),
                        "vat_exempt": inv.vat_exempt,
                    }
                    for inv in s.investors
                ],
            }
            for s in structures
        ]
    }
    with open(config.structures_file, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def get_config() -> Config:
    """Get the default configuration."""
    return Config()
