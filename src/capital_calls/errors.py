"""Errors raised by the allocation engine.

None of these are transient: callers should surface them, never retry.
"""


class CapitalCallError(Exception):
    """Base class for all allocation engine errors."""


class NotFoundError(CapitalCallError, LookupError):
    """A referenced entity does not exist."""


class CapitalCallNotFoundError(NotFoundError):
    def __init__(self, call_id: int) -> None:
        super().__init__(f"Capital call not found: {call_id}")
        self.call_id = call_id


class StructureNotFoundError(NotFoundError):
    def __init__(self, structure_id: str) -> None:
        super().__init__(f"Structure not found: {structure_id}")
        self.structure_id = structure_id


class EmptyRosterError(CapitalCallError, ValueError):
    """The structure has no investor records to allocate against."""

    def __init__(self, structure_id: str) -> None:
        super().__init__(f"Structure {structure_id} has no investors; refusing to allocate")
        self.structure_id = structure_id


class DuplicateAllocationError(CapitalCallError, ValueError):
    """Allocations already exist for the call."""

    def __init__(self, call_id: int) -> None:
        super().__init__(f"Allocations already exist for capital call {call_id}")
        self.call_id = call_id


class InvalidFeeConfigurationError(CapitalCallError, ValueError):
    """Fee rates, discounts or periods are unusable."""


class RosterConflictError(CapitalCallError, ValueError):
    """An investor's records disagree on fee discount or VAT exemption."""

    def __init__(self, user_id: str, field_name: str, values: list) -> None:
        super().__init__(
            f"Investor {user_id} has conflicting {field_name} values across "
            f"structure records: {', '.join(str(v) for v in values)}"
        )
        self.user_id = user_id
        self.field_name = field_name
        self.values = values
