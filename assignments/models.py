from __future__ import annotations

from dataclasses import dataclass

MAX_SNOWFLAKE = (1 << 64) - 1


def _check_id(field_name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an int, got {type(value).__name__}")
    if value <= 0 or value > MAX_SNOWFLAKE:
        raise ValueError(f"{field_name} out of range: {value}")
    return value


@dataclass(frozen=True, slots=True)
class AssignmentRecord:
    guild_id: int
    open_category_id: int
    closed_category_id: int

    def __post_init__(self) -> None:
        _check_id("guild_id", self.guild_id)
        _check_id("open_category_id", self.open_category_id)
        _check_id("closed_category_id", self.closed_category_id)

    @classmethod
    def from_row(cls, row: tuple) -> AssignmentRecord:
        return cls(
            guild_id=int(row[0]),
            open_category_id=int(row[1]),
            closed_category_id=int(row[2]),
        )

    def as_row(self) -> tuple[int, int, int]:
        return (self.guild_id, self.open_category_id, self.closed_category_id)
