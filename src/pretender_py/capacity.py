from __future__ import annotations

import math
from dataclasses import dataclass, field

from .errors import ValidationError

READ_UNIT_BYTES = 4096
WRITE_UNIT_BYTES = 1024
RETURN_CONSUMED_CAPACITY_MODES = frozenset({"NONE", "TOTAL", "INDEXES"})


@dataclass(frozen=True)
class ConsumedCapacity:
    table_name: str
    capacity_units: float = 0.0
    read_capacity_units: float = 0.0
    write_capacity_units: float = 0.0
    global_secondary_indexes: dict[str, float] = field(default_factory=dict)

    def to_wire(self, *, include_indexes: bool = False) -> dict[str, object]:
        out: dict[str, object] = {
            "TableName": self.table_name,
            "CapacityUnits": self.capacity_units,
            "ReadCapacityUnits": self.read_capacity_units,
            "WriteCapacityUnits": self.write_capacity_units,
        }
        if include_indexes and self.global_secondary_indexes:
            out["GlobalSecondaryIndexes"] = {
                name: {"CapacityUnits": units} for name, units in sorted(self.global_secondary_indexes.items())
            }
        return out


def read_capacity_units(size_bytes: int) -> int:
    return max(1, math.ceil(size_bytes / READ_UNIT_BYTES))


def write_capacity_units(size_bytes: int) -> int:
    return max(1, math.ceil(size_bytes / WRITE_UNIT_BYTES))


def validate_return_consumed_capacity(mode: str | None) -> str:
    resolved = (mode or "NONE").upper()
    if resolved not in RETURN_CONSUMED_CAPACITY_MODES:
        raise ValidationError(f"unsupported ReturnConsumedCapacity: {mode!r}")
    return resolved


class CapacityTracker:
    def __init__(self, mode: str | None = "NONE", *, multiplier: int = 1) -> None:
        self.mode = validate_return_consumed_capacity(mode)
        self._multiplier = multiplier
        self._reads: dict[str, int] = {}
        self._writes: dict[str, int] = {}
        self._indexes: dict[str, dict[str, int]] = {}

    @property
    def enabled(self) -> bool:
        return self.mode != "NONE"

    def read(self, table_name: str, units: int, *, index_name: str | None = None) -> None:
        units *= self._multiplier
        self._reads[table_name] = self._reads.get(table_name, 0) + units
        if index_name is not None:
            per_index = self._indexes.setdefault(table_name, {})
            per_index[index_name] = per_index.get(index_name, 0) + units

    def write(self, table_name: str, units: int, *, index_units: dict[str, int] | None = None) -> None:
        units *= self._multiplier
        self._writes[table_name] = self._writes.get(table_name, 0) + units
        for index_name, extra in (index_units or {}).items():
            per_index = self._indexes.setdefault(table_name, {})
            per_index[index_name] = per_index.get(index_name, 0) + extra * self._multiplier

    def consumed(self) -> list[ConsumedCapacity]:
        if not self.enabled:
            return []
        out: list[ConsumedCapacity] = []
        for table_name in sorted(set(self._reads) | set(self._writes)):
            reads = float(self._reads.get(table_name, 0))
            writes = float(self._writes.get(table_name, 0))
            index_units = {name: float(units) for name, units in self._indexes.get(table_name, {}).items()}
            out.append(
                ConsumedCapacity(
                    table_name=table_name,
                    capacity_units=reads + writes + sum(index_units.values()),
                    read_capacity_units=reads,
                    write_capacity_units=writes,
                    global_secondary_indexes=index_units if self.mode == "INDEXES" else {},
                )
            )
        return out

    def consumed_for(self, table_name: str) -> ConsumedCapacity | None:
        for capacity in self.consumed():
            if capacity.table_name == table_name:
                return capacity
        return None
