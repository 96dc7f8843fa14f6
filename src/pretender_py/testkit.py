from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from .config import EngineConfig
from .engine import ItemEngine
from .model import TableMetadata
from .registry import InMemoryTableRegistry
from .schema import create_table
from .sqlite_store import SqliteItemStore
from .store import StoreSession
from .streams import ChangeListener, ChangeRecord


class FixedClock:
    def __init__(self, now: float) -> None:
        if now < 0:
            raise ValueError("now must be >= 0")
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def fixed_clock(now: float) -> FixedClock:
    return FixedClock(now)


@dataclass
class RecordingChangeListener:
    records: list[ChangeRecord] = field(default_factory=list)
    fail_on: Callable[[ChangeRecord], bool] | None = None

    def on_change(self, session: StoreSession, record: ChangeRecord) -> None:
        if self.fail_on is not None and self.fail_on(record):
            raise RuntimeError(f"change listener rejected {record.event_name} on {record.table_name}")
        self.records.append(record)

    def event_names(self) -> list[str]:
        return [record.event_name for record in self.records]


def memory_engine(
    *tables: TableMetadata,
    clock: Callable[[], float] | None = None,
    change_listener: ChangeListener | None = None,
    config: EngineConfig | None = None,
    database_path: str = ":memory:",
) -> ItemEngine:
    store = SqliteItemStore(database_path)
    registry = InMemoryTableRegistry()
    for metadata in tables:
        create_table(metadata, registry=registry, store=store)
    return ItemEngine(registry, store, clock=clock, change_listener=change_listener, config=config)


__all__ = [
    "FixedClock",
    "RecordingChangeListener",
    "fixed_clock",
    "memory_engine",
]
