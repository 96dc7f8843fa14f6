from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ValidationError
from .validation import MaxBatchGetKeys, MaxBatchWriteRequests, MaxItemSizeBytes, MaxTransactionItems

_ENV_PREFIX = "PRETENDER_"
_LOG_FORMATS = frozenset({"text", "json"})


@dataclass(frozen=True)
class EngineConfig:
    database_path: str = ":memory:"
    default_page_size: int = 100
    max_item_size_bytes: int = MaxItemSizeBytes
    max_batch_get_keys: int = MaxBatchGetKeys
    max_batch_write_requests: int = MaxBatchWriteRequests
    max_transaction_items: int = MaxTransactionItems
    log_level: str = "INFO"
    log_format: str = "text"

    def __post_init__(self) -> None:
        for name in (
            "default_page_size",
            "max_item_size_bytes",
            "max_batch_get_keys",
            "max_batch_write_requests",
            "max_transaction_items",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationError(f"{name} must be a positive integer (got {value!r})")
        if self.log_format not in _LOG_FORMATS:
            raise ValidationError(f"log_format must be one of {sorted(_LOG_FORMATS)} (got {self.log_format!r})")


def load_config(path: str | Path | None = None, *, environ: Mapping[str, str] = os.environ) -> EngineConfig:
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_yaml(Path(path)))

    known = {f.name: f for f in fields(EngineConfig)}
    for name, f in known.items():
        raw = environ.get(_ENV_PREFIX + name.upper())
        if raw is None:
            continue
        if f.type == "int":
            try:
                values[name] = int(raw)
            except ValueError as err:
                raise ValidationError(f"{_ENV_PREFIX}{name.upper()} must be an integer (got {raw!r})") from err
        else:
            values[name] = raw

    return replace(EngineConfig(), **values)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as err:
        raise ValidationError(f"unable to read config file {path}: {err}") from err
    except yaml.YAMLError as err:
        raise ValidationError(f"invalid config YAML in {path}") from err

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValidationError(f"config file {path} must contain a map/object")

    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(str(k) for k in parsed if k not in known)
    if unknown:
        raise ValidationError(f"unknown config keys in {path}: {', '.join(unknown)}")
    return dict(parsed)
