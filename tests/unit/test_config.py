from __future__ import annotations

from pathlib import Path

import pytest

from pretender_py import EngineConfig, ValidationError, load_config


def test_defaults() -> None:
    config = load_config(environ={})
    assert config == EngineConfig()
    assert config.database_path == ":memory:"
    assert config.default_page_size == 100
    assert config.max_item_size_bytes == 400000


def test_yaml_file_then_environment_overrides(tmp_path: Path) -> None:
    path = tmp_path / "pretender.yaml"
    path.write_text("database_path: data.db\ndefault_page_size: 10\nlog_format: json\n", encoding="utf-8")

    config = load_config(path, environ={"PRETENDER_DEFAULT_PAGE_SIZE": "25", "PRETENDER_LOG_LEVEL": "DEBUG"})

    assert config.database_path == "data.db"
    assert config.default_page_size == 25
    assert config.log_format == "json"
    assert config.log_level == "DEBUG"


def test_empty_yaml_file_uses_defaults(tmp_path: Path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path, environ={}) == EngineConfig()


@pytest.mark.parametrize(
    "body, message",
    [
        ("- a\n- b\n", "must contain a map/object"),
        ("nope: 1\n", "unknown config keys"),
        ("a: [\n", "invalid config YAML"),
        ("default_page_size: 0\n", "default_page_size must be a positive integer"),
        ("log_format: xml\n", "log_format must be one of"),
    ],
)
def test_invalid_config_files(tmp_path: Path, body: str, message: str) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(body, encoding="utf-8")
    with pytest.raises(ValidationError, match=message):
        load_config(path, environ={})


def test_missing_file_and_bad_environment_integer(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="unable to read config file"):
        load_config(tmp_path / "missing.yaml", environ={})
    with pytest.raises(ValidationError, match="PRETENDER_MAX_TRANSACTION_ITEMS must be an integer"):
        load_config(environ={"PRETENDER_MAX_TRANSACTION_ITEMS": "many"})
