from __future__ import annotations

import json
from pathlib import Path

import pretender_py


def test_version_matches_version_json() -> None:
    version_file = Path(__file__).resolve().parents[2] / "src" / "pretender_py" / "version.json"
    data = json.loads(version_file.read_text(encoding="utf-8"))
    assert pretender_py.__repo_version__ == data["version"]
    if "-rc." in data["version"]:
        assert "-rc." not in pretender_py.__version__
        assert "rc" in pretender_py.__version__
    else:
        assert pretender_py.__version__ == data["version"]


def test_normalize_release_candidate_versions() -> None:
    assert pretender_py._normalize_repo_version("1.2.3") == "1.2.3"
    assert pretender_py._normalize_repo_version("1.2.3-rc.4") == "1.2.3rc4"
    assert pretender_py._normalize_repo_version("1.2.3-rc5") == "1.2.3rc5"
