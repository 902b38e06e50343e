from __future__ import annotations

from pathlib import Path

import pytest

from conformgate.config import CONFORMGATE_WORKERS_ENV


@pytest.fixture()
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture(autouse=True)
def _isolate_worker_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFORMGATE_WORKERS_ENV, raising=False)
