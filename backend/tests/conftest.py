# backend/tests/conftest.py
"""
Pytest configuration for jobhooks backend tests.

- Ensures that the project root (backend/) is added to sys.path
  so that `import jobhooks.*` works correctly in tests.
- Ensures the webhook config path never points at a real file on the host
  (WEBHOOK_CONFIG is cleared for every test).
- Provides a small factory for ExecutionSnapshot objects.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest


def _ensure_project_root_in_sys_path() -> None:
    # This file is located at: backend/tests/conftest.py
    # parents[1] -> backend/
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)

    if project_root_str not in sys.path:
        # Insert at the beginning so it has priority over site-packages, etc.
        sys.path.insert(0, project_root_str)


_ensure_project_root_in_sys_path()


@pytest.fixture(autouse=True)
def _isolated_webhook_env(monkeypatch):
    monkeypatch.delenv("WEBHOOK_CONFIG", raising=False)
    monkeypatch.delenv("WEBHOOK_MAX_WORKERS", raising=False)


@pytest.fixture
def make_snapshot():
    """
    テスト用の ExecutionSnapshot を作るファクトリ。

    既定値は「backup ジョブが 2025-01-02 03:04:05 UTC に開始し 1m23s で成功」。
    """
    from jobhooks.webhooks.schemas import ExecutionSnapshot

    def _make(**overrides):
        start = overrides.pop("start_time", datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        duration = overrides.pop("duration", timedelta(minutes=1, seconds=23))
        values = {
            "job_name": "backup",
            "job_schedule": "@daily",
            "job_command": "backup.sh",
            "execution_id": "exec-1",
            "start_time": start,
            "end_time": start + duration,
            "duration": duration,
            "hostname": "worker-1",
        }
        values.update(overrides)
        return ExecutionSnapshot(**values)

    return _make
