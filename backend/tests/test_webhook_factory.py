# backend/tests/test_webhook_factory.py
import json
import logging
from pathlib import Path

import pytest

from jobhooks.webhooks.config import WebhookSettings
from jobhooks.webhooks.factory import load_registry, load_webhooks
from jobhooks.webhooks.service import DeliveryExecutor


@pytest.fixture
def executor():
    executor = DeliveryExecutor(max_workers=1)
    yield executor
    executor.shutdown()


def _write_config(path: Path, *webhooks) -> WebhookSettings:
    path.write_text(json.dumps({"webhooks": list(webhooks)}), encoding="utf-8")
    return WebhookSettings(config_path=str(path))


def test_load_webhooks_builds_dispatchers_in_priority_order(tmp_path: Path, executor, caplog) -> None:
    settings = _write_config(
        tmp_path / "middlewares.json",
        {"name": "later", "type": "info", "active": True, "priority": 10, "url": "https://a"},
        {"name": "sooner", "type": "error", "active": True, "priority": 1, "url": "https://b"},
    )

    with caplog.at_level(logging.INFO):
        result = load_webhooks(executor, settings=settings)

    assert [d.name for d in result.dispatchers] == ["sooner", "later"]
    assert len(result.registry) == 2
    assert any("Loaded webhook 'sooner'" in r.getMessage() for r in caplog.records)


def test_definition_with_bad_backoff_is_registered_but_not_dispatched(
    tmp_path: Path, executor, caplog
) -> None:
    """
    backoff が不正な定義はレジストリには残り、グローバルディスパッチャだけが作られないこと。
    """
    settings = _write_config(
        tmp_path / "middlewares.json",
        {
            "name": "bad",
            "type": "all",
            "active": True,
            "url": "https://a",
            "retry": {"count": 1, "backoff": "forever"},
        },
        {"name": "good", "type": "all", "active": True, "url": "https://b"},
    )

    with caplog.at_level(logging.ERROR):
        result = load_webhooks(executor, settings=settings)

    assert "bad" in result.registry
    assert [d.name for d in result.dispatchers] == ["good"]
    assert any("'bad'" in r.getMessage() for r in caplog.records if r.levelno == logging.ERROR)


def test_invalid_file_loads_nothing(tmp_path: Path, executor, caplog) -> None:
    settings = _write_config(
        tmp_path / "middlewares.json",
        {"name": "ok", "type": "all", "url": "https://a"},
        {"name": "no-url", "type": "all"},
    )

    with caplog.at_level(logging.ERROR):
        result = load_webhooks(executor, settings=settings)

    assert len(result.registry) == 0
    assert result.dispatchers == []
    assert any("Failed to parse webhook config" in r.getMessage() for r in caplog.records)


def test_missing_file_loads_nothing(tmp_path: Path, executor) -> None:
    result = load_webhooks(executor, settings=WebhookSettings(config_path=str(tmp_path / "none.json")))

    assert len(result.registry) == 0
    assert result.dispatchers == []


def test_env_var_overrides_config_path(tmp_path: Path, executor, monkeypatch) -> None:
    from_env = tmp_path / "from-env.json"
    _write_config(from_env, {"name": "env-hook", "type": "all", "url": "https://a"})
    monkeypatch.setenv("WEBHOOK_CONFIG", str(from_env))

    result = load_webhooks(executor)

    assert result.registry.names() == ["env-hook"]


def test_load_registry_does_not_need_executor(tmp_path: Path) -> None:
    settings = _write_config(
        tmp_path / "middlewares.json",
        {"name": "a", "type": "all", "url": "https://a", "retry": {"backoff": "nope"}},
    )

    registry = load_registry(settings=settings)

    assert registry.names() == ["a"]
