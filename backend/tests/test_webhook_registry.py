# backend/tests/test_webhook_registry.py
import json
from pathlib import Path

import pytest

from jobhooks.webhooks.exceptions import WebhookConfigError, WebhookValidationError
from jobhooks.webhooks.registry import (
    WebhookRegistry,
    load_webhook_definitions,
    parse_webhook_definitions,
)
from jobhooks.webhooks.schemas import (
    StructuredBody,
    TextBody,
    WebhookDefinition,
    WebhookType,
)


def _document(*webhooks) -> str:
    return json.dumps({"webhooks": list(webhooks)})


def _hook(name: str, **overrides) -> dict:
    values = {"name": name, "type": "all", "url": f"https://example.com/{name}"}
    values.update(overrides)
    return values


def test_parse_applies_defaults() -> None:
    [definition] = parse_webhook_definitions(_document(_hook("minimal")))

    assert definition.method == "POST"
    assert definition.timeout == 10
    assert definition.headers == {}
    assert definition.active is False
    assert definition.priority == 0
    assert definition.only_on_error is False
    assert definition.body is None
    assert definition.retry is None


def test_parse_reads_all_fields() -> None:
    [definition] = parse_webhook_definitions(
        _document(
            _hook(
                "slack",
                type="error",
                active=True,
                priority=3,
                method="put",
                headers={"Authorization": "Bearer token"},
                body={"text": "{{.JobName}}"},
                onlyOnError=True,
                timeout=5,
                retry={"count": 2, "backoff": "250ms"},
            )
        )
    )

    assert definition.type is WebhookType.ERROR
    assert definition.active is True
    assert definition.priority == 3
    assert definition.method == "PUT"
    assert definition.headers == {"Authorization": "Bearer token"}
    assert definition.body == StructuredBody(value={"text": "{{.JobName}}"})
    assert definition.only_on_error is True
    assert definition.timeout == 5
    assert definition.retry.count == 2
    assert definition.retry.backoff == "250ms"


def test_body_variant_is_resolved_at_load() -> None:
    text, structured, array = parse_webhook_definitions(
        _document(
            _hook("text", body="{{.JobName}} done"),
            _hook("structured", body={"a": 1}),
            _hook("array", body=[1, "{{.JobName}}"]),
        )
    )

    assert text.body == TextBody(text="{{.JobName}} done")
    assert structured.body == StructuredBody(value={"a": 1})
    assert array.body == StructuredBody(value=[1, "{{.JobName}}"])


def test_scalar_body_is_rejected() -> None:
    with pytest.raises(WebhookValidationError):
        parse_webhook_definitions(_document(_hook("number", body=42)))


def test_missing_url_fails_whole_file() -> None:
    """
    1件でも url が欠けていればファイル全体が失敗し、どの定義も返さないこと。
    """
    with pytest.raises(WebhookValidationError) as excinfo:
        parse_webhook_definitions(
            _document(_hook("ok"), {"name": "broken", "type": "info"}, _hook("also-ok"))
        )

    assert excinfo.value.index == 1
    assert "index 1" in str(excinfo.value)
    assert "url" in str(excinfo.value)


def test_missing_type_names_the_webhook() -> None:
    with pytest.raises(WebhookValidationError) as excinfo:
        parse_webhook_definitions(
            _document({"name": "untyped", "url": "https://example.com"})
        )

    assert excinfo.value.webhook_name == "untyped"
    assert "'type'" in str(excinfo.value)


def test_invalid_type_lists_allowed_values() -> None:
    with pytest.raises(WebhookValidationError, match="must be one of"):
        parse_webhook_definitions(_document(_hook("weird", type="warning")))


def test_non_object_entry_is_rejected() -> None:
    with pytest.raises(WebhookValidationError, match="index 0"):
        parse_webhook_definitions(_document("not-an-object"))


def test_invalid_json_is_config_error() -> None:
    with pytest.raises(WebhookConfigError, match="failed to parse JSON"):
        parse_webhook_definitions("{not json")


def test_empty_document_yields_no_definitions() -> None:
    assert parse_webhook_definitions("{}") == []
    assert parse_webhook_definitions(_document()) == []


def test_definitions_are_sorted_by_priority_stably() -> None:
    definitions = parse_webhook_definitions(
        _document(
            _hook("late", priority=5),
            _hook("first", priority=1),
            _hook("second", priority=1),
            _hook("negative", priority=-2),
        )
    )

    assert [d.name for d in definitions] == ["negative", "first", "second", "late"]


def test_load_missing_file_returns_empty(tmp_path: Path) -> None:
    assert load_webhook_definitions(tmp_path / "missing.json") == []


def test_load_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "middlewares.json"
    path.write_text(_document(_hook("from-file")), encoding="utf-8")

    [definition] = load_webhook_definitions(path)

    assert definition.name == "from-file"


def test_registry_last_write_wins_and_sorts() -> None:
    first = WebhookDefinition.model_validate(_hook("dup", priority=9))
    second = WebhookDefinition.model_validate(_hook("dup", priority=0, method="GET"))
    other = WebhookDefinition.model_validate(_hook("other", priority=4))

    registry = WebhookRegistry([first, other, second])

    assert len(registry) == 2
    assert "dup" in registry
    assert "missing" not in registry
    assert registry.get("dup").method == "GET"
    assert registry.get("missing") is None
    assert [d.name for d in registry.get_all()] == ["dup", "other"]
    assert [d.name for d in registry] == ["dup", "other"]
