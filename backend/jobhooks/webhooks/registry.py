# backend/jobhooks/webhooks/registry.py

"""
Webhook 定義ファイルの読み込み・検証と、名前引きのレジストリ。

設定ファイル形式（JSON）:

    {
      "webhooks": [
        {"name": "slack-errors", "type": "error", "active": true, "priority": 0,
         "url": "https://hooks.slack.com/...", "method": "POST",
         "headers": {"Content-Type": "application/json"},
         "body": {"text": "{{.JobName}} failed: {{.Error | jsonEscape}}"},
         "onlyOnError": false, "timeout": 10,
         "retry": {"count": 3, "backoff": "1s"}}
      ]
    }

1件でも不正なエントリがあればファイル全体の読み込みを中断する（部分的には読み込まない）。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import ValidationError

from .exceptions import WebhookConfigError, WebhookValidationError
from .schemas import WebhookDefinition, WebhookType

logger = logging.getLogger(__name__)

_VALID_TYPES = tuple(t.value for t in WebhookType)


class WebhookRegistry:
    """
    名前 → WebhookDefinition のレジストリ。

    起動時に 1度だけ書き込み、以降は読み取り専用として扱う（ロック不要）。
    同じ名前が複数回登録された場合は後勝ち。
    """

    def __init__(self, definitions: Optional[List[WebhookDefinition]] = None) -> None:
        self._webhooks: Dict[str, WebhookDefinition] = {}
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: WebhookDefinition) -> None:
        self._webhooks[definition.name] = definition

    def get(self, name: str) -> Optional[WebhookDefinition]:
        return self._webhooks.get(name)

    def get_all(self) -> List[WebhookDefinition]:
        """全定義を priority 昇順（同順位は登録順）で返す。"""
        return sorted(self._webhooks.values(), key=lambda d: d.priority)

    def names(self) -> List[str]:
        return list(self._webhooks)

    def __contains__(self, name: object) -> bool:
        return name in self._webhooks

    def __len__(self) -> int:
        return len(self._webhooks)

    def __iter__(self) -> Iterator[WebhookDefinition]:
        return iter(self.get_all())


def _validate_entry(index: int, raw: Any) -> WebhookDefinition:
    """
    設定ファイル 1エントリを検証して WebhookDefinition に変換する。

    - url が空 → エラー（index で特定）
    - type が空 / 不正 → エラー（name で特定）
    """
    if not isinstance(raw, dict):
        raise WebhookValidationError(
            f"webhook at index {index} must be a JSON object",
            index=index,
        )

    name = str(raw.get("name") or "")

    if not raw.get("url"):
        raise WebhookValidationError(
            f"webhook at index {index} is missing required 'url' field",
            index=index,
            webhook_name=name,
        )

    webhook_type = raw.get("type")
    if not webhook_type:
        raise WebhookValidationError(
            f"webhook {name!r} is missing required 'type' field",
            index=index,
            webhook_name=name,
        )
    if webhook_type not in _VALID_TYPES:
        raise WebhookValidationError(
            f"webhook {name!r} has invalid type {webhook_type!r}, "
            f"must be one of: {', '.join(repr(t) for t in _VALID_TYPES)}",
            index=index,
            webhook_name=name,
        )

    try:
        return WebhookDefinition.model_validate(raw)
    except ValidationError as exc:
        raise WebhookValidationError(
            f"webhook {name!r} is invalid: {exc}",
            index=index,
            webhook_name=name,
        ) from exc


def parse_webhook_definitions(text: Union[str, bytes]) -> List[WebhookDefinition]:
    """
    設定ファイルの内容（JSON テキスト）をパースし、priority 昇順に並べた定義一覧を返す。

    :raises WebhookConfigError: JSON として不正な場合
    :raises WebhookValidationError: いずれかのエントリが不正な場合
    """
    try:
        document = json.loads(text)
    except ValueError as exc:
        raise WebhookConfigError(f"failed to parse JSON: {exc}") from exc

    if not isinstance(document, dict):
        raise WebhookConfigError("webhook config must be a JSON object with a 'webhooks' list")

    entries = document.get("webhooks") or []
    if not isinstance(entries, list):
        raise WebhookConfigError("'webhooks' must be a JSON array")

    definitions = [_validate_entry(index, raw) for index, raw in enumerate(entries)]

    # sorted は安定ソートなので、同じ priority はファイル順を保つ
    return sorted(definitions, key=lambda d: d.priority)


def load_webhook_definitions(path: Union[str, Path]) -> List[WebhookDefinition]:
    """
    Webhook 設定ファイルを読み込む。

    ファイルが存在しない場合はエラーにせず空リストを返す。

    :raises WebhookConfigError: 読み込み失敗 / JSON 不正
    :raises WebhookValidationError: いずれかのエントリが不正な場合
    """
    config_path = Path(path)
    if not config_path.exists():
        logger.debug("Webhook config file not found at %r, skipping webhooks", str(config_path))
        return []

    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise WebhookConfigError(f"failed to read file {str(config_path)!r}: {exc}") from exc

    return parse_webhook_definitions(text)
