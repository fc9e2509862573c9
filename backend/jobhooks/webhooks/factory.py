# backend/jobhooks/webhooks/factory.py

"""
起動時に Webhook 設定ファイルからレジストリとグローバルディスパッチャを組み立てるファクトリ。

- レジストリはモジュールレベルのシングルトンにせず、呼び出し側が所有して各ディスパッチャに渡す
- 設定ファイルの不正はログに出し、Webhook なしで起動を続ける
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config import WebhookSettings, get_webhook_settings
from .exceptions import WebhookConfigError
from .registry import WebhookRegistry, load_webhook_definitions
from .service import DeliveryExecutor, GlobalWebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class WebhookLoadResult:
    """読み込み結果。dispatchers は priority 昇順。"""

    registry: WebhookRegistry = field(default_factory=WebhookRegistry)
    dispatchers: List[GlobalWebhookDispatcher] = field(default_factory=list)


def load_webhooks(
    executor: DeliveryExecutor,
    *,
    settings: Optional[WebhookSettings] = None,
    logger_: Optional[logging.Logger] = None,
) -> WebhookLoadResult:
    """
    設定ファイルを読み込み、レジストリとグローバルディスパッチャの一覧を返す。

    - ファイルがない / 定義が 0件 → 空の結果
    - ファイル全体が不正 → エラーログを出して空の結果
    - 定義は全てレジストリに登録する（ディスパッチャ構築に失敗した定義も含む）
    - ディスパッチャ構築に失敗した定義はログを出してスキップし、残りは続行する
    """
    log = logger_ or logger
    settings = settings or get_webhook_settings()
    config_path = settings.config_path
    result = WebhookLoadResult()

    try:
        definitions = load_webhook_definitions(config_path)
    except WebhookConfigError as exc:
        log.error("Failed to parse webhook config file %r: %s", config_path, exc)
        return result

    if not definitions:
        log.debug("No webhooks defined in config file %r", config_path)
        return result

    for definition in definitions:
        result.registry.register(definition)

        try:
            dispatcher = GlobalWebhookDispatcher(definition, executor, logger_=logger_)
        except WebhookConfigError as exc:
            log.error("Failed to create webhook dispatcher %r: %s", definition.name, exc)
            continue

        result.dispatchers.append(dispatcher)
        log.info(
            "Loaded webhook %r (type: %s, active: %s, priority: %d)",
            definition.name,
            definition.type.value,
            definition.active,
            definition.priority,
        )

    return result


def load_registry(
    *,
    settings: Optional[WebhookSettings] = None,
    logger_: Optional[logging.Logger] = None,
) -> WebhookRegistry:
    """
    ディスパッチャは作らず、レジストリだけを読み込む（API プロセス用）。

    設定ファイルが不正な場合はエラーログを出して空のレジストリを返す。
    """
    log = logger_ or logger
    settings = settings or get_webhook_settings()

    try:
        definitions = load_webhook_definitions(settings.config_path)
    except WebhookConfigError as exc:
        log.error("Failed to parse webhook config file %r: %s", settings.config_path, exc)
        return WebhookRegistry()

    return WebhookRegistry(definitions)
