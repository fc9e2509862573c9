# backend/jobhooks/webhooks/config.py

"""
Webhook 連携に必要な設定値をまとめるモジュール。
"""

from dataclasses import dataclass
from typing import Optional

from jobhooks.utils.config import get_env, get_env_int

DEFAULT_WEBHOOK_CONFIG_PATH = "/etc/config/middlewares.json"
DEFAULT_MAX_WORKERS = 8

WEBHOOK_CONFIG_ENV = "WEBHOOK_CONFIG"
WEBHOOK_MAX_WORKERS_ENV = "WEBHOOK_MAX_WORKERS"


@dataclass(frozen=True)
class WebhookSettings:
    """Webhook 用の設定値コンテナ。"""

    config_path: str
    max_workers: int = DEFAULT_MAX_WORKERS


def resolve_webhook_config_path(explicit_path: Optional[str] = None) -> str:
    """
    Webhook 設定ファイルのパスを決定する。

    優先順位:
      1. 環境変数 WEBHOOK_CONFIG
      2. 呼び出し側で明示された設定値（webhook-config-file）
      3. デフォルトパス /etc/config/middlewares.json
    """
    from_env = get_env(WEBHOOK_CONFIG_ENV, required=False)
    if from_env:
        return from_env
    if explicit_path:
        return explicit_path
    return DEFAULT_WEBHOOK_CONFIG_PATH


def get_webhook_settings(explicit_path: Optional[str] = None) -> WebhookSettings:
    """
    環境変数と明示設定から Webhook 設定を組み立てる。

    任意:
      - WEBHOOK_CONFIG       (設定ファイルパスの上書き)
      - WEBHOOK_MAX_WORKERS  (バックグラウンド配信のワーカー数、デフォルト: 8)
    """
    max_workers = get_env_int(WEBHOOK_MAX_WORKERS_ENV, default=DEFAULT_MAX_WORKERS)
    if max_workers < 1:
        max_workers = DEFAULT_MAX_WORKERS

    return WebhookSettings(
        config_path=resolve_webhook_config_path(explicit_path),
        max_workers=max_workers,
    )
