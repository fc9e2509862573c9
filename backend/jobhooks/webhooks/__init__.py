# backend/jobhooks/webhooks/__init__.py

"""
Webhook 連携モジュール。

- config: 設定ファイルパス・ワーカー数などの設定値
- schemas: Webhook 定義 / 実行スナップショットの Pydantic モデル
- registry: 設定ファイルの読み込み・検証とレジストリ
- templating: テンプレートレンダリング（Jinja2 サンドボックス）
- dialect: Go の text/template 形式 → Jinja2 ソースへの変換
- timeformat: Go 形式の時刻レイアウト
- client: リトライ付き HTTP 送信クライアント
- service: グローバル / ジョブ単位のディスパッチャとバックグラウンド実行器
- factory: 起動時のレジストリ・ディスパッチャ組み立て
- router: 読み込み済み定義の参照 API
"""

from .exceptions import (  # noqa: F401
    WebhookConfigError,
    WebhookDeliveryError,
    WebhookError,
    WebhookReferenceError,
    WebhookTemplateError,
    WebhookTemplateResultInvalidError,
    WebhookValidationError,
)
from .factory import WebhookLoadResult, load_registry, load_webhooks  # noqa: F401
from .registry import WebhookRegistry, load_webhook_definitions  # noqa: F401
from .schemas import ExecutionSnapshot, WebhookDefinition, WebhookType  # noqa: F401
from .service import (  # noqa: F401
    DeliveryExecutor,
    GlobalWebhookDispatcher,
    PerJobWebhookConfig,
    PerJobWebhookDispatcher,
)
