# backend/jobhooks/webhooks/exceptions.py

"""
Webhook サブシステムの例外階層。

- 設定時エラー（WebhookConfigError 系）: 該当する定義 / ジョブ単位のディスパッチャだけを無効にする
- テンプレートエラー（WebhookTemplateError 系）: その配信 1件だけを中断する
- 配信エラー（WebhookDeliveryError 系）: リトライ対象。最終的にはログに残すだけで伝播させない
"""

from __future__ import annotations

from typing import Optional


class WebhookError(Exception):
    """Webhook サブシステム全般の基底例外。"""


# ---- 設定時エラー ----------------------------------------------------------


class WebhookConfigError(WebhookError):
    """設定ファイルの読み込み・解釈に失敗した場合の例外。"""


class WebhookValidationError(WebhookConfigError):
    """定義の必須項目が欠けている / 値が不正な場合の例外。ファイル全体の読み込みを中断する。"""

    def __init__(
        self,
        message: str,
        *,
        index: Optional[int] = None,
        webhook_name: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.index = index
        self.webhook_name = webhook_name


class WebhookReferenceError(WebhookConfigError):
    """ジョブ設定が未知の Webhook 名、または種別が合わない Webhook を参照している場合の例外。"""

    def __init__(self, message: str, *, webhook_name: str) -> None:
        super().__init__(message)
        self.webhook_name = webhook_name


class InvalidDurationError(WebhookConfigError, ValueError):
    """期間文字列（例: 500ms, 1s）として解釈できない場合の例外。"""


# ---- テンプレートエラー ----------------------------------------------------


class WebhookTemplateError(WebhookError):
    """テンプレートのパース・実行に失敗した場合の例外。"""

    def __init__(
        self,
        message: str,
        *,
        webhook_name: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.webhook_name = webhook_name
        self.field = field

    def __str__(self) -> str:
        message = super().__str__()
        if self.webhook_name is None and self.field is None:
            return message
        return f"webhook {self.webhook_name!r} field {self.field!r}: {message}"


class WebhookTemplateResultInvalidError(WebhookTemplateError):
    """構造化ボディのレンダリング結果が JSON として不正になった場合の例外。"""


# ---- 配信エラー ------------------------------------------------------------


class WebhookDeliveryError(WebhookError):
    """配信（HTTP リクエスト）失敗の基底例外。"""


class WebhookHTTPError(WebhookDeliveryError):
    """HTTP ステータスコードが 2xx 以外だった場合の例外。"""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"non-2xx status code: {status_code}, body: {body}")
        self.status_code = status_code
        self.body = body


class WebhookConnectionError(WebhookDeliveryError):
    """接続エラー・DNS エラー・タイムアウト時の例外。"""
