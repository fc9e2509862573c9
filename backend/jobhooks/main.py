# backend/jobhooks/main.py

"""
Webhook 設定の参照用 API のエントリーポイント。

主な責務:
- /webhooks で読み込み済みの Webhook 定義を公開する（読み取り専用）
- /webhooks/failures で直近の配信失敗を公開する
- /health でヘルスチェックを返す

Webhook の送信そのものはジョブランナー側（jobhooks.jobs.runner）が行う。
"""

from typing import Optional

from fastapi import FastAPI

from jobhooks.notifications.service import RecentDeliveryFailures
from jobhooks.webhooks.factory import load_registry
from jobhooks.webhooks.registry import WebhookRegistry
from jobhooks.webhooks.router import router as webhooks_router


def create_app(
    registry: Optional[WebhookRegistry] = None,
    recent_failures: Optional[RecentDeliveryFailures] = None,
) -> FastAPI:
    """
    FastAPI アプリケーションファクトリ。

    registry を省略した場合は WEBHOOK_CONFIG / デフォルトパスから読み込む。
    """
    app = FastAPI(title="Job Webhooks")

    app.state.webhook_registry = registry if registry is not None else load_registry()
    app.state.recent_failures = recent_failures or RecentDeliveryFailures()

    # ルーター登録
    app.include_router(webhooks_router)

    @app.get("/health", tags=["health"])
    def health_check() -> dict:
        """
        簡易ヘルスチェックエンドポイント。
        """
        return {"status": "ok", "webhooks": len(app.state.webhook_registry)}

    return app


# uvicorn 実行時のエントリーポイント
app = create_app()
