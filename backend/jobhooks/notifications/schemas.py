# backend/jobhooks/notifications/schemas.py

"""
配信失敗レコードの共通スキーマ定義。

バックグラウンドの配信タスクで起きたエラーは呼び出し元（ジョブ）に伝播させず、
DeliveryFailure として DeliveryErrorSink に記録する。

※ セキュリティ上の観点から、DeliveryFailure にはレンダリング後の URL / ヘッダーを含めないこと。
  （トークンがクエリやヘッダーに埋め込まれていることがあるため）
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class DeliveryOrigin(str, Enum):
    """どのディスパッチャが配信を起動したか。"""

    GLOBAL = "global"
    PER_JOB = "per_job"


class DeliveryStage(str, Enum):
    """
    配信のどの段階で失敗したか。

    - PREPARE: retry.backoff の解釈など、クライアント構築時
    - RENDER: url / headers / body のテンプレートレンダリング時
    - DELIVER: HTTP 送信（全リトライ失敗後）
    - UNEXPECTED: 上記以外の想定外の例外
    """

    PREPARE = "prepare"
    RENDER = "render"
    DELIVER = "deliver"
    UNEXPECTED = "unexpected"


class DeliveryFailure(BaseModel):
    """配信失敗 1件分の情報。"""

    model_config = ConfigDict(frozen=True)

    webhook_name: str = Field(..., description="失敗した Webhook 定義の名前。")
    origin: DeliveryOrigin = Field(..., description="配信を起動したディスパッチャの種別。")
    stage: DeliveryStage = Field(..., description="失敗した段階。")
    error: str = Field(..., description="エラーメッセージ。")
    attempts: int = Field(
        0,
        ge=0,
        description="実際に行った HTTP 試行回数。送信前に失敗した場合は 0。",
    )
    job_name: str = Field("", description="対象ジョブ名。")
    execution_id: str = Field("", description="対象実行 ID。")
    occurred_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="失敗を記録した時刻（UTC）。",
    )
