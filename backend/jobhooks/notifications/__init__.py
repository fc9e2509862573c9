# backend/jobhooks/notifications/__init__.py

"""
配信失敗の通知レイヤ用モジュール群。

バックグラウンド配信で起きたエラーはジョブの結果に影響させず、
ここで定義する Sink に集約する。

構成イメージ:
- schemas: 配信失敗レコードの共通スキーマ
- service: Sink インターフェースと実装（ログ出力 / 直近保持 / ファンアウト）
"""

from .schemas import DeliveryFailure, DeliveryOrigin, DeliveryStage  # noqa: F401
from .service import (  # noqa: F401
    CompositeDeliveryErrorSink,
    DeliveryErrorSink,
    LoggingDeliveryErrorSink,
    RecentDeliveryFailures,
    create_default_error_sink,
)
