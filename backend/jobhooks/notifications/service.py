# backend/jobhooks/notifications/service.py

"""
配信失敗の記録先（DeliveryErrorSink）インターフェースと実装。

- DeliveryFailure を受け取る record() インターフェース
- ログ出力のみ行う LoggingDeliveryErrorSink
- 直近の失敗をメモリに保持する RecentDeliveryFailures（API から参照する）
- 複数 Sink にファンアウトする CompositeDeliveryErrorSink
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Deque, Iterable, List, Optional, Protocol

from .schemas import DeliveryFailure

logger = logging.getLogger(__name__)


class DeliveryErrorSink(Protocol):
    """
    配信失敗の記録先の最小インターフェース。

    バックグラウンドスレッドから呼ばれるため、実装はスレッドセーフであること。
    """

    def record(self, failure: DeliveryFailure) -> None:  # pragma: no cover - Protocol
        ...


class LoggingDeliveryErrorSink:
    """
    DeliveryFailure を Python の logger に ERROR レベルで記録するだけの Sink。
    """

    def __init__(self, logger_: Optional[logging.Logger] = None) -> None:
        self._logger = logger_ or logger

    def record(self, failure: DeliveryFailure) -> None:
        self._logger.error(
            "Webhook %r (%s) failed at %s after %d attempt(s) [job=%s execution=%s]: %s",
            failure.webhook_name,
            failure.origin.value,
            failure.stage.value,
            failure.attempts,
            failure.job_name,
            failure.execution_id,
            failure.error,
        )


class RecentDeliveryFailures:
    """
    直近の DeliveryFailure を最大 max_records 件まで保持する Sink。
    """

    def __init__(self, max_records: int = 100) -> None:
        self._failures: Deque[DeliveryFailure] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def record(self, failure: DeliveryFailure) -> None:
        with self._lock:
            self._failures.append(failure)

    def list_failures(self) -> List[DeliveryFailure]:
        """古い順に返す。"""
        with self._lock:
            return list(self._failures)

    def clear(self) -> None:
        with self._lock:
            self._failures.clear()


class CompositeDeliveryErrorSink:
    """
    複数の DeliveryErrorSink に失敗レコードをファンアウトする Sink。
    """

    def __init__(self, sinks: Iterable[DeliveryErrorSink]) -> None:
        self._sinks: List[DeliveryErrorSink] = list(sinks)

    def record(self, failure: DeliveryFailure) -> None:
        """
        受け取った DeliveryFailure を全 Sink に記録する。
        """
        for sink in self._sinks:
            try:
                sink.record(failure)
            except Exception:  # noqa: BLE001 - 記録の失敗で配信タスクを落とさない
                logger.exception("Delivery error sink failed. Continuing with others.")


def create_default_error_sink(
    recent: Optional[RecentDeliveryFailures] = None,
) -> CompositeDeliveryErrorSink:
    """
    ログ出力 + （指定されていれば）直近失敗の保持を行う Sink を組み立てる。
    """
    sinks: List[DeliveryErrorSink] = [LoggingDeliveryErrorSink()]
    if recent is not None:
        sinks.append(recent)
    return CompositeDeliveryErrorSink(sinks)
