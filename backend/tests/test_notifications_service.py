# backend/tests/test_notifications_service.py

import logging
from typing import List

from jobhooks.notifications.schemas import DeliveryFailure, DeliveryOrigin, DeliveryStage
from jobhooks.notifications.service import (
    CompositeDeliveryErrorSink,
    LoggingDeliveryErrorSink,
    RecentDeliveryFailures,
    create_default_error_sink,
)


def _failure(name: str = "slack") -> DeliveryFailure:
    return DeliveryFailure(
        webhook_name=name,
        origin=DeliveryOrigin.PER_JOB,
        stage=DeliveryStage.DELIVER,
        error="non-2xx status code: 502, body: bad gateway",
        attempts=4,
        job_name="backup",
        execution_id="exec-1",
    )


def test_logging_sink_logs_at_error_level(caplog) -> None:
    """
    LoggingDeliveryErrorSink が ERROR レベルで Webhook 名・段階・試行回数を出力することを確認。
    """
    logger = logging.getLogger("test_logger_delivery_errors")
    sink = LoggingDeliveryErrorSink(logger_=logger)

    with caplog.at_level(logging.INFO, logger="test_logger_delivery_errors"):
        sink.record(_failure())

    [record] = caplog.records
    assert record.levelno == logging.ERROR
    message = record.getMessage()
    assert "'slack'" in message
    assert "per_job" in message
    assert "deliver" in message
    assert "4 attempt(s)" in message
    assert "bad gateway" in message


class DummySink:
    def __init__(self) -> None:
        self.failures: List[DeliveryFailure] = []

    def record(self, failure: DeliveryFailure) -> None:
        self.failures.append(failure)


class BrokenSink:
    def record(self, failure: DeliveryFailure) -> None:
        raise RuntimeError("sink is down")


def test_composite_sink_fanout() -> None:
    """
    CompositeDeliveryErrorSink が全 Sink に record() を呼び出すことを確認。
    """
    sink1 = DummySink()
    sink2 = DummySink()
    composite = CompositeDeliveryErrorSink([sink1, sink2])

    failure = _failure()
    composite.record(failure)

    assert sink1.failures == [failure]
    assert sink2.failures == [failure]


def test_composite_sink_continues_after_broken_sink(caplog) -> None:
    after = DummySink()
    composite = CompositeDeliveryErrorSink([BrokenSink(), after])

    with caplog.at_level(logging.ERROR):
        composite.record(_failure())

    assert len(after.failures) == 1
    assert any("Continuing with others" in r.getMessage() for r in caplog.records)


def test_recent_failures_keeps_latest_records() -> None:
    recent = RecentDeliveryFailures(max_records=2)

    for name in ("a", "b", "c"):
        recent.record(_failure(name))

    assert [f.webhook_name for f in recent.list_failures()] == ["b", "c"]

    recent.clear()
    assert recent.list_failures() == []


def test_default_sink_includes_recent_store() -> None:
    recent = RecentDeliveryFailures()
    sink = create_default_error_sink(recent)

    sink.record(_failure("x"))

    assert [f.webhook_name for f in recent.list_failures()] == ["x"]
