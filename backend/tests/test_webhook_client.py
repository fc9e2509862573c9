# backend/tests/test_webhook_client.py
from typing import List

import httpx
import pytest

from jobhooks.webhooks.client import MAX_ERROR_BODY_BYTES, RetryPolicy, WebhookClient
from jobhooks.webhooks.exceptions import (
    InvalidDurationError,
    WebhookConnectionError,
    WebhookHTTPError,
)
from jobhooks.webhooks.schemas import RetryConfig, WebhookDefinition
from jobhooks.webhooks.templating import RenderedRequest


class SteppingClock:
    """呼ばれるたびに step 秒進む時計。"""

    def __init__(self, step: float) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _request(**overrides) -> RenderedRequest:
    values = {
        "method": "POST",
        "url": "https://hooks.example.com/notify",
        "headers": {"Content-Type": "application/json"},
        "body": b'{"text":"hello"}',
    }
    values.update(overrides)
    return RenderedRequest(**values)


def _sequence_transport(statuses: List[int], seen: List[httpx.Request]) -> httpx.MockTransport:
    remaining = list(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(remaining.pop(0), text="nope")

    return httpx.MockTransport(handler)


def test_send_once_passes_method_headers_and_body() -> None:
    seen: List[httpx.Request] = []
    client = WebhookClient(name="hook", transport=_sequence_transport([204], seen))

    client.send_once(_request(method="PUT"))

    assert len(seen) == 1
    assert seen[0].method == "PUT"
    assert str(seen[0].url) == "https://hooks.example.com/notify"
    assert seen[0].headers["Content-Type"] == "application/json"
    assert seen[0].content == b'{"text":"hello"}'


def test_deliver_retries_until_success_with_doubling_backoff() -> None:
    """
    500, 500, 200 の順に返す相手に count=3 / backoff=1s で送ると 3回目で成功すること。
    """
    seen: List[httpx.Request] = []
    sleep = SleepRecorder()
    client = WebhookClient(
        name="hook",
        retry=RetryPolicy(count=3, backoff_seconds=1.0),
        transport=_sequence_transport([500, 500, 200], seen),
        sleep=sleep,
    )

    attempts = client.deliver(_request())

    assert attempts == 3
    assert len(seen) == 3
    assert sleep.calls == [1.0, 2.0]


def test_deliver_gives_up_after_count_plus_one_attempts() -> None:
    seen: List[httpx.Request] = []
    sleep = SleepRecorder()
    client = WebhookClient(
        name="hook",
        retry=RetryPolicy(count=2, backoff_seconds=0.5),
        transport=_sequence_transport([503, 502, 500], seen),
        sleep=sleep,
    )

    with pytest.raises(WebhookHTTPError) as excinfo:
        client.deliver(_request())

    assert len(seen) == 3
    assert sleep.calls == [0.5, 1.0]
    # 最後の試行のエラーが送出される
    assert excinfo.value.status_code == 500
    assert "500" in str(excinfo.value)


def test_deliver_without_retry_sends_once() -> None:
    seen: List[httpx.Request] = []
    sleep = SleepRecorder()
    client = WebhookClient(
        name="hook",
        transport=_sequence_transport([400], seen),
        sleep=sleep,
    )

    with pytest.raises(WebhookHTTPError):
        client.deliver(_request())

    assert len(seen) == 1
    assert sleep.calls == []


def test_error_body_is_truncated_to_limit() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, content=b"x" * (MAX_ERROR_BODY_BYTES * 5))

    client = WebhookClient(name="hook", transport=httpx.MockTransport(handler))

    with pytest.raises(WebhookHTTPError) as excinfo:
        client.send_once(_request())

    assert len(excinfo.value.body) == MAX_ERROR_BODY_BYTES


def test_connection_error_is_retried_and_wrapped() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    sleep = SleepRecorder()
    client = WebhookClient(
        name="hook",
        retry=RetryPolicy(count=1, backoff_seconds=0.25),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )

    with pytest.raises(WebhookConnectionError, match="connection refused"):
        client.deliver(_request())

    assert calls["count"] == 2
    assert sleep.calls == [0.25]


def test_retry_policy_from_config() -> None:
    assert RetryPolicy.from_config(None) == RetryPolicy(count=0, backoff_seconds=1.0)
    assert RetryPolicy.from_config(RetryConfig(count=3, backoff="500ms")) == RetryPolicy(
        count=3, backoff_seconds=0.5
    )
    # backoff 未指定は 1s
    assert RetryPolicy.from_config(RetryConfig(count=2, backoff="")).backoff_seconds == 1.0
    assert RetryPolicy.from_config(RetryConfig(count=-1, backoff="1s")).attempts == 1


def test_retry_policy_rejects_invalid_backoff() -> None:
    with pytest.raises(InvalidDurationError):
        RetryPolicy.from_config(RetryConfig(count=1, backoff="soon"))


def test_from_definition_uses_timeout_and_retry() -> None:
    definition = WebhookDefinition.model_validate(
        {
            "name": "hook",
            "type": "error",
            "url": "https://example.com",
            "timeout": 3,
            "retry": {"count": 2, "backoff": "2s"},
        }
    )

    client = WebhookClient.from_definition(definition)

    assert client.timeout == 3.0
    assert client.retry == RetryPolicy(count=2, backoff_seconds=2.0)
    assert client.retry.attempts == 3


def test_send_once_fails_when_attempt_exceeds_timeout() -> None:
    """
    各段階は間に合っても、1試行全体が timeout を超えたら失敗として扱うこと。
    """
    seen: List[httpx.Request] = []
    client = WebhookClient(
        name="hook",
        timeout_seconds=5,
        transport=_sequence_transport([200], seen),
        clock=SteppingClock(step=6.0),
    )

    with pytest.raises(WebhookConnectionError, match="timed out after 5s"):
        client.send_once(_request())

    assert len(seen) == 1


def test_send_once_succeeds_within_timeout() -> None:
    seen: List[httpx.Request] = []
    client = WebhookClient(
        name="hook",
        timeout_seconds=5,
        transport=_sequence_transport([200], seen),
        clock=SteppingClock(step=1.0),
    )

    client.send_once(_request())

    assert len(seen) == 1


def test_slow_error_body_read_is_bounded_by_timeout() -> None:
    """
    エラーボディの読み込み中に期限を過ぎたら HTTP エラーではなくタイムアウトになること。
    """

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, content=iter([b"a", b"b", b"c", b"d"]))

    sleep = SleepRecorder()
    client = WebhookClient(
        name="hook",
        timeout_seconds=2.5,
        retry=RetryPolicy(count=1, backoff_seconds=0.1),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
        clock=SteppingClock(step=1.0),
    )

    with pytest.raises(WebhookConnectionError, match="timed out"):
        client.deliver(_request())

    # 期限切れもリトライ対象
    assert sleep.calls == [0.1]
