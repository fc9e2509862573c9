# backend/jobhooks/webhooks/client.py

"""
Webhook 送信先への HTTP クライアント（リトライ・指数バックオフ付き）。
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .durations import parse_duration
from .exceptions import WebhookConnectionError, WebhookDeliveryError, WebhookHTTPError
from .schemas import (
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_TIMEOUT_SECONDS,
    RetryConfig,
    WebhookDefinition,
)
from .templating import RenderedRequest

logger = logging.getLogger(__name__)

# エラーメッセージに含めるレスポンスボディの上限
MAX_ERROR_BODY_BYTES = 1024


@dataclass(frozen=True)
class RetryPolicy:
    """
    リトライ方針。

    試行回数は count + 1。試行の間だけ backoff_seconds 待ち、待つたびに倍にする。
    """

    count: int = 0
    backoff_seconds: float = 1.0

    @property
    def attempts(self) -> int:
        return self.count + 1

    @classmethod
    def from_config(cls, retry: Optional[RetryConfig]) -> "RetryPolicy":
        """
        設定ファイルの retry ブロックから RetryPolicy を作る。

        :raises InvalidDurationError: backoff が期間文字列として不正な場合
        """
        if retry is None:
            return cls(count=0, backoff_seconds=parse_duration(DEFAULT_RETRY_BACKOFF))

        backoff = parse_duration(retry.backoff or DEFAULT_RETRY_BACKOFF)
        return cls(count=max(retry.count, 0), backoff_seconds=backoff)


class WebhookClient:
    """
    Webhook 1定義分の送信クライアント。

    - 1試行ごとに httpx.Client を開く
    - timeout は 1試行全体の期限。接続・読み書きの各段階に httpx のタイムアウトを掛け、
      レスポンスヘッダー受信後とボディ読み込み中に全体の期限を確認する
    - 2xx 以外のステータス / 通信エラー / 期限切れは失敗としてリトライする
    - transport / sleep / clock はテストで差し替えられるようにしておく
    """

    def __init__(
        self,
        *,
        name: str = "",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self._name = name
        self._timeout = float(timeout_seconds)
        self._retry = retry or RetryPolicy()
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._logger = logger_ or logger

    @classmethod
    def from_definition(
        cls,
        definition: WebhookDefinition,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger_: Optional[logging.Logger] = None,
    ) -> "WebhookClient":
        """
        WebhookDefinition からクライアントを構築する。

        :raises InvalidDurationError: retry.backoff が不正な場合
        """
        return cls(
            name=definition.name,
            timeout_seconds=definition.timeout,
            retry=RetryPolicy.from_config(definition.retry),
            transport=transport,
            sleep=sleep,
            clock=clock,
            logger_=logger_,
        )

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def retry(self) -> RetryPolicy:
        return self._retry

    def send_once(self, request: RenderedRequest) -> None:
        """
        HTTP リクエストを 1回だけ送信する。

        :raises WebhookHTTPError: 2xx 以外のステータスの場合（ボディ先頭 1KiB を保持）
        :raises WebhookConnectionError: 接続エラー・タイムアウト・URL 不正の場合
        """
        deadline = self._clock() + self._timeout
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                with client.stream(
                    request.method,
                    request.url,
                    headers=request.headers,
                    content=request.body,
                ) as response:
                    self._check_deadline(deadline)
                    if 200 <= response.status_code < 300:
                        return
                    body = self._read_limited(response, MAX_ERROR_BODY_BYTES, deadline)
        except (httpx.RequestError, httpx.InvalidURL) as exc:
            raise WebhookConnectionError(f"request failed: {exc}") from exc

        raise WebhookHTTPError(status_code=response.status_code, body=body)

    def _check_deadline(self, deadline: float) -> None:
        if self._clock() > deadline:
            raise WebhookConnectionError(f"request timed out after {self._timeout:g}s")

    def _read_limited(self, response: httpx.Response, limit: int, deadline: float) -> str:
        chunks = []
        size = 0
        for chunk in response.iter_bytes():
            self._check_deadline(deadline)
            chunks.append(chunk)
            size += len(chunk)
            if size >= limit:
                break
        return b"".join(chunks)[:limit].decode("utf-8", errors="replace")

    def deliver(self, request: RenderedRequest) -> int:
        """
        リトライ付きで送信する。成功した時点の試行回数を返す。

        :raises WebhookDeliveryError: 全試行が失敗した場合（最後の試行のエラー）
        """
        backoff = self._retry.backoff_seconds
        last_error: Optional[WebhookDeliveryError] = None

        for attempt in range(1, self._retry.attempts + 1):
            if attempt > 1:
                self._logger.debug(
                    "Webhook %r: retry attempt %d/%d after %.3fs",
                    self._name,
                    attempt - 1,
                    self._retry.count,
                    backoff,
                )
                self._sleep(backoff)
                backoff *= 2

            try:
                self.send_once(request)
            except WebhookDeliveryError as exc:
                last_error = exc
                continue
            return attempt

        assert last_error is not None
        raise last_error

