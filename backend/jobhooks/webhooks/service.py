# backend/jobhooks/webhooks/service.py

"""
ジョブ完了時に Webhook を配信するディスパッチャと、バックグラウンド配信の実行器。

責務:
- ジョブの残りのパイプラインを最後まで実行し、結果をスナップショットとして取得する
- 定義ごとに「送るかどうか」を判定する（グローバル / ジョブ単位の 2方式）
- 送ると判定した定義を DeliveryExecutor に投入し、完了は待たない

配信の成否はジョブの結果に一切影響させない。配信エラーは DeliveryErrorSink に記録するのみ。
"""

from __future__ import annotations

import abc
import json
import logging
import socket
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence, Union

import httpx

from jobhooks.jobs.context import JobContext
from jobhooks.notifications.schemas import DeliveryFailure, DeliveryOrigin, DeliveryStage
from jobhooks.notifications.service import DeliveryErrorSink, create_default_error_sink

from .client import RetryPolicy, WebhookClient
from .config import DEFAULT_MAX_WORKERS
from .exceptions import (
    WebhookConfigError,
    WebhookDeliveryError,
    WebhookReferenceError,
    WebhookTemplateError,
)
from .registry import WebhookRegistry
from .schemas import ExecutionSnapshot, WebhookDefinition, WebhookType
from .templating import render_webhook_request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingDelivery:
    """配信待ちの 1件（定義 + 共有スナップショット）。"""

    definition: WebhookDefinition
    snapshot: ExecutionSnapshot
    origin: DeliveryOrigin = DeliveryOrigin.GLOBAL


class WebhookDispatcher(Protocol):
    """ジョブ完了時に、配信すべき PendingDelivery の一覧を返すインターフェース。"""

    def on_job_complete(self, snapshot: ExecutionSnapshot) -> List[PendingDelivery]:  # pragma: no cover
        ...


def should_send(webhook_type: WebhookType, failed: bool) -> bool:
    """
    種別とジョブ結果から送信するかどうかを判定する。

    - all: 常に送る
    - error: 失敗時のみ
    - info: 失敗していない時のみ（スキップも含む）
    """
    if webhook_type == WebhookType.ALL:
        return True
    if webhook_type == WebhookType.ERROR:
        return failed
    return not failed


def capture_snapshot(ctx: JobContext, *, hostname: Optional[str] = None) -> ExecutionSnapshot:
    """
    ジョブコンテキストから ExecutionSnapshot を 1回だけ取得する。
    """
    job = ctx.job
    execution = ctx.execution
    error = execution.error

    return ExecutionSnapshot(
        job_name=job.name,
        job_schedule=job.schedule,
        job_command=job.command,
        execution_id=execution.id,
        start_time=execution.date,
        end_time=execution.date + execution.duration,
        duration=execution.duration,
        is_running=execution.is_running,
        failed=execution.failed,
        skipped=execution.skipped,
        error=str(error) if error is not None else "",
        has_error=error is not None,
        stdout=execution.stdout,
        stderr=execution.stderr,
        hostname=hostname if hostname is not None else socket.gethostname(),
    )


class DeliveryExecutor:
    """
    PendingDelivery をバックグラウンドで「レンダリング → 送信」する実行器。

    - 上限付きのスレッドプールで実行し、タスク同士は互いに影響しない
    - 失敗は例外として外に出さず、DeliveryErrorSink に記録する
    - 呼び出し側（ディスパッチャ）は返ってくる Future を待たない
    """

    def __init__(
        self,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        error_sink: Optional[DeliveryErrorSink] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="webhook-delivery",
        )
        self._error_sink = error_sink or create_default_error_sink()
        self._transport = transport
        self._sleep = sleep
        self._logger = logger_ or logger

    def submit(self, pending: PendingDelivery) -> Optional[Future]:
        """
        配信タスクを投入する。シャットダウン後に呼ばれた場合はログを出して None を返す。
        """
        try:
            return self._pool.submit(self.execute, pending)
        except RuntimeError as exc:
            self._logger.error(
                "Webhook %r: could not schedule delivery: %s",
                pending.definition.name,
                exc,
            )
            return None

    def submit_all(self, pendings: Sequence[PendingDelivery]) -> List[Future]:
        futures = [self.submit(pending) for pending in pendings]
        return [future for future in futures if future is not None]

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def execute(self, pending: PendingDelivery) -> bool:
        """
        1件分の「クライアント構築 → レンダリング → リトライ付き送信」を同期的に実行する。

        成功なら True。失敗は DeliveryErrorSink に記録して False を返す（例外は投げない）。
        """
        definition = pending.definition
        client: Optional[WebhookClient] = None

        try:
            client = WebhookClient.from_definition(
                definition,
                transport=self._transport,
                sleep=self._sleep,
                logger_=self._logger,
            )
            request = render_webhook_request(definition, pending.snapshot)
            attempts = client.deliver(request)
        except WebhookConfigError as exc:
            self._report(pending, DeliveryStage.PREPARE, exc, attempts=0)
        except WebhookTemplateError as exc:
            self._report(pending, DeliveryStage.RENDER, exc, attempts=0)
        except WebhookDeliveryError as exc:
            attempts = client.retry.attempts if client is not None else 0
            self._report(pending, DeliveryStage.DELIVER, exc, attempts=attempts)
        except Exception as exc:  # noqa: BLE001 - 配信タスクの失敗は他のタスク・ジョブに波及させない
            self._logger.exception("Webhook %r: unexpected delivery error", definition.name)
            self._report(pending, DeliveryStage.UNEXPECTED, exc, attempts=0)
        else:
            self._logger.debug(
                "Webhook %r: sent successfully after %d attempt(s)",
                definition.name,
                attempts,
            )
            return True
        return False

    def _report(
        self,
        pending: PendingDelivery,
        stage: DeliveryStage,
        exc: BaseException,
        *,
        attempts: int,
    ) -> None:
        self._error_sink.record(
            DeliveryFailure(
                webhook_name=pending.definition.name,
                origin=pending.origin,
                stage=stage,
                error=str(exc),
                attempts=attempts,
                job_name=pending.snapshot.job_name,
                execution_id=pending.snapshot.execution_id,
            )
        )


class _WebhookMiddleware(abc.ABC):
    """
    2種類のディスパッチャに共通する「ジョブ実行 → 結果取得 → 配信投入」の流れ。

    run() はジョブの例外をそのまま再送出し、正常終了ならそのまま戻る。
    配信の成否は run() の結果に影響しない。
    """

    def __init__(
        self,
        executor: DeliveryExecutor,
        *,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self._executor = executor
        self._logger = logger_ or logger

    def continue_on_stop(self) -> bool:
        # 最終結果を通知するため、先行ミドルウェアが止めた後でも実行する
        return True

    @abc.abstractmethod
    def on_job_complete(self, snapshot: ExecutionSnapshot) -> List[PendingDelivery]:
        """送ると判定した配信を返す。"""

    def run(self, ctx: JobContext) -> None:
        try:
            ctx.next()
        except Exception as exc:
            ctx.stop(exc)
            self._dispatch(ctx)
            raise
        ctx.stop(None)
        self._dispatch(ctx)

    def _dispatch(self, ctx: JobContext) -> None:
        try:
            snapshot = capture_snapshot(ctx)
            self._executor.submit_all(self.on_job_complete(snapshot))
        except Exception:  # noqa: BLE001 - 配信の準備に失敗してもジョブの結果は変えない
            self._logger.exception(
                "Failed to prepare webhook deliveries for job %r", getattr(ctx.job, "name", "")
            )


class GlobalWebhookDispatcher(_WebhookMiddleware):
    """
    設定ファイルの定義 1件に対応するディスパッチャ。

    判定順:
      1. active でなければ送らない
      2. 種別（error / info / all）とジョブ結果で判定
      3. onlyOnError=True かつジョブ成功なら抑止（判定を狭めるだけで、送信を強制はしない）
    """

    def __init__(
        self,
        definition: WebhookDefinition,
        executor: DeliveryExecutor,
        *,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(executor, logger_=logger_)
        # backoff が不正な定義はここで弾く（InvalidDurationError）
        self._retry = RetryPolicy.from_config(definition.retry)
        self._definition = definition

    @property
    def definition(self) -> WebhookDefinition:
        return self._definition

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def priority(self) -> int:
        return self._definition.priority

    @property
    def retry(self) -> RetryPolicy:
        return self._retry

    def on_job_complete(self, snapshot: ExecutionSnapshot) -> List[PendingDelivery]:
        definition = self._definition

        if not definition.active:
            self._logger.debug("Webhook %r skipped (inactive)", definition.name)
            return []

        if not should_send(definition.type, snapshot.failed):
            self._logger.debug(
                "Webhook %r skipped (type mismatch: webhook type=%s, job failed=%s)",
                definition.name,
                definition.type.value,
                snapshot.failed,
            )
            return []

        if definition.only_on_error and not snapshot.failed:
            self._logger.debug(
                "Webhook %r skipped (onlyOnError=true but job succeeded)",
                definition.name,
            )
            return []

        return [PendingDelivery(definition, snapshot, DeliveryOrigin.GLOBAL)]


@dataclass(frozen=True)
class PerJobWebhookConfig:
    """
    ジョブ単位の Webhook 設定。

    どちらもカンマ区切り文字列、JSON 配列文字列、または名前のリストで指定できる。
    """

    error_names: Union[str, Sequence[str]] = ""
    info_names: Union[str, Sequence[str]] = ""


def parse_webhook_names(names: Union[str, Sequence[str], None]) -> List[str]:
    """
    Webhook 名の指定をリストにする。

    - JSON 配列文字列（'["a", "b"]'）として解釈できればそれを使う
    - それ以外はカンマ区切りとして扱い、前後の空白を除去して空要素を捨てる
    """
    if not names:
        return []
    if not isinstance(names, str):
        return [str(name).strip() for name in names if str(name).strip()]

    try:
        parsed = json.loads(names)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return [str(name) for name in parsed]

    return [part.strip() for part in names.split(",") if part.strip()]


class PerJobWebhookDispatcher(_WebhookMiddleware):
    """
    ジョブ単位で「失敗時に送る定義」「成功時に送る定義」を明示するディスパッチャ。

    失敗 / 成功を呼び出し側が明示しているため、onlyOnError は見ない。
    """

    def __init__(
        self,
        error_definitions: Sequence[WebhookDefinition],
        info_definitions: Sequence[WebhookDefinition],
        executor: DeliveryExecutor,
        *,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(executor, logger_=logger_)
        self._error_definitions = list(error_definitions)
        self._info_definitions = list(info_definitions)

    @property
    def error_definitions(self) -> List[WebhookDefinition]:
        return list(self._error_definitions)

    @property
    def info_definitions(self) -> List[WebhookDefinition]:
        return list(self._info_definitions)

    @classmethod
    def from_config(
        cls,
        config: PerJobWebhookConfig,
        registry: WebhookRegistry,
        executor: DeliveryExecutor,
        *,
        logger_: Optional[logging.Logger] = None,
    ) -> Optional["PerJobWebhookDispatcher"]:
        """
        ジョブ設定の名前をレジストリで解決してディスパッチャを作る。

        どちらの指定も空なら None を返す。

        :raises WebhookReferenceError: 未知の名前、または種別が合わない定義を参照している場合
        """
        log = logger_ or logger
        error_names = parse_webhook_names(config.error_names)
        info_names = parse_webhook_names(config.info_names)
        if not error_names and not info_names:
            return None

        error_definitions = _resolve_names(
            registry,
            error_names,
            list_name="webhook-error-names",
            allowed=(WebhookType.ERROR, WebhookType.ALL),
            logger_=log,
        )
        info_definitions = _resolve_names(
            registry,
            info_names,
            list_name="webhook-info-names",
            allowed=(WebhookType.INFO, WebhookType.ALL),
            logger_=log,
        )
        return cls(error_definitions, info_definitions, executor, logger_=logger_)

    def on_job_complete(self, snapshot: ExecutionSnapshot) -> List[PendingDelivery]:
        definitions = self._error_definitions if snapshot.failed else self._info_definitions

        pending: List[PendingDelivery] = []
        for definition in definitions:
            if not definition.active:
                self._logger.debug("Webhook %r skipped (inactive)", definition.name)
                continue
            pending.append(PendingDelivery(definition, snapshot, DeliveryOrigin.PER_JOB))
        return pending


def _resolve_names(
    registry: WebhookRegistry,
    names: Sequence[str],
    *,
    list_name: str,
    allowed: Sequence[WebhookType],
    logger_: logging.Logger,
) -> List[WebhookDefinition]:
    definitions: List[WebhookDefinition] = []
    for name in names:
        definition = registry.get(name)
        if definition is None:
            raise WebhookReferenceError(
                f"{list_name} references unknown webhook {name!r}",
                webhook_name=name,
            )

        if definition.type not in allowed:
            raise WebhookReferenceError(
                f"webhook {name!r} has type {definition.type.value!r} but is referenced in "
                f"{list_name} (must be {' or '.join(repr(t.value) for t in allowed)})",
                webhook_name=name,
            )

        if not definition.active:
            logger_.info("Webhook %r is inactive and will not fire", name)

        definitions.append(definition)
    return definitions
