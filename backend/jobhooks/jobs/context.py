# backend/jobhooks/jobs/context.py

"""
ジョブ実行コンテキストとミドルウェアチェーン。

スケジューラ本体はこのパッケージの対象外だが、Webhook ディスパッチャが
「ジョブの残りのパイプラインを最後まで走らせてから結果を取得する」ために
必要な最小限のインターフェースをここで定義する。

- Job: 名前・スケジュール・コマンドと、実処理 run()
- Execution: 1回分の実行記録（開始時刻・所要時間・失敗 / スキップ・エラー・出力）
- Middleware: ジョブの前後に処理を差し込む単位。ctx.next() で残りを実行する
- JobContext: 上記をまとめ、ミドルウェアを順に呼び出す
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class SkippedExecution(Exception):
    """ジョブ（またはミドルウェア）が実行をスキップしたことを表す例外。"""


class Job(Protocol):
    """ジョブの最小インターフェース。"""

    name: str
    schedule: str
    command: str

    def run(self, ctx: "JobContext") -> None:  # pragma: no cover - Protocol
        ...


class Middleware(Protocol):
    """
    ミドルウェアの最小インターフェース。

    continue_on_stop() が True のミドルウェアは、先行するミドルウェアが
    実行を止めた後でも呼び出される（結果通知系はこれを True にする）。
    """

    def continue_on_stop(self) -> bool:  # pragma: no cover - Protocol
        ...

    def run(self, ctx: "JobContext") -> None:  # pragma: no cover - Protocol
        ...


def _new_execution_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class Execution:
    """
    ジョブ 1回分の実行記録。実行中はジョブ側・ミドルウェア側から更新される。
    """

    id: str = field(default_factory=_new_execution_id)
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration: timedelta = timedelta(0)
    is_running: bool = False
    failed: bool = False
    skipped: bool = False
    error: Optional[BaseException] = None
    stdout: str = ""
    stderr: str = ""

    def start(self) -> None:
        self.is_running = True
        self.date = datetime.now(timezone.utc)

    def stop(self, error: Optional[BaseException] = None) -> None:
        """
        実行を終了する。2回目以降の呼び出しは何もしない。

        - SkippedExecution → skipped
        - それ以外の例外 → failed + error
        """
        if not self.is_running:
            return

        self.is_running = False
        self.duration = datetime.now(timezone.utc) - self.date

        if isinstance(error, SkippedExecution):
            self.skipped = True
        elif error is not None:
            self.failed = True
            self.error = error


class JobContext:
    """
    ミドルウェアチェーンを実行するためのコンテキスト。

    ミドルウェアは登録順に呼ばれ、最後にジョブ本体が実行される。
    ジョブ本体・ミドルウェアの例外はそのまま呼び出し元に伝播する。
    """

    def __init__(
        self,
        job: Job,
        execution: Execution,
        middlewares: Sequence[Middleware] = (),
        *,
        logger_: Optional[logging.Logger] = None,
    ) -> None:
        self.job = job
        self.execution = execution
        self.logger = logger_ or logger
        self._middlewares: List[Middleware] = list(middlewares)
        self._position = 0
        self._job_done = False

    def start(self) -> None:
        self.execution.start()

    def stop(self, error: Optional[BaseException] = None) -> None:
        self.execution.stop(error)

    @property
    def stopped(self) -> bool:
        return not self.execution.is_running

    def next(self) -> None:
        """
        チェーンの残り（次のミドルウェア、全て済んでいればジョブ本体）を実行する。
        """
        middleware = self._next_middleware()
        if middleware is not None:
            middleware.run(self)
            return

        if self._job_done or self.stopped:
            return
        self._job_done = True
        self.job.run(self)

    def _next_middleware(self) -> Optional[Middleware]:
        while self._position < len(self._middlewares):
            middleware = self._middlewares[self._position]
            self._position += 1
            if self.stopped and not middleware.continue_on_stop():
                continue
            return middleware
        return None
