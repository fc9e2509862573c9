# backend/jobhooks/jobs/runner.py

"""
ジョブ 1件を Webhook 付きで実行するランナー。

cron などの外部スケジューラから呼び出す想定:

    python -m jobhooks.jobs.runner --name backup --schedule "@daily" \
        --command "/usr/local/bin/backup.sh" \
        --webhook-error-names slack-errors,pagerduty \
        --webhook-info-names '["slack-info"]'
"""

from __future__ import annotations

import argparse
import logging
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from jobhooks.webhooks.config import get_webhook_settings
from jobhooks.webhooks.exceptions import WebhookReferenceError
from jobhooks.webhooks.factory import load_webhooks
from jobhooks.webhooks.registry import WebhookRegistry
from jobhooks.webhooks.service import (
    DeliveryExecutor,
    GlobalWebhookDispatcher,
    PerJobWebhookConfig,
    PerJobWebhookDispatcher,
)

from .context import Execution, JobContext, Middleware

logger = logging.getLogger(__name__)


class JobCommandError(RuntimeError):
    """コマンドが 0 以外の終了コードで終了した場合の例外。"""

    def __init__(self, command: str, returncode: int) -> None:
        super().__init__(f"command {command!r} exited with status {returncode}")
        self.command = command
        self.returncode = returncode


@dataclass
class CommandJob:
    """
    シェルコマンドを 1回実行するジョブ。

    標準出力 / 標準エラーは Execution に記録し、Webhook テンプレートから参照できるようにする。
    """

    name: str
    command: str
    schedule: str = ""
    timeout_seconds: Optional[float] = None

    def run(self, ctx: JobContext) -> None:
        completed = subprocess.run(
            self.command,
            shell=True,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
        )
        ctx.execution.stdout = completed.stdout
        ctx.execution.stderr = completed.stderr
        if completed.returncode != 0:
            raise JobCommandError(self.command, completed.returncode)


def build_middlewares(
    job_config: PerJobWebhookConfig,
    registry: WebhookRegistry,
    global_dispatchers: Sequence[GlobalWebhookDispatcher],
    executor: DeliveryExecutor,
) -> List[Middleware]:
    """
    ジョブに付けるミドルウェア一覧を作る。

    グローバルディスパッチャ（priority 昇順）の後にジョブ単位のディスパッチャを置く。
    ジョブ単位の設定が不正な場合はログを出し、そのジョブのディスパッチャだけを外す。
    """
    middlewares: List[Middleware] = list(global_dispatchers)

    try:
        per_job = PerJobWebhookDispatcher.from_config(job_config, registry, executor)
    except WebhookReferenceError as exc:
        logger.error("Failed to create per-job webhooks: %s", exc)
        per_job = None

    if per_job is not None:
        middlewares.append(per_job)
    return middlewares


def run_job(job: CommandJob, middlewares: Sequence[Middleware] = ()) -> Execution:
    """
    ミドルウェアチェーン付きでジョブを 1回実行し、実行記録を返す。

    ジョブの失敗は Execution.failed / error に記録され、例外としては送出しない。
    """
    execution = Execution()
    ctx = JobContext(job, execution, middlewares)
    ctx.start()

    try:
        ctx.next()
    except Exception as exc:  # noqa: BLE001 - 失敗は Execution に記録して呼び出し元に返す
        ctx.stop(exc)
    else:
        ctx.stop(None)

    if execution.failed:
        logger.error("Job %r failed: %s", job.name, execution.error)
    else:
        logger.info("Job %r finished in %s", job.name, execution.duration)
    return execution


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    簡易 CLI エントリーポイント。

    例:
        python -m jobhooks.jobs.runner --name backup --command "backup.sh" \
            --webhook-error-names slack-errors

    ジョブの終了コード: 成功 0 / 失敗 1。保留中の配信は終了前に待ち合わせる。
    """
    parser = argparse.ArgumentParser(description="Run a job with webhook notifications")
    parser.add_argument("--name", required=True, help="ジョブ名")
    parser.add_argument("--command", required=True, help="実行するシェルコマンド")
    parser.add_argument("--schedule", default="", help="スケジュール式（通知の表示用）")
    parser.add_argument(
        "--webhook-config-file",
        default=None,
        help="Webhook 設定ファイル（環境変数 WEBHOOK_CONFIG が優先）",
    )
    parser.add_argument("--webhook-error-names", default="", help="失敗時に送る Webhook 名")
    parser.add_argument("--webhook-info-names", default="", help="成功時に送る Webhook 名")
    parser.add_argument("--log-level", default="INFO", help="ログレベル")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = get_webhook_settings(args.webhook_config_file)
    executor = DeliveryExecutor(max_workers=settings.max_workers)
    loaded = load_webhooks(executor, settings=settings)

    middlewares = build_middlewares(
        PerJobWebhookConfig(
            error_names=args.webhook_error_names,
            info_names=args.webhook_info_names,
        ),
        loaded.registry,
        loaded.dispatchers,
        executor,
    )

    job = CommandJob(name=args.name, command=args.command, schedule=args.schedule)
    try:
        execution = run_job(job, middlewares)
    finally:
        executor.shutdown(wait=True)

    return 1 if execution.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
