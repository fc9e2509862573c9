# backend/jobhooks/jobs/__init__.py

"""
ジョブ実行まわりのモジュール群。

- context: 実行記録 / ミドルウェアチェーン / ジョブコンテキスト
- runner: シェルコマンドを Webhook 付きで実行するランナー（CLI）
"""

from .context import Execution, JobContext, SkippedExecution  # noqa: F401
