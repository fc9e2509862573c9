# backend/jobhooks/webhooks/schemas.py

"""
Webhook 定義とテンプレート入力（実行スナップショット）のスキーマ定義。

- WebhookDefinition: 設定ファイル 1エントリ分。読み込み後は不変
- TextBody / StructuredBody: body の型（文字列 or JSON 値）を読み込み時に確定させたもの
- ExecutionSnapshot: ジョブ完了時に 1回だけ取得する、テンプレート用の読み取り専用データ

※ headers / url には認証トークンを含めることがあるため、
  WebhookDefinition をそのままログに出力しないこと。
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .durations import format_duration

DEFAULT_METHOD = "POST"
DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_RETRY_COUNT = 0
DEFAULT_RETRY_BACKOFF = "1s"


class WebhookType(str, Enum):
    """
    Webhook の種別。グローバルディスパッチャの送信判定に使う。

    - ERROR: ジョブ失敗時のみ
    - INFO: ジョブ成功時（失敗していない時）のみ
    - ALL: 結果に関わらず常に
    """

    ERROR = "error"
    INFO = "info"
    ALL = "all"


class RetryConfig(BaseModel):
    """リトライ設定。backoff は期間文字列のまま保持し、配信準備時に解釈する。"""

    model_config = ConfigDict(frozen=True)

    count: int = Field(
        DEFAULT_RETRY_COUNT,
        description="初回を除いたリトライ回数。0 ならリトライしない。",
    )
    backoff: str = Field(
        "",
        description="初回バックオフ（例: 1s, 500ms）。空なら 1s。試行ごとに倍になる。",
    )


class TextBody(BaseModel):
    """文字列テンプレートとしてそのままレンダリングするボディ。"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class StructuredBody(BaseModel):
    """JSON オブジェクト / 配列のボディ。JSON テキスト化してからレンダリングする。"""

    model_config = ConfigDict(frozen=True)

    kind: Literal["structured"] = "structured"
    value: Any


WebhookBody = Annotated[Union[TextBody, StructuredBody], Field(discriminator="kind")]


class WebhookDefinition(BaseModel):
    """
    設定ファイル上の Webhook 定義 1件。

    url / headers の値 / body はいずれもテンプレートとして配信ごとにレンダリングされる。
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = Field("", description="レジストリ上の識別子。同名は後勝ち。")
    type: WebhookType = Field(..., description="error / info / all のいずれか。必須。")
    active: bool = Field(False, description="False の定義は一切送信しない。")
    priority: int = Field(0, description="小さいほど先に実行される。")
    url: str = Field(..., description="送信先 URL テンプレート。必須。")
    method: str = Field(DEFAULT_METHOD, description="HTTP メソッド。")
    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="ヘッダー名 → 値テンプレート。",
    )
    body: Optional[WebhookBody] = Field(None, description="ボディテンプレート。")
    only_on_error: bool = Field(
        False,
        alias="onlyOnError",
        description="旧仕様のフラグ。True なら成功時の送信を抑止する。",
    )
    timeout: int = Field(DEFAULT_TIMEOUT_SECONDS, description="タイムアウト秒数。")
    retry: Optional[RetryConfig] = Field(None, description="リトライ設定。")

    @field_validator("method", mode="before")
    @classmethod
    def _default_method(cls, value: Any) -> Any:
        if not value:
            return DEFAULT_METHOD
        return str(value).upper()

    @field_validator("headers", mode="before")
    @classmethod
    def _default_headers(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("timeout", mode="before")
    @classmethod
    def _default_timeout(cls, value: Any) -> Any:
        return DEFAULT_TIMEOUT_SECONDS if not value else value

    @field_validator("body", mode="before")
    @classmethod
    def _resolve_body(cls, value: Any) -> Any:
        # 文字列 / JSON 値の判別はここで 1回だけ行う
        if value is None or isinstance(value, (TextBody, StructuredBody)):
            return value
        if isinstance(value, str):
            return TextBody(text=value)
        if isinstance(value, (dict, list)):
            return StructuredBody(value=value)
        raise ValueError(f"unsupported body type: {type(value).__name__}")


class ExecutionSnapshot(BaseModel):
    """
    ジョブ 1回分の実行結果のスナップショット。

    ジョブ完了時に 1回だけ生成し、以降は変更しない。
    同じ完了イベントに対する複数の配信タスクが同じインスタンスを共有する。
    """

    model_config = ConfigDict(frozen=True)

    job_name: str
    job_schedule: str = ""
    job_command: str = ""
    execution_id: str
    start_time: datetime
    end_time: datetime
    duration: timedelta = timedelta(0)
    is_running: bool = False
    failed: bool = False
    skipped: bool = False
    error: str = ""
    has_error: bool = False
    stdout: str = ""
    stderr: str = ""
    hostname: str = ""

    @property
    def success(self) -> bool:
        return not self.failed and not self.skipped

    @property
    def timestamp(self) -> str:
        """開始時刻の RFC 3339 表記（秒精度、UTC は Z）。"""
        text = self.start_time.isoformat(timespec="seconds")
        if text.endswith("+00:00"):
            text = text[: -len("+00:00")] + "Z"
        return text

    def to_template_data(self) -> Dict[str, Any]:
        """
        テンプレートに公開する変数の辞書を返す。

        変数名は設定ファイルの既存テンプレートとの互換性のため PascalCase。
        """
        return {
            "JobName": self.job_name,
            "JobSchedule": self.job_schedule,
            "JobCommand": self.job_command,
            "ExecutionID": self.execution_id,
            "StartTime": self.start_time,
            "EndTime": self.end_time,
            "Duration": format_duration(self.duration),
            "IsRunning": self.is_running,
            "Failed": self.failed,
            "Skipped": self.skipped,
            "Success": self.success,
            "Error": self.error,
            "HasError": self.has_error,
            "Stdout": self.stdout,
            "Stderr": self.stderr,
            "Hostname": self.hostname,
            "Timestamp": self.timestamp,
        }


class WebhookSummary(BaseModel):
    """
    API で返す Webhook 定義の概要。

    ヘッダー値・ボディにはトークン等が含まれ得るため、キー名とボディ種別のみ返す。
    """

    name: str = Field(..., description="定義名。")
    type: WebhookType = Field(..., description="種別。")
    active: bool = Field(..., description="有効かどうか。")
    priority: int = Field(..., description="実行順（小さいほど先）。")
    method: str = Field(..., description="HTTP メソッド。")
    url: str = Field(..., description="URL テンプレート（レンダリング前）。")
    header_names: List[str] = Field(default_factory=list, description="ヘッダー名一覧。")
    body_kind: Optional[str] = Field(None, description="text / structured / None。")
    only_on_error: bool = Field(False, description="旧仕様の onlyOnError フラグ。")
    timeout: int = Field(..., description="タイムアウト秒数。")
    retry_count: int = Field(0, description="リトライ回数。")
    retry_backoff: str = Field("", description="初回バックオフ（設定値そのまま）。")

    @classmethod
    def from_definition(cls, definition: WebhookDefinition) -> "WebhookSummary":
        retry = definition.retry
        return cls(
            name=definition.name,
            type=definition.type,
            active=definition.active,
            priority=definition.priority,
            method=definition.method,
            url=definition.url,
            header_names=sorted(definition.headers),
            body_kind=definition.body.kind if definition.body is not None else None,
            only_on_error=definition.only_on_error,
            timeout=definition.timeout,
            retry_count=retry.count if retry is not None else DEFAULT_RETRY_COUNT,
            retry_backoff=(retry.backoff if retry is not None and retry.backoff else DEFAULT_RETRY_BACKOFF),
        )
