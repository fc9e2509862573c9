# backend/jobhooks/webhooks/templating.py

"""
Webhook のテンプレートレンダリング。

テンプレートは Go の text/template 形式で書く（構文は dialect モジュールを参照）:

    Job {{.JobName}} {{if .Failed}}failed{{else}}completed{{end}} in {{.Duration}}
    {{.Stdout | truncate 200 | jsonEscape}}
    {{formatTime "2006-01-02T15:04:05Z07:00" .StartTime}}

テンプレートはユーザーが設定ファイルに書く信頼できない入力のため、
Jinja2 のソースに変換したうえでサンドボックス環境 + StrictUndefined でレンダリングする。

出力の表記は text/template に合わせる（真偽値は true / false、時刻は "2006-01-02 15:04:05 +0000 UTC"）。
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from jinja2 import StrictUndefined, Template, TemplateError, pass_context
from jinja2.runtime import Context
from jinja2.sandbox import SandboxedEnvironment

from .dialect import ROOT_VARIABLE, translate
from .exceptions import WebhookTemplateError, WebhookTemplateResultInvalidError
from .schemas import ExecutionSnapshot, StructuredBody, TextBody, WebhookBody, WebhookDefinition
from .timeformat import DEFAULT_LAYOUT, RFC3339_NANO, format_go_time

STATUS_SUCCESS = 0
STATUS_FAILURE = 1
STATUS_SKIPPED = 2

COLOR_SUCCESS = "#00FF00"
COLOR_FAILURE = "#FF0000"
COLOR_SKIPPED = "#FFA500"

_TRUNCATION_MARKER = "..."


@dataclass(frozen=True)
class RenderedRequest:
    """レンダリング済みの HTTP リクエスト 1件分。"""

    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[bytes] = None


def _go_value(value: Any) -> Any:
    """出力時の表記を text/template に合わせる。"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<no value>"
    if isinstance(value, datetime):
        return format_go_time(value, DEFAULT_LAYOUT)
    return value


# ---- ヘルパー関数 ----------------------------------------------------------
#
# 引数の順序はテンプレートでの呼び出し順（パイプで渡した値が最後の引数）に合わせる:
#   {{.Stdout | truncate 200}}  ->  truncate(200, Stdout)


def upper(value: Any) -> str:
    return str(value).upper()


def lower(value: Any) -> str:
    return str(value).lower()


def trim(value: Any) -> str:
    return str(value).strip()


def truncate(length: int, value: Any) -> str:
    """
    文字列を length 文字以内に切り詰める。

    切り詰めが発生した場合は末尾を "..." にする（length <= 3 の場合は単純に切るだけ）。
    """
    text = str(value)
    length = int(length)
    if len(text) <= length:
        return text
    if length <= len(_TRUNCATION_MARKER):
        return text[: max(length, 0)]
    return text[: length - len(_TRUNCATION_MARKER)] + _TRUNCATION_MARKER


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_go_time(value, RFC3339_NANO)
    return str(value)


def to_json(value: Any) -> str:
    """任意の値を JSON テキストにする。"""
    return json.dumps(value, ensure_ascii=False, default=_json_default)


def json_escape(value: Any) -> str:
    """JSON 文字列としてエスケープした中身を返す（前後のダブルクォートは付けない）。"""
    return json.dumps(str(value), ensure_ascii=False)[1:-1]


def format_time(layout: str, value: datetime) -> str:
    """datetime を Go 形式のレイアウト（例: "2006-01-02 15:04"）で整形する。"""
    return format_go_time(value, str(layout))


def unix_time(value: datetime) -> int:
    return int(value.timestamp())


def default(fallback: Any, value: Any) -> Any:
    """値が空なら fallback を返す。"""
    if value is None or value == "":
        return fallback
    return value


def _status_flags(context: Context, snapshot: Optional[ExecutionSnapshot]) -> Tuple[bool, bool]:
    if isinstance(snapshot, ExecutionSnapshot):
        return snapshot.failed, snapshot.skipped
    return bool(context.get("Failed")), bool(context.get("Skipped"))


@pass_context
def status_code(context: Context, snapshot: Optional[ExecutionSnapshot] = None) -> int:
    """0=成功 / 1=失敗 / 2=スキップ（スキップを優先）。"""
    failed, skipped = _status_flags(context, snapshot)
    if skipped:
        return STATUS_SKIPPED
    if failed:
        return STATUS_FAILURE
    return STATUS_SUCCESS


@pass_context
def color_hex(context: Context, snapshot: Optional[ExecutionSnapshot] = None) -> str:
    """status_code と同じ判定で、Slack / Discord の色指定向けの16進カラーを返す。"""
    failed, skipped = _status_flags(context, snapshot)
    if skipped:
        return COLOR_SKIPPED
    if failed:
        return COLOR_FAILURE
    return COLOR_SUCCESS


# ---- 組み込み関数（and / or / 比較など） ------------------------------------


def and_(first: Any, *rest: Any) -> Any:
    """最初の偽の値、すべて真なら最後の値を返す。"""
    for value in (first, *rest):
        if not value:
            return value
    return rest[-1] if rest else first


def or_(first: Any, *rest: Any) -> Any:
    """最初の真の値、すべて偽なら最後の値を返す。"""
    for value in (first, *rest):
        if value:
            return value
    return rest[-1] if rest else first


def not_(value: Any) -> bool:
    return not value


def eq(first: Any, *others: Any) -> bool:
    """first がいずれかと等しければ True。"""
    return any(first == other for other in others)


def ne(left: Any, right: Any) -> bool:
    return left != right


def lt(left: Any, right: Any) -> bool:
    return left < right


def le(left: Any, right: Any) -> bool:
    return left <= right


def gt(left: Any, right: Any) -> bool:
    return left > right


def ge(left: Any, right: Any) -> bool:
    return left >= right


def length(value: Any) -> int:
    return len(value)


def index(item: Any, *keys: Any) -> Any:
    for key in keys:
        item = item[key]
    return item


def sprint(*args: Any) -> str:
    """どちらも文字列でない値の間にだけ空白を入れて連結する。"""
    parts = []
    for position, value in enumerate(args):
        if position and not isinstance(value, str) and not isinstance(args[position - 1], str):
            parts.append(" ")
        parts.append(str(_go_value(value)))
    return "".join(parts)


def sprintf(layout: str, *args: Any) -> str:
    """printf 形式で整形する。%v は値の既定の表記。"""
    return str(layout).replace("%v", "%s") % tuple(_go_value(arg) for arg in args)


_GLOBALS = {
    "upper": upper,
    "lower": lower,
    "trim": trim,
    "truncate": truncate,
    "json": to_json,
    "jsonEscape": json_escape,
    "formatTime": format_time,
    "unixTime": unix_time,
    "default": default,
    "statusCode": status_code,
    "colorHex": color_hex,
    "and_": and_,
    "or_": or_,
    "not_": not_,
    "eq": eq,
    "ne": ne,
    "lt": lt,
    "le": le,
    "gt": gt,
    "ge": ge,
    "len": length,
    "index": index,
    "print": sprint,
    "printf": sprintf,
}


def build_environment() -> SandboxedEnvironment:
    """
    Webhook テンプレート用の Jinja2 環境を構築する。

    - autoescape なし（HTML ではなく URL / ヘッダー / JSON を生成するため）
    - 未定義変数はエラー
    - 末尾の改行はそのまま残す
    """
    env = SandboxedEnvironment(
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        finalize=_go_value,
    )
    env.globals.update(_GLOBALS)
    return env


_environment = build_environment()


@lru_cache(maxsize=256)
def _compile(source: str, json_escaped: bool = False) -> Template:
    return _environment.from_string(translate(source, json_escaped=json_escaped))


# ---- レンダリング ----------------------------------------------------------


def render_template(source: str, snapshot: ExecutionSnapshot, *, json_escaped: bool = False) -> str:
    """
    テンプレート文字列を実行スナップショットでレンダリングする。

    :param json_escaped: source が JSON テキスト（構造化ボディ）の場合 True
    :raises WebhookTemplateError: パースエラー / 実行時エラー
    """
    try:
        template = _compile(source, json_escaped)
    except TemplateError as exc:
        raise WebhookTemplateError(f"template parse error: {exc}") from exc

    context = snapshot.to_template_data()
    context[ROOT_VARIABLE] = snapshot
    try:
        return template.render(context)
    except Exception as exc:  # noqa: BLE001 - ヘルパー内の TypeError 等もテンプレートエラーとして扱う
        raise WebhookTemplateError(f"template execution error: {exc}") from exc


def render_body(body: Optional[WebhookBody], snapshot: ExecutionSnapshot) -> Optional[bytes]:
    """
    ボディをレンダリングしてバイト列にする。

    - TextBody: そのままレンダリング
    - StructuredBody: JSON テキスト化 → レンダリング → JSON として再パースできることを確認

    :raises WebhookTemplateError: パースエラー / 実行時エラー
    :raises WebhookTemplateResultInvalidError: 構造化ボディの結果が JSON として不正
    """
    if body is None:
        return None

    if isinstance(body, TextBody):
        return render_template(body.text, snapshot).encode("utf-8")

    if isinstance(body, StructuredBody):
        source = json.dumps(body.value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
        rendered = render_template(source, snapshot, json_escaped=True)
        try:
            json.loads(rendered)
        except ValueError as exc:
            raise WebhookTemplateResultInvalidError(
                f"template resulted in invalid JSON: {exc}"
            ) from exc
        return rendered.encode("utf-8")

    raise WebhookTemplateError(f"unsupported body type: {type(body).__name__}")


def render_webhook_request(
    definition: WebhookDefinition,
    snapshot: ExecutionSnapshot,
) -> RenderedRequest:
    """
    定義の url / headers / body をまとめてレンダリングする。

    どのフィールドで失敗したかを例外の webhook_name / field に格納する。
    """

    def _annotate(exc: WebhookTemplateError, field: str) -> None:
        exc.webhook_name = definition.name
        exc.field = field

    try:
        url = render_template(definition.url, snapshot)
    except WebhookTemplateError as exc:
        _annotate(exc, "url")
        raise

    headers: Dict[str, str] = {}
    for key, value in definition.headers.items():
        try:
            headers[key] = render_template(value, snapshot)
        except WebhookTemplateError as exc:
            _annotate(exc, f"header:{key}")
            raise

    try:
        body = render_body(definition.body, snapshot)
    except WebhookTemplateError as exc:
        _annotate(exc, "body")
        raise

    return RenderedRequest(
        method=definition.method,
        url=url,
        headers=headers,
        body=body,
    )
