# backend/jobhooks/webhooks/dialect.py

"""
Go の text/template 形式で書かれた Webhook テンプレートを Jinja2 のテンプレートソースに変換する。

設定ファイルのテンプレートは次の構文で書く:

- 変数展開:     {{.JobName}} / {{ .JobName }}
- 条件分岐:     {{if .Failed}}...{{else if .Skipped}}...{{else}}...{{end}}
- 関数呼び出し: {{formatTime "2006-01-02" .StartTime}} / {{statusCode .}}
- パイプライン: {{.Stdout | truncate 200 | jsonEscape}}（前段の値は最後の引数になる）
- 括弧:         {{if and .Failed (ne .Error "")}}...{{end}}
- コメント:     {{/* ... */}}
- 空白の除去:   {{- .JobName -}}

"." は実行スナップショット全体を指す。range / with / define / 変数は扱わない（パースエラー）。

変換結果は templating のサンドボックス環境でコンパイルする。
"""

from __future__ import annotations

import ast
import json
import re
from typing import List, Optional, Tuple

from jinja2 import TemplateSyntaxError

# "." を参照するためのテンプレート変数名
ROOT_VARIABLE = "__root__"

# テンプレート内の関数名 → Jinja2 側のグローバル名（and / or / not は Jinja2 の予約語）
FUNCTION_NAMES = {
    "upper": "upper",
    "lower": "lower",
    "trim": "trim",
    "truncate": "truncate",
    "json": "json",
    "jsonEscape": "jsonEscape",
    "formatTime": "formatTime",
    "unixTime": "unixTime",
    "default": "default",
    "statusCode": "statusCode",
    "colorHex": "colorHex",
    "and": "and_",
    "or": "or_",
    "not": "not_",
    "eq": "eq",
    "ne": "ne",
    "lt": "lt",
    "le": "le",
    "gt": "gt",
    "ge": "ge",
    "len": "len",
    "index": "index",
    "print": "print",
    "printf": "printf",
}

_UNSUPPORTED_ACTIONS = frozenset(
    {"range", "with", "define", "template", "block", "break", "continue"}
)

_LEFT_DELIM = "{{"
_RIGHT_DELIM = "}}"

_TOKEN_RE = re.compile(
    r"""
    (?P<space>\s+)
  | (?P<string>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*')
  | (?P<raw>`[^`]*`)
  | (?P<number>[-+]?(?:\d+\.\d*|\.\d+|\d+)(?:[eE][-+]?\d+)?)
  | (?P<field>(?:\.[A-Za-z_][A-Za-z0-9_]*)+)
  | (?P<dot>\.)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_]*)
  | (?P<pipe>\|)
  | (?P<lparen>\()
  | (?P<rparen>\))
    """,
    re.VERBOSE,
)

_JSON_ESCAPES = {
    '"': '"',
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}

Token = Tuple[str, str]


def jinja_literal(text: str) -> str:
    """任意の文字列を Jinja2 の文字列リテラルにする。"""
    return json.dumps(text, ensure_ascii=False)


# ---- 字句解析 --------------------------------------------------------------


def _read_char(source: str, i: int, json_escaped: bool) -> Tuple[str, int]:
    """
    source[i] から 1文字読む。json_escaped の場合は JSON のエスケープを解釈する。
    """
    if not json_escaped or source[i] != "\\" or i + 1 >= len(source):
        return source[i], 1

    code = source[i + 1]
    if code == "u" and i + 6 <= len(source):
        try:
            return chr(int(source[i + 2 : i + 6], 16)), 6
        except ValueError:
            return source[i], 1
    if code in _JSON_ESCAPES:
        return _JSON_ESCAPES[code], 2
    return source[i], 1


def _scan_action(source: str, pos: int, lineno: int, json_escaped: bool) -> Tuple[str, int]:
    """
    アクション本体（"{{" の直後から）を読み、(本体, "}}" の位置) を返す。

    文字列リテラル内の "}}" では終わらない。
    """
    chars: List[str] = []
    quote: Optional[str] = None
    i = pos

    while i < len(source):
        if quote is None and source.startswith(_RIGHT_DELIM, i):
            return "".join(chars), i

        ch, width = _read_char(source, i, json_escaped)
        chars.append(ch)
        i += width

        if quote is None:
            if ch in "\"'`":
                quote = ch
        elif ch == "\\" and quote != "`" and i < len(source):
            escaped, width = _read_char(source, i, json_escaped)
            chars.append(escaped)
            i += width
        elif ch == quote:
            quote = None

    raise TemplateSyntaxError("unclosed action", lineno)


def _lex(source: str, json_escaped: bool) -> List[Tuple[str, str, int]]:
    """
    テンプレートを ("text", 文字列, 行) / ("action", 本体, 行) の列に分解する。

    "{{- " / " -}}" による前後の空白除去もここで適用する。
    """
    pieces: List[Tuple[str, str, int]] = []
    pos = 0
    trim_next = False

    while True:
        start = source.find(_LEFT_DELIM, pos)
        text = source[pos:] if start < 0 else source[pos:start]
        if trim_next:
            text = text.lstrip()
            trim_next = False
        lineno = source.count("\n", 0, pos) + 1

        if start < 0:
            pieces.append(("text", text, lineno))
            return pieces

        inner_start = start + len(_LEFT_DELIM)
        if source.startswith("-", inner_start) and source[inner_start + 1 : inner_start + 2].isspace():
            text = text.rstrip()
            inner_start += 2
        pieces.append(("text", text, lineno))

        lineno = source.count("\n", 0, start) + 1
        if source.startswith("/*", inner_start):
            end = source.find("*/", inner_start)
            if end < 0:
                raise TemplateSyntaxError("unclosed comment", lineno)
            rest = end + 2
            if source.startswith(" -" + _RIGHT_DELIM, rest):
                trim_next = True
                rest += 2
            if not source.startswith(_RIGHT_DELIM, rest):
                raise TemplateSyntaxError("comment ends before closing delimiter", lineno)
            pos = rest + len(_RIGHT_DELIM)
            continue

        inner, end = _scan_action(source, inner_start, lineno, json_escaped)
        if inner.endswith("-") and inner[-2:-1].isspace():
            trim_next = True
            inner = inner[:-1]
        pieces.append(("action", inner, lineno))
        pos = end + len(_RIGHT_DELIM)


def _tokenize(text: str, lineno: int) -> List[Token]:
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            raise TemplateSyntaxError(f"unexpected {text[pos]!r} in command", lineno)
        kind = match.lastgroup
        if kind != "space":
            tokens.append((kind, match.group()))
        pos = match.end()
    return tokens


# ---- 構文解析 --------------------------------------------------------------


class _PipelineParser:
    """1つのパイプラインを Jinja2 の式に変換する。"""

    def __init__(self, tokens: List[Token], lineno: int) -> None:
        self._tokens = tokens
        self._pos = 0
        self._lineno = lineno

    def parse(self) -> str:
        expression = self._pipeline()
        if self._pos < len(self._tokens):
            raise self._error(f"unexpected {self._tokens[self._pos][1]!r} in operand")
        return expression

    def _error(self, message: str) -> TemplateSyntaxError:
        return TemplateSyntaxError(message, self._lineno)

    def _peek(self) -> Optional[str]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos][0]
        return None

    def _pipeline(self) -> str:
        expression: Optional[str] = None
        while True:
            expression = self._command(expression)
            if self._peek() != "pipe":
                return expression
            self._pos += 1

    def _command(self, piped: Optional[str]) -> str:
        operands: List[Token] = []
        while self._peek() not in (None, "pipe", "rparen"):
            operands.append(self._operand())

        if not operands:
            raise self._error("missing command in pipeline" if piped else "missing value for command")

        kind, head = operands[0]
        if kind == "func":
            args = [value if k == "value" else f"{value}()" for k, value in operands[1:]]
            if piped is not None:
                args.append(piped)
            return f"{head}({', '.join(args)})"

        if len(operands) > 1 or piped is not None:
            raise self._error(f"can't give argument to non-function {head}")
        return head

    def _operand(self) -> Token:
        kind, value = self._tokens[self._pos]
        self._pos += 1

        if kind == "field":
            return "value", value[1:]
        if kind == "dot":
            return "value", ROOT_VARIABLE
        if kind == "string":
            return "value", jinja_literal(ast.literal_eval(value))
        if kind == "raw":
            return "value", jinja_literal(value[1:-1])
        if kind == "number":
            return "value", value
        if kind == "ident":
            if value in ("true", "false"):
                return "value", value
            if value == "nil":
                return "value", "none"
            if value in FUNCTION_NAMES:
                return "func", FUNCTION_NAMES[value]
            raise self._error(f'function "{value}" not defined')
        if kind == "lparen":
            inner = self._pipeline()
            if self._peek() != "rparen":
                raise self._error("unclosed left paren")
            self._pos += 1
            return "value", f"({inner})"
        raise self._error(f"unexpected {value!r} in operand")


def _text(text: str) -> str:
    # Jinja2 のタグとして解釈されうるテキストは文字列リテラルとして出力する
    if "{%" in text or "{#" in text or "{{" in text or text.endswith("{"):
        return "{{ " + jinja_literal(text) + " }}"
    return text


def translate(source: str, *, json_escaped: bool = False) -> str:
    """
    テンプレートを Jinja2 のソースに変換する。

    :param json_escaped: source が JSON テキストの場合 True。アクション内の JSON エスケープ
        （\\" など）を元に戻してから解釈するため、構造化ボディの中でも "..." の文字列リテラルが使える。
    :raises TemplateSyntaxError: 構文が不正な場合
    """
    output: List[str] = []
    open_blocks: List[int] = []

    for kind, value, lineno in _lex(source, json_escaped):
        if kind == "text":
            output.append(_text(value))
            continue

        tokens = _tokenize(value, lineno)
        if not tokens:
            raise TemplateSyntaxError("missing value for command", lineno)

        head_kind, head = tokens[0]
        keyword = head if head_kind == "ident" else None

        if keyword == "if":
            condition = _PipelineParser(tokens[1:], lineno).parse()
            output.append("{% if " + condition + " %}")
            open_blocks.append(lineno)
        elif keyword == "else":
            if not open_blocks:
                raise TemplateSyntaxError("unexpected {{else}}", lineno)
            if len(tokens) == 1:
                output.append("{% else %}")
            elif tokens[1] == ("ident", "if"):
                condition = _PipelineParser(tokens[2:], lineno).parse()
                output.append("{% elif " + condition + " %}")
            else:
                raise TemplateSyntaxError(f"unexpected {tokens[1][1]!r} in else", lineno)
        elif keyword == "end":
            if not open_blocks or len(tokens) > 1:
                raise TemplateSyntaxError("unexpected {{end}}", lineno)
            open_blocks.pop()
            output.append("{% endif %}")
        elif keyword in _UNSUPPORTED_ACTIONS:
            raise TemplateSyntaxError(f"{{{{{keyword}}}}} is not supported", lineno)
        else:
            output.append("{{ " + _PipelineParser(tokens, lineno).parse() + " }}")

    if open_blocks:
        raise TemplateSyntaxError("unexpected EOF: missing {{end}}", open_blocks[-1])
    return "".join(output)
