# backend/jobhooks/webhooks/durations.py

"""
期間文字列（"500ms", "1m30s" など）と timedelta の相互変換ユーティリティ。

- parse_duration: 設定ファイルの retry.backoff などを秒数（float）に変換する
- format_duration: 実行時間をテンプレート向けの短い表記（"1m23s"）に変換する
"""

from __future__ import annotations

import re
from datetime import timedelta

from .exceptions import InvalidDurationError

# 単位 → 秒
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,  # µs (micro sign)
    "μs": 1e-6,  # μs (greek mu)
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_FULL_RE = re.compile(r"^(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|μs|ms|s|m|h))+$")


def parse_duration(raw: str) -> float:
    """
    "1s" / "500ms" / "1m30s" / "1.5s" のような期間文字列を秒数に変換する。

    - 単位なしで許されるのは "0" のみ
    - 負の期間は backoff として意味を持たないためエラーとする

    :raises InvalidDurationError: 解釈できない文字列の場合
    """
    text = (raw or "").strip()
    if text == "0":
        return 0.0
    if not text or not _FULL_RE.match(text):
        raise InvalidDurationError(f"invalid duration {raw!r}")

    total = 0.0
    for number, unit in _COMPONENT_RE.findall(text):
        total += float(number) * _UNIT_SECONDS[unit]
    return total


def _trim_fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def format_duration(value: timedelta) -> str:
    """
    timedelta を "1m23s" / "1.5s" / "250ms" / "0s" 形式に変換する。

    1時間以上の場合は "1h0m5s" のように h / m / s を全て出力する。
    """
    total_us = (value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds
    if total_us == 0:
        return "0s"

    sign = "-" if total_us < 0 else ""
    total_us = abs(total_us)

    if total_us < 1000:
        return f"{sign}{total_us}µs"
    if total_us < 1_000_000:
        return f"{sign}{_trim_fraction(total_us, 1000)}ms"

    hours, rest = divmod(total_us, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    text = f"{_trim_fraction(rest, 1_000_000)}s"
    if hours:
        text = f"{hours}h{minutes}m{text}"
    elif minutes:
        text = f"{minutes}m{text}"
    return sign + text
