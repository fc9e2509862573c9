# backend/jobhooks/webhooks/timeformat.py

"""
Go 形式の時刻レイアウトで datetime を整形する。

レイアウトは参照時刻 "Mon Jan 2 15:04:05 MST 2006" の各要素で書式を表す:

    format_go_time(value, "2006-01-02 15:04")      -> "2025-01-02 03:04"
    format_go_time(value, RFC3339)                 -> "2025-01-02T03:04:05Z"

参照時刻の要素に当たらない文字はそのまま出力する。
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Tuple

RFC3339 = "2006-01-02T15:04:05Z07:00"
RFC3339_NANO = "2006-01-02T15:04:05.999999999Z07:00"
# テンプレートで時刻をそのまま出力した場合の表記
DEFAULT_LAYOUT = "2006-01-02 15:04:05.999999999 -0700 MST"

_LONG_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
_LONG_DAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

# 同じ文字で始まる要素は長いものを先に判定する
_TOKENS = (
    "January", "Monday",
    "Z07:00:00", "Z070000", "Z07:00", "Z0700", "Z07",
    "-07:00:00", "-070000", "-07:00", "-0700", "-07",
    "2006", "002", "Jan", "Mon", "MST",
    "01", "02", "03", "04", "05", "06", "_2", "15", "PM", "pm",
    "1", "2", "3", "4", "5",
)


def _split_layout(layout: str) -> List[Tuple[bool, str]]:
    """レイアウトを (要素かどうか, 文字列) の列に分解する。"""
    chunks: List[Tuple[bool, str]] = []
    i = 0
    while i < len(layout):
        # "_2006" は "_" + 年
        if layout.startswith("_2006", i):
            chunks.append((False, "_"))
            i += 1
            continue

        ch = layout[i]
        if ch in ".," and i + 1 < len(layout) and layout[i + 1] in "09":
            j = i + 1
            while j < len(layout) and layout[j] == layout[i + 1]:
                j += 1
            if j == len(layout) or not layout[j].isdigit():
                chunks.append((True, layout[i:j]))
                i = j
                continue

        for token in _TOKENS:
            if layout.startswith(token, i):
                chunks.append((True, token))
                i += len(token)
                break
        else:
            chunks.append((False, ch))
            i += 1
    return chunks


def _offset(value: datetime, token: str) -> str:
    offset = value.utcoffset() or timedelta(0)
    if token.startswith("Z") and not offset:
        return "Z"

    seconds = int(offset.total_seconds())
    sign = "-" if seconds < 0 else "+"
    hours, rest = divmod(abs(seconds), 3600)
    minutes, secs = divmod(rest, 60)

    body = token.lstrip("Z-")
    if body == "07":
        return f"{sign}{hours:02d}"
    if body == "0700":
        return f"{sign}{hours:02d}{minutes:02d}"
    if body == "07:00":
        return f"{sign}{hours:02d}:{minutes:02d}"
    if body == "070000":
        return f"{sign}{hours:02d}{minutes:02d}{secs:02d}"
    return f"{sign}{hours:02d}:{minutes:02d}:{secs:02d}"


def _fraction(value: datetime, token: str) -> str:
    # datetime はマイクロ秒精度なので、ナノ秒の下 3桁は常に 0
    digits = f"{value.microsecond * 1000:09d}"
    width = len(token) - 1
    if token[1] == "0":
        return token[0] + digits[:width]

    trimmed = digits[:width].rstrip("0")
    return token[0] + trimmed if trimmed else ""


def _zone_name(value: datetime) -> str:
    if value.tzinfo is None:
        return "UTC"
    name = value.tzname()
    # timezone(timedelta(hours=9)) は "UTC+09:00" を返すので略称として扱わない
    if name and name[0].isalpha() and not name.startswith(("UTC+", "UTC-")):
        return name
    return _offset(value, "-0700")


def _format_token(value: datetime, token: str) -> str:
    hour12 = value.hour % 12 or 12
    simple = {
        "2006": f"{value.year:04d}",
        "06": f"{value.year % 100:02d}",
        "January": _LONG_MONTHS[value.month - 1],
        "Jan": _LONG_MONTHS[value.month - 1][:3],
        "01": f"{value.month:02d}",
        "1": str(value.month),
        "Monday": _LONG_DAYS[value.weekday()],
        "Mon": _LONG_DAYS[value.weekday()][:3],
        "02": f"{value.day:02d}",
        "_2": f"{value.day:2d}",
        "2": str(value.day),
        "002": f"{value.timetuple().tm_yday:03d}",
        "15": f"{value.hour:02d}",
        "03": f"{hour12:02d}",
        "3": str(hour12),
        "04": f"{value.minute:02d}",
        "4": str(value.minute),
        "05": f"{value.second:02d}",
        "5": str(value.second),
        "PM": "PM" if value.hour >= 12 else "AM",
        "pm": "pm" if value.hour >= 12 else "am",
    }
    if token in simple:
        return simple[token]
    if token == "MST":
        return _zone_name(value)
    if token[0] in "Z-":
        return _offset(value, token)
    return _fraction(value, token)


def format_go_time(value: datetime, layout: str) -> str:
    """datetime を Go 形式のレイアウトで文字列にする。タイムゾーンなしの値は UTC として扱う。"""
    return "".join(
        _format_token(value, text) if is_token else text
        for is_token, text in _split_layout(layout)
    )
