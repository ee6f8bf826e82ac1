"""
CSV rendering for list exports.

Rows are plain dicts (already serialized). Nested dicts are flattened into
`parent_child` columns, lists collapse into a single "; "-joined cell.
"""
from __future__ import annotations

import csv
import io
import re
from datetime import date, datetime
from typing import Any, Iterable

from flask import Response

_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")


def humanize_header(key: str) -> str:
    spaced = _CAMEL_RE.sub(r"\1 \2", key.replace("_", " "))
    return " ".join(w[:1].upper() + w[1:].lower() for w in spaced.split())


def _is_date_key(key: str) -> bool:
    k = key.lower()
    return "date" in k or "_at" in k


def _format_date(value: Any) -> str:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, (datetime, date)):
        return f"{value.month}-{value.day}-{value.year}"
    return str(value)


def _list_item_text(item: Any) -> str:
    if isinstance(item, dict):
        for k in ("name", "title"):
            if item.get(k):
                return str(item[k])
        return " ".join(str(v) for v in item.values() if v is not None)
    return format_cell("", item)


def format_cell(key: str, value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, list):
        return "; ".join(_list_item_text(v) for v in value)
    if _is_date_key(key) and isinstance(value, (str, datetime, date)):
        return _format_date(value)
    return str(value)


def flatten_row(row: dict, prefix: str = "") -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in row.items():
        key = f"{prefix}_{k}" if prefix else k
        if isinstance(v, dict):
            out.update(flatten_row(v, key))
        else:
            out[key] = v
    return out


def generate_csv(rows: Iterable[dict]) -> str:
    flat = [flatten_row(r) for r in rows]
    if not flat:
        return ""
    columns: list[str] = []
    for r in flat:
        for k in r:
            if k not in columns:
                columns.append(k)
    lines = [_csv_line([humanize_header(c) for c in columns])]
    for r in flat:
        lines.append(_csv_line([format_cell(c, r.get(c)) for c in columns]))
    return "\n".join(lines)


def _csv_line(cells: list[str]) -> str:
    # the writer quotes a cell only when it holds a lineterminator char, so CR and LF both go in it
    buf = io.StringIO()
    csv.writer(buf, lineterminator="\r\n").writerow(cells)
    return buf.getvalue()[:-2]


def csv_filename(name: str, now: datetime | None = None) -> str:
    now = now or datetime.utcnow()
    stamp = re.sub(r"[:.]", "-", now.isoformat(timespec="milliseconds"))
    return f"{name}_{stamp}.csv"


def csv_response(rows: Iterable[dict], name: str) -> Response:
    body = generate_csv(rows)
    resp = Response(body, status=200, mimetype="text/csv")
    resp.headers["Content-Type"] = "text/csv; charset=utf-8"
    resp.headers["Content-Disposition"] = f'attachment; filename="{csv_filename(name)}"'
    resp.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp
