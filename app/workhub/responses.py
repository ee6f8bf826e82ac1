from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from flask import jsonify, request

from app.workhub.errors import BadRequestError

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
MIN_SEARCH_LENGTH = 2


def success(data: Any = None, message: str = "Success", status: int = 200):
    body: dict[str, Any] = {"status": status, "success": True, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


@dataclass(frozen=True)
class PageParams:
    page: int
    page_size: int
    search_string: str | None

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def search_regex(self) -> str | None:
        return re.escape(self.search_string) if self.search_string else None

    @property
    def like_pattern(self) -> str | None:
        return f"%{self.search_string}%" if self.search_string else None


def _to_int(raw: Any, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def parse_page_params(args: Any = None) -> PageParams:
    """Read page/page_size/search_string from a mapping (defaults to the query string)."""
    if args is None:
        args = request.args
    page = _to_int(args.get("page"), DEFAULT_PAGE)
    page_size = _to_int(args.get("page_size"), DEFAULT_PAGE_SIZE)
    if page < 1:
        raise BadRequestError("Page must be greater than 0")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise BadRequestError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
    search = args.get("search_string")
    search = search.strip() if isinstance(search, str) else None
    if search is not None and search == "":
        search = None
    if search is not None and len(search) < MIN_SEARCH_LENGTH:
        raise BadRequestError(f"Search string must be at least {MIN_SEARCH_LENGTH} characters long")
    return PageParams(page=page, page_size=page_size, search_string=search)


def pagination_info(total_records: int, params: PageParams) -> dict:
    total_pages = math.ceil(total_records / params.page_size) if total_records else 0
    return {
        "total_records": total_records,
        "total_pages": total_pages,
        "page_size": params.page_size,
        "current_page": params.page,
        "next_page": params.page + 1 if params.page < total_pages else None,
        "prev_page": params.page - 1 if params.page > 1 else None,
    }


def paginated(records: list, total_records: int, params: PageParams, message: str = "Records fetched successfully"):
    return success(
        {"pagination_info": pagination_info(total_records, params), "records": records},
        message=message,
    )


def json_body() -> dict:
    """Request JSON as a dict; anything else is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise BadRequestError("Request body must be a JSON object")
    return payload
