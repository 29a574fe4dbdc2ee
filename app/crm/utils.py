from __future__ import annotations

import math
from typing import Any

from flask import request

from app.crm.errors import ValidationFailed


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def request_payload() -> dict[str, Any]:
    """Form fields or a JSON object body, whichever the client sent."""
    if request.is_json:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationFailed("请求体必须是 JSON 对象")
        return data
    return request.form.to_dict()


def parse_page_args(default_per_page: int = 10, max_per_page: int = 1000) -> tuple[int, int]:
    try:
        page = int(request.args.get("page") or "1")
        per_page = int(request.args.get("per_page") or str(default_per_page))
    except ValueError:
        raise ValidationFailed("page and per_page must be integers")
    return max(page, 1), min(max(per_page, 1), max_per_page)


def total_pages(total_count: int, per_page: int) -> int:
    return math.ceil(total_count / per_page) if per_page else 0
