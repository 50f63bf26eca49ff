from __future__ import annotations
from typing import Tuple
from flask import request
from casedesk.config.pagination import normalize_pagination


def pagination_args() -> Tuple[int, int]:
    """limit/offset from the current query string."""
    return normalize_pagination(request.args.get('limit'), request.args.get('offset'))


def build_list_payload(rows: list, total: int, limit: int, offset: int):
    return {
        'data': rows,
        'pagination': {
            'total': total,
            'limit': limit,
            'offset': offset,
            'returned': len(rows)
        }
    }
