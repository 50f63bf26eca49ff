from __future__ import annotations
from casedesk.errors import ValidationError

def apply_multi_sort(stmt, sort_expr: str | None, allowed: dict, default_order, tie_breaker):
    """Apply multi-field sort to a SQLAlchemy select.
    sort_expr: comma-separated tokens, each optionally prefixed with '-'.
    allowed: mapping of field key -> column object.
    default_order: clause used when no sort_expr is given.
    tie_breaker: column appended for deterministic ordering.
    """
    if not sort_expr:
        return stmt.order_by(default_order, tie_breaker.asc())
    clauses = []
    for raw in sort_expr.split(','):
        token = raw.strip()
        if not token:
            continue
        desc = token.startswith('-')
        key = token[1:] if desc else token
        col = allowed.get(key)
        if col is None:
            raise ValidationError(f'Invalid sort field {key}')
        clauses.append(col.desc() if desc else col.asc())
    clauses.append(tie_breaker.asc())
    return stmt.order_by(*clauses)
