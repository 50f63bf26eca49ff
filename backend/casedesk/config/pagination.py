from casedesk.errors import ValidationError

DEFAULT_LIMIT = 50
MAX_LIMIT = 200

def normalize_pagination(limit_raw, offset_raw):
    """Clamp raw query-string limit/offset into the supported window."""
    try:
        limit = int(limit_raw) if limit_raw is not None else DEFAULT_LIMIT
        offset = int(offset_raw) if offset_raw is not None else 0
    except (TypeError, ValueError):
        raise ValidationError('limit/offset must be int')
    return max(1, min(limit, MAX_LIMIT)), max(0, offset)
