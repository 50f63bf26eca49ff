from __future__ import annotations
"""Admin audit decorator for route handlers.

Usage:

@audit_log('ROUTING.RULE.UPSERT', entity='RoutingRule', entity_id_key='service_type',
           meta_keys=['is_active', 'auto_assign', 'assigned_users'])
def put_rule(service_type): ...

Parameters:
  action: audit action code.
  entity: optional entity label (RoutingRule, User, QueueHandler).
  entity_id_key: key in the returned JSON object whose value becomes entity_id.
  entity_id_arg: path parameter used for entity_id when the payload lacks the key.
  meta_keys: keys projected from the returned JSON into meta.
  meta_builder: callable (data, rv, args, kwargs) -> dict; overrides meta_keys.

Only successful responses (status < 400) are recorded. The audit row is
written after the view's own commit, so an audit failure is logged and rolled
back without touching the response.
"""

import logging
from functools import wraps
from typing import Any, Callable, Iterable, Optional

from casedesk.services.audit import add_audit
from casedesk import get_db

logger = logging.getLogger(__name__)


def _extract_payload(rv: Any):
    """Return (data, status) for the usual Flask return shapes."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, 200


def audit_log(
    action: str,
    *,
    entity: Optional[str] = None,
    entity_id_key: Optional[str] = None,
    entity_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 400:
                return rv
            try:
                entity_id = None
                if isinstance(data, dict) and entity_id_key and entity_id_key in data:
                    entity_id = data.get(entity_id_key)
                elif entity_id_arg and entity_id_arg in kwargs:
                    entity_id = kwargs.get(entity_id_arg)
                meta = None
                if meta_builder:
                    meta = meta_builder(data, rv, args, kwargs)
                elif meta_keys and isinstance(data, dict):
                    meta = {k: data.get(k) for k in meta_keys if k in data}
                add_audit(action, entity, entity_id, meta)
                get_db().commit()
            except Exception:
                get_db().rollback()
                logger.exception('audit log %s failed', action)
            return rv
        return wrapper
    return outer
