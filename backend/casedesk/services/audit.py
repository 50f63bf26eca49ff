from __future__ import annotations
from typing import Any, Dict, Optional
from flask_jwt_extended import get_jwt_identity
from casedesk import get_db
from casedesk.models.audit import AuditLog
from casedesk.utils.timeutil import utcnow


def add_audit(action: str, entity: Optional[str] = None, entity_id: Optional[str] = None,
              meta: Optional[Dict[str, Any]] = None, actor_user_id: Optional[int] = None):
    """Stage an admin audit row in the current DB session.

    action: short action code e.g. ROUTING.RULE.UPSERT, USER.CREATE
    The caller's transaction boundary controls durability.
    """
    session = get_db()
    actor = actor_user_id
    if actor is None:
        try:
            ident = get_jwt_identity()
        except RuntimeError:
            ident = None  # no verified JWT in this context (background job, scripts)
        actor = int(ident) if ident is not None else None
    log = AuditLog(
        actor_user_id=actor,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        meta=dict(meta or {}),
        created_at=utcnow(),
    )
    session.add(log)
    return log
