from __future__ import annotations
from typing import Optional, Set
from flask_jwt_extended import get_jwt, get_jwt_identity
from sqlalchemy import select
from casedesk.models.authz import UserRole, RolePermission, Permission, Role
from casedesk.constants.permissions import ALL_PERMISSION_CODES, ROLE_PRESETS
from casedesk import get_db

WILDCARD = '*'


def current_permissions() -> Set[str]:
    claims = get_jwt()
    return set(claims.get('perms', []))


def has_permissions(*codes: str) -> bool:
    perms = current_permissions()
    if WILDCARD in perms:
        return True
    return all(c in perms for c in codes)


def current_user_id() -> Optional[int]:
    ident = get_jwt_identity()
    return int(ident) if ident is not None else None


def compute_effective_permissions(user_id: int, session=None):
    session = session or get_db()
    roles = session.execute(
        select(Role).join(UserRole, UserRole.role_id == Role.id).where(UserRole.user_id == user_id)
    ).scalars().all()
    role_ids = [r.id for r in roles]
    perm_codes = set()
    if role_ids:
        for p in session.execute(
            select(Permission).join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id.in_(role_ids))
        ).scalars():
            perm_codes.add(p.code)
    # preset wildcard roles (admin) expand to every known code
    if any(ROLE_PRESETS.get(r.name) == [WILDCARD] for r in roles):
        perm_codes.update(ALL_PERMISSION_CODES)
        perm_codes.add(WILDCARD)
    return {
        'roles': sorted(r.name for r in roles),
        'perms': sorted(perm_codes),
    }
