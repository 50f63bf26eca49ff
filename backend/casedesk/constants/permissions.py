"""Permission codes and role presets for the case desk.
Never rename a code silently; add the new one and migrate role grants.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['TASK', 'QUEUE', 'ROUTING', 'ADMIN']

SERVICE_ACTIONS = {
    'TASK': ['READ', 'CREATE', 'CLAIM', 'UPDATE', 'COMMENT'],
    'QUEUE': ['READ', 'MANAGE'],
    'ROUTING': ['READ', 'MANAGE'],
    'ADMIN': ['USER.MANAGE', 'AUDIT.READ'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_PRESETS: Dict[str, List[str]] = {
    # front desk: submits requests and follows up on their own
    'agent': ['TASK.READ', 'TASK.CREATE', 'TASK.UPDATE', 'TASK.COMMENT'],
    'handler': ['TASK.READ', 'TASK.CREATE', 'TASK.CLAIM', 'TASK.UPDATE', 'TASK.COMMENT'],
    'supervisor': [
        'TASK.READ', 'TASK.CREATE', 'TASK.CLAIM', 'TASK.UPDATE', 'TASK.COMMENT',
        'QUEUE.READ', 'QUEUE.MANAGE',
        'ROUTING.READ', 'ROUTING.MANAGE',
    ],
    'admin': ['*'],
}
