from __future__ import annotations
from flask import Blueprint, request
from casedesk import get_db
from casedesk.decorators.audit import audit_log
from casedesk.decorators.auth import require_permissions
from casedesk.errors import ValidationError
from casedesk.models.service_request import ServiceType
from casedesk.services.routing import RoutingRuleRegistry, rule_json
from casedesk.services.selector import AssignmentSelector
from casedesk.utils.validation import validate_choice

routing_bp = Blueprint('routing', __name__)


@routing_bp.get('/rules')
@require_permissions('ROUTING.READ')
def list_rules():
    rules = RoutingRuleRegistry(get_db()).list_with_assigned_users()
    return {'data': [rule_json(r) for r in rules]}


@routing_bp.get('/rules/<service_type>')
@require_permissions('ROUTING.READ')
def get_rule(service_type: str):
    return rule_json(RoutingRuleRegistry(get_db()).get(service_type))


@routing_bp.put('/rules/<service_type>')
@require_permissions('ROUTING.MANAGE')
@audit_log('ROUTING.RULE.UPSERT', entity='RoutingRule', entity_id_key='service_type',
           meta_keys=['is_active', 'auto_assign', 'assigned_users'])
def put_rule(service_type: str):
    data = request.json or {}
    for flag in ('is_active', 'auto_assign'):
        if flag in data and not isinstance(data[flag], bool):
            raise ValidationError(f'{flag} must be boolean')
    rule = RoutingRuleRegistry(get_db()).upsert(
        service_type,
        is_active=data.get('is_active', True),
        auto_assign=data.get('auto_assign', False),
        assigned_users=data.get('assigned_users') or [],
    )
    return rule_json(rule)


@routing_bp.delete('/rules/<service_type>')
@require_permissions('ROUTING.MANAGE')
@audit_log('ROUTING.RULE.DELETE', entity='RoutingRule', entity_id_arg='service_type')
def delete_rule(service_type: str):
    RoutingRuleRegistry(get_db()).delete(service_type)
    return {'status': 'deleted'}


@routing_bp.get('/rules/<service_type>/next-handler')
@require_permissions('ROUTING.READ')
def next_handler(service_type: str):
    st = validate_choice(service_type, ServiceType, 'service_type')
    user = AssignmentSelector(get_db()).preview(st)
    return {'service_type': st.value, 'handler': user.display() if user else None}
