from __future__ import annotations
from flask import Blueprint, request
from casedesk import get_db
from casedesk.decorators.audit import audit_log
from casedesk.decorators.auth import require_permissions
from casedesk.errors import ValidationError
from casedesk.services.lifecycle import RequestLifecycle
from casedesk.services.policy import current_user_id
from casedesk.services.queues import QueueViews, page_json, request_json
from casedesk.services.routing import RoutingRuleRegistry, handler_json
from casedesk.utils.listing import pagination_args
from casedesk.utils.validation import parse_int

queue_bp = Blueprint('queue', __name__)


def _paging():
    limit, offset = pagination_args()
    return {'limit': limit, 'offset': offset, 'sort': request.args.get('sort')}


@queue_bp.get('/requests')
@require_permissions('QUEUE.READ')
def list_requests():
    views = QueueViews(get_db())
    status = request.args.get('status')
    if status:
        return page_json(views.by_status(status, **_paging()))
    return page_json(views.all(**_paging()))


@queue_bp.put('/requests/<int:request_id>/assign')
@require_permissions('QUEUE.MANAGE')
def assign(request_id: int):
    data = request.json or {}
    if data.get('user_id') is None:
        raise ValidationError('user_id required')
    lc = RequestLifecycle(get_db())
    lc.assign(request_id, parse_int(data['user_id'], 'user_id'), current_user_id())
    return request_json(lc.get(request_id))


@queue_bp.put('/requests/<int:request_id>/auto-assign')
@require_permissions('QUEUE.MANAGE')
def auto_assign(request_id: int):
    lc = RequestLifecycle(get_db())
    lc.auto_assign(request_id, current_user_id())
    return request_json(lc.get(request_id))


@queue_bp.put('/requests/<int:request_id>/unable-to-handle')
@require_permissions('QUEUE.MANAGE')
def unable_to_handle(request_id: int):
    lc = RequestLifecycle(get_db())
    lc.mark_unable_to_handle(request_id, current_user_id())
    return request_json(lc.get(request_id))


@queue_bp.put('/requests/<int:request_id>/complete')
@require_permissions('QUEUE.MANAGE')
def complete(request_id: int):
    lc = RequestLifecycle(get_db())
    lc.complete(request_id, current_user_id())
    return request_json(lc.get(request_id))


@queue_bp.put('/requests/<int:request_id>/investigate')
@require_permissions('QUEUE.MANAGE')
def investigate(request_id: int):
    lc = RequestLifecycle(get_db())
    lc.investigate(request_id, current_user_id())
    return request_json(lc.get(request_id))


@queue_bp.put('/requests/<int:request_id>/send-back')
@require_permissions('QUEUE.MANAGE')
def send_back(request_id: int):
    lc = RequestLifecycle(get_db())
    lc.send_back(request_id, current_user_id(), (request.json or {}).get('reason'))
    return request_json(lc.get(request_id))


# --- handler directory ---

@queue_bp.get('/handlers')
@require_permissions('QUEUE.READ')
def list_handlers():
    rows = RoutingRuleRegistry(get_db()).list_handlers()
    return {'data': [handler_json(r) for r in rows]}


@queue_bp.get('/handlers/by-service/<service_type>')
@require_permissions('QUEUE.READ')
def handlers_by_service(service_type: str):
    rows = RoutingRuleRegistry(get_db()).handlers_for(service_type)
    return {'data': [handler_json(r) for r in rows]}


@queue_bp.post('/handlers')
@require_permissions('QUEUE.MANAGE')
@audit_log('QUEUE.HANDLER.ADD', entity='QueueHandler', entity_id_key='id', meta_keys=['service_type', 'user_id'])
def add_handler():
    data = request.json or {}
    if not data.get('service_type') or data.get('user_id') is None:
        raise ValidationError('service_type and user_id required')
    row = RoutingRuleRegistry(get_db()).add_handler(data['service_type'], parse_int(data['user_id'], 'user_id'))
    return handler_json(row), 201


@queue_bp.delete('/handlers/<service_type>/<int:user_id>')
@require_permissions('QUEUE.MANAGE')
@audit_log('QUEUE.HANDLER.REMOVE', entity='QueueHandler',
           meta_builder=lambda data, rv, a, kw: {'service_type': kw.get('service_type'), 'user_id': kw.get('user_id')})
def remove_handler(service_type: str, user_id: int):
    RoutingRuleRegistry(get_db()).remove_handler(service_type, user_id)
    return {'status': 'deleted'}
