from __future__ import annotations
from flask import Blueprint, request, abort
from casedesk import get_db
from casedesk.decorators.auth import require_permissions
from casedesk.errors import ValidationError, NotFound
from casedesk.services.lifecycle import RequestLifecycle
from casedesk.services.policy import current_user_id
from casedesk.services.queues import QueueViews, page_json, request_json, comment_json, reaction_counts
from casedesk.utils.listing import pagination_args
from casedesk.utils.timeutil import from_epoch_millis

tasks_bp = Blueprint('tasks', __name__)


def _paging():
    limit, offset = pagination_args()
    return {'limit': limit, 'offset': offset, 'sort': request.args.get('sort')}


def _parse_since(raw: str):
    try:
        return from_epoch_millis(raw)
    except (TypeError, ValueError, OverflowError, OSError):
        raise ValidationError('timestamp must be epoch milliseconds')


def _assert_assignee(lifecycle: RequestLifecycle, request_id: int, user_id: int):
    snap = lifecycle.requests.snapshot(request_id)
    if snap is None:
        raise NotFound(f'Service request {request_id} not found')
    if snap['assigned_to'] != user_id:
        abort(403, description='Request is not assigned to you')


@tasks_bp.post('/requests')
@require_permissions('TASK.CREATE')
def create_request():
    data = dict(request.json or {})
    service_type = data.pop('service_type', None)
    if service_type is None:
        raise ValidationError('service_type required')
    lc = RequestLifecycle(get_db())
    req = lc.create(service_type, current_user_id(), **data)
    return request_json(lc.get(req.id)), 201


@tasks_bp.get('/requests/<int:request_id>')
@require_permissions('TASK.READ')
def get_request(request_id: int):
    return request_json(RequestLifecycle(get_db()).get(request_id))


@tasks_bp.patch('/requests/<int:request_id>')
@require_permissions('TASK.UPDATE')
def update_request(request_id: int):
    lc = RequestLifecycle(get_db())
    lc.update_details(request_id, current_user_id(), request.json or {})
    return request_json(lc.get(request_id))


@tasks_bp.get('/available')
@require_permissions('TASK.READ')
def available():
    return page_json(QueueViews(get_db()).available(**_paging()))


@tasks_bp.get('/assigned')
@require_permissions('TASK.READ')
def assigned():
    views = QueueViews(get_db())
    return page_json(views.assigned_to(current_user_id(), status=request.args.get('status'), **_paging()))


@tasks_bp.get('/submitted')
@require_permissions('TASK.READ')
def submitted():
    return page_json(QueueViews(get_db()).submitted_by(current_user_id(), **_paging()))


@tasks_bp.get('/sent-back')
@require_permissions('TASK.READ')
def sent_back():
    return page_json(QueueViews(get_db()).sent_back_to(current_user_id(), **_paging()))


@tasks_bp.get('/new-since/<ts>')
@require_permissions('TASK.READ')
def new_since(ts: str):
    return page_json(QueueViews(get_db()).new_since(_parse_since(ts), **_paging()))


@tasks_bp.get('/status-changes/<ts>')
@require_permissions('TASK.READ')
def status_changes(ts: str):
    rows = QueueViews(get_db()).status_changes_since(_parse_since(ts), current_user_id())
    return {'data': rows}


@tasks_bp.post('/requests/<int:request_id>/claim')
@require_permissions('TASK.CLAIM')
def claim(request_id: int):
    lc = RequestLifecycle(get_db())
    lc.claim(request_id, current_user_id())
    return request_json(lc.get(request_id))


@tasks_bp.post('/requests/<int:request_id>/complete')
@require_permissions('TASK.UPDATE')
def complete(request_id: int):
    lc = RequestLifecycle(get_db())
    user_id = current_user_id()
    _assert_assignee(lc, request_id, user_id)
    lc.complete(request_id, user_id, assignee_guard=user_id)
    return request_json(lc.get(request_id))


@tasks_bp.post('/requests/<int:request_id>/investigate')
@require_permissions('TASK.UPDATE')
def investigate(request_id: int):
    lc = RequestLifecycle(get_db())
    user_id = current_user_id()
    _assert_assignee(lc, request_id, user_id)
    lc.investigate(request_id, user_id, assignee_guard=user_id)
    return request_json(lc.get(request_id))


@tasks_bp.post('/requests/<int:request_id>/send-back')
@require_permissions('TASK.UPDATE')
def send_back(request_id: int):
    lc = RequestLifecycle(get_db())
    user_id = current_user_id()
    _assert_assignee(lc, request_id, user_id)
    lc.send_back(request_id, user_id, (request.json or {}).get('reason'), assignee_guard=user_id)
    return request_json(lc.get(request_id))


@tasks_bp.post('/requests/<int:request_id>/comments')
@require_permissions('TASK.COMMENT')
def add_comment(request_id: int):
    data = request.json or {}
    row = RequestLifecycle(get_db()).add_comment(request_id, current_user_id(), data.get('comment'))
    return comment_json(row), 201


@tasks_bp.post('/comments/<int:comment_id>/reactions')
@require_permissions('TASK.COMMENT')
def react_to_comment(comment_id: int):
    data = request.json or {}
    lc = RequestLifecycle(get_db())
    row = lc.react_to_comment(comment_id, current_user_id(), data.get('reaction_type'))
    comment = lc.requests.get_comment(comment_id)
    lc.session.refresh(comment)
    return {
        'comment_id': comment_id,
        'reaction_type': row.reaction_type if row is not None else None,
        'reaction_counts': reaction_counts(comment.reactions),
    }
