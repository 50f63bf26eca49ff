"""Read-only queue projections over the request store.

Each view is a status/assignee predicate over ``service_requests``; results
carry their comments and history and resolve creator/assignee to a minimal
display record. Nothing here writes.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from casedesk.config.pagination import DEFAULT_LIMIT
from casedesk.models.service_request import ServiceRequest, RequestStatus, ReactionType
from casedesk.repositories.service_requests import ServiceRequestRepository
from casedesk.utils.listing import build_list_payload
from casedesk.utils.sorting import apply_multi_sort
from casedesk.utils.timeutil import isoformat
from casedesk.utils.validation import validate_choice

SORTABLE = {
    'id': ServiceRequest.id,
    'reference_number': ServiceRequest.reference_number,
    'service_type': ServiceRequest.service_type,
    'status': ServiceRequest.status,
    'priority': ServiceRequest.priority,
    'created_at': ServiceRequest.created_at,
    'updated_at': ServiceRequest.updated_at,
}

# dashboard names used by the queue-management surface
DASHBOARD_STATUSES = {
    'unhandled': RequestStatus.NEW,
    'in_progress': RequestStatus.IN_PROGRESS,
    'investigating': RequestStatus.PENDING_INVESTIGATION,
    'unable_to_handle': RequestStatus.UNABLE_TO_HANDLE,
    'sent_back': RequestStatus.SENT_BACK,
    'completed': RequestStatus.COMPLETED,
}


@dataclass
class Page:
    rows: List[ServiceRequest]
    total: int
    limit: int
    offset: int


def _display(user) -> Optional[dict]:
    return user.display() if user is not None else None


def reaction_counts(reactions) -> dict:
    counts = {t.value: 0 for t in ReactionType}
    for r in reactions:
        counts[r.reaction_type] = counts.get(r.reaction_type, 0) + 1
    return counts


def comment_json(c) -> dict:
    return {
        'id': c.id,
        'comment': c.comment,
        'created_by': c.created_by,
        'is_send_back_reason': c.is_send_back_reason,
        'is_system': c.is_system,
        'created_at': isoformat(c.created_at),
        'reactions': [{'user_id': r.user_id, 'reaction_type': r.reaction_type} for r in c.reactions],
        'reaction_counts': reaction_counts(c.reactions),
    }


def history_json(h) -> dict:
    return {
        'id': h.id,
        'action': h.action.value,
        'details': h.details,
        'performed_by': h.performed_by,
        'created_at': isoformat(h.created_at),
    }


def request_json(r: ServiceRequest, nested: bool = True) -> dict:
    body = {
        'id': r.id,
        'reference_number': r.reference_number,
        'service_type': r.service_type.value,
        'status': r.status.value,
        'priority': r.priority,
        'full_names': r.full_names,
        'id_passport': r.id_passport,
        'primary_contact': r.primary_contact,
        'secondary_contact': r.secondary_contact,
        'details': r.details,
        'created_by': _display(r.creator),
        'assigned_to': _display(r.assignee),
        'created_at': isoformat(r.created_at),
        'updated_at': isoformat(r.updated_at),
    }
    if nested:
        body['comments'] = [comment_json(c) for c in r.comments]
        body['history'] = [history_json(h) for h in r.history]
    return body


def page_json(page: Page) -> dict:
    return build_list_payload([request_json(r) for r in page.rows], page.total, page.limit, page.offset)


class QueueViews:
    def __init__(self, session: Session, repo: Optional[ServiceRequestRepository] = None):
        self.repo = repo or ServiceRequestRepository(session)

    def _page(self, *criteria, sort: Optional[str] = None, limit: int = DEFAULT_LIMIT, offset: int = 0,
              default_order=None) -> Page:
        stmt = self.repo.base_view_query().where(*criteria)
        total = self.repo.count(stmt)
        stmt = apply_multi_sort(stmt, sort, SORTABLE,
                                default_order if default_order is not None else ServiceRequest.created_at.desc(),
                                ServiceRequest.id)
        rows = list(self.repo.fetch_all(stmt.offset(offset).limit(limit)))
        return Page(rows, total, limit, offset)

    def available(self, **paging) -> Page:
        return self._page(ServiceRequest.status == RequestStatus.NEW,
                          ServiceRequest.assigned_to.is_(None),
                          default_order=ServiceRequest.created_at.asc(), **paging)

    def assigned_to(self, user_id: int, status=None, **paging) -> Page:
        criteria = [ServiceRequest.assigned_to == user_id]
        if status is not None:
            criteria.append(ServiceRequest.status == validate_choice(status, RequestStatus, 'status'))
        return self._page(*criteria, **paging)

    def submitted_by(self, user_id: int, **paging) -> Page:
        return self._page(ServiceRequest.created_by == user_id,
                          ServiceRequest.status != RequestStatus.SENT_BACK, **paging)

    def sent_back_to(self, user_id: int, **paging) -> Page:
        return self._page(ServiceRequest.created_by == user_id,
                          ServiceRequest.status == RequestStatus.SENT_BACK, **paging)

    def by_status(self, status, **paging) -> Page:
        """Global dashboard view; accepts a status value or a dashboard alias like 'unhandled'."""
        st = DASHBOARD_STATUSES.get(status) if isinstance(status, str) else None
        if st is None:
            st = validate_choice(status, RequestStatus, 'status')
        return self._page(ServiceRequest.status == st, **paging)

    def all(self, **paging) -> Page:
        return self._page(**paging)

    def new_since(self, since: datetime, **paging) -> Page:
        return self._page(ServiceRequest.status == RequestStatus.NEW,
                          ServiceRequest.assigned_to.is_(None),
                          ServiceRequest.created_at > since, **paging)

    def status_changes_since(self, since: datetime, user_id: int) -> List[dict]:
        return [
            {
                'request_id': row.id,
                'reference_number': row.reference_number,
                'status': row.status.value,
                'details': row.details,
                'changed_at': isoformat(row.created_at),
            }
            for row in self.repo.status_changes_since(since, user_id)
        ]

    def stale_in_progress(self, older_than: datetime) -> List[int]:
        return self.repo.stale_in_progress(older_than)

__all__ = ['QueueViews', 'Page', 'page_json', 'request_json', 'comment_json', 'reaction_counts', 'history_json', 'DASHBOARD_STATUSES']
