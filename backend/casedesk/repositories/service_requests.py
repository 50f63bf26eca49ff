"""Persistence operations for service requests, their comments and history.

The repository never commits; the lifecycle owns transaction boundaries.
"""
from __future__ import annotations
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select, update, func, or_
from sqlalchemy.orm import Session, selectinload

from casedesk.models.authz import User
from casedesk.models.service_request import (
    ServiceRequest, RequestHistoryEntry, RequestComment, CommentReaction, RequestStatus, HistoryAction,
    LOAD_EXCLUDED_STATUSES,
)
from casedesk.services.reference_numbers import year_prefix
from casedesk.utils.timeutil import utcnow

_UNSET = object()


class ServiceRequestRepository:
    def __init__(self, session: Session):
        self.session = session

    # --- reads ---
    def get(self, request_id: int, with_relations: bool = False) -> Optional[ServiceRequest]:
        stmt = (select(ServiceRequest).where(ServiceRequest.id == request_id)
                .execution_options(populate_existing=True))
        if with_relations:
            stmt = stmt.options(*self.view_options())
        return self.session.execute(stmt).scalar_one_or_none()

    def snapshot(self, request_id: int) -> Optional[dict]:
        """Column values as currently committed, bypassing the identity map."""
        row = self.session.execute(
            select(ServiceRequest.id, ServiceRequest.status, ServiceRequest.assigned_to,
                   ServiceRequest.service_type, ServiceRequest.updated_at)
            .where(ServiceRequest.id == request_id)
        ).one_or_none()
        return dict(row._mapping) if row else None

    def reference_numbers_for_year(self, year: int) -> List[str]:
        return list(self.session.execute(
            select(ServiceRequest.reference_number)
            .where(ServiceRequest.reference_number.like(f"{year_prefix(year)}%"))
        ).scalars())

    def open_counts(self, user_ids: Iterable[int]) -> Dict[int, int]:
        """Number of requests currently assigned to each user that still count as load."""
        ids = list(user_ids)
        counts = {uid: 0 for uid in ids}
        if not ids:
            return counts
        rows = self.session.execute(
            select(ServiceRequest.assigned_to, func.count(ServiceRequest.id))
            .where(ServiceRequest.assigned_to.in_(ids),
                   ServiceRequest.status.not_in(LOAD_EXCLUDED_STATUSES))
            .group_by(ServiceRequest.assigned_to)
        ).all()
        for user_id, count in rows:
            counts[user_id] = count
        return counts

    def history_count(self, request_id: int) -> int:
        return self.session.execute(
            select(func.count(RequestHistoryEntry.id)).where(RequestHistoryEntry.request_id == request_id)
        ).scalar_one()

    def stale_in_progress(self, older_than: datetime) -> List[int]:
        return list(self.session.execute(
            select(ServiceRequest.id)
            .where(ServiceRequest.status == RequestStatus.IN_PROGRESS,
                   ServiceRequest.updated_at < older_than)
            .order_by(ServiceRequest.updated_at.asc(), ServiceRequest.id.asc())
        ).scalars())

    # --- queue view queries ---
    @staticmethod
    def view_options():
        return (
            selectinload(ServiceRequest.comments).selectinload(RequestComment.reactions),
            selectinload(ServiceRequest.history),
            selectinload(ServiceRequest.creator),
            selectinload(ServiceRequest.assignee),
        )

    def base_view_query(self):
        return (select(ServiceRequest).options(*self.view_options())
                .execution_options(populate_existing=True))

    def fetch_all(self, stmt) -> Sequence[ServiceRequest]:
        return self.session.execute(stmt).scalars().all()

    def count(self, stmt) -> int:
        return self.session.execute(
            select(func.count()).select_from(stmt.order_by(None).subquery())
        ).scalar_one()

    def status_changes_since(self, since: datetime, user_id: int):
        return self.session.execute(
            select(ServiceRequest.id, ServiceRequest.reference_number, ServiceRequest.status,
                   RequestHistoryEntry.created_at, RequestHistoryEntry.details)
            .join(RequestHistoryEntry, RequestHistoryEntry.request_id == ServiceRequest.id)
            .where(RequestHistoryEntry.created_at > since,
                   RequestHistoryEntry.action == HistoryAction.STATUS_CHANGE,
                   or_(ServiceRequest.created_by == user_id, ServiceRequest.assigned_to == user_id))
            .order_by(RequestHistoryEntry.created_at.desc(), RequestHistoryEntry.id.desc())
        ).all()

    def get_user(self, user_id: int) -> Optional[User]:
        return self.session.get(User, user_id)

    # --- writes ---
    def insert(self, **fields) -> ServiceRequest:
        req = ServiceRequest(**fields)
        self.session.add(req)
        self.session.flush()
        return req

    def compare_and_set_status(self, request_id: int, expected: RequestStatus, new_status: RequestStatus,
                               assigned_to=_UNSET, now: Optional[datetime] = None,
                               expected_assignee=_UNSET, updated_before: Optional[datetime] = None) -> bool:
        """Move the row out of ``expected`` only if nobody else did first.

        ``expected_assignee`` additionally pins the current assignee and
        ``updated_before`` requires the row to be untouched since that time.
        Returns False when zero rows matched (row changed concurrently or gone).
        """
        values = {'status': new_status, 'updated_at': now or utcnow()}
        if assigned_to is not _UNSET:
            values['assigned_to'] = assigned_to
        criteria = [ServiceRequest.id == request_id, ServiceRequest.status == expected]
        if expected_assignee is not _UNSET:
            criteria.append(ServiceRequest.assigned_to.is_(None) if expected_assignee is None
                            else ServiceRequest.assigned_to == expected_assignee)
        if updated_before is not None:
            criteria.append(ServiceRequest.updated_at < updated_before)
        result = self.session.execute(
            update(ServiceRequest)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def update_fields(self, request_id: int, changes: dict, now: Optional[datetime] = None) -> bool:
        values = dict(changes)
        values['updated_at'] = now or utcnow()
        result = self.session.execute(
            update(ServiceRequest)
            .where(ServiceRequest.id == request_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def add_history(self, request_id: int, performed_by: Optional[int], action: HistoryAction,
                    details: str, now: Optional[datetime] = None) -> RequestHistoryEntry:
        entry = RequestHistoryEntry(request_id=request_id, performed_by=performed_by, action=action,
                                    details=details, created_at=now or utcnow())
        self.session.add(entry)
        self.session.flush()
        return entry

    def add_comment(self, request_id: int, created_by: Optional[int], comment: str,
                    is_send_back_reason: bool = False, is_system: bool = False,
                    now: Optional[datetime] = None) -> RequestComment:
        row = RequestComment(request_id=request_id, created_by=created_by, comment=comment,
                             is_send_back_reason=is_send_back_reason, is_system=is_system,
                             created_at=now or utcnow())
        self.session.add(row)
        self.session.flush()
        return row

    def get_comment(self, comment_id: int) -> Optional[RequestComment]:
        return self.session.get(RequestComment, comment_id)

    def get_reaction(self, comment_id: int, user_id: int) -> Optional[CommentReaction]:
        return self.session.execute(
            select(CommentReaction)
            .where(CommentReaction.comment_id == comment_id, CommentReaction.user_id == user_id)
        ).scalar_one_or_none()

    def add_reaction(self, comment_id: int, user_id: int, reaction_type: str,
                     now: Optional[datetime] = None) -> CommentReaction:
        now = now or utcnow()
        row = CommentReaction(comment_id=comment_id, user_id=user_id, reaction_type=reaction_type,
                              created_at=now, updated_at=now)
        self.session.add(row)
        self.session.flush()
        return row

    def delete_reaction(self, row: CommentReaction):
        self.session.delete(row)
        self.session.flush()

    def reload(self, request_id: int) -> Optional[ServiceRequest]:
        """Fresh ORM instance reflecting the committed row and its collections."""
        obj = self.session.get(ServiceRequest, request_id)
        if obj is not None:
            self.session.refresh(obj)
        return obj

__all__ = ['ServiceRequestRepository']
