"""Service request lifecycle.

Every status change goes through ``RequestLifecycle._transition``, which looks
the trigger up in ``REQUEST_FSM``, applies the trigger's assignee effect,
moves the row with a compare-and-set on the current status, and appends the
history entry in the same transaction. Notifications run only after commit
and can never undo a transition.

    new --claim/assign--> in_progress --complete--> completed
     |                      |  |  '--investigate--> pending_investigation --complete/send_back--> ...
     |                      |  '--send_back--> sent_back --reassign--> in_progress
     |                      '--auto_return--> new
     '--mark_unable_to_handle--> unable_to_handle --reassign--> in_progress
"""
from __future__ import annotations
import enum
import logging
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from casedesk.errors import NotFound, Conflict, ValidationError, InvalidTransition, NoHandlerAvailable
from casedesk.models.service_request import (
    ServiceRequest, RequestStatus, ServiceType, HistoryAction, CommentReaction, ReactionType,
)
from casedesk.repositories.routing_rules import RoutingRuleRepository
from casedesk.repositories.service_requests import ServiceRequestRepository
from casedesk.services import notifications
from casedesk.services.reference_numbers import next_reference_number
from casedesk.services.selector import AssignmentSelector
from casedesk.utils.fsm import TransitionValidator
from casedesk.utils.timeutil import utcnow
from casedesk.utils.validation import validate_choice, require_fields

logger = logging.getLogger(__name__)

REFERENCE_NUMBER_ATTEMPTS = 3
AUTO_RETURN_NOTE = 'Request automatically returned to queue due to inactivity'


class Trigger(str, enum.Enum):
    CLAIM = 'claim'
    ASSIGN = 'assign'
    REASSIGN = 'reassign'
    MARK_UNABLE_TO_HANDLE = 'mark_unable_to_handle'
    COMPLETE = 'complete'
    INVESTIGATE = 'investigate'
    SEND_BACK = 'send_back'
    AUTO_RETURN = 'auto_return'


class AssigneeEffect(enum.Enum):
    SET = 'set'
    CLEAR = 'clear'
    KEEP = 'keep'


S = RequestStatus
REQUEST_FSM = TransitionValidator({
    S.NEW: {
        Trigger.CLAIM: S.IN_PROGRESS,
        Trigger.ASSIGN: S.IN_PROGRESS,
        Trigger.MARK_UNABLE_TO_HANDLE: S.UNABLE_TO_HANDLE,
    },
    S.IN_PROGRESS: {
        Trigger.COMPLETE: S.COMPLETED,
        Trigger.INVESTIGATE: S.PENDING_INVESTIGATION,
        Trigger.SEND_BACK: S.SENT_BACK,
        Trigger.AUTO_RETURN: S.NEW,
    },
    S.PENDING_INVESTIGATION: {
        Trigger.COMPLETE: S.COMPLETED,
        Trigger.SEND_BACK: S.SENT_BACK,
    },
    S.UNABLE_TO_HANDLE: {Trigger.REASSIGN: S.IN_PROGRESS},
    S.SENT_BACK: {Trigger.REASSIGN: S.IN_PROGRESS},
    S.COMPLETED: {},
})

ASSIGNEE_EFFECTS = {
    Trigger.CLAIM: AssigneeEffect.SET,
    Trigger.ASSIGN: AssigneeEffect.SET,
    Trigger.REASSIGN: AssigneeEffect.SET,
    Trigger.MARK_UNABLE_TO_HANDLE: AssigneeEffect.KEEP,
    Trigger.COMPLETE: AssigneeEffect.KEEP,
    Trigger.INVESTIGATE: AssigneeEffect.KEEP,
    Trigger.SEND_BACK: AssigneeEffect.CLEAR,
    Trigger.AUTO_RETURN: AssigneeEffect.CLEAR,
}

NOTIFY_EVENTS = {
    Trigger.CLAIM: notifications.EVENT_ASSIGNED,
    Trigger.ASSIGN: notifications.EVENT_ASSIGNED,
    Trigger.REASSIGN: notifications.EVENT_ASSIGNED,
    Trigger.MARK_UNABLE_TO_HANDLE: notifications.EVENT_UNABLE_TO_HANDLE,
    Trigger.COMPLETE: notifications.EVENT_COMPLETED,
    Trigger.INVESTIGATE: notifications.EVENT_INVESTIGATING,
    Trigger.SEND_BACK: notifications.EVENT_SENT_BACK,
    Trigger.AUTO_RETURN: notifications.EVENT_AUTO_RETURNED,
}

_STATUS_LABELS = {
    S.NEW: 'new',
    S.IN_PROGRESS: 'in progress',
    S.PENDING_INVESTIGATION: 'pending investigation',
    S.UNABLE_TO_HANDLE: 'unable to handle',
    S.SENT_BACK: 'sent back',
    S.COMPLETED: 'completed',
}


class RequestLifecycle:
    def __init__(self, session: Session, notifier: Optional[notifications.Notifier] = None,
                 selector: Optional[AssignmentSelector] = None, log: Optional[logging.Logger] = None,
                 clock: Callable = utcnow):
        self.session = session
        self.requests = ServiceRequestRepository(session)
        self.routing = RoutingRuleRepository(session)
        self.selector = selector or AssignmentSelector(session, self.routing, self.requests)
        self.notifier = notifier if notifier is not None else notifications.LoggingNotifier()
        self.log = log or logger
        self.clock = clock

    # --- reads ---
    def get(self, request_id: int) -> ServiceRequest:
        req = self.requests.get(request_id, with_relations=True)
        if req is None:
            raise NotFound(f'Service request {request_id} not found')
        return req

    # --- creation ---
    def create(self, service_type, created_by: int, **fields) -> ServiceRequest:
        st = validate_choice(service_type, ServiceType, 'service_type')
        unknown = set(fields) - set(ServiceRequest.EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        require_fields(fields, ('full_names', 'primary_contact'))
        creator = self.requests.get_user(created_by) if created_by is not None else None
        if creator is None or not creator.is_active:
            raise ValidationError('created_by must reference an active user')
        rule = self.routing.get(st)
        if rule is not None and not rule.is_active:
            raise ValidationError(f'{st.value} is not accepting new requests')

        req_id = self._insert_with_reference(st, created_by, fields)
        self.log.info('request %s created', req_id,
                      extra={'event': 'request.created', 'request_id': req_id, 'actor_id': created_by})

        if rule is not None and rule.auto_assign:
            try:
                return self.auto_assign(req_id)
            except (NoHandlerAvailable, Conflict) as e:
                self.log.warning('auto-assign skipped for request %s: %s', req_id, e.reason,
                                 extra={'event': 'request.auto_assign_skipped', 'request_id': req_id})
        return self.requests.reload(req_id)

    def _insert_with_reference(self, st: ServiceType, created_by: int, fields: dict) -> int:
        for attempt in range(1, REFERENCE_NUMBER_ATTEMPTS + 1):
            now = self.clock()
            try:
                ref = next_reference_number(self.requests.reference_numbers_for_year(now.year), now.year)
                req = self.requests.insert(
                    reference_number=ref, service_type=st, status=S.NEW, created_by=created_by,
                    created_at=now, updated_at=now, **fields,
                )
                self.requests.add_history(req.id, created_by, HistoryAction.CREATED,
                                          f'Request {ref} created', now=now)
                self.session.commit()
                return req.id
            except IntegrityError:
                # another writer took the same reference number
                self.session.rollback()
                if attempt == REFERENCE_NUMBER_ATTEMPTS:
                    raise Conflict('Could not allocate a reference number, retry the request')
            except Exception:
                self.session.rollback()
                raise

    # --- transitions ---
    def claim(self, request_id: int, user_id: int) -> ServiceRequest:
        """Handler takes a new request for themselves."""
        return self._transition(request_id, Trigger.CLAIM, actor_id=user_id, handler_id=user_id)

    def assign(self, request_id: int, handler_id: int, actor_id: Optional[int] = None) -> ServiceRequest:
        """Queue manager assignment; picks assign or reassign from the current status."""
        snap = self._load(request_id)
        trigger = Trigger.REASSIGN if snap['status'] in (S.UNABLE_TO_HANDLE, S.SENT_BACK) else Trigger.ASSIGN
        return self._transition(request_id, trigger, actor_id=actor_id, handler_id=handler_id, snap=snap)

    def reassign(self, request_id: int, handler_id: int, actor_id: Optional[int] = None) -> ServiceRequest:
        return self._transition(request_id, Trigger.REASSIGN, actor_id=actor_id, handler_id=handler_id)

    def auto_assign(self, request_id: int, actor_id: Optional[int] = None) -> ServiceRequest:
        """Assign through the selector; only for types whose rule is active with auto-assign on."""
        snap = self._load(request_id)
        trigger = Trigger.REASSIGN if snap['status'] in (S.UNABLE_TO_HANDLE, S.SENT_BACK) else Trigger.ASSIGN
        REQUEST_FSM.target_for(snap['status'], trigger)
        if not self.selector.auto_assign_enabled(snap['service_type']):
            raise NoHandlerAvailable(f"Auto-assign is not enabled for {snap['service_type'].value}")
        handler = self.selector.pick(snap['service_type'])
        return self._transition(request_id, trigger, actor_id=actor_id, handler_id=handler.id, snap=snap)

    def mark_unable_to_handle(self, request_id: int, actor_id: Optional[int] = None) -> ServiceRequest:
        return self._transition(request_id, Trigger.MARK_UNABLE_TO_HANDLE, actor_id=actor_id)

    # assignee_guard: act only while the request is still assigned to that user
    def complete(self, request_id: int, actor_id: Optional[int] = None,
                 assignee_guard: Optional[int] = None) -> ServiceRequest:
        return self._transition(request_id, Trigger.COMPLETE, actor_id=actor_id, assignee_guard=assignee_guard)

    def investigate(self, request_id: int, actor_id: Optional[int] = None,
                    assignee_guard: Optional[int] = None) -> ServiceRequest:
        return self._transition(request_id, Trigger.INVESTIGATE, actor_id=actor_id, assignee_guard=assignee_guard)

    def send_back(self, request_id: int, actor_id: Optional[int], reason: str,
                  assignee_guard: Optional[int] = None) -> ServiceRequest:
        return self.fire(request_id, Trigger.SEND_BACK, actor_id=actor_id, reason=reason,
                         assignee_guard=assignee_guard)

    def fire(self, request_id: int, trigger, actor_id: Optional[int] = None,
             handler_id: Optional[int] = None, reason: Optional[str] = None,
             assignee_guard: Optional[int] = None) -> ServiceRequest:
        """Apply any trigger by name; the typed methods above are the usual entry points."""
        trigger = validate_choice(trigger, Trigger, 'trigger')
        if trigger is Trigger.SEND_BACK:
            if not reason or not str(reason).strip():
                raise ValidationError('reason required')
            reason = str(reason).strip()
        else:
            reason = None
        note = AUTO_RETURN_NOTE if trigger is Trigger.AUTO_RETURN else None
        return self._transition(request_id, trigger, actor_id=actor_id, handler_id=handler_id,
                                reason=reason, system_note=note, assignee_guard=assignee_guard)

    def auto_return(self, request_id: int, stale_before=None) -> Optional[ServiceRequest]:
        """Revert an idle in-progress request to the open queue.

        With ``stale_before`` the request is skipped (None returned) when it was
        touched after the cutoff, since it is no longer idle. The cutoff is
        checked again in the update itself, so an edit racing the pass wins.
        """
        snap = self._load(request_id)
        if stale_before is not None and snap['updated_at'] >= stale_before:
            return None
        return self._transition(request_id, Trigger.AUTO_RETURN, actor_id=None,
                                system_note=AUTO_RETURN_NOTE, snap=snap, stale_before=stale_before)

    # --- non-transition mutations ---
    def add_comment(self, request_id: int, user_id: int, comment: str, is_send_back_reason: bool = False):
        if not comment or not str(comment).strip():
            raise ValidationError('comment required')
        self._load(request_id)
        now = self.clock()
        try:
            row = self.requests.add_comment(request_id, user_id, str(comment).strip(),
                                            is_send_back_reason=bool(is_send_back_reason), now=now)
            self.requests.add_history(request_id, user_id, HistoryAction.COMMENT_ADDED,
                                      'Send back reason added' if is_send_back_reason else 'Comment added', now=now)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return row

    def react_to_comment(self, comment_id: int, user_id: int, reaction_type) -> Optional[CommentReaction]:
        """Toggle the user's reaction on a comment.

        Same type again removes it, a different type replaces it. Returns the
        reaction left in place, or None when it was removed.
        """
        kind = validate_choice(reaction_type, ReactionType, 'reaction_type')
        if self.requests.get_comment(comment_id) is None:
            raise NotFound(f'Comment {comment_id} not found')
        now = self.clock()
        try:
            row = self.requests.get_reaction(comment_id, user_id)
            if row is None:
                row = self.requests.add_reaction(comment_id, user_id, kind.value, now=now)
            elif row.reaction_type == kind.value:
                self.requests.delete_reaction(row)
                row = None
            else:
                row.reaction_type = kind.value
                row.updated_at = now
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise Conflict(f'Reaction on comment {comment_id} changed concurrently')
        except Exception:
            self.session.rollback()
            raise
        return row

    def update_details(self, request_id: int, user_id: Optional[int], changes: dict) -> ServiceRequest:
        if not isinstance(changes, dict) or not changes:
            raise ValidationError('No valid fields to update')
        rejected = set(changes) - set(ServiceRequest.EDITABLE_FIELDS)
        if rejected:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(rejected))}")
        for required in ('full_names', 'primary_contact'):
            if required in changes and changes[required] in (None, ''):
                raise ValidationError(f'{required} cannot be empty')
        snap = self._load(request_id)
        if snap['status'] == S.COMPLETED:
            raise InvalidTransition('status is already completed; request is read-only',
                                    current=S.COMPLETED.value, trigger='edit')
        now = self.clock()
        try:
            self.requests.update_fields(request_id, changes, now=now)
            self.requests.add_history(request_id, user_id, HistoryAction.EDITED,
                                      f"Request data updated ({', '.join(sorted(changes))})", now=now)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return self.requests.reload(request_id)

    # --- internals ---
    def _load(self, request_id: int) -> dict:
        snap = self.requests.snapshot(request_id)
        if snap is None:
            raise NotFound(f'Service request {request_id} not found')
        return snap

    def _transition(self, request_id: int, trigger: Trigger, actor_id: Optional[int],
                    handler_id: Optional[int] = None, reason: Optional[str] = None,
                    system_note: Optional[str] = None, snap: Optional[dict] = None,
                    assignee_guard: Optional[int] = None, stale_before=None) -> ServiceRequest:
        snap = snap or self._load(request_id)
        current = snap['status']
        target = REQUEST_FSM.target_for(current, trigger)
        effect = ASSIGNEE_EFFECTS[trigger]

        assignee_kw = {}
        handler = None
        if effect is AssigneeEffect.SET:
            handler = self.selector.validate_handler(snap['service_type'], handler_id)
            assignee_kw['assigned_to'] = handler.id
        elif effect is AssigneeEffect.CLEAR:
            assignee_kw['assigned_to'] = None

        cas_kw = dict(assignee_kw)
        if assignee_guard is not None:
            cas_kw['expected_assignee'] = assignee_guard
        now = self.clock()
        try:
            if not self.requests.compare_and_set_status(request_id, current, target, now=now,
                                                        updated_before=stale_before, **cas_kw):
                latest = self.requests.snapshot(request_id)
                if latest is None:
                    raise NotFound(f'Service request {request_id} not found')
                if assignee_guard is not None and latest['assigned_to'] != assignee_guard:
                    raise Conflict(f'Service request {request_id} is no longer assigned to user {assignee_guard}')
                raise Conflict(f"Service request {request_id} was changed concurrently "
                               f"(now {latest['status'].value})")
            self.requests.add_history(request_id, actor_id, HistoryAction.STATUS_CHANGE,
                                      self._history_details(current, target, trigger, handler), now=now)
            if reason:
                self.requests.add_comment(request_id, actor_id, reason, is_send_back_reason=True, now=now)
            if system_note:
                self.requests.add_comment(request_id, None, system_note, is_system=True, now=now)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        req = self.requests.reload(request_id)
        self.log.info('request %s %s: %s -> %s', req.reference_number, trigger.value, current.value, target.value,
                      extra={'event': f'request.{trigger.value}', 'request_id': request_id,
                             'from_status': current.value, 'to_status': target.value,
                             'actor_id': actor_id, 'assigned_to': req.assigned_to})
        notifications.dispatch(self.notifier, NOTIFY_EVENTS[trigger], req, actor_id)
        return req

    @staticmethod
    def _history_details(current: RequestStatus, target: RequestStatus, trigger: Trigger, handler) -> str:
        if trigger is Trigger.CLAIM:
            return f'Request claimed and status changed to in progress by {handler.full_name}'
        if trigger is Trigger.AUTO_RETURN:
            return AUTO_RETURN_NOTE
        text = f'Status changed from {_STATUS_LABELS[current]} to {_STATUS_LABELS[target]}'
        if handler is not None:
            text += f' and assigned to {handler.full_name}'
        return text

__all__ = ['RequestLifecycle', 'Trigger', 'AssigneeEffect', 'REQUEST_FSM', 'ASSIGNEE_EFFECTS']
