import logging
from datetime import timedelta
import pytest
from casedesk.errors import InvalidTransition, InvalidHandler, NotFound, Conflict, ValidationError, NoHandlerAvailable
from casedesk.models.service_request import RequestStatus as S, HistoryAction
from casedesk.services.lifecycle import RequestLifecycle, Trigger
from tests.test_utils_seed import ensure_user, create_request, set_routing_rule
from tests.test_lifecycle_helpers import drive_to

ALLOWED = {
    S.NEW: {Trigger.CLAIM: S.IN_PROGRESS, Trigger.ASSIGN: S.IN_PROGRESS,
            Trigger.MARK_UNABLE_TO_HANDLE: S.UNABLE_TO_HANDLE},
    S.IN_PROGRESS: {Trigger.COMPLETE: S.COMPLETED, Trigger.INVESTIGATE: S.PENDING_INVESTIGATION,
                    Trigger.SEND_BACK: S.SENT_BACK, Trigger.AUTO_RETURN: S.NEW},
    S.PENDING_INVESTIGATION: {Trigger.COMPLETE: S.COMPLETED, Trigger.SEND_BACK: S.SENT_BACK},
    S.UNABLE_TO_HANDLE: {Trigger.REASSIGN: S.IN_PROGRESS},
    S.SENT_BACK: {Trigger.REASSIGN: S.IN_PROGRESS},
    S.COMPLETED: {},
}
SETS_ASSIGNEE = {Trigger.CLAIM, Trigger.ASSIGN, Trigger.REASSIGN}
CLEARS_ASSIGNEE = {Trigger.SEND_BACK, Trigger.AUTO_RETURN}


@pytest.fixture()
def people(session):
    return {
        'agent': ensure_user('agent', 'Alice Agent'),
        'h1': ensure_user('handler1', 'Henry One'),
        'h2': ensure_user('handler2', 'Hana Two'),
    }


@pytest.fixture()
def lc(session):
    return RequestLifecycle(session)


def _assert_assignee_invariant(snap):
    if snap['status'] in (S.IN_PROGRESS, S.PENDING_INVESTIGATION):
        assert snap['assigned_to'] is not None
    if snap['status'] in (S.NEW, S.SENT_BACK):
        assert snap['assigned_to'] is None


@pytest.mark.parametrize('status', list(S))
@pytest.mark.parametrize('trigger', list(Trigger))
def test_transition_table_is_closed(lc, people, status, trigger):
    req = drive_to(lc, people['agent'], people['h1'], status)
    before = lc.requests.snapshot(req.id)
    _assert_assignee_invariant(before)
    history_before = lc.requests.history_count(req.id)
    target = ALLOWED[status].get(trigger)

    if target is None:
        with pytest.raises(InvalidTransition):
            lc.fire(req.id, trigger, actor_id=people['agent'].id, handler_id=people['h2'].id, reason='why')
        after = lc.requests.snapshot(req.id)
        assert after == before
        assert lc.requests.history_count(req.id) == history_before
        return

    lc.fire(req.id, trigger, actor_id=people['agent'].id, handler_id=people['h2'].id, reason='why')
    after = lc.requests.snapshot(req.id)
    assert after['status'] == target
    assert lc.requests.history_count(req.id) == history_before + 1
    if trigger in SETS_ASSIGNEE:
        assert after['assigned_to'] == people['h2'].id
    elif trigger in CLEARS_ASSIGNEE:
        assert after['assigned_to'] is None
    else:
        assert after['assigned_to'] == before['assigned_to']
    _assert_assignee_invariant(after)


def test_example_scenario(lc, people):
    r1 = create_request(people['agent'], 'stolen_phone_check', lifecycle=lc)
    assert r1.status == S.NEW and r1.assigned_to is None

    r1 = lc.assign(r1.id, people['h1'].id, actor_id=people['agent'].id)
    assert (r1.status, r1.assigned_to) == (S.IN_PROGRESS, people['h1'].id)
    assert [h.action for h in r1.history] == [HistoryAction.CREATED, HistoryAction.STATUS_CHANGE]

    r1 = lc.send_back(r1.id, people['h1'].id, 'ID number unreadable')
    assert (r1.status, r1.assigned_to) == (S.SENT_BACK, None)
    reasons = [c for c in r1.comments if c.is_send_back_reason]
    assert len(reasons) == 1 and reasons[0].comment == 'ID number unreadable'
    assert [h.action for h in r1.history].count(HistoryAction.STATUS_CHANGE) == 2

    r1 = lc.assign(r1.id, people['h2'].id, actor_id=people['agent'].id)
    assert (r1.status, r1.assigned_to) == (S.IN_PROGRESS, people['h2'].id)

    r1 = lc.complete(r1.id, people['h2'].id)
    assert r1.status == S.COMPLETED
    for attempt in (lambda: lc.investigate(r1.id), lambda: lc.reassign(r1.id, people['h1'].id),
                    lambda: lc.send_back(r1.id, None, 'late')):
        with pytest.raises(InvalidTransition) as exc:
            attempt()
        assert 'no further transitions allowed' in exc.value.reason


def test_reason_strings_distinguish_failures(lc, people):
    with pytest.raises(NotFound) as missing:
        lc.complete(999999)
    assert 'not found' in missing.value.reason
    req = drive_to(lc, people['agent'], people['h1'], S.IN_PROGRESS)
    with pytest.raises(InvalidTransition) as already:
        lc.claim(req.id, people['h2'].id)
    assert already.value.reason == 'status is already in_progress'
    with pytest.raises(InvalidTransition) as not_allowed:
        lc.mark_unable_to_handle(req.id)
    assert not_allowed.value.reason == 'mark_unable_to_handle not allowed while status is in_progress'


def test_send_back_requires_reason(lc, people):
    req = drive_to(lc, people['agent'], people['h1'], S.IN_PROGRESS)
    with pytest.raises(ValidationError):
        lc.send_back(req.id, people['h1'].id, '   ')
    assert lc.requests.snapshot(req.id)['status'] == S.IN_PROGRESS


def test_history_is_append_only(lc, people):
    req = drive_to(lc, people['agent'], people['h1'], S.PENDING_INVESTIGATION)
    earlier = [(h.id, h.action, h.details, h.created_at) for h in lc.get(req.id).history]
    lc.complete(req.id, people['h1'].id)
    later = [(h.id, h.action, h.details, h.created_at) for h in lc.get(req.id).history]
    assert later[:len(earlier)] == earlier
    assert len(later) == len(earlier) + 1
    assert [h[0] for h in later] == sorted(h[0] for h in later)


def test_claim_checks_eligibility(lc, people):
    set_routing_rule('call_history', [people['h1']])
    req = create_request(people['agent'], 'call_history', lifecycle=lc)
    with pytest.raises(InvalidHandler):
        lc.claim(req.id, people['h2'].id)
    with pytest.raises(InvalidHandler):
        lc.assign(req.id, 424242, actor_id=people['agent'].id)
    assert lc.requests.snapshot(req.id)['status'] == S.NEW
    claimed = lc.claim(req.id, people['h1'].id)
    assert claimed.assigned_to == people['h1'].id
    assert 'claimed' in claimed.history[-1].details


def test_inactive_handler_rejected(lc, people, session):
    people['h2'].is_active = False
    session.commit()
    req = create_request(people['agent'], lifecycle=lc)
    with pytest.raises(InvalidHandler) as exc:
        lc.assign(req.id, people['h2'].id)
    assert 'inactive' in exc.value.reason


def test_claim_race_loser_gets_conflict(lc, people, monkeypatch):
    req = create_request(people['agent'], lifecycle=lc)
    stale = lc.requests.snapshot(req.id)
    lc.claim(req.id, people['h1'].id)
    history_after_win = lc.requests.history_count(req.id)

    real_snapshot = lc.requests.snapshot
    calls = []

    def snapshot_read_before_winner_committed(request_id):
        calls.append(request_id)
        return stale if len(calls) == 1 else real_snapshot(request_id)

    monkeypatch.setattr(lc.requests, 'snapshot', snapshot_read_before_winner_committed)
    with pytest.raises(Conflict):
        lc.claim(req.id, people['h2'].id)
    final = real_snapshot(req.id)
    assert (final['status'], final['assigned_to']) == (S.IN_PROGRESS, people['h1'].id)
    assert lc.requests.history_count(req.id) == history_after_win


def test_compare_and_set_only_moves_expected_status(lc, people, session):
    req = create_request(people['agent'], lifecycle=lc)
    assert lc.requests.compare_and_set_status(req.id, S.NEW, S.IN_PROGRESS, assigned_to=people['h1'].id)
    assert not lc.requests.compare_and_set_status(req.id, S.NEW, S.IN_PROGRESS, assigned_to=people['h2'].id)
    session.commit()
    assert lc.requests.snapshot(req.id)['assigned_to'] == people['h1'].id


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event, request, actor_id=None):
        self.events.append((event, request.id, actor_id))


class ExplodingNotifier:
    def notify(self, event, request, actor_id=None):
        raise RuntimeError('smtp down')


def test_notifications_follow_commit(session, people):
    notifier = RecordingNotifier()
    lc = RequestLifecycle(session, notifier=notifier)
    req = create_request(people['agent'], lifecycle=lc)
    lc.assign(req.id, people['h1'].id, actor_id=people['agent'].id)
    lc.complete(req.id, people['h1'].id)
    assert [e[0] for e in notifier.events] == ['request.assigned', 'request.completed']


def test_notifier_failure_does_not_undo_transition(session, people, caplog):
    lc = RequestLifecycle(session, notifier=ExplodingNotifier())
    req = create_request(people['agent'], lifecycle=lc)
    with caplog.at_level(logging.ERROR, logger='casedesk'):
        done = lc.assign(req.id, people['h1'].id)
    assert done.status == S.IN_PROGRESS
    assert lc.requests.snapshot(req.id)['status'] == S.IN_PROGRESS
    assert any('notification request.assigned failed' in r.getMessage() for r in caplog.records)


def test_transition_log_record_is_structured(lc, people, caplog):
    req = create_request(people['agent'], lifecycle=lc)
    with caplog.at_level(logging.INFO, logger='casedesk'):
        lc.claim(req.id, people['h1'].id)
    records = [r for r in caplog.records if getattr(r, 'event', None) == 'request.claim']
    assert len(records) == 1
    assert records[0].from_status == 'new' and records[0].to_status == 'in_progress'
    assert records[0].actor_id == people['h1'].id


def test_auto_return_trigger(lc, people):
    req = drive_to(lc, people['agent'], people['h1'], S.IN_PROGRESS)
    back = lc.auto_return(req.id)
    assert (back.status, back.assigned_to) == (S.NEW, None)
    assert back.history[-1].performed_by is None
    assert back.history[-1].action == HistoryAction.STATUS_CHANGE
    assert back.comments[-1].is_system is True


def test_assignee_guard_rejects_former_assignee(lc, people):
    req = drive_to(lc, people['agent'], people['h1'], S.IN_PROGRESS)
    lc.send_back(req.id, people['h1'].id, 'wrong type')
    lc.assign(req.id, people['h2'].id, people['agent'].id)
    history_before = lc.requests.history_count(req.id)
    for act in (lambda: lc.complete(req.id, people['h1'].id, assignee_guard=people['h1'].id),
                lambda: lc.investigate(req.id, people['h1'].id, assignee_guard=people['h1'].id),
                lambda: lc.send_back(req.id, people['h1'].id, 'not mine', assignee_guard=people['h1'].id)):
        with pytest.raises(Conflict) as exc:
            act()
        assert 'no longer assigned' in exc.value.reason
    final = lc.requests.snapshot(req.id)
    assert (final['status'], final['assigned_to']) == (S.IN_PROGRESS, people['h2'].id)
    assert lc.requests.history_count(req.id) == history_before
    done = lc.complete(req.id, people['h2'].id, assignee_guard=people['h2'].id)
    assert done.status == S.COMPLETED


def test_auto_return_loses_to_edit_after_scan(lc, people, monkeypatch):
    req = drive_to(lc, people['agent'], people['h1'], S.IN_PROGRESS)
    cutoff = lc.clock() + timedelta(minutes=1)
    real_snapshot = lc.requests.snapshot

    def snapshot_then_edit(request_id):
        snap = real_snapshot(request_id)
        monkeypatch.setattr(lc.requests, 'snapshot', real_snapshot)
        # the handler touches the request after the pass read it
        lc.requests.update_fields(request_id, {'details': 'still working'}, now=cutoff + timedelta(seconds=5))
        lc.session.commit()
        return snap

    monkeypatch.setattr(lc.requests, 'snapshot', snapshot_then_edit)
    with pytest.raises(Conflict):
        lc.auto_return(req.id, stale_before=cutoff)
    final = real_snapshot(req.id)
    assert (final['status'], final['assigned_to']) == (S.IN_PROGRESS, people['h1'].id)


def test_auto_assign_requires_rule_flag(lc, people):
    set_routing_rule('call_history', [people['h1']], auto_assign=False)
    req = create_request(people['agent'], 'call_history', lifecycle=lc)
    with pytest.raises(NoHandlerAvailable):
        lc.auto_assign(req.id)
    snap = lc.requests.snapshot(req.id)
    assert (snap['status'], snap['assigned_to']) == (S.NEW, None)
    set_routing_rule('call_history', [people['h1']], auto_assign=True)
    done = lc.auto_assign(req.id)
    assert (done.status, done.assigned_to) == (S.IN_PROGRESS, people['h1'].id)


# --- creation ---

def test_create_validates_payload(lc, people):
    with pytest.raises(ValidationError):
        lc.create('teleportation', people['agent'].id, full_names='X', primary_contact='1')
    with pytest.raises(ValidationError):
        lc.create('other', people['agent'].id, full_names='X')
    with pytest.raises(ValidationError):
        lc.create('other', people['agent'].id, full_names='X', primary_contact='1', status='completed')
    with pytest.raises(ValidationError):
        lc.create('other', 424242, full_names='X', primary_contact='1')


def test_create_rejected_when_rule_inactive(lc, people):
    set_routing_rule('unblock_momo', [people['h1']], is_active=False)
    with pytest.raises(ValidationError):
        create_request(people['agent'], 'unblock_momo', lifecycle=lc)


def test_create_auto_assigns_least_loaded(lc, people):
    set_routing_rule('money_refund', [people['h1'], people['h2']], auto_assign=True)
    first = create_request(people['agent'], 'money_refund', lifecycle=lc)
    second = create_request(people['agent'], 'money_refund', lifecycle=lc)
    assert first.assigned_to == people['h1'].id
    assert second.assigned_to == people['h2'].id
    assert first.status == second.status == S.IN_PROGRESS


def test_create_without_handler_stays_new(lc, people):
    set_routing_rule('serial_number', [], auto_assign=True)
    req = create_request(people['agent'], 'serial_number', lifecycle=lc)
    assert (req.status, req.assigned_to) == (S.NEW, None)
    assert [h.action for h in req.history] == [HistoryAction.CREATED]


# --- comments and edits ---

def test_add_comment_records_history(lc, people):
    req = create_request(people['agent'], lifecycle=lc)
    lc.add_comment(req.id, people['agent'].id, 'customer called again')
    fresh = lc.get(req.id)
    assert fresh.comments[-1].comment == 'customer called again'
    assert fresh.history[-1].action == HistoryAction.COMMENT_ADDED
    with pytest.raises(ValidationError):
        lc.add_comment(req.id, people['agent'].id, '')


def test_comment_reactions_toggle(lc, people):
    req = create_request(people['agent'], lifecycle=lc)
    comment = lc.add_comment(req.id, people['agent'].id, 'customer called again')
    h1, h2 = people['h1'].id, people['h2'].id

    assert lc.react_to_comment(comment.id, h1, 'like').reaction_type == 'like'
    assert lc.react_to_comment(comment.id, h2, 'like').reaction_type == 'like'
    # different type replaces, same type again removes
    assert lc.react_to_comment(comment.id, h1, 'dislike').reaction_type == 'dislike'
    assert lc.react_to_comment(comment.id, h2, 'like') is None

    fresh = lc.get(req.id).comments[-1]
    assert [(r.user_id, r.reaction_type) for r in fresh.reactions] == [(h1, 'dislike')]
    # reactions are not request history
    assert [h.action for h in lc.get(req.id).history][-1] == HistoryAction.COMMENT_ADDED

    with pytest.raises(ValidationError):
        lc.react_to_comment(comment.id, h1, 'love')
    with pytest.raises(ValidationError):
        lc.react_to_comment(comment.id, h1, None)
    with pytest.raises(NotFound):
        lc.react_to_comment(comment.id + 999, h1, 'like')


def test_update_details(lc, people):
    req = create_request(people['agent'], lifecycle=lc)
    edited = lc.update_details(req.id, people['agent'].id, {'details': 'IMEI 3567', 'priority': 'high'})
    assert edited.details == 'IMEI 3567' and edited.priority == 'high'
    assert edited.history[-1].action == HistoryAction.EDITED
    with pytest.raises(ValidationError):
        lc.update_details(req.id, people['agent'].id, {'status': 'completed'})
    with pytest.raises(ValidationError):
        lc.update_details(req.id, people['agent'].id, {'full_names': ''})


def test_completed_request_is_read_only(lc, people):
    req = drive_to(lc, people['agent'], people['h1'], S.COMPLETED)
    with pytest.raises(InvalidTransition):
        lc.update_details(req.id, people['agent'].id, {'details': 'late edit'})
