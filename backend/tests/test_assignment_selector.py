import pytest
from casedesk.errors import NoHandlerAvailable, InvalidHandler
from casedesk.models.service_request import ServiceType, RequestStatus as S
from casedesk.services.lifecycle import RequestLifecycle
from casedesk.services.selector import AssignmentSelector
from tests.test_utils_seed import ensure_user, create_request, set_routing_rule
from tests.test_lifecycle_helpers import drive_to


@pytest.fixture()
def handlers(session):
    # creation order fixes ids: h1 < h2 < h3
    return [ensure_user(f'h{i}', f'Handler {i}') for i in (1, 2, 3)]


def test_pick_prefers_least_loaded_then_lowest_id(session, handlers):
    agent = ensure_user('agent')
    h1, h2, h3 = handlers
    set_routing_rule('call_history', handlers, auto_assign=True)
    lc = RequestLifecycle(session)
    for owner in (h1, h1, h3):
        req = create_request(agent, 'other', lifecycle=lc)
        lc.assign(req.id, owner.id)
    selector = AssignmentSelector(session)
    assert selector.pick(ServiceType.CALL_HISTORY).id == h2.id
    req = create_request(agent, 'other', lifecycle=lc)
    lc.assign(req.id, h2.id)
    # h2 and h3 tie at one open request
    assert selector.pick(ServiceType.CALL_HISTORY).id == h2.id


def test_pick_is_deterministic(session, handlers):
    set_routing_rule('call_history', list(reversed(handlers)), auto_assign=True)
    selector = AssignmentSelector(session)
    picks = {selector.pick(ServiceType.CALL_HISTORY).id for _ in range(5)}
    assert picks == {handlers[0].id}


def test_completed_and_unable_requests_do_not_count_as_load(session, handlers):
    agent = ensure_user('agent')
    h1, h2, _ = handlers
    set_routing_rule('call_history', [h1, h2], auto_assign=True)
    lc = RequestLifecycle(session)
    drive_to(lc, agent, h1, S.COMPLETED, service_type='other')
    drive_to(lc, agent, h1, S.COMPLETED, service_type='other')
    busy = create_request(agent, 'other', lifecycle=lc)
    lc.assign(busy.id, h2.id)
    assert AssignmentSelector(session).pick(ServiceType.CALL_HISTORY).id == h1.id


def test_inactive_handlers_are_skipped(session, handlers):
    handlers[0].is_active = False
    session.commit()
    set_routing_rule('call_history', handlers, auto_assign=True)
    assert AssignmentSelector(session).pick(ServiceType.CALL_HISTORY).id == handlers[1].id


def test_no_handler_available(session, handlers):
    selector = AssignmentSelector(session)
    with pytest.raises(NoHandlerAvailable):
        selector.pick(ServiceType.UNBLOCK_CALL)
    set_routing_rule('unblock_call', handlers, is_active=False)
    with pytest.raises(NoHandlerAvailable):
        selector.pick(ServiceType.UNBLOCK_CALL)
    set_routing_rule('unblock_call', [], is_active=True)
    with pytest.raises(NoHandlerAvailable):
        selector.pick(ServiceType.UNBLOCK_CALL)
    assert selector.preview(ServiceType.UNBLOCK_CALL) is None


def test_validate_handler(session, handlers):
    selector = AssignmentSelector(session)
    # without a rule any active user may handle the type
    assert selector.validate_handler(ServiceType.OTHER, handlers[2].id).id == handlers[2].id
    set_routing_rule('other', [handlers[0]])
    assert selector.validate_handler(ServiceType.OTHER, handlers[0].id).id == handlers[0].id
    with pytest.raises(InvalidHandler):
        selector.validate_handler(ServiceType.OTHER, handlers[2].id)
    with pytest.raises(InvalidHandler):
        selector.validate_handler(ServiceType.OTHER, None)
    with pytest.raises(InvalidHandler):
        selector.validate_handler(ServiceType.OTHER, 99999)


def test_auto_assign_enabled(session, handlers):
    selector = AssignmentSelector(session)
    assert selector.auto_assign_enabled(ServiceType.OTHER) is False
    set_routing_rule('other', handlers, auto_assign=True)
    assert selector.auto_assign_enabled(ServiceType.OTHER) is True
    set_routing_rule('other', handlers, auto_assign=True, is_active=False)
    assert selector.auto_assign_enabled(ServiceType.OTHER) is False


def test_auto_assign_existing_request(session, handlers):
    agent = ensure_user('agent')
    lc = RequestLifecycle(session)
    sent_back = drive_to(lc, agent, handlers[1], S.SENT_BACK, service_type='momo_transaction')
    set_routing_rule('momo_transaction', handlers[1:], auto_assign=True)
    done = lc.auto_assign(sent_back.id, agent.id)
    assert (done.status, done.assigned_to) == (S.IN_PROGRESS, handlers[1].id)
