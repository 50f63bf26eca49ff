from datetime import timedelta
import pytest
from casedesk import get_db
from casedesk.models.service_request import RequestStatus as S
from casedesk.services.lifecycle import RequestLifecycle, AUTO_RETURN_NOTE
from casedesk.tasks.auto_return import run_auto_return_pass, auto_return_job, start_scheduler, shutdown_scheduler, JOB_ID
from casedesk.utils.timeutil import utcnow
from tests.test_lifecycle_helpers import drive_to
from tests.test_utils_seed import ensure_user


def _lifecycle_at(session, minutes_ago):
    when = utcnow() - timedelta(minutes=minutes_ago)
    return RequestLifecycle(session, clock=lambda: when)


@pytest.fixture()
def people(session):
    return ensure_user('agent'), ensure_user('h1', 'Henry One')


def test_stale_in_progress_returned_to_queue(session, people):
    agent, h1 = people
    stale = drive_to(_lifecycle_at(session, 45), agent, h1, S.IN_PROGRESS)
    fresh = drive_to(_lifecycle_at(session, 5), agent, h1, S.IN_PROGRESS)
    investigating = drive_to(_lifecycle_at(session, 90), agent, h1, S.PENDING_INVESTIGATION)

    summary = run_auto_return_pass(session, minutes=30)
    assert summary == {'checked': 1, 'returned': 1, 'skipped': 0, 'failed': 0}

    lc = RequestLifecycle(session)
    returned = lc.get(stale.id)
    assert (returned.status, returned.assigned_to) == (S.NEW, None)
    assert returned.history[-1].performed_by is None
    assert returned.history[-1].details == AUTO_RETURN_NOTE
    assert [c.comment for c in returned.comments if c.is_system] == [AUTO_RETURN_NOTE]
    assert lc.get(fresh.id).status == S.IN_PROGRESS
    assert lc.get(investigating.id).status == S.PENDING_INVESTIGATION


class FlakyLifecycle(RequestLifecycle):
    def __init__(self, session, broken_id):
        super().__init__(session)
        self.broken_id = broken_id

    def auto_return(self, request_id, stale_before=None):
        if request_id == self.broken_id:
            raise RuntimeError('database hiccup')
        return super().auto_return(request_id, stale_before=stale_before)


def test_one_failure_does_not_stop_the_pass(session, people):
    agent, h1 = people
    old = _lifecycle_at(session, 120)
    ids = [drive_to(old, agent, h1, S.IN_PROGRESS).id for _ in range(3)]
    summary = run_auto_return_pass(session, minutes=30, lifecycle=FlakyLifecycle(session, ids[1]))
    assert summary == {'checked': 3, 'returned': 2, 'skipped': 0, 'failed': 1}
    lc = RequestLifecycle(session)
    assert [lc.requests.snapshot(i)['status'] for i in ids] == [S.NEW, S.IN_PROGRESS, S.NEW]


def test_recently_touched_request_is_skipped(session, people):
    agent, h1 = people
    req = drive_to(_lifecycle_at(session, 60), agent, h1, S.IN_PROGRESS)
    lc = RequestLifecycle(session)
    assert lc.auto_return(req.id, stale_before=utcnow() - timedelta(hours=2)) is None
    assert lc.requests.snapshot(req.id)['status'] == S.IN_PROGRESS


def test_request_moved_since_scan_counts_as_skipped(session, people):
    agent, h1 = people
    req = drive_to(_lifecycle_at(session, 60), agent, h1, S.IN_PROGRESS)

    class CompletesFirst(RequestLifecycle):
        def auto_return(self, request_id, stale_before=None):
            RequestLifecycle(session).complete(request_id, h1.id)
            return super().auto_return(request_id, stale_before=stale_before)

    summary = run_auto_return_pass(session, minutes=30, lifecycle=CompletesFirst(session))
    assert summary['skipped'] == 1 and summary['returned'] == 0
    assert RequestLifecycle(session).requests.snapshot(req.id)['status'] == S.COMPLETED


def test_scheduler_job_runs_a_pass_and_releases_session(app_instance, session, people):
    agent, h1 = people
    req_id = drive_to(_lifecycle_at(session, 60), agent, h1, S.IN_PROGRESS).id
    auto_return_job(app_instance)
    assert RequestLifecycle(get_db()).requests.snapshot(req_id)['status'] == S.NEW


def test_start_scheduler_registers_interval_job(app_instance):
    scheduler = start_scheduler(app_instance)
    try:
        job = scheduler.get_job(JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(seconds=app_instance.config['AUTO_RETURN_INTERVAL_SECONDS'])
    finally:
        shutdown_scheduler(scheduler)
    assert not scheduler.running
