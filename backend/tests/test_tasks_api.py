import pytest
from tests.test_utils_seed import ensure_user
from tests.test_lifecycle_helpers import jwt_headers, assert_transition, assert_error

TASK_PERMS = ['TASK.READ', 'TASK.CREATE', 'TASK.CLAIM', 'TASK.UPDATE', 'TASK.COMMENT']
PAYLOAD = {'service_type': 'stolen_phone_check', 'full_names': 'John Doe', 'primary_contact': '0788123456',
           'details': 'IMEI 356789012345678'}


@pytest.fixture()
def actors(app_context):
    agent, h1 = ensure_user('agent', 'Alice Agent'), ensure_user('h1', 'Henry One')
    return agent, h1, jwt_headers(agent.id, TASK_PERMS), jwt_headers(h1.id, TASK_PERMS)


def _create(client, headers, **overrides):
    resp = client.post('/tasks/requests', json={**PAYLOAD, **overrides}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def test_create_claim_investigate_complete(client, actors):
    agent, h1, agent_h, h1_h = actors
    body = _create(client, agent_h)
    assert body['reference_number'].startswith('SSR-')
    assert body['status'] == 'new' and body['assigned_to'] is None
    assert body['created_by'] == {'id': agent.id, 'full_name': 'Alice Agent'}
    assert [h['action'] for h in body['history']] == ['created']
    rid = body['id']

    available = client.get('/tasks/available', headers=h1_h).get_json()
    assert [r['id'] for r in available['data']] == [rid]
    assert available['pagination']['total'] == 1

    claimed = assert_transition(client, 'POST', f'/tasks/requests/{rid}/claim', h1_h, 200, 'in_progress').get_json()
    assert claimed['assigned_to'] == {'id': h1.id, 'full_name': 'Henry One'}
    assert_error(client.post(f'/tasks/requests/{rid}/claim', headers=agent_h), 409, 'invalid_transition')

    mine = client.get('/tasks/assigned?status=in_progress', headers=h1_h).get_json()
    assert [r['id'] for r in mine['data']] == [rid]
    # only the assignee works the request from the task surface
    assert client.post(f'/tasks/requests/{rid}/complete', headers=agent_h).status_code == 403

    resp = client.post(f'/tasks/requests/{rid}/comments', json={'comment': 'checking with operator'}, headers=h1_h)
    assert resp.status_code == 201 and resp.get_json()['comment'] == 'checking with operator'
    assert_transition(client, 'POST', f'/tasks/requests/{rid}/investigate', h1_h, 200, 'pending_investigation')
    done = assert_transition(client, 'POST', f'/tasks/requests/{rid}/complete', h1_h, 200, 'completed').get_json()
    assert [h['action'] for h in done['history']] == [
        'created', 'status_change', 'comment_added', 'status_change', 'status_change']
    submitted = client.get('/tasks/submitted', headers=agent_h).get_json()
    assert [r['id'] for r in submitted['data']] == [rid]


def test_send_back_and_edit(client, actors):
    agent, h1, agent_h, h1_h = actors
    rid = _create(client, agent_h)['id']
    client.post(f'/tasks/requests/{rid}/claim', headers=h1_h)
    assert_error(client.post(f'/tasks/requests/{rid}/send-back', json={}, headers=h1_h), 400, 'validation_error')
    sent = assert_transition(client, 'POST', f'/tasks/requests/{rid}/send-back', h1_h, 200, 'sent_back',
                             json={'reason': 'Passport number missing'}).get_json()
    assert sent['assigned_to'] is None
    assert [c['comment'] for c in sent['comments'] if c['is_send_back_reason']] == ['Passport number missing']

    back = client.get('/tasks/sent-back', headers=agent_h).get_json()
    assert [r['id'] for r in back['data']] == [rid]
    assert client.get('/tasks/submitted', headers=agent_h).get_json()['data'] == []

    resp = client.patch(f'/tasks/requests/{rid}', json={'id_passport': 'PC123456'}, headers=agent_h)
    assert resp.status_code == 200 and resp.get_json()['id_passport'] == 'PC123456'
    assert_error(client.patch(f'/tasks/requests/{rid}', json={'status': 'new'}, headers=agent_h), 400, 'validation_error')


def test_create_validation_and_missing_request(client, actors):
    _, _, agent_h, _ = actors
    assert_error(client.post('/tasks/requests', json={'full_names': 'x'}, headers=agent_h), 400, 'validation_error')
    assert_error(client.post('/tasks/requests', json={**PAYLOAD, 'service_type': 'pizza'}, headers=agent_h),
                 400, 'validation_error')
    assert_error(client.get('/tasks/requests/987654', headers=agent_h), 404, 'not_found')
    assert_error(client.post('/tasks/requests/987654/claim', headers=agent_h), 404, 'not_found')


def test_polling_endpoints(client, actors):
    _, _, agent_h, h1_h = actors
    rid = _create(client, agent_h)['id']
    fresh = client.get('/tasks/new-since/0', headers=h1_h).get_json()
    assert [r['id'] for r in fresh['data']] == [rid]
    assert client.get('/tasks/new-since/4102444800000', headers=h1_h).get_json()['data'] == []
    assert_error(client.get('/tasks/new-since/yesterday', headers=h1_h), 400, 'validation_error')

    client.post(f'/tasks/requests/{rid}/claim', headers=h1_h)
    changes = client.get('/tasks/status-changes/0', headers=agent_h).get_json()['data']
    assert [(c['request_id'], c['status']) for c in changes] == [(rid, 'in_progress')]


def test_list_pagination_bounds(client, actors):
    _, _, agent_h, _ = actors
    for _ in range(3):
        _create(client, agent_h)
    page = client.get('/tasks/available?limit=2&offset=1&sort=-id', headers=agent_h).get_json()
    assert page['pagination'] == {'total': 3, 'limit': 2, 'offset': 1, 'returned': 2}
    assert_error(client.get('/tasks/available?limit=many', headers=agent_h), 400, 'validation_error')
    assert_error(client.get('/tasks/available?sort=secret', headers=agent_h), 400, 'validation_error')


def test_former_assignee_cannot_finish_reassigned_request(client, actors, monkeypatch):
    import casedesk.routes.tasks as tasks_mod
    from casedesk import get_db
    from casedesk.services.lifecycle import RequestLifecycle
    agent, h1, agent_h, h1_h = actors
    h2 = ensure_user('h2', 'Hana Two')
    rid = _create(client, agent_h)['id']
    client.post(f'/tasks/requests/{rid}/claim', headers=h1_h)

    real_check = tasks_mod._assert_assignee

    def check_then_reassign(lifecycle, request_id, user_id):
        real_check(lifecycle, request_id, user_id)
        # a manager moves the request to someone else before the write lands
        manager = RequestLifecycle(get_db())
        manager.send_back(request_id, agent.id, 'wrong handler')
        manager.assign(request_id, h2.id, agent.id)

    monkeypatch.setattr(tasks_mod, '_assert_assignee', check_then_reassign)
    assert_error(client.post(f'/tasks/requests/{rid}/complete', headers=h1_h), 409, 'conflict')
    monkeypatch.undo()

    body = client.get(f'/tasks/requests/{rid}', headers=agent_h).get_json()
    assert body['status'] == 'in_progress'
    assert body['assigned_to'] == {'id': h2.id, 'full_name': 'Hana Two'}


def test_comment_reactions(client, actors):
    agent, h1, agent_h, h1_h = actors
    rid = _create(client, agent_h)['id']
    cid = client.post(f'/tasks/requests/{rid}/comments', json={'comment': 'IMEI confirmed'},
                      headers=agent_h).get_json()['id']
    url = f'/tasks/comments/{cid}/reactions'

    resp = client.post(url, json={'reaction_type': 'like'}, headers=h1_h)
    assert resp.status_code == 200
    assert resp.get_json() == {'comment_id': cid, 'reaction_type': 'like',
                               'reaction_counts': {'like': 1, 'dislike': 0}}
    body = client.post(url, json={'reaction_type': 'dislike'}, headers=agent_h).get_json()
    assert body['reaction_counts'] == {'like': 1, 'dislike': 1}
    body = client.post(url, json={'reaction_type': 'like'}, headers=h1_h).get_json()
    assert body['reaction_type'] is None and body['reaction_counts'] == {'like': 0, 'dislike': 1}

    comment = client.get(f'/tasks/requests/{rid}', headers=agent_h).get_json()['comments'][0]
    assert comment['reactions'] == [{'user_id': agent.id, 'reaction_type': 'dislike'}]
    assert comment['reaction_counts'] == {'like': 0, 'dislike': 1}

    assert_error(client.post(url, json={'reaction_type': 'love'}, headers=h1_h), 400, 'validation_error')
    assert_error(client.post(f'/tasks/comments/{cid + 999}/reactions', json={'reaction_type': 'like'},
                             headers=h1_h), 404, 'not_found')
    assert client.post(url, json={'reaction_type': 'like'},
                       headers=jwt_headers(h1.id, ['TASK.READ'])).status_code == 403
