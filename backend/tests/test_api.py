import io

from arena import db
from arena.models import Participant


def _files(prompt=b'You are a careful summarizer...', output=b'Release notes:\n- ...'):
    return {
        'prompt_file': (io.BytesIO(prompt), 'prompt.txt'),
        'output_file': (io.BytesIO(output), 'output.txt'),
    }


def _login(client, comp_id, lan_id='jdoe'):
    return client.post(f'/api/competitions/{comp_id}/login', json={'lan_id': lan_id})


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert 'message' in res.get_json()


def test_list_and_get_competitions(client, make_competition):
    comp = make_competition(name='Sprint', minutes=15)
    res = client.get('/api/competitions')
    assert res.status_code == 200
    assert [c['name'] for c in res.get_json()] == ['Sprint']

    res = client.get(f'/api/competitions/{comp.id}')
    assert res.get_json()['time_limit_minutes'] == 15
    res = client.get('/api/competitions/999')
    assert res.status_code == 404
    assert res.get_json()['code'] == 'CompetitionNotFound'


def test_login_creates_then_resumes(client, make_competition, clock):
    comp = make_competition(questions=3, minutes=1)
    res = _login(client, comp.id, ' jdoe ')
    assert res.status_code == 201
    first = res.get_json()
    assert first['participant']['lan_id'] == 'JDOE'
    assert first['remaining'] == 60
    assert first['question']['attachments']

    clock.advance(20)
    res = _login(client, comp.id, 'JDOE')
    assert res.status_code == 200
    again = res.get_json()
    assert again['resumed'] is True
    assert again['end_time'] == first['end_time']
    assert again['question']['id'] == first['question']['id']
    assert again['remaining'] == 40


def test_login_failures_create_nothing(client, make_competition):
    empty = make_competition(questions=0, minutes=1)
    res = _login(client, empty.id)
    assert res.status_code == 409
    assert res.get_json()['code'] == 'NoQuestions'

    upcoming = make_competition(status='upcoming')
    res = _login(client, upcoming.id)
    assert res.status_code == 403
    assert res.get_json()['code'] == 'CompetitionNotOngoing'

    res = _login(client, empty.id, '   ')
    assert res.status_code == 400
    assert Participant.query.count() == 0


def test_submit_files_once(client, make_competition):
    comp = make_competition(minutes=1)
    _login(client, comp.id)

    res = client.post(f'/api/competitions/{comp.id}/submit', data=_files(), content_type='multipart/form-data')
    assert res.status_code == 201
    body = res.get_json()
    assert body['accepted'] is True and body['score'] == 42

    db.session.expire_all()
    p = Participant.query.filter_by(lan_id='JDOE').one()
    assert p.submitted is True
    assert p.prompt_file_url.startswith(f'/uploads/{comp.id}/JDOE/prompt_file_')
    stored = client.get(p.prompt_file_url)
    assert stored.status_code == 200
    assert stored.data == b'You are a careful summarizer...'
    stored.close()

    res = client.post(f'/api/competitions/{comp.id}/submit', data=_files(b'again', b'again'),
                      content_type='multipart/form-data')
    assert res.status_code == 200
    assert res.get_json()['duplicate'] is True
    assert res.get_json()['score'] == 42

    res = _login(client, comp.id)
    assert res.status_code == 409
    assert res.get_json()['error'] == 'This LAN ID has already been used for this competition.'


def test_incomplete_submit_can_be_retried(client, make_competition):
    comp = make_competition(minutes=1)
    _login(client, comp.id)
    res = client.post(f'/api/competitions/{comp.id}/submit',
                      data={'prompt_file': (io.BytesIO(b'only a prompt'), 'prompt.txt')},
                      content_type='multipart/form-data')
    assert res.status_code == 400
    assert res.get_json()['code'] == 'IncompleteSubmission'
    assert res.get_json()['missing'] == ['output_file']

    res = client.post(f'/api/competitions/{comp.id}/submit', data=_files(), content_type='multipart/form-data')
    assert res.status_code == 201


def test_draft_is_auto_submitted_on_expiry(client, coordinator, make_competition, clock):
    comp = make_competition(minutes=1)
    _login(client, comp.id)
    res = client.put(f'/api/competitions/{comp.id}/draft',
                     data={'prompt_file': (io.BytesIO(b'draft prompt'), 'prompt.txt'), 'notes': 'wip'},
                     content_type='multipart/form-data')
    assert res.status_code == 200
    assert res.get_json()['draft']['notes'] == 'wip'

    res = client.get(f'/api/competitions/{comp.id}/session')
    assert res.get_json()['active'] is True

    clock.advance(60)
    result = coordinator.handle_expiry('JDOE', comp.id)
    assert result.accepted and result.trigger == 'auto'

    db.session.expire_all()
    p = Participant.query.filter_by(lan_id='JDOE').one()
    assert p.submitted is True and p.score == 42
    assert p.answer['notes'] == 'wip'
    assert p.prompt_file_url.startswith(f'/uploads/{comp.id}/JDOE/prompt_file_')

    res = client.get(f'/api/competitions/{comp.id}/session')
    assert res.get_json() == {'active': False}


def test_session_check_after_reload(client, make_competition):
    comp = make_competition(minutes=5)
    assert client.get(f'/api/competitions/{comp.id}/session').get_json() == {'active': False}

    first = _login(client, comp.id).get_json()
    res = client.get(f'/api/competitions/{comp.id}/session')
    body = res.get_json()
    assert body['active'] is True
    assert body['state'] == 'active'
    assert body['end_time'] == first['end_time']


def test_logout_keeps_session_resumable(client, make_competition):
    comp = make_competition(minutes=5)
    first = _login(client, comp.id).get_json()
    assert client.post(f'/api/competitions/{comp.id}/logout').get_json() == {'success': True}

    other = client.application.test_client()
    res = _login(other, comp.id)
    assert res.status_code == 200
    assert res.get_json()['end_time'] == first['end_time']


def test_submit_requires_login(client, make_competition):
    comp = make_competition(minutes=5)
    res = client.post(f'/api/competitions/{comp.id}/submit', data=_files(), content_type='multipart/form-data')
    assert res.status_code == 401


def test_leaderboards(client, make_competition):
    comp_a = make_competition(name='A')
    comp_b = make_competition(name='B')
    for comp in (comp_a, comp_b):
        _login(client, comp.id)
        assert client.post(f'/api/competitions/{comp.id}/submit', data=_files(),
                           content_type='multipart/form-data').status_code == 201

    board = client.get(f'/api/competitions/{comp_a.id}/leaderboard').get_json()
    assert [(e['lan_id'], e['score'], e['overall_score']) for e in board] == [('JDOE', 42, 84)]
    overall = client.get('/api/competitions/leaderboard/overall').get_json()
    assert overall == [{'lan_id': 'JDOE', 'overall_score': 84}]
    assert client.get('/api/competitions/999/leaderboard').status_code == 404


def test_login_after_missed_expiry_submits_draft(client, make_competition, clock):
    comp = make_competition(minutes=1)
    _login(client, comp.id)
    client.put(f'/api/competitions/{comp.id}/draft', data={'notes': 'wip'}, content_type='multipart/form-data')
    # Nothing closed the session at its deadline (the countdown was lost)
    clock.advance(61)

    res = _login(client, comp.id)
    assert res.status_code == 409
    assert res.get_json()['code'] == 'AlreadyUsed'

    db.session.expire_all()
    p = Participant.query.filter_by(lan_id='JDOE').one()
    assert p.submitted is True and p.score == 42
    assert p.answer == {'notes': 'wip'}
