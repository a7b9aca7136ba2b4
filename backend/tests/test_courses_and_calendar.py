import json

from fastapi.testclient import TestClient

from efs.config import settings
from efs.main import _rate_limiter, app

client = TestClient(app)


def test_course_listing_and_classes(seeded_course):
    code = seeded_course
    assert client.get('/courses').json()[code] == 'English for Academic Purposes'
    assert any(c['code'] == code for c in client.get('/courses/list').json())

    detail = client.get(f'/courses/{code.lower()}').json()
    assert detail['code'] == code
    assert [t['day'] for t in detail['timetable']] == ['Mon', 'Thu', 'Tue']
    assert detail['timetable'][0]['time'] == '09:00-10:30'

    classes = client.get(f'/courses/{code}/classes').json()
    assert [c['classNo'] for c in classes] == ['01', '02']
    assert len(classes[0]['sessions']) == 2
    assert client.get('/courses/NOSUCH1/classes').json() == []
    assert client.get('/courses/NOSUCH1').status_code == 404


def test_search_echoes_sequence(seeded_course):
    r = client.get('/courses/search', params={'q': seeded_course[:5].lower(), 'seq': 7})
    body = r.json()
    assert body['seq'] == 7
    assert any(c['code'] == seeded_course for c in body['results'])
    r = client.get('/courses/search', params={'q': 'academic purposes'})
    assert any(c['code'] == seeded_course for c in r.json()['results'])
    assert client.get('/courses/search', params={'q': '  '}).json()['results'] == []


def test_course_request_and_approval(user_headers, admin_headers, unique_code):
    code = unique_code('REQ')
    r = client.post('/courses/request', json={'code': code.lower(), 'title': 'Requested'}, headers=user_headers)
    assert r.status_code == 201
    assert r.json()['status'] == 'pending'
    assert client.post('/courses/request', json={'code': code, 'title': 'Again'}, headers=user_headers).status_code == 409
    assert code not in client.get('/courses').json()
    assert client.get(f'/courses/{code}').json()['status'] == 'pending'

    pending = client.get('/admin/pending/courses', headers=admin_headers).json()
    assert any(c['code'] == code for c in pending)
    assert client.post(f'/admin/pending/courses/{code}/approve', headers=admin_headers).status_code == 200
    assert code in client.get('/courses').json()


def test_reject_course_request(user_headers, admin_headers, unique_code):
    code = unique_code('REJ')
    client.post('/courses/request', json={'code': code, 'title': 'Nope'}, headers=user_headers)
    assert client.post(f'/admin/pending/courses/{code}/reject', headers=admin_headers).status_code == 200
    assert client.get(f'/courses/{code}').status_code == 404


def test_admin_update_course_timetable(seeded_course, admin_headers):
    code = seeded_course
    bad = {'timetable': [{'day': 'Fri', 'time': '09:00-10:00'}, {'day': 'Never', 'time': '09:00-10:00'}]}
    r = client.put(f'/admin/courses/{code}', json=bad, headers=admin_headers)
    assert r.status_code == 400
    assert 'timetable entry 1' in r.json()['detail']
    assert len(client.get(f'/courses/{code}').json()['timetable']) == 3

    update = {'description': 'Updated', 'timetable': [{'day': 'Fri', 'time': '09:00-10:00', 'classNo': '05'}]}
    r = client.put(f'/admin/courses/{code}', json=update, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['sessions'] == 1
    detail = client.get(f'/courses/{code}').json()
    assert detail['description'] == 'Updated'
    assert detail['timetable'] == [{'day': 'Fri', 'time': '09:00-10:00', 'room': '', 'classNo': '05'}]
    assert client.put('/admin/courses/NOSUCH1', json={'title': 'x'}, headers=admin_headers).status_code == 404


def test_import_reports_bad_entries(admin_headers, unique_code):
    code = unique_code('CSV')
    csv = f'code,title,class,day,time,room\n{code},Stats,01,Mon,09:00-10:00,UNC 1\n{code},Stats,02,Funday,09:00-10:00,UNC 2\n'
    r = client.post('/admin/courses/import', files={'file': ('c.csv', csv.encode(), 'text/csv')}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['sessions'] == 1
    assert r.json()['skipped'] == 1
    bad = client.post('/admin/courses/import', files={'file': ('c.txt', b'x', 'text/plain')}, headers=admin_headers)
    assert bad.status_code == 400


def test_calendar_courses_shape(seeded_course):
    sessions = [s for s in client.get('/calendar/courses').json() if s['code'] == seeded_course]
    assert len(sessions) == 3
    assert sessions[0]['campus'] == 'Kowloon East Campus'
    assert sessions[0]['id'] == f'{seeded_course}-01-0-09:00'


def test_selection_flow_and_events(seeded_course, user_headers):
    code = seeded_course
    r = client.post('/calendar/classes', json={'code': code, 'classNo': '01'}, headers=user_headers)
    assert r.json()['changed'] is True
    assert len(r.json()['data']) == 2
    again = client.post('/calendar/classes', json={'code': code, 'classNo': '01'}, headers=user_headers).json()
    assert again['changed'] is False
    assert 'already in your timetable' in again['notices'][0]
    assert client.get(f'/calendar/classes/{code}/01', headers=user_headers).json() == {'selected': True}

    events = client.get('/calendar/events', params={'weeks': 2}, headers=user_headers).json()
    assert len(events) == 4
    assert {e['title'] for e in events} == {code}
    assert client.get('/calendar/events', params={'weeks': -1}, headers=user_headers).status_code == 400

    mine = client.get('/calendar/mytimetable', headers=user_headers).json()
    assert len(mine) == 2
    r = client.delete(f'/calendar/classes/{code}/01', headers=user_headers)
    assert r.json()['changed'] is True
    assert client.get('/calendar/mytimetable', headers=user_headers).json() == []


def test_export_import_and_save(seeded_course, user_headers):
    client.post('/calendar/classes', json={'code': seeded_course, 'classNo': '02'}, headers=user_headers)
    exported = client.get('/calendar/export', headers=user_headers)
    assert exported.headers['content-type'].startswith('application/json')
    document = exported.content
    assert client.delete('/calendar/mytimetable', headers=user_headers).json()['changed'] is True
    assert client.get('/calendar/mytimetable', headers=user_headers).json() == []

    r = client.post('/calendar/import', files={'file': ('t.json', document, 'application/json')}, headers=user_headers)
    assert r.status_code == 200
    assert client.get('/calendar/mytimetable', headers=user_headers).json() == json.loads(document)

    bad = client.post('/calendar/import', files={'file': ('t.json', b'{"code": "X"}', 'application/json')},
                      headers=user_headers)
    assert bad.status_code == 400
    assert 'must be a list' in bad.json()['detail']

    assert client.post('/calendar/save', json=[], headers=user_headers).status_code == 200
    assert client.get('/calendar/mytimetable', headers=user_headers).json() == []
    assert client.post('/calendar/save', json={'not': 'a list'}, headers=user_headers).status_code == 400


def test_search_limit_is_per_student_when_signed_in(seeded_course, user_headers, monkeypatch):
    _rate_limiter.reset()
    monkeypatch.setattr(settings, 'SEARCH_RATE_LIMIT_PER_MIN', 1)
    params = {'q': seeded_course}
    assert client.get('/courses/search', params=params).status_code == 200
    r = client.get('/courses/search', params=params)
    assert r.status_code == 429
    assert int(r.headers['Retry-After']) >= 1

    # the anonymous bucket is spent, the signed-in student has their own
    assert client.get('/courses/search', params=params, headers=user_headers).status_code == 200
    assert client.get('/courses/search', params=params, headers=user_headers).status_code == 429
    # an unusable token falls back to the address bucket
    bad = {'Authorization': 'Bearer not-a-token'}
    assert client.get('/courses/search', params=params, headers=bad).status_code == 429
    _rate_limiter.reset()


def test_import_rejects_unreadable_documents(admin_headers):
    for name, ctype in (('c.docx', 'application/vnd.openxmlformats-officedocument.wordprocessingml.document'),
                        ('c.pdf', 'application/pdf')):
        r = client.post('/admin/courses/import', files={'file': (name, b'garbage bytes', ctype)}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()['detail'] == 'unreadable catalog file'
