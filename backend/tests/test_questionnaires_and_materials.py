from fastapi.testclient import TestClient

from efs.main import app
from efs.config import settings

client = TestClient(app)


def _post(headers, target=2):
    return client.post('/questionnaires', json={
        'description': 'Study habits survey', 'link': 'https://forms.example/abc', 'targetResponses': target,
    }, headers=headers)


def test_questionnaire_credit_exchange(make_user):
    creator_sid, creator = make_user()
    _, filler_a = make_user()
    _, filler_b = make_user()

    r = _post(creator)
    assert r.status_code == 201
    q = r.json()
    assert q['remaining_credits'] == settings.INITIAL_CREDITS - settings.QUESTIONNAIRE_COST
    assert _post(creator).status_code == 409

    assert any(item['id'] == q['id'] for item in client.get('/questionnaires', headers=filler_a).json())
    assert client.post(f"/questionnaires/{q['id']}/fill", headers=creator).status_code == 400

    r = client.post(f"/questionnaires/{q['id']}/fill", headers=filler_a)
    assert r.status_code == 200
    assert r.json()['new_credits'] == settings.INITIAL_CREDITS + 1
    assert client.post(f"/questionnaires/{q['id']}/fill", headers=filler_a).status_code == 400

    r = client.post(f"/questionnaires/{q['id']}/fill", headers=filler_b)
    assert r.json()['status'] == 'completed'
    assert all(item['id'] != q['id'] for item in client.get('/questionnaires', headers=filler_a).json())

    mine = client.get('/questionnaires/my', headers=creator).json()
    assert mine[0]['current_responses'] == 2
    assert len(mine[0]['filled_by']) == 2
    # the completed questionnaire no longer blocks a new one
    assert _post(creator).status_code == 201
    assert client.post('/questionnaires/999999/fill', headers=filler_a).status_code == 404


def test_questionnaire_needs_credits(make_user, admin_headers):
    sid, headers = make_user()
    client.post(f'/admin/users/{sid}/credits', json={'credits': 0}, headers=admin_headers)
    r = _post(headers)
    assert r.status_code == 400
    assert 'Insufficient credits' in r.json()['detail']
    assert client.get('/me', headers=headers).json()['credits'] == 0


def test_material_upload_download_delete(seeded_course, make_user, admin_headers):
    _, owner = make_user()
    _, other = make_user()
    files = {'file': ('notes.txt', b'week 1 notes', 'text/plain')}
    r = client.post(f'/materials/{seeded_course}', files=files, data={'description': 'Week 1'}, headers=owner)
    assert r.status_code == 201
    material = r.json()
    assert material['size'] == len(b'week 1 notes')

    listed = client.get(f'/materials/{seeded_course}').json()
    assert [m['id'] for m in listed] == [material['id']]
    assert client.get(f'/courses/{seeded_course}').json()['materials'][0]['name'] == 'notes.txt'

    download = client.get(f"/materials/file/{material['id']}")
    assert download.status_code == 200
    assert download.content == b'week 1 notes'

    assert client.delete(f"/materials/file/{material['id']}", headers=other).status_code == 403
    assert client.delete(f"/materials/file/{material['id']}", headers=owner).status_code == 200
    assert client.get(f"/materials/file/{material['id']}").status_code == 404

    r = client.post(f'/materials/{seeded_course}', files=files, headers=owner)
    assert client.delete(f"/materials/file/{r.json()['id']}", headers=admin_headers).status_code == 200


def test_material_upload_guards(seeded_course, user_headers, monkeypatch):
    files = {'file': ('notes.txt', b'x', 'text/plain')}
    assert client.post('/materials/NOSUCH1', files=files, headers=user_headers).status_code == 404
    assert client.post(f'/materials/{seeded_course}', files=files).status_code in (401, 403)
    monkeypatch.setattr(settings, 'MAX_UPLOAD_BYTES', 4)
    big = {'file': ('big.txt', b'0123456789', 'text/plain')}
    assert client.post(f'/materials/{seeded_course}', files=big, headers=user_headers).status_code == 400


def test_material_download_keeps_non_ascii_name(seeded_course, user_headers):
    files = {'file': ('筆記.pdf', b'%PDF-1.4 x', 'application/pdf')}
    r = client.post(f'/materials/{seeded_course}', files=files, headers=user_headers)
    assert r.status_code == 201, r.text
    download = client.get(f"/materials/file/{r.json()['id']}")
    assert download.status_code == 200
    assert download.content == b'%PDF-1.4 x'
    disposition = download.headers['content-disposition']
    assert "filename*=UTF-8''%E7%AD%86%E8%A8%98.pdf" in disposition
    assert 'filename="download.pdf"' in disposition
