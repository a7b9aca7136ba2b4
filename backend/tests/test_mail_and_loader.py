import time

from efs.utils.catalog_loader import find_catalog_files
from efs.utils.mail import MailOutbox


def _wait(outbox, job_id, timeout=5):
    deadline = time.time() + timeout
    job = outbox.get(job_id)
    while time.time() < deadline and job['status'] == 'queued':
        time.sleep(0.02)
        job = outbox.get(job_id)
    return job


def test_outbox_delivers_and_records_failures():
    sent = []
    outbox = MailOutbox(sender=lambda to, subject, body: sent.append((to, subject)))
    job = outbox.submit(to='a@student.test', subject='Hello', body='<p>hi</p>')
    assert job['status'] == 'queued'
    assert _wait(outbox, job['job_id'])['status'] == 'sent'
    assert sent == [('a@student.test', 'Hello')]

    def broken(to, subject, body):
        raise ConnectionError('smtp down')
    failing = MailOutbox(sender=broken)
    job = failing.submit(to='b@student.test', subject='Hi', body='')
    final = _wait(failing, job['job_id'])
    assert final['status'] == 'failed'
    assert 'smtp down' in final['error']
    assert failing.get('missing') is None


def test_find_catalog_files(tmp_path):
    (tmp_path / '2024S1').mkdir()
    (tmp_path / '2024S1' / 'catalog.csv').write_text('code\n', encoding='utf-8')
    (tmp_path / '2024S1' / '~$catalog.docx').write_bytes(b'')
    (tmp_path / '2024S1' / 'notes.txt').write_text('x', encoding='utf-8')
    (tmp_path / '2024S2').mkdir()
    (tmp_path / '2024S2' / 'catalog.json').write_text('[]', encoding='utf-8')
    assert [p.name for p in find_catalog_files(tmp_path, term='2024S1')] == ['catalog.csv']
    assert len(find_catalog_files(tmp_path)) == 2
    assert find_catalog_files(tmp_path, term='2030S1') == []
