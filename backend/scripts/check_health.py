"""Run a quick smoke request against the app with FastAPI's TestClient."""

import sys
import os

# Ensure backend folder is on sys.path so `efs` package can be imported
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient
from efs.main import app


def main() -> int:
    client = TestClient(app)
    resp = client.get('/health')
    print('STATUS:', resp.status_code)
    print('JSON:', resp.json())
    print('REQUEST ID:', resp.headers.get('X-Request-ID'))
    return 0 if resp.status_code == 200 else 1


if __name__ == '__main__':
    sys.exit(main())
