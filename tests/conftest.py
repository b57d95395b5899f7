import re

import pytest
import requests


class FakeResponse:
    def __init__(self, data: bytes = b'', status_code: int = 200, headers=None, payload=None):
        self._data = data
        self.status_code = status_code
        self.headers = headers if headers is not None else {'content-length': str(len(data))}
        self._payload = payload
        self.closed = False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def iter_content(self, chunk_size=65536):
        for i in range(0, len(self._data), chunk_size):
            yield self._data[i:i + chunk_size]

    def json(self):
        return self._payload

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeServer:
    """In-memory stand-in for ``requests.Session`` serving fixed files.

    URLs whose prefix is listed in ``unreachable`` raise ConnectionError.
    """

    _RANGE = re.compile(r'bytes=(\d+)-')

    def __init__(self, files=None, supports_range=True, unreachable=(), send_length=True):
        self.files = dict(files or {})
        self.supports_range = supports_range
        self.unreachable = tuple(unreachable)
        self.send_length = send_length
        self.head_calls = []
        self.get_calls = []

    def _check(self, url):
        if any(url.startswith(prefix) for prefix in self.unreachable):
            raise requests.ConnectionError(f"cannot reach {url}")

    def head(self, url, timeout=None, allow_redirects=True):
        self.head_calls.append(url)
        self._check(url)
        if url not in self.files:
            return FakeResponse(status_code=404, headers={})
        return FakeResponse(status_code=200,
                            headers={'content-length': str(len(self.files[url]))})

    def get(self, url, headers=None, stream=True, timeout=None):
        headers = headers or {}
        self.get_calls.append((url, dict(headers)))
        self._check(url)
        if url not in self.files:
            return FakeResponse(status_code=404, headers={})
        data = self.files[url]
        match = self._RANGE.match(headers.get('Range', ''))
        if match and self.supports_range:
            start = int(match.group(1))
            if start >= len(data):
                return FakeResponse(status_code=416, headers={})
            body = data[start:]
            return FakeResponse(body, status_code=206, headers={
                'content-length': str(len(body)),
                'content-range': f'bytes {start}-{len(data) - 1}/{len(data)}',
            })
        resp_headers = {'content-length': str(len(data))} if self.send_length else {}
        return FakeResponse(data, status_code=200, headers=resp_headers)


@pytest.fixture
def fake_server():
    return FakeServer
