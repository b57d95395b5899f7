"""
Existence checks against the patch distribution server.

There is no manifest endpoint, so the only way to learn which patches exist
is a HEAD request per candidate URL. A miss is a normal outcome.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import List, Optional

import requests

from .monitor import log_event
from .shared_config import PATCH_EXTENSION, PROBE_TIMEOUT
from .transfer import create_session


class DistributionEndpoint:
    """Primary distribution base URL with an optional wholesale mirror.

    The first base that answers a request becomes the active base, so
    downloads follow whatever discovery found reachable.
    """

    def __init__(self, primary: str, mirror: Optional[str] = None,
                 prefer_mirror: bool = False):
        self.primary = primary.rstrip('/')
        self.mirror = mirror.rstrip('/') if mirror else None
        self.prefer_mirror = prefer_mirror and self.mirror is not None
        self._lock = threading.Lock()
        self._active: Optional[str] = None

    def bases(self) -> List[str]:
        """Base URLs in try-order, the active one first."""
        order = [self.primary]
        if self.mirror:
            order = [self.mirror, self.primary] if self.prefer_mirror else [self.primary, self.mirror]
        with self._lock:
            active = self._active
        if active and active in order:
            order.remove(active)
            order.insert(0, active)
        return order

    @property
    def active_base(self) -> str:
        return self.bases()[0]

    def mark_reachable(self, base: str) -> None:
        with self._lock:
            if self._active != base:
                self._active = base
                log_event('endpoint.active', f'Using distribution base {base}')

    @staticmethod
    def build_url(base: str, branch: str, source: int, target: int) -> str:
        return f"{base}/{branch}/{source}/{target}.{PATCH_EXTENSION}"

    def patch_url(self, branch: str, source: int, target: int) -> str:
        return self.build_url(self.active_base, branch, source, target)

    def __repr__(self) -> str:
        return f"DistributionEndpoint({self.primary!r}, mirror={self.mirror!r})"


class ProbeOutcome(Enum):
    EXISTS = auto()
    ABSENT = auto()
    TRANSPORT_ERROR = auto()


@dataclass(frozen=True)
class ProbeResult:
    outcome: ProbeOutcome
    url: str = ""
    size: Optional[int] = None
    status_code: int = 0
    error: str = ""

    @property
    def exists(self) -> bool:
        return self.outcome is ProbeOutcome.EXISTS


class VersionProber:
    """HEAD-probe candidate patch URLs."""

    def __init__(self, endpoint: DistributionEndpoint,
                 session: Optional[requests.Session] = None,
                 timeout=PROBE_TIMEOUT):
        if session is None:
            session = create_session(retries=1)
        self.endpoint = endpoint
        self.session = session
        self.timeout = timeout

    def probe(self, branch: str, source: int, target: int) -> ProbeResult:
        """
        Check whether the patch ``source -> target`` is hosted for ``branch``.

        Transport errors move on to the next base URL; a definite HTTP answer
        from any base is final.
        """
        result = None
        for base in self.endpoint.bases():
            url = self.endpoint.build_url(base, branch, source, target)
            result = self._head(url)
            if result.outcome is not ProbeOutcome.TRANSPORT_ERROR:
                self.endpoint.mark_reachable(base)
                return result
            log_event('probe.transport_error', f'{url}: {result.error}', logging.DEBUG)
        return result

    def exists(self, branch: str, source: int, target: int) -> bool:
        return self.probe(branch, source, target).exists

    def _head(self, url: str) -> ProbeResult:
        try:
            resp = self.session.head(url, timeout=self.timeout, allow_redirects=True)
        except requests.RequestException as e:
            return ProbeResult(ProbeOutcome.TRANSPORT_ERROR, url=url, error=str(e))

        if 200 <= resp.status_code < 300:
            length = resp.headers.get('content-length')
            size = int(length) if length and str(length).isdigit() else None
            return ProbeResult(ProbeOutcome.EXISTS, url=url, size=size,
                               status_code=resp.status_code)
        return ProbeResult(ProbeOutcome.ABSENT, url=url, status_code=resp.status_code)
