"""
Resumable downloads over HTTP.

Partial data lives next to the destination as ``<dest>.part`` and is
continued with a ``Range`` request. The destination only ever appears once
the transfer is complete and flushed.
"""

import logging
import os
import re
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import SizeMismatchError, TransferError
from .monitor import log_event
from .shared_config import CHUNK_SIZE, DOWNLOAD_TIMEOUT, USER_AGENT

ProgressCallback = Callable[[Optional[float]], None]

_CONTENT_RANGE_RE = re.compile(r'bytes\s+\d+-\d+/(\d+)')


def create_session(retries: int = 3, pool_size: int = 10) -> requests.Session:
    """Build a pooled session with retry on transient server errors."""
    session = requests.Session()

    # allow disabling proxy/env auto-discovery on routes where it misbehaves
    trust_env_raw = os.getenv("PATCHMANAGER_TRUST_ENV", "1").strip().lower()
    session.trust_env = trust_env_raw not in ("0", "false", "no", "off")

    retry = Retry(
        total=retries,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["HEAD", "GET", "OPTIONS"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(
        max_retries=retry,
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        pool_block=False,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({
        'User-Agent': USER_AGENT,
        'Connection': 'keep-alive',
    })
    return session


class ResumableTransfer:
    """Fetch a URL to a local file with resume, cache reuse and size checks."""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout=DOWNLOAD_TIMEOUT, chunk_size: int = CHUNK_SIZE):
        self.session = session if session is not None else create_session()
        self.timeout = timeout
        self.chunk_size = chunk_size

    def fetch(self, url: str, dest_path: str,
              expected_size: Optional[int] = None,
              progress: Optional[ProgressCallback] = None) -> str:
        """
        Download ``url`` into ``dest_path``.

        Args:
            url: Source URL
            dest_path: Final file location
            expected_size: Size announced by a prior probe, if any
            progress: Optional callback(percent) where percent is None when
                the total size is unknown

        Returns:
            ``dest_path``

        Raises:
            SizeMismatchError: the finished file has the wrong size (deleted)
            TransferError: network or HTTP failure (partial data is kept)
        """
        if self._reuse_cached(dest_path, expected_size):
            if progress:
                progress(100.0)
            return dest_path

        os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
        part_path = dest_path + ".part"
        offset = os.path.getsize(part_path) if os.path.exists(part_path) else 0
        if expected_size is not None and offset > expected_size:
            log_event('transfer.part.oversized',
                      f'Discarding {part_path}: {offset} > {expected_size} bytes',
                      logging.WARNING)
            self._discard(part_path)
            offset = 0
        elif expected_size and offset == expected_size:
            os.replace(part_path, dest_path)
            log_event('transfer.part.complete',
                      f'{part_path} already holds {offset} bytes; finished without request')
            if progress:
                progress(100.0)
            return dest_path

        try:
            resp = self._request(url, offset)
            if offset > 0 and resp.status_code != 206:
                log_event('transfer.resume.unsupported',
                          f'Server ignored range for {url} (HTTP {resp.status_code}); restarting',
                          logging.WARNING)
                self._discard(part_path)
                offset = 0
                if resp.status_code != 200:
                    resp.close()
                    resp = self._request(url, 0)

            with resp:
                if resp.status_code >= 400:
                    raise TransferError(f"HTTP {resp.status_code} while downloading {url}")
                total = self._total_size(resp, offset)
                downloaded = self._stream(resp, part_path, offset, total, progress)
        except requests.RequestException as e:
            log_event('transfer.failed', f'{url}: {e}', logging.ERROR)
            raise TransferError(f"Download failed for {url}: {e}") from e

        want = expected_size if expected_size is not None else total
        if want is not None and downloaded != want:
            self._discard(part_path)
            log_event('transfer.size.mismatch',
                      f'{url}: expected {want} bytes, got {downloaded}', logging.ERROR)
            raise SizeMismatchError(dest_path, want, downloaded)

        os.replace(part_path, dest_path)
        log_event('transfer.file.saved', f'Saved {url} -> {dest_path} ({downloaded} bytes)')
        return dest_path

    # ── Internal ───────────────────────────────────────────────

    def _reuse_cached(self, dest_path: str, expected_size: Optional[int]) -> bool:
        if not os.path.exists(dest_path):
            return False
        actual = os.path.getsize(dest_path)
        if expected_size is None or actual == expected_size:
            log_event('transfer.cache.hit', f'Reusing {dest_path} ({actual} bytes)')
            return True
        log_event('transfer.cache.stale',
                  f'{dest_path} is {actual} bytes, expected {expected_size}; re-fetching',
                  logging.WARNING)
        self._discard(dest_path)
        return False

    def _request(self, url: str, offset: int):
        headers = {}
        if offset > 0:
            headers['Range'] = f'bytes={offset}-'
        return self.session.get(url, headers=headers, stream=True, timeout=self.timeout)

    @staticmethod
    def _total_size(resp, offset: int) -> Optional[int]:
        if resp.status_code == 206:
            match = _CONTENT_RANGE_RE.search(resp.headers.get('content-range', ''))
            if match:
                return int(match.group(1))
        length = int(resp.headers.get('content-length', 0) or 0)
        if length <= 0:
            return None
        return offset + length if resp.status_code == 206 else length

    def _stream(self, resp, part_path: str, offset: int,
                total: Optional[int], progress: Optional[ProgressCallback]) -> int:
        downloaded = offset
        mode = "ab" if offset > 0 else "wb"
        with open(part_path, mode) as fh:
            for chunk in resp.iter_content(chunk_size=self.chunk_size):
                if not chunk:
                    continue
                fh.write(chunk)
                downloaded += len(chunk)
                if progress:
                    progress(downloaded / total * 100 if total else None)
            fh.flush()
            os.fsync(fh.fileno())
        return downloaded

    @staticmethod
    def _discard(path: str) -> None:
        if os.path.exists(path):
            os.remove(path)
