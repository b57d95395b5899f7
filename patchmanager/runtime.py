"""
Java runtime provisioning and client launch.
"""

import hashlib
import logging
import os
import shutil
import subprocess
import tarfile
import uuid
import zipfile
from typing import Callable, Dict, List, Optional

import requests

from .errors import FileSystemError, TransferError
from .monitor import log_event
from .shared_config import (
    CACHE_DIRNAME,
    CLIENT_DIRNAME,
    CLIENT_EXECUTABLE,
    JAVA_EXECUTABLE,
    JRE_MANIFEST_URL,
    jre_dir,
    platform_keys,
)
from .transfer import ResumableTransfer

StatusCallback = Callable[[str], None]


def sha256_file(path: str) -> str:
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b''):
            h.update(chunk)
    return h.hexdigest()


def flatten_directory(path: str) -> None:
    """Hoist the contents of a lone top-level folder into ``path``."""
    entries = os.listdir(path)
    subdirs = [e for e in entries if os.path.isdir(os.path.join(path, e))]
    if len(entries) != 1 or len(subdirs) != 1:
        return
    inner = os.path.join(path, subdirs[0])
    for name in os.listdir(inner):
        shutil.move(os.path.join(inner, name), os.path.join(path, name))
    os.rmdir(inner)


def extract_archive(archive: str, dest: str) -> None:
    lower = archive.lower()
    if lower.endswith('.zip'):
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(dest)
    elif lower.endswith(('.tar.gz', '.tgz')):
        with tarfile.open(archive, 'r:gz') as tf:
            # extraction filters only exist on patched interpreters
            if hasattr(tarfile, 'data_filter'):
                tf.extractall(dest, filter='data')
            else:
                tf.extractall(dest)
    else:
        raise TransferError(f"Unsupported runtime archive: {os.path.basename(archive)}")


class JavaRuntime:
    """Bundled Java runtime shared by every branch."""

    def __init__(self, install_root: str, launcher_root: str,
                 transfer: Optional[ResumableTransfer] = None,
                 manifest_url: str = JRE_MANIFEST_URL):
        self.home = jre_dir(install_root)
        self.cache_dir = os.path.join(launcher_root, CACHE_DIRNAME)
        self.transfer = transfer if transfer is not None else ResumableTransfer()
        self.manifest_url = manifest_url

    @property
    def java_path(self) -> str:
        return os.path.join(self.home, 'bin', JAVA_EXECUTABLE)

    def executable(self) -> str:
        """Bundled java if present, else whatever ``java`` is on PATH."""
        return self.java_path if os.path.isfile(self.java_path) else 'java'

    def select_download(self, manifest: Dict) -> Dict:
        os_key, arch_key = platform_keys()
        platforms = (manifest or {}).get('download_url') or {}
        entry = platforms.get(os_key, {}).get(arch_key)
        if not entry or not entry.get('url'):
            raise TransferError(f"Java runtime not available for {os_key}/{arch_key}")
        return entry

    def ensure_installed(self, status: Optional[StatusCallback] = None) -> str:
        """
        Install the runtime from the manifest unless already present.

        Network failures fall back to the system ``java``; a checksum
        mismatch is fatal.
        """
        if os.path.isfile(self.java_path):
            return self.java_path

        if status:
            status("Downloading Java runtime...")
        try:
            resp = self.transfer.session.get(self.manifest_url, timeout=self.transfer.timeout)
            resp.raise_for_status()
            entry = self.select_download(resp.json())
        except (requests.RequestException, ValueError) as e:
            log_event('runtime.manifest.failed', f'{self.manifest_url}: {e}', logging.WARNING)
            if status:
                status("Using system Java")
            return 'java'

        url = entry['url']
        archive = os.path.join(self.cache_dir, url.split('?', 1)[0].rsplit('/', 1)[-1])
        try:
            self.transfer.fetch(url, archive)
        except TransferError as e:
            if isinstance(e.__cause__, requests.RequestException):
                log_event('runtime.download.failed', str(e), logging.WARNING)
                if status:
                    status("Using system Java")
                return 'java'
            raise

        expected = (entry.get('sha256') or '').lower()
        if expected:
            actual = sha256_file(archive)
            if actual != expected:
                os.remove(archive)
                raise TransferError(
                    f"Java runtime checksum mismatch: expected {expected}, got {actual}"
                )

        if status:
            status("Extracting Java runtime...")
        os.makedirs(self.home, exist_ok=True)
        try:
            extract_archive(archive, self.home)
        except (zipfile.BadZipFile, tarfile.TarError) as e:
            os.remove(archive)
            shutil.rmtree(self.home, ignore_errors=True)
            log_event('runtime.extract.failed', f'{archive}: {e}', logging.ERROR)
            raise TransferError(f"Java runtime archive is corrupt: {e}") from e
        flatten_directory(self.home)
        os.remove(archive)
        log_event('runtime.installed', f'Java runtime installed at {self.home}')
        return self.java_path


def client_path(game_dir: str) -> str:
    return os.path.join(game_dir, CLIENT_DIRNAME, CLIENT_EXECUTABLE)


def build_launch_command(game_dir: str, java: str, player_name: str,
                         session_id: Optional[str] = None) -> List[str]:
    return [
        client_path(game_dir),
        '--app-dir', game_dir,
        '--java-exec', java,
        '--auth-mode', 'offline',
        '--uuid', session_id or str(uuid.uuid4()),
        '--name', player_name,
    ]


def launch_client(game_dir: str, java: str, player_name: str) -> subprocess.Popen:
    """Start the game client detached from the launcher."""
    exe = client_path(game_dir)
    if not os.path.isfile(exe):
        raise FileSystemError(f"Game client not found: {exe}")
    cmd = build_launch_command(game_dir, java, player_name)
    log_event('client.launch', f'Launching {exe} as {player_name}')
    try:
        return subprocess.Popen(cmd, cwd=os.path.dirname(exe))
    except OSError as e:
        raise FileSystemError(f"Could not start game client: {e}") from e
