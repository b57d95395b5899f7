"""
External patch-application tool (butler).

The tool is provisioned once into ``<launcher_root>/butler`` and run as

    butler apply --staging-dir <scratch> <patch_file> <target_dir>

Every run is appended to ``<launcher_root>/logs/patcher.log``.
"""

import logging
import os
import shlex
import shutil
import signal
import stat
import subprocess
import zipfile
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from .errors import ExternalToolError, PatcherTimeoutError, TransferError
from .monitor import log_event
from .shared_config import (
    BUTLER_URL_TEMPLATE,
    CACHE_DIRNAME,
    IS_WINDOWS,
    LOGS_DIRNAME,
    PATCHER_TIMEOUT_SECONDS,
    STAGING_DIRNAME,
    TOOL_DIRNAME,
    TOOL_EXECUTABLE,
    platform_keys,
)
from .transfer import ResumableTransfer

StatusCallback = Callable[[str], None]

_KILL_GRACE_SECONDS = 5


def default_tool_url() -> str:
    os_key, arch_key = platform_keys()
    return BUTLER_URL_TEMPLATE.format(platform=f"{os_key}-{arch_key}")


class ExternalPatcherTool:
    """Provision and invoke the external patcher."""

    def __init__(self, launcher_root: str,
                 transfer: Optional[ResumableTransfer] = None,
                 download_url: Optional[str] = None,
                 timeout: float = PATCHER_TIMEOUT_SECONDS):
        self.tool_dir = os.path.join(launcher_root, TOOL_DIRNAME)
        self.cache_dir = os.path.join(launcher_root, CACHE_DIRNAME)
        self.executable = os.path.join(self.tool_dir, TOOL_EXECUTABLE)
        self.diagnostic_log = os.path.join(launcher_root, LOGS_DIRNAME, "patcher.log")
        self.transfer = transfer
        self.download_url = download_url or default_tool_url()
        self.timeout = timeout

    @property
    def is_installed(self) -> bool:
        return os.path.isfile(self.executable)

    def ensure_installed(self, status: Optional[StatusCallback] = None) -> str:
        """Download and extract the tool unless it is already present."""
        if self.is_installed:
            return self.executable

        os.makedirs(self.tool_dir, exist_ok=True)
        os.makedirs(self.cache_dir, exist_ok=True)
        archive = os.path.join(self.cache_dir, "butler.zip")

        if status:
            status("Downloading patch tool...")
        log_event('patcher.provision.start', f'Downloading {self.download_url}')
        if self.transfer is None:
            self.transfer = ResumableTransfer()
        try:
            self.transfer.fetch(self.download_url, archive)
        except TransferError as e:
            raise ExternalToolError(f"Failed to download patch tool: {e}") from e

        if status:
            status("Extracting patch tool...")
        try:
            with zipfile.ZipFile(archive) as zf:
                zf.extractall(self.tool_dir)
        except zipfile.BadZipFile as e:
            os.remove(archive)
            raise ExternalToolError(f"Patch tool archive is corrupt: {e}") from e
        os.remove(archive)

        if not self.is_installed:
            raise ExternalToolError(f"Patch tool archive did not contain {TOOL_EXECUTABLE}")
        if not IS_WINDOWS:
            mode = os.stat(self.executable).st_mode
            os.chmod(self.executable, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        log_event('patcher.provision.done', f'Patch tool ready at {self.executable}')
        return self.executable

    def apply(self, patch_file: str, target_dir: str) -> None:
        """
        Apply ``patch_file`` onto ``target_dir``.

        Raises:
            PatcherTimeoutError: the run exceeded the timeout and was killed
            ExternalToolError: launch failure or non-zero exit
        """
        staging = os.path.join(target_dir, STAGING_DIRNAME)
        os.makedirs(staging, exist_ok=True)

        argv = [self.executable, "apply", "--staging-dir", staging, patch_file, target_dir]
        returncode, stdout, stderr = self._run(argv)

        if returncode != 0:
            detail = stderr.strip() or stdout.strip() or f"exit code {returncode}"
            log_event('patcher.apply.failed',
                      f'{os.path.basename(patch_file)} exited {returncode}: {detail}',
                      logging.ERROR)
            raise ExternalToolError(f"Patch tool failed (code {returncode}): {detail}",
                                    returncode=returncode)

        shutil.rmtree(staging, ignore_errors=True)
        log_event('patcher.apply.done', f'Applied {os.path.basename(patch_file)} to {target_dir}')

    # ── Internal ───────────────────────────────────────────────

    def _run(self, argv: List[str]) -> Tuple[int, str, str]:
        try:
            proc = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=not IS_WINDOWS,
            )
        except OSError as e:
            self._append_diagnostic(argv, f"launch failed: {e}", "", "")
            raise ExternalToolError(f"Could not start patch tool: {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            try:
                stdout, stderr = proc.communicate(timeout=_KILL_GRACE_SECONDS)
            except subprocess.TimeoutExpired:
                # helpers outside the process group still hold the pipes
                stdout, stderr = "", ""
            self._append_diagnostic(argv, f"killed after {self.timeout}s timeout",
                                    stdout or "", stderr or "")
            log_event('patcher.timeout', f'Killed patch tool after {self.timeout}s', logging.ERROR)
            raise PatcherTimeoutError(f"Patch tool timed out after {self.timeout} seconds")

        self._append_diagnostic(argv, f"exit code {proc.returncode}", stdout or "", stderr or "")
        return proc.returncode, stdout or "", stderr or ""

    @staticmethod
    def _kill(proc: subprocess.Popen) -> None:
        """Kill the tool and everything it spawned."""
        if not IS_WINDOWS:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
                return
            except ProcessLookupError:
                pass
        proc.kill()

    def _append_diagnostic(self, argv: List[str], outcome: str,
                           stdout: str, stderr: str) -> None:
        os.makedirs(os.path.dirname(self.diagnostic_log), exist_ok=True)
        with open(self.diagnostic_log, "a", encoding="utf-8") as fh:
            fh.write(f"=== {datetime.now().isoformat(timespec='seconds')} ===\n")
            fh.write(f"command: {' '.join(shlex.quote(a) for a in argv)}\n")
            fh.write(f"result: {outcome}\n")
            fh.write("--- stdout ---\n")
            fh.write(stdout if stdout.endswith("\n") or not stdout else stdout + "\n")
            fh.write("--- stderr ---\n")
            fh.write(stderr if stderr.endswith("\n") or not stderr else stderr + "\n")
