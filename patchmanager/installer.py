"""
Installation orchestration.

``InstallationManager`` ties discovery, path resolution, downloads and the
external patcher together for one or more branches. The installed version
of a branch is the integer in ``<game_dir>/.version``; it is advanced after
each patch is applied successfully and is the only record a retried install
resumes from.

Operations on the same branch are serialized by a per-branch lock. Progress
and status are pushed to listeners as ``ProgressEvent``/``StatusEvent``;
the ``*_stream`` variants run the operation on a worker thread and hand the
caller an ``EventStream`` to iterate.
"""

import logging
import os
import queue
import threading
from typing import Callable, Dict, Iterator, List, Optional, Union

import requests

from .discovery import DiscoveryResult, PatchGraphBuilder
from .errors import (
    FileSystemError,
    PatchManagerError,
    SizeMismatchError,
    TransferError,
)
from .models import (
    BranchState,
    GameVersion,
    InstallResult,
    InstallState,
    PatchEdge,
    PatchSet,
    ProgressEvent,
    StatusEvent,
)
from .monitor import log_event, start_monitored_thread
from .patcher import ExternalPatcherTool
from .prober import DistributionEndpoint, VersionProber
from .resolver import resolve_update_path
from .runtime import JavaRuntime, client_path, launch_client
from .shared_config import (
    CACHE_DIRNAME,
    CONSECUTIVE_MISSES_TO_STOP,
    INSTALL_DIR,
    LAUNCHER_DIR,
    PATCH_EXTENSION,
    VERSION_FILENAME,
    game_dir,
)
from .transfer import ResumableTransfer, create_session

Event = Union[ProgressEvent, StatusEvent, InstallResult, DiscoveryResult]
EventSink = Callable[[Event], None]


class EventStream:
    """Events produced by a background operation, consumed by iteration.

    The producer never blocks: events go to an unbounded queue. Iteration
    ends after the terminal result (an ``InstallResult`` or
    ``DiscoveryResult``) has been yielded.
    """

    _DONE = object()

    def __init__(self):
        self._queue: "queue.Queue" = queue.Queue()
        self.result = None

    def put(self, event: Event) -> None:
        self._queue.put(event)

    def close(self, result=None) -> None:
        self.result = result
        if result is not None:
            self._queue.put(result)
        self._queue.put(self._DONE)

    def __iter__(self) -> Iterator[Event]:
        while True:
            item = self._queue.get()
            if item is self._DONE:
                return
            yield item

    def wait(self):
        """Drain remaining events and return the terminal result."""
        for _ in self:
            pass
        return self.result


class InstallationManager:
    """Discover, download and apply patches for game branches."""

    def __init__(self, endpoint: DistributionEndpoint,
                 install_root: str = INSTALL_DIR,
                 launcher_root: str = LAUNCHER_DIR,
                 prober: Optional[VersionProber] = None,
                 builder: Optional[PatchGraphBuilder] = None,
                 transfer: Optional[ResumableTransfer] = None,
                 patcher: Optional[ExternalPatcherTool] = None,
                 runtime: Optional[JavaRuntime] = None,
                 miss_threshold: int = CONSECUTIVE_MISSES_TO_STOP,
                 workers: int = 1):
        self.endpoint = endpoint
        self.install_root = install_root
        self.launcher_root = launcher_root
        self.cache_dir = os.path.join(launcher_root, CACHE_DIRNAME)

        self.transfer = transfer if transfer is not None else ResumableTransfer()
        self.prober = prober if prober is not None else VersionProber(endpoint)
        self.builder = builder if builder is not None else PatchGraphBuilder(
            self.prober, miss_threshold=miss_threshold, workers=workers)
        self.patcher = patcher if patcher is not None else ExternalPatcherTool(
            launcher_root, transfer=self.transfer)
        self.runtime = runtime if runtime is not None else JavaRuntime(
            install_root, launcher_root, transfer=self.transfer)

        self._listeners: List[EventSink] = []
        self._snapshots: Dict[str, PatchSet] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Dict) -> 'InstallationManager':
        from .settings import build_endpoint, download_timeout

        endpoint = build_endpoint(settings)
        http = settings.get('http', {})
        discovery = settings.get('discovery', {})
        launcher_root = settings.get('launcher_root') or LAUNCHER_DIR
        install_root = settings.get('install_root') or INSTALL_DIR

        transfer = ResumableTransfer(create_session(), timeout=download_timeout(settings))
        prober = VersionProber(endpoint, create_session(retries=1),
                               timeout=http.get('probe_timeout', 5))
        patcher = ExternalPatcherTool(
            launcher_root, transfer=transfer,
            timeout=settings.get('patcher', {}).get('timeout', 600))
        return cls(
            endpoint,
            install_root=install_root,
            launcher_root=launcher_root,
            prober=prober,
            transfer=transfer,
            patcher=patcher,
            miss_threshold=discovery.get('miss_threshold', CONSECUTIVE_MISSES_TO_STOP),
            workers=discovery.get('workers', 1),
        )

    # ── Listeners ──────────────────────────────────────────────

    def add_listener(self, listener: EventSink) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventSink) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _sink(self, extra: Optional[EventSink] = None) -> EventSink:
        targets = list(self._listeners)
        if extra is not None:
            targets.append(extra)

        def emit(event: Event) -> None:
            for target in targets:
                try:
                    target(event)
                except Exception:
                    logging.getLogger('patchmanager').exception(
                        "event listener %r failed", target)

        return emit

    # ── Layout and marker ──────────────────────────────────────

    def game_dir(self, branch: str) -> str:
        return game_dir(self.install_root, branch)

    def marker_path(self, branch: str) -> str:
        return os.path.join(self.game_dir(branch), VERSION_FILENAME)

    def client_path(self, branch: str) -> str:
        return client_path(self.game_dir(branch))

    def cache_path(self, branch: str, edge: PatchEdge) -> str:
        return os.path.join(
            self.cache_dir, f"{branch}_{edge.source}_{edge.target}.{PATCH_EXTENSION}")

    def read_marker(self, branch: str) -> int:
        try:
            with open(self.marker_path(branch), 'r', encoding='utf-8') as f:
                value = int(f.read().strip())
        except (OSError, ValueError):
            return 0
        return value if value > 0 else 0

    def write_marker(self, branch: str, version: int) -> None:
        path = self.marker_path(branch)
        tmp = path + '.tmp'
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp, 'w', encoding='utf-8') as f:
                f.write(str(version))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except OSError as e:
            raise FileSystemError(f"Cannot write version marker {path}: {e}") from e

    def branch_state(self, branch: str, target: Optional[int] = None) -> BranchState:
        marker = self.read_marker(branch)
        if marker == 0 or not os.path.isfile(self.client_path(branch)):
            return BranchState(InstallState.NOT_INSTALLED, marker)
        if target is None:
            snapshot = self._snapshots.get(branch)
            targets = snapshot.targets() if snapshot else []
            target = targets[-1] if targets else marker
        if marker >= target:
            return BranchState(InstallState.UP_TO_DATE, marker)
        return BranchState(InstallState.PARTIALLY_INSTALLED, marker)

    def snapshot(self, branch: str) -> Optional[PatchSet]:
        return self._snapshots.get(branch)

    def branch_lock(self, branch: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(branch)
            if lock is None:
                lock = self._locks[branch] = threading.Lock()
            return lock

    # ── Discovery ──────────────────────────────────────────────

    def discover(self, branch: str, on_event: Optional[EventSink] = None) -> DiscoveryResult:
        """Probe the server for ``branch`` and replace its cached snapshot."""
        emit = self._sink(on_event)
        with self.branch_lock(branch):
            return self._discover_locked(branch, emit)

    def _discover_locked(self, branch: str, emit: EventSink) -> DiscoveryResult:
        emit(StatusEvent("Checking available versions..."))
        result = self.builder.discover(branch, progress=lambda p: emit(ProgressEvent(p)))
        self._snapshots[branch] = result.patch_set
        return result

    # ── Install ────────────────────────────────────────────────

    @staticmethod
    def _coerce(version: Union[GameVersion, int], branch: Optional[str]) -> GameVersion:
        if isinstance(version, GameVersion):
            target = version
        else:
            target = GameVersion(version=int(version), name=f"Version {version}",
                                 branch=branch or 'release')
        if target.version < 1:
            raise ValueError(f"target version must be >= 1, got {target.version}")
        return target

    def install(self, version: Union[GameVersion, int], branch: Optional[str] = None,
                patch_set: Optional[PatchSet] = None,
                on_event: Optional[EventSink] = None) -> InstallResult:
        """
        Bring ``branch`` to ``version``.

        Uses ``patch_set`` when given, else the branch's cached snapshot,
        else runs discovery first. Never raises for download, patch or
        filesystem failures; those come back as a failed ``InstallResult``.
        """
        target = self._coerce(version, branch)
        emit = self._sink(on_event)
        with self.branch_lock(target.branch):
            return self._install_locked(target, patch_set, emit)

    def _install_locked(self, target: GameVersion, patch_set: Optional[PatchSet],
                        emit: EventSink) -> InstallResult:
        branch = target.branch
        marker = self.read_marker(branch)
        client_present = os.path.isfile(self.client_path(branch))

        if marker == target.version and client_present:
            emit(StatusEvent("Game is already installed"))
            emit(ProgressEvent(100.0))
            return InstallResult(True, branch, target.version, marker=marker)

        applied: List[PatchEdge] = []
        try:
            os.makedirs(self.game_dir(branch), exist_ok=True)
            snapshot = self._edges_for(branch, patch_set, emit)
            plan = resolve_update_path(marker, target.version, snapshot.edges)

            if not plan:
                if client_present:
                    emit(StatusEvent(f"Installed version {marker} is newer than {target.version}"))
                    emit(ProgressEvent(100.0))
                    return InstallResult(True, branch, target.version, marker=marker)
                # marker says installed but the client is gone
                plan = [PatchEdge(0, target.version)]

            log_event('install.plan',
                      f'{branch}: {marker} -> {target.version} via '
                      f'{", ".join(str(e) for e in plan)}')

            for edge in plan:
                self._apply_edge(branch, edge, snapshot.size_of(edge), emit)
                self.write_marker(branch, edge.target)
                applied.append(edge)
                log_event('install.marker', f'{branch}: marker advanced to {edge.target}')
        except (PatchManagerError, OSError) as e:
            if isinstance(e, OSError):
                e = FileSystemError(str(e))
            current = self.read_marker(branch)
            log_event('install.failed',
                      f'{branch} -> {target.version} stopped at {current}: {e}', logging.ERROR)
            emit(StatusEvent(f"Installation failed: {e}"))
            return InstallResult(False, branch, target.version, marker=current,
                                 applied=applied, error=str(e))

        emit(StatusEvent("Game installed"))
        emit(ProgressEvent(100.0))
        return InstallResult(True, branch, target.version, marker=target.version,
                             applied=applied)

    def _edges_for(self, branch: str, patch_set: Optional[PatchSet],
                   emit: EventSink) -> PatchSet:
        if patch_set is not None:
            return patch_set
        cached = self._snapshots.get(branch)
        if cached is not None:
            return cached
        return self._discover_locked(branch, emit).patch_set

    def _apply_edge(self, branch: str, edge: PatchEdge, size: Optional[int],
                    emit: EventSink) -> None:
        if edge.is_full_install:
            emit(StatusEvent(f"Downloading v{edge.target}..."))
        else:
            emit(StatusEvent(f"Downloading patch {edge.source} -> {edge.target}..."))
        patch_path = self._obtain_artifact(branch, edge, size, emit)

        self.patcher.ensure_installed(status=lambda m: emit(StatusEvent(m)))
        emit(StatusEvent("Applying patch..."))
        emit(ProgressEvent(None))
        self.patcher.apply(patch_path, self.game_dir(branch))
        emit(ProgressEvent(100.0))

    def _obtain_artifact(self, branch: str, edge: PatchEdge, size: Optional[int],
                         emit: EventSink) -> str:
        dest = self.cache_path(branch, edge)
        try:
            return self._download_edge(branch, edge, dest, size, emit)
        except SizeMismatchError as e:
            log_event('install.redownload', f'{e}; retrying once', logging.WARNING)
            emit(StatusEvent(f"Download of {edge} was incomplete, retrying..."))
            return self._download_edge(branch, edge, dest, size, emit)

    def _download_edge(self, branch: str, edge: PatchEdge, dest: str,
                       size: Optional[int], emit: EventSink) -> str:
        last_error: Optional[TransferError] = None
        for base in self.endpoint.bases():
            url = self.endpoint.build_url(base, branch, edge.source, edge.target)
            try:
                self.transfer.fetch(url, dest, expected_size=size,
                                    progress=lambda p: emit(ProgressEvent(p)))
            except SizeMismatchError:
                raise
            except TransferError as e:
                if not isinstance(e.__cause__, requests.RequestException):
                    raise
                last_error = e
                log_event('install.download.failover',
                          f'{url} unreachable, trying next base', logging.WARNING)
                continue
            self.endpoint.mark_reachable(base)
            return dest
        raise last_error

    # ── Play ───────────────────────────────────────────────────

    def play(self, version: Union[GameVersion, int], player_name: str,
             branch: Optional[str] = None, patch_set: Optional[PatchSet] = None,
             on_event: Optional[EventSink] = None) -> InstallResult:
        """Provision Java, install ``version``, then launch the client."""
        target = self._coerce(version, branch)
        emit = self._sink(on_event)

        emit(StatusEvent("Checking Java..."))
        try:
            java = self.runtime.ensure_installed(status=lambda m: emit(StatusEvent(m)))
        except (PatchManagerError, OSError) as e:
            log_event('play.runtime.failed', str(e), logging.ERROR)
            emit(StatusEvent(f"Java setup failed: {e}"))
            return InstallResult(False, target.branch, target.version,
                                 marker=self.read_marker(target.branch), error=str(e))

        emit(StatusEvent("Checking game files..."))
        with self.branch_lock(target.branch):
            result = self._install_locked(target, patch_set, emit)
            if not result.success:
                return result
            emit(StatusEvent("Launching..."))
            try:
                launch_client(self.game_dir(target.branch), java, player_name)
            except FileSystemError as e:
                emit(StatusEvent(f"Launch failed: {e}"))
                result.success = False
                result.error = str(e)
        return result

    # ── Background variants ────────────────────────────────────

    def _background(self, name: str, op: Callable[[EventSink], object]) -> EventStream:
        stream = EventStream()

        def run():
            result = None
            try:
                result = op(stream.put)
            finally:
                stream.close(result)

        start_monitored_thread(run, name=name)
        return stream

    def discover_stream(self, branch: str) -> EventStream:
        return self._background(
            f"discover-{branch}", lambda sink: self.discover(branch, on_event=sink))

    def install_stream(self, version: Union[GameVersion, int], branch: Optional[str] = None,
                       patch_set: Optional[PatchSet] = None) -> EventStream:
        target = self._coerce(version, branch)
        return self._background(
            f"install-{target.branch}",
            lambda sink: self.install(target, patch_set=patch_set, on_event=sink))
