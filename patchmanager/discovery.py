"""
Patch graph discovery by endpoint probing.

Two passes per branch:

1. full installs ``0 -> 1, 0 -> 2, ...`` until ``miss_threshold`` consecutive
   misses; the highest hit is ``max_full``.
2. one incremental lane per base version ``b`` in ``1 .. max_full - 1``,
   probing ``b -> b+1, b -> b+2, ...`` until ``miss_threshold`` consecutive
   misses or the target passes ``max_full + miss_threshold``.

Incremental lanes are independent, so they may run on a bounded worker pool;
each lane keeps its own miss counter and results are merged in lane order.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .models import GameVersion, PatchEdge, PatchSet
from .monitor import log_event
from .prober import VersionProber
from .shared_config import CONSECUTIVE_MISSES_TO_STOP

ProgressCallback = Callable[[Optional[float]], None]


@dataclass(frozen=True)
class DiscoveryResult:
    """Immutable patch snapshot plus the display list derived from it."""
    branch: str
    patch_set: PatchSet
    max_full: int = 0
    versions: Tuple[GameVersion, ...] = ()
    probes: int = 0


def build_version_list(patch_set: PatchSet) -> List[GameVersion]:
    """Sorted target versions with a synthetic "latest" entry in front."""
    branch = patch_set.branch
    versions = [
        GameVersion(version=v, name=f"Version {v}", branch=branch)
        for v in patch_set.targets()
    ]
    if not versions:
        return [GameVersion(version=1, name="Latest", branch=branch, is_latest=True)]

    newest = versions[-1]
    versions.insert(0, GameVersion(
        version=newest.version,
        name="Latest",
        branch=branch,
        source=newest.source,
        is_latest=True,
    ))
    return versions


class _Lane:
    """Result of one sequential probing lane."""

    def __init__(self):
        self.edges: List[PatchEdge] = []
        self.sizes: Dict[PatchEdge, int] = {}
        self.probes = 0

    def record(self, edge: PatchEdge, size: Optional[int]) -> None:
        self.edges.append(edge)
        if size is not None:
            self.sizes[edge] = size


class PatchGraphBuilder:
    """Discover every patch edge a branch offers with bounded request volume."""

    def __init__(self, prober: VersionProber,
                 miss_threshold: int = CONSECUTIVE_MISSES_TO_STOP,
                 workers: int = 1):
        if miss_threshold < 1:
            raise ValueError("miss_threshold must be >= 1")
        self.prober = prober
        self.miss_threshold = miss_threshold
        self.workers = max(1, workers)

    def discover(self, branch: str,
                 progress: Optional[ProgressCallback] = None) -> DiscoveryResult:
        log_event('discovery.start', f'Discovering patches for branch {branch}')

        full_lane = self._probe_full_installs(branch, progress)
        max_full = max((e.target for e in full_lane.edges), default=0)

        lanes = self._probe_incremental(branch, max_full, progress)

        edges: List[PatchEdge] = list(full_lane.edges)
        sizes: Dict[PatchEdge, int] = dict(full_lane.sizes)
        probes = full_lane.probes
        for lane in lanes:
            edges.extend(lane.edges)
            sizes.update(lane.sizes)
            probes += lane.probes

        patch_set = PatchSet(branch, edges, sizes)
        if progress:
            progress(100.0)

        log_event('discovery.done',
                  f'Branch {branch}: {len(patch_set)} patches, max full install {max_full}, '
                  f'{probes} probes')
        return DiscoveryResult(
            branch=branch,
            patch_set=patch_set,
            max_full=max_full,
            versions=tuple(build_version_list(patch_set)),
            probes=probes,
        )

    # ── Lanes ──────────────────────────────────────────────────

    def _probe_full_installs(self, branch: str,
                             progress: Optional[ProgressCallback]) -> _Lane:
        lane = _Lane()
        misses = 0
        ver = 1
        while misses < self.miss_threshold:
            result = self.prober.probe(branch, 0, ver)
            lane.probes += 1
            if result.exists:
                lane.record(PatchEdge(0, ver), result.size)
                misses = 0
            else:
                misses += 1
            if progress:
                progress(float(min(ver * 5, 50)))
            ver += 1
        return lane

    def _probe_lane(self, branch: str, base: int, max_full: int) -> _Lane:
        lane = _Lane()
        misses = 0
        target = base + 1
        ceiling = max_full + self.miss_threshold
        while misses < self.miss_threshold and target <= ceiling:
            result = self.prober.probe(branch, base, target)
            lane.probes += 1
            if result.exists:
                lane.record(PatchEdge(base, target), result.size)
                misses = 0
            else:
                misses += 1
            target += 1
        return lane

    def _probe_incremental(self, branch: str, max_full: int,
                           progress: Optional[ProgressCallback]) -> List[_Lane]:
        bases = list(range(1, max_full))
        if not bases:
            return []

        done = 0
        done_lock = threading.Lock()

        def run(base: int) -> _Lane:
            nonlocal done
            lane = self._probe_lane(branch, base, max_full)
            with done_lock:
                done += 1
                if progress:
                    progress(min(50 + done / max(max_full, 1) * 50, 100.0))
            return lane

        if self.workers == 1:
            return [run(b) for b in bases]

        log_event('discovery.pool',
                  f'Probing {len(bases)} incremental lanes with {self.workers} workers',
                  logging.DEBUG)
        with ThreadPoolExecutor(max_workers=self.workers,
                                thread_name_prefix='probe') as executor:
            # map() yields in submission order, so the merge is lane-ordered
            return list(executor.map(run, bases))


def edges_from_pairs(branch: str, pairs: List[Tuple[int, int]]) -> PatchSet:
    """Build a snapshot from plain ``(source, target)`` pairs."""
    return PatchSet(branch, (PatchEdge(s, t) for s, t in pairs))
