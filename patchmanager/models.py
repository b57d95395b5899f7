"""
Data models for the patch installer
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from types import MappingProxyType
from typing import FrozenSet, Iterable, Iterator, List, Mapping, Optional


@dataclass(frozen=True, order=True)
class PatchEdge:
    """A server-hosted patch turning version ``source`` into ``target``.

    ``source == 0`` marks a full install rather than a delta.
    """
    source: int
    target: int

    def __post_init__(self):
        if self.source < 0:
            raise ValueError(f"source version must be >= 0, got {self.source}")
        if self.target <= self.source:
            raise ValueError(
                f"target version must be > source ({self.source}), got {self.target}"
            )

    @property
    def is_full_install(self) -> bool:
        return self.source == 0

    def __str__(self) -> str:
        return f"{self.source}->{self.target}"


class PatchSet:
    """Immutable snapshot of the patch edges known for one branch."""

    __slots__ = ('branch', '_edges', '_sizes')

    def __init__(self, branch: str, edges: Iterable[PatchEdge] = (),
                 sizes: Optional[Mapping[PatchEdge, int]] = None):
        self.branch = branch
        self._edges: FrozenSet[PatchEdge] = frozenset(edges)
        known = {e: s for e, s in (sizes or {}).items() if e in self._edges}
        self._sizes = MappingProxyType(known)

    @property
    def edges(self) -> FrozenSet[PatchEdge]:
        return self._edges

    @property
    def sizes(self) -> Mapping[PatchEdge, int]:
        return self._sizes

    def size_of(self, edge: PatchEdge) -> Optional[int]:
        return self._sizes.get(edge)

    def targets(self) -> List[int]:
        """Sorted distinct target versions."""
        return sorted({e.target for e in self._edges})

    def from_source(self, source: int) -> List[PatchEdge]:
        return sorted(e for e in self._edges if e.source == source)

    def __contains__(self, edge) -> bool:
        return edge in self._edges

    def __iter__(self) -> Iterator[PatchEdge]:
        return iter(sorted(self._edges))

    def __len__(self) -> int:
        return len(self._edges)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PatchSet):
            return NotImplemented
        return self.branch == other.branch and self._edges == other._edges

    def __hash__(self) -> int:
        return hash((self.branch, self._edges))

    def __repr__(self) -> str:
        return f"PatchSet({self.branch!r}, {len(self._edges)} edges)"


@dataclass
class GameVersion:
    """A selectable target version for one branch."""
    version: int
    name: str
    branch: str = "release"
    source: int = 0
    is_latest: bool = False

    @property
    def is_full_install(self) -> bool:
        return self.source == 0

    @property
    def patch_file(self) -> str:
        return f"{self.version}.pwr"

    def __str__(self) -> str:
        return self.name


class InstallState(Enum):
    NOT_INSTALLED = auto()
    PARTIALLY_INSTALLED = auto()
    UP_TO_DATE = auto()


@dataclass(frozen=True)
class BranchState:
    """Installation state of one branch relative to an optional target."""
    state: InstallState
    marker: int = 0


# ── Event stream ──────────────────────────────────────────────

@dataclass(frozen=True)
class ProgressEvent:
    """Progress in percent; ``None`` means indeterminate."""
    percent: Optional[float]

    @property
    def indeterminate(self) -> bool:
        return self.percent is None


@dataclass(frozen=True)
class StatusEvent:
    message: str


@dataclass
class InstallResult:
    """Terminal outcome of an install or play request."""
    success: bool
    branch: str
    version: int
    marker: int = 0
    applied: List[PatchEdge] = field(default_factory=list)
    error: str = ""
