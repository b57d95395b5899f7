"""
patchmanager - incremental game patch installer

Discovers the patches a distribution server hosts for a release branch,
plans the chain from the installed version to a target, downloads with
resume support and applies each patch with an external tool.
"""

__version__ = '1.0.0'
__author__ = 'patchmanager'

from .models import (
    PatchEdge, PatchSet, GameVersion, InstallState, BranchState,
    ProgressEvent, StatusEvent, InstallResult,
)
from .errors import (
    PatchManagerError, TransferError, SizeMismatchError,
    ExternalToolError, PatcherTimeoutError, FileSystemError,
)
from .prober import DistributionEndpoint, VersionProber, ProbeOutcome, ProbeResult
from .discovery import PatchGraphBuilder, DiscoveryResult, build_version_list
from .resolver import resolve_update_path
from .transfer import ResumableTransfer, create_session
from .patcher import ExternalPatcherTool
from .installer import InstallationManager, EventStream


__all__ = [
    'PatchEdge',
    'PatchSet',
    'GameVersion',
    'InstallState',
    'BranchState',
    'ProgressEvent',
    'StatusEvent',
    'InstallResult',
    'PatchManagerError',
    'TransferError',
    'SizeMismatchError',
    'ExternalToolError',
    'PatcherTimeoutError',
    'FileSystemError',
    'DistributionEndpoint',
    'VersionProber',
    'ProbeOutcome',
    'ProbeResult',
    'PatchGraphBuilder',
    'DiscoveryResult',
    'build_version_list',
    'resolve_update_path',
    'ResumableTransfer',
    'create_session',
    'ExternalPatcherTool',
    'InstallationManager',
    'EventStream',
]
