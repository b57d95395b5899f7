"""
Shared configuration: remote endpoints, on-disk layout and tuning constants.
"""

import os
import platform

# ── Remote endpoints ──────────────────────────────────────────
PATCH_BASE_URL = "https://game-patches.hytale.com/patches"
JRE_MANIFEST_URL = "https://launcher.hytale.com/version/release/jre.json"
BUTLER_URL_TEMPLATE = "https://broth.itch.zone/butler/{platform}/LATEST/archive/default"

PATCH_EXTENSION = "pwr"

AVAILABLE_BRANCHES = ["release", "pre-release", "beta", "alpha"]
DEFAULT_BRANCH = "release"

# ── Discovery / transfer / patcher tuning ─────────────────────
CONSECUTIVE_MISSES_TO_STOP = 5
PROBE_TIMEOUT = 5
DOWNLOAD_TIMEOUT = (10, 90)
CHUNK_SIZE = 512 * 1024
PATCHER_TIMEOUT_SECONDS = 600
USER_AGENT = "patchmanager/1.0"

# ── On-disk layout ────────────────────────────────────────────
IS_WINDOWS = os.name == "nt"

APP_DATA_DIR = os.environ.get(
    "PATCHMANAGER_HOME", os.path.join(os.path.expanduser("~"), ".patchmanager")
)
LAUNCHER_DIR = APP_DATA_DIR
INSTALL_DIR = os.path.join(APP_DATA_DIR, "install")
LOGS_DIR = os.path.join(APP_DATA_DIR, "logs")
SETTINGS_FILE = os.path.join(APP_DATA_DIR, "settings.json")

CACHE_DIRNAME = "cache"
TOOL_DIRNAME = "butler"
LOGS_DIRNAME = "logs"
STAGING_DIRNAME = "staging-temp"
VERSION_FILENAME = ".version"
CLIENT_DIRNAME = "Client"
CLIENT_EXECUTABLE = "HytaleClient.exe" if IS_WINDOWS else "HytaleClient"
TOOL_EXECUTABLE = "butler.exe" if IS_WINDOWS else "butler"
JAVA_EXECUTABLE = "java.exe" if IS_WINDOWS else "java"


def platform_keys():
    """Return the (os, arch) pair used by the distribution servers."""
    system = platform.system().lower()
    os_key = {"windows": "windows", "darwin": "darwin"}.get(system, "linux")
    machine = platform.machine().lower()
    if machine in ("arm64", "aarch64"):
        arch_key = "arm64"
    elif machine in ("x86", "i386", "i686"):
        arch_key = "x86"
    else:
        arch_key = "amd64"
    return os_key, arch_key


def default_patch_base() -> str:
    os_key, arch_key = platform_keys()
    return f"{PATCH_BASE_URL}/{os_key}/{arch_key}"


def game_dir(install_root: str, branch: str) -> str:
    return os.path.join(install_root, branch, "package", "game", "latest")


def jre_dir(install_root: str) -> str:
    return os.path.join(install_root, "release", "package", "jre", "latest")


def ensure_directories(launcher_root: str = LAUNCHER_DIR,
                       install_root: str = INSTALL_DIR) -> None:
    """Create launcher and release-branch folders at startup."""
    for path in (
        launcher_root,
        os.path.join(launcher_root, CACHE_DIRNAME),
        os.path.join(launcher_root, TOOL_DIRNAME),
        os.path.join(launcher_root, LOGS_DIRNAME),
        jre_dir(install_root),
        game_dir(install_root, DEFAULT_BRANCH),
    ):
        os.makedirs(path, exist_ok=True)
