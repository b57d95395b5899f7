"""Launcher settings: JSON file deep-merged over defaults."""
from __future__ import annotations

import json
import os
from copy import deepcopy
from typing import Any, Dict

from . import shared_config as cfg

DEFAULT_SETTINGS_PATH = cfg.SETTINGS_FILE

DEFAULT_SETTINGS: Dict[str, Any] = {
    "branch": cfg.DEFAULT_BRANCH,
    "player_name": "Player",
    "launcher_root": cfg.LAUNCHER_DIR,
    "install_root": cfg.INSTALL_DIR,
    "distribution": {
        "primary_url": "",
        "mirror_url": "",
        "use_mirror": False,
    },
    "discovery": {
        "miss_threshold": cfg.CONSECUTIVE_MISSES_TO_STOP,
        "workers": 1,
    },
    "http": {
        "probe_timeout": cfg.PROBE_TIMEOUT,
        "connect_timeout": cfg.DOWNLOAD_TIMEOUT[0],
        "read_timeout": cfg.DOWNLOAD_TIMEOUT[1],
    },
    "patcher": {
        "timeout": cfg.PATCHER_TIMEOUT_SECONDS,
    },
}


def _deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    out = deepcopy(base)
    for k, v in (updates or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = deepcopy(v)
    return out


def load_settings(path: str = DEFAULT_SETTINGS_PATH) -> Dict[str, Any]:
    if not os.path.exists(path):
        return deepcopy(DEFAULT_SETTINGS)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError):
        return deepcopy(DEFAULT_SETTINGS)
    if not isinstance(data, dict):
        return deepcopy(DEFAULT_SETTINGS)
    return _deep_merge(DEFAULT_SETTINGS, data)


def save_settings(settings: Dict[str, Any], path: str = DEFAULT_SETTINGS_PATH) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings, f, ensure_ascii=False, indent=2)


def build_endpoint(settings: Dict[str, Any]):
    """Turn the distribution section into a ``DistributionEndpoint``."""
    from .prober import DistributionEndpoint

    dist = settings.get("distribution", {})
    primary = dist.get("primary_url") or cfg.default_patch_base()
    mirror = dist.get("mirror_url") or None
    return DistributionEndpoint(
        primary,
        mirror=mirror,
        prefer_mirror=bool(dist.get("use_mirror")) and bool(mirror),
    )


def download_timeout(settings: Dict[str, Any]) -> tuple:
    http = settings.get("http", {})
    return (
        http.get("connect_timeout", cfg.DOWNLOAD_TIMEOUT[0]),
        http.get("read_timeout", cfg.DOWNLOAD_TIMEOUT[1]),
    )
