"""Per-user config and data directories."""

from __future__ import annotations

import os
import sys
from pathlib import Path

APP_NAME = "convoflow"

# (windows env var, windows fallback, XDG env var, XDG fallback) per kind
_LOCATIONS: dict[str, tuple[str, tuple[str, ...], str, tuple[str, ...]]] = {
    "config": ("APPDATA", ("AppData", "Roaming"), "XDG_CONFIG_HOME", (".config",)),
    "data": ("LOCALAPPDATA", ("AppData", "Local"), "XDG_DATA_HOME", (".local", "share")),
}


def _user_dir(kind: str) -> Path:
    override = os.environ.get(f"CONVOFLOW_{kind.upper()}_DIR")
    if override:
        return Path(override).expanduser()

    win_var, win_default, xdg_var, xdg_default = _LOCATIONS[kind]
    home = Path.home()
    if sys.platform == "win32":
        base = Path(os.environ.get(win_var) or home.joinpath(*win_default))
    elif sys.platform == "darwin":
        base = home / "Library" / "Application Support"
    else:
        base = Path(os.environ.get(xdg_var) or home.joinpath(*xdg_default))
    return base / APP_NAME


def get_config_dir() -> Path:
    return _user_dir("config")


def get_data_dir() -> Path:
    return _user_dir("data")
