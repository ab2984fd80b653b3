"""
Filesystem locations used by HydroNet.

config.json and the local scheme store (db/schemes/) sit beside the
application: the repository root when run from source, the executable's
directory in a frozen build.
"""

import sys
from pathlib import Path


def get_app_dir() -> Path:
    """Root that holds config.json and db/."""
    if getattr(sys, 'frozen', False):
        return Path(sys.executable).parent
    return Path(__file__).resolve().parent.parent


def get_db_dir() -> Path:
    return get_app_dir() / "db"


def get_schemes_dir() -> Path:
    """Default data_dir of the file transport (scheme_<id>.json files)."""
    return get_db_dir() / "schemes"


def get_config_path() -> Path:
    return get_app_dir() / "config.json"


def ensure_schemes_dir() -> Path:
    """Create db/schemes/ if missing and return it."""
    schemes_dir = get_schemes_dir()
    schemes_dir.mkdir(parents=True, exist_ok=True)
    return schemes_dir
