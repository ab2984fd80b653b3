"""
Configuration management for HydroNet.

Handles persistent configuration including:
- Scheme backend location and credentials
- Default scheme and map view
- Coincidence tolerances (screen pixels)

Config is stored in config.json next to the executable/project root.
Environment variables (optionally loaded from .env) take priority.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Optional, Tuple, Union

from hydronet.paths import get_config_path, get_schemes_dir

logger = logging.getLogger(__name__)

ENV_PREFIX = "HYDRONET_"


@dataclass
class Settings:
    """Resolved application settings."""
    transport: str = "http"
    api_base_url: str = ""
    auth_token: Optional[str] = None
    request_timeout: float = 15.0
    data_dir: str = field(default_factory=lambda: str(get_schemes_dir()))
    scheme_id: Optional[int] = None
    zoom: float = 15
    center: Tuple[float, float] = (49.132798, 55.827024)
    snap_radius_px: float = 15
    finish_radius_px: float = 10
    junction_tolerance_px: float = 10


def load_config(config_path: Optional[Union[str, Path]] = None) -> dict:
    """Load raw configuration from config.json."""
    config_path = Path(config_path) if config_path else get_config_path()
    if config_path.exists():
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
                return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, IOError):
            return {}
    return {}


def save_config(config: dict, config_path: Optional[Union[str, Path]] = None) -> None:
    """Save raw configuration to config.json."""
    config_path = Path(config_path) if config_path else get_config_path()
    with open(config_path, 'w', encoding='utf-8') as f:
        json.dump(config, f, indent=2, ensure_ascii=False)


def _env(name: str) -> Optional[str]:
    value = os.environ.get(ENV_PREFIX + name)
    return value if value else None


def load_settings(config_path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Build Settings from config.json and the environment.

    Priority:
    1. Environment variables HYDRONET_*
    2. Stored in config.json
    3. Defaults
    """
    config = load_config(config_path)
    settings = Settings()

    for key in ("transport", "api_base_url", "data_dir"):
        if config.get(key):
            setattr(settings, key, str(config[key]))
    for key in ("request_timeout", "zoom", "snap_radius_px",
                "finish_radius_px", "junction_tolerance_px"):
        if key in config:
            try:
                setattr(settings, key, float(config[key]))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring non-numeric config value {key}={config[key]!r}")
    if config.get("scheme_id") is not None:
        try:
            settings.scheme_id = int(config["scheme_id"])
        except (TypeError, ValueError):
            logger.warning(f"Ignoring invalid scheme_id in config: {config['scheme_id']!r}")
    center = config.get("center")
    if isinstance(center, (list, tuple)) and len(center) == 2:
        settings.center = (float(center[0]), float(center[1]))

    # Environment wins
    if _env("TRANSPORT"):
        settings.transport = _env("TRANSPORT")
    if _env("API_URL"):
        settings.api_base_url = _env("API_URL")
    if _env("AUTH_TOKEN"):
        settings.auth_token = _env("AUTH_TOKEN")
    if _env("DATA_DIR"):
        settings.data_dir = _env("DATA_DIR")
    if _env("SCHEME_ID"):
        try:
            settings.scheme_id = int(_env("SCHEME_ID"))
        except ValueError:
            logger.warning(f"Ignoring non-integer {ENV_PREFIX}SCHEME_ID={_env('SCHEME_ID')!r}")

    settings.transport = settings.transport.lower()
    return settings


def save_settings(settings: Settings, config_path: Optional[Union[str, Path]] = None) -> None:
    """Persist settings to config.json. The auth token is never written to disk."""
    data = asdict(settings)
    data.pop("auth_token", None)
    data["center"] = list(settings.center)
    save_config(data, config_path)
