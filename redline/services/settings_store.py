"""
Settings store for the review endpoint.
Persists a single JSON settings blob on disk.
"""
import os
import json
import logging
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / '.redline-ai' / 'settings.json'


def settings_path(path: Optional[Path] = None) -> Path:
    """Resolve the settings file: explicit path, REDLINE_SETTINGS_PATH, then the default."""
    if path is not None:
        return Path(path)
    env_path = os.getenv('REDLINE_SETTINGS_PATH')
    return Path(env_path) if env_path else DEFAULT_SETTINGS_PATH


def load_settings(path: Optional[Path] = None) -> Optional[dict]:
    """
    Load the stored settings blob.

    Returns:
        Settings dict, or None if nothing usable is stored.
    """
    target = settings_path(path)
    try:
        raw = target.read_text(encoding='utf-8')
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Could not read settings from {target}: {e}")
        return None

    if not raw.strip():
        return None

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring corrupt settings file: {target}")
        return None

    return data if isinstance(data, dict) else None


def save_settings(settings: dict, path: Optional[Path] = None) -> bool:
    """
    Persist the settings blob.

    Storage failures are logged, not raised.

    Returns:
        True if the settings were written.
    """
    target = settings_path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + '.tmp')
        tmp.write_text(json.dumps(settings, indent=2), encoding='utf-8')
        tmp.replace(target)
    except OSError as e:
        logger.warning(f"Could not save settings to {target}: {e}")
        return False

    logger.debug(f"Settings saved to {target}")
    return True


def get_endpoint(path: Optional[Path] = None) -> Optional[str]:
    """Stored review endpoint URL, if any."""
    settings = load_settings(path) or {}
    endpoint = settings.get('endpoint')
    return endpoint if isinstance(endpoint, str) and endpoint.strip() else None
