"""
Configuration Module

Loads the YAML configuration file and sets up application logging.
Every component receives the full configuration dictionary and reads
its own section with defaults, so a partial file is always valid.
"""

import copy
import logging
import sys
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/config.yaml'


def get_default_config() -> Dict[str, Any]:
    """Get default configuration."""
    return {
        'recognition': {
            'accept_threshold': 0.6
        },
        'embedding': {
            'embedding_size': 128,
            'detection_model': 'hog',
            'upsample_times': 1,
            'num_jitters': 1
        },
        'detection': {
            'cycle_timeout': 10.0,
            'max_read_failures': 30
        },
        'video': {
            'camera_id': 0,
            'frame_width': 640,
            'frame_height': 480,
            'fps_limit': 30
        },
        'session': {
            'dwell_seconds': 3.0
        },
        'notification': {
            'url': None,
            'timeout': 5.0
        },
        'enrollment': {
            'countdown_seconds': 3
        },
        'storage': {
            'profiles_dir': 'data/faces',
            'image_extensions': ['.jpg', '.jpeg', '.png'],
            'name_separator': '_'
        },
        'logging': {
            'level': 'INFO',
            'file': 'hallpass.log'
        },
        'passes': ['Bathroom', 'Nurse', 'Locker', 'Office']
    }


def merge_config(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge configuration overrides onto a base configuration.

    Args:
        base: Base configuration dictionary
        overrides: Values that replace or extend the base

    Returns:
        New merged configuration dictionary
    """
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load configuration from a YAML file on top of the defaults.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    defaults = get_default_config()
    if not config_path:
        return defaults

    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"expected a mapping, got {type(loaded).__name__}")
        logger.info(f"Configuration loaded from {config_path}")
        return merge_config(defaults, loaded)
    except (OSError, yaml.YAMLError, ValueError) as e:
        logger.error(f"Failed to load config: {e}")
        return defaults


def setup_logging(config: Dict[str, Any]) -> None:
    """Configure root logging with a file and a stdout handler."""
    log_config = config.get('logging', {})
    level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stdout)]
    log_file = log_config.get('file')
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
