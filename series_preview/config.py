"""
config.py - Configuration loader for the series preview pipeline.

Loads settings from config.yaml with sensible defaults so that batch sizes,
header window, validation policy and thumbnail styling are never hard-coded
inside a module.
"""

import os
import yaml
from typing import Any

# Resolve the config file relative to the repo root, not the CWD,
# so imports work regardless of where the script is launched from.
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_CONFIG_PATH = os.path.join(_REPO_ROOT, "config.yaml")

_DEFAULTS: dict[str, Any] = {
    "paths": {
        "input_folder": "data/raw",
        "reports_folder": "reports",
    },
    "ingestion": {
        "batch_size": 5,
        "header_window_bytes": 65536,
        "dicom_extensions": [".dcm", ".dicom", ".dic"],
        "dicom_media_type": "application/dicom",
    },
    "validation": {
        "strict": False,
        "retain_metadata_only": True,
    },
    "thumbnail": {
        "size": 120,
        "max_samples": 10000,
        "default_color": "#607d8b",
        "modality_colors": {
            "CT": "#4a90e2",
            "MR": "#7ed321",
            "US": "#f5a623",
            "XA": "#bd10e0",
            "RF": "#b8e986",
            "CR": "#50e3c2",
            "DX": "#9013fe",
            "MG": "#e91e63",
            "PT": "#ff9800",
            "NM": "#795548",
            "OT": "#607d8b",
        },
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str = _CONFIG_PATH) -> dict[str, Any]:
    """
    Load the YAML configuration file and merge it with built-in defaults.

    Parameters
    ----------
    config_path : str
        Path to config.yaml. Defaults to the repo-root config.yaml.

    Returns
    -------
    dict
        Merged configuration dictionary.
    """
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}
    else:
        user_config = {}

    return _deep_merge(_DEFAULTS, user_config)


# Module-level singleton so callers can just do `from series_preview.config import CONFIG`
CONFIG = load_config()
