"""
Configuration loading for the ranking engine.

Settings live in ``configs/config.yaml``; every key has a built-in default so
the engine also runs without the file. Two environment variables (read after
loading ``.env``) take precedence:

    SONGRANK_CONFIG       path of the YAML file
    SONGRANK_STORE_PATH   path of the persisted graph snapshot
"""

from __future__ import annotations
import copy
import os
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger

from songrank.errors import ConfigError

DEFAULT_CONFIG_PATH = "configs/config.yaml"

DEFAULTS: Dict[str, Any] = {
    "ranking": {
        "damping_factor": 0.85,
        "convergence_threshold": 0.001,
        "max_iterations": None,  # None = theoretical convergence bound
        "min_graph_size": 5,
        "full_recompute_interval_hours": 6,
        "dirty_ratio_full_recompute": 0.1,
        "incremental_max_iterations": 10,
        "yield_every": 5,
        "score_cache_ttl_seconds": 300,
        "edge_threshold": 0.1,
        "weights": {
            "playlist": 1.0,
            "queue": 0.8,
            "search": 0.5,
            "collaboration": 0.6,
            "similarity": 0.4,
            "interaction": 0.7,
        },
    },
    "scheduler": {
        "batch_flush_seconds": 30,
        "batch_incremental_dirty": 10,
        "debounce_seconds": 5,
        "incremental_seconds": 1800,
        "incremental_min_dirty": 5,
        "full_recompute_seconds": 21600,
        "persist_seconds": 300,
        "cache_cleanup_seconds": 900,
        "retention": {
            "enabled": False,
            "interval_seconds": 86400,
            "max_age_days": 30,
            "min_play_count": 1,
        },
    },
    "store": {
        "backend": "json",  # json | sqlite
        "path": None,  # None = data/musicGraph.json or data/musicGraph.db by backend
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[str | Path] = None) -> Dict[str, Any]:
    """
    Load the ranking configuration.

    Args:
        path: YAML file to read. Defaults to $SONGRANK_CONFIG, then
            configs/config.yaml. A missing file yields the defaults.

    Returns:
        Nested configuration dict with ``ranking``, ``scheduler`` and
        ``store`` sections

    Raises:
        ConfigError: If the file exists but is not a YAML mapping
    """
    load_dotenv()

    config_path = Path(path or os.getenv("SONGRANK_CONFIG", DEFAULT_CONFIG_PATH))
    cfg = copy.deepcopy(DEFAULTS)

    if config_path.exists():
        try:
            with open(config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {config_path}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path} must contain a mapping, got {type(loaded).__name__}")

        cfg = _deep_merge(cfg, loaded)
        logger.debug(f"Loaded ranking config from {config_path}")
    else:
        logger.debug(f"No config file at {config_path}, using defaults")

    store_path = os.getenv("SONGRANK_STORE_PATH")
    if store_path:
        cfg["store"]["path"] = store_path

    return cfg
