"""
Configuration for the Retinex PDE tools
"""
import copy
import json
import logging
import math
import os

from retinex.errors import InvalidArgument

logger = logging.getLogger(__name__)

MODES = ("histogram", "mean_std")

DEFAULT_CONFIG = {
    # Retinex threshold on the laplacian differences, in [0, 255]
    "threshold": 4.0,

    # Fraction of pixels saturated on each side by the histogram normalization
    "saturation": 0.015,
    "target_min": 0.0,
    "target_max": 255.0,

    # "histogram" | "mean_std"
    "mode": "histogram",

    # Channels processed in parallel
    "workers": 1,

    # Web app folders
    "upload_folder": "static/uploads",
    "processed_folder": "static/processed",

    "log_level": "INFO",
}


def load_config(path=None):
    """
    Load the configuration, defaults overridden by a JSON file.

    Args:
        path: JSON file; falls back to $RETINEX_CONFIG, then to the defaults only

    Returns:
        dict: a fresh configuration dict
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    if path is None:
        path = os.environ.get("RETINEX_CONFIG")
    if not path:
        return config

    if not os.path.exists(path):
        logger.info(f"Config file {path} not found, using defaults")
        return config

    try:
        with open(path, "r") as f:
            overrides = json.load(f)
    except json.JSONDecodeError as exc:
        raise InvalidArgument(f"invalid JSON in config file {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise InvalidArgument(f"config file {path} could not be read: {exc}") from exc

    if not isinstance(overrides, dict):
        raise InvalidArgument(f"config file {path} must hold a JSON object")

    for key, value in overrides.items():
        if key not in DEFAULT_CONFIG:
            logger.warning(f"Ignoring unknown config key '{key}' in {path}")
            continue
        config[key] = value

    logger.debug(f"Loaded config from {path}")
    return config


def validate_config(config):
    """Raise InvalidArgument if a value is outside its domain."""
    try:
        threshold = float(config["threshold"])
        saturation = float(config["saturation"])
        target_min = float(config["target_min"])
        target_max = float(config["target_max"])
        workers = int(config["workers"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidArgument(f"invalid configuration value: {exc}") from exc

    if not (math.isfinite(threshold) and 0.0 <= threshold <= 255.0):
        raise InvalidArgument(f"the retinex threshold must be in [0..255], got {threshold}")
    if not 0.0 <= saturation < 0.5:
        raise InvalidArgument(f"saturation must be in [0, 0.5), got {saturation}")
    if target_min > target_max:
        raise InvalidArgument(f"target_min {target_min} is above target_max {target_max}")
    if config.get("mode") not in MODES:
        raise InvalidArgument(f"unknown mode {config.get('mode')!r}, expected one of {MODES}")
    if workers < 1:
        raise InvalidArgument(f"workers must be >= 1, got {workers}")
    return config


def configure_logging(level="INFO"):
    """Console logging for the CLI and the web app."""
    # PIL spams DEBUG messages while encoding
    for logger_name in ["PIL", "PIL.PngImagePlugin"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    root = logging.getLogger()
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        root.addHandler(handler)
