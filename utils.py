# utils.py
"""
Helpers shared by the entry point and the simulation core.

Logging is configured once, on the root logger, from the "logging" section
of config.json. Every other module just calls `logging.info(...)` and
friends.
"""
import json
import logging
import logging.handlers
import os
from typing import Any, Dict, Optional

import numpy as np

# --- Data Contracts ---
#
# setup_logging(config: Dict[str, Any]) -> None:
#   - Inputs: the whole config document. Only its "logging" section
#     ("level", "format", "log_file") is read; every key is optional.
#   - Side Effects: replaces the root logger's handlers with a console
#     handler and, unless "log_file" is null, a rotating file handler.
#   - Raises: ValueError for an unknown level, before any handler changes.
#
# load_config(path: str) -> Dict[str, Any]:
#   - Outputs: the parsed document with every section in CONFIG_SECTIONS
#     present as a dict.
#   - Raises: FileNotFoundError, json.JSONDecodeError (logged first),
#     ValueError if a section is not a JSON object.
#
# check_run_control(run_params: Dict[str, Any]) -> None:
#   - Raises: ValueError unless max_steps >= 0 and log_throttle_steps >= 1.

CONFIG_SECTIONS = ('simulation_parameters', 'run_control', 'visualization', 'logging')

DEFAULT_LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
DEFAULT_LOG_FILE = 'logs/particle_life.log'
LOG_MAX_BYTES = 1024 * 1024
LOG_BACKUPS = 5


def _rotating_file_handler(path: str) -> logging.Handler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return logging.handlers.RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS)


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Configures the root logger from the "logging" section of `config`.

    Args:
        config (dict): The loaded config.json document.
    """
    section = config.get('logging', {})
    level = str(section.get('level', 'INFO')).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown logging level '{section.get('level')}'.")
    formatter = logging.Formatter(section.get('format', DEFAULT_LOG_FORMAT))
    log_file: Optional[str] = section.get('log_file', DEFAULT_LOG_FILE)

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(_rotating_file_handler(log_file))

    root = logging.getLogger()
    root.setLevel(level)
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Numba's compiler logs every pass at DEBUG.
    logging.getLogger('numba').setLevel(logging.WARNING)

    logging.info(f"Logging initialized at level {level}.")
    logging.debug(f"Log file: {log_file if log_file else 'disabled'}")


def load_config(path: str) -> Dict[str, Any]:
    """Reads config.json and fills in any missing section."""
    logging.info(f"Loading configuration from {path}...")
    try:
        with open(path, 'r') as f:
            document = json.load(f)
    except FileNotFoundError:
        logging.error(f"Configuration file not found at {path}.")
        raise
    except json.JSONDecodeError as e:
        logging.error(f"Configuration file {path} is not valid JSON: {e}")
        raise

    for section in CONFIG_SECTIONS:
        value = document.setdefault(section, {})
        if not isinstance(value, dict):
            msg = f"Configuration section '{section}' must be a JSON object, got {type(value).__name__}."
            logging.error(msg)
            raise ValueError(msg)
    logging.info(f"Configuration loaded with sections: {sorted(document)}")
    return document


def check_run_control(run_params: Dict[str, Any]) -> None:
    """Raises ValueError if the loop settings in "run_control" cannot be used."""
    for key, minimum in (('max_steps', 0), ('log_throttle_steps', 1)):
        value = run_params.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            msg = f"run_control.{key} must be an integer >= {minimum}, got {value!r}."
            logging.critical(msg)
            raise ValueError(msg)


def describe_particles(velocities: np.ndarray) -> Dict[str, float]:
    """Aggregated speed metrics for throttled DEBUG logging."""
    if velocities.shape[0] == 0:
        return {'mean_speed': 0.0, 'max_speed': 0.0}
    speed = np.linalg.norm(velocities, axis=1)
    return {'mean_speed': float(np.mean(speed)), 'max_speed': float(np.max(speed))}
