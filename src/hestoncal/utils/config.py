import yaml
import logging
from pathlib import Path
from typing import Any, Dict, Union

logger = logging.getLogger(__name__)


def load_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML config file and return a nested dict.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Dictionary containing the configuration (empty for an empty file)

    Raises:
        FileNotFoundError: If the config file doesn't exist
        yaml.YAMLError: If the YAML is malformed
    """
    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f)
        logger.info(f"Loaded calibration config from {path}")
        return config or {}
    except FileNotFoundError:
        logger.error(f"Config file not found: {path}")
        raise
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML config {path}: {e}")
        raise


def get_nested_value(config: Dict[str, Any], key: str, default: Any = None) -> Any:
    """
    Get a nested value from a configuration dictionary using dot notation.

    Args:
        config: Configuration dictionary
        key: Key in dot notation (e.g., 'optimizer.early_stopping_evaluations')
        default: Default value if key is not found

    Returns:
        Value at the specified key or default
    """
    current = config
    try:
        for part in key.split('.'):
            current = current[part]
        return current
    except (KeyError, TypeError):
        return default
