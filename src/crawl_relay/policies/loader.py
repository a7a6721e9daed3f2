"""Config loader.

Crawl settings, filter rules and checksum settings live in YAML files.
Keeping them in YAML allows:
- review of include/exclude rules without reading code
- versioned configuration across crawl sessions
- operators to change batch sizes and retry limits safely
"""

from __future__ import annotations
from typing import Any, Dict
import yaml

from ..errors import ConfigurationError

def load_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Top level of {path} must be a mapping")
    return data
