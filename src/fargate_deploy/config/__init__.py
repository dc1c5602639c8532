"""Configuration management for the deployment system."""

from .models import (
    REQUIRED_KEYS,
    Configuration,
    Environment,
    RequiredParameters,
)
from .resolver import ConfigResolver, DEFAULT_PARAMS_DIR

__all__ = [
    "REQUIRED_KEYS",
    "Configuration",
    "Environment",
    "RequiredParameters",
    "ConfigResolver",
    "DEFAULT_PARAMS_DIR",
]
