"""
Configuration package.

Environment-driven settings plus optional YAML service id overrides.
"""

from ckfinance.config.config import Settings, TOKEN_SERVICES, env_bool
from ckfinance.config.service_ids import DEFAULT_SERVICE_IDS, load_service_id_overrides, resolve_service_ids

__all__ = [
    "Settings",
    "TOKEN_SERVICES",
    "env_bool",
    "DEFAULT_SERVICE_IDS",
    "load_service_id_overrides",
    "resolve_service_ids",
]
