"""
pool_config -- typed, validated pool configuration.

Responsibility:
    Parses pool YAML documents into frozen dataclasses and validates them.
    Services receive a ``PoolConfig`` explicitly from the composing context
    (``pool_services.registry.PoolRegistry``); nothing reads configuration
    files or environment variables on its own.

Architecture position:
    Configuration -- sits above ``pool_engines`` (whose term dataclasses it
    reuses) and below ``pool_services``.  The kernel MUST NEVER import from
    ``pool_config``.

Failure modes:
    - ``InvalidPoolConfigError`` when a document is malformed or fails
      validation.
"""

from pathlib import Path

from pool_config.loader import compute_checksum, load_pool_config, parse_pool_config
from pool_config.schema import (
    EpochConfig,
    FirstLossCoverConfig,
    LPConfig,
    PoolConfig,
    PoolRoles,
    TranchesPolicyConfig,
)
from pool_config.validator import ConfigValidationResult, validate_pool_config

EXAMPLE_POOL_PATH = Path(__file__).parent / "pools" / "example_pool.yaml"

__all__ = [
    "EXAMPLE_POOL_PATH",
    "ConfigValidationResult",
    "EpochConfig",
    "FirstLossCoverConfig",
    "LPConfig",
    "PoolConfig",
    "PoolRoles",
    "TranchesPolicyConfig",
    "compute_checksum",
    "load_pool_config",
    "parse_pool_config",
    "validate_pool_config",
]
