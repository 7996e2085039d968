"""Configuration module for the participant registry.

Available Configurations:
- RegistryConfig: Collection names, audit actor and transition policy
"""

from participant_registry.config.registry_config import (
    DEFAULT_REGISTRY_CONFIG,
    TEST_REGISTRY_CONFIG,
    RegistryConfig,
)

__all__ = [
    "RegistryConfig",
    "DEFAULT_REGISTRY_CONFIG",
    "TEST_REGISTRY_CONFIG",
]
