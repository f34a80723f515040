"""Configuration loading, validation and the frozen runtime view."""

from loopguard.config.loader import (
    ENV_PREFIX,
    ConfigLoadError,
    ConfigSource,
    LoadedConfig,
    dump_effective_config,
    load_config,
)
from loopguard.config.runtime import (
    CREDENTIAL_PRECEDENCE,
    RuntimeConfig,
    resolve_credential,
    resolve_runtime_config,
)
from loopguard.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)

__all__ = [
    "CREDENTIAL_PRECEDENCE",
    "DEFAULT_CONFIG",
    "ENV_PREFIX",
    "ConfigLoadError",
    "ConfigSource",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "LoadedConfig",
    "RuntimeConfig",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "redact_config",
    "resolve_credential",
    "resolve_runtime_config",
    "validate_config",
]
