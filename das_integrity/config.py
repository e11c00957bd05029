"""
Configuration for the integrity verification run.

Settings come from a JSON file; the host and path settings can be overridden
from the environment. The configuration is validated once, before any test
starts, and any problem is fatal.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional, Pattern

from .errors import ConfigError, ConfigValidationError, InvalidRegexError

logger = logging.getLogger(__name__)

DEFAULT_TEST_RETRIES = 20
DEFAULT_REQUESTS_INTERVAL_MILLIS = 1500

REQUIRED_FIELDS = ('reference_host', 'testing_host', 'rpc_endpoint', 'testing_file_path')

# Environment variable -> config field
ENV_OVERRIDES = {
    'DAS_REFERENCE_HOST': 'reference_host',
    'DAS_TESTING_HOST': 'testing_host',
    'DAS_RPC_ENDPOINT': 'rpc_endpoint',
    'DAS_TESTING_FILE_PATH': 'testing_file_path',
}


@dataclass
class IntegrityVerificationConfig:
    """Settings for one verification run."""
    # Hosts
    reference_host: str
    testing_host: str
    rpc_endpoint: str

    # Key file
    testing_file_path: str

    # Comparison
    test_retries: int = DEFAULT_TEST_RETRIES
    log_differences: bool = False
    difference_filter_regexes: List[str] = field(default_factory=list)

    # Rate limiting
    requests_interval_millis: int = DEFAULT_REQUESTS_INTERVAL_MILLIS
    request_timeout: Optional[float] = None  # None: no explicit timeout

    # Performance mode
    num_of_virtual_users: int = 1
    test_duration_time: int = 60  # seconds

    @property
    def requests_interval_seconds(self) -> float:
        return self.requests_interval_millis / 1000.0

    def compiled_filters(self) -> List[Pattern]:
        """Compile the difference filters in configured order."""
        compiled = []
        for pattern in self.difference_filter_regexes:
            try:
                compiled.append(re.compile(pattern))
            except re.error as e:
                raise InvalidRegexError(pattern, e) from e
        return compiled

    def validate(self):
        """
        Validate the settings.

        Raises:
            ConfigValidationError: a numeric setting is out of range
            InvalidRegexError: a difference filter does not compile
        """
        if not isinstance(self.test_retries, int) or self.test_retries < 1:
            raise ConfigValidationError("test_retries", "must be at least 1")
        if self.requests_interval_millis < 0:
            raise ConfigValidationError("requests_interval_millis", "must not be negative")
        if self.num_of_virtual_users < 1:
            raise ConfigValidationError("num_of_virtual_users", "must be at least 1")
        if self.test_duration_time < 0:
            raise ConfigValidationError("test_duration_time", "must not be negative")
        if not isinstance(self.difference_filter_regexes, list):
            raise ConfigValidationError("difference_filter_regexes", "must be a list")
        self.compiled_filters()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'IntegrityVerificationConfig':
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")

        missing = [name for name in REQUIRED_FIELDS if not data.get(name)]
        if missing:
            raise ConfigError(f"Missing required config keys: {', '.join(missing)}")

        return cls(**{k: v for k, v in data.items() if k in known})


def apply_env_overrides(data: Dict[str, Any], environ=None) -> Dict[str, Any]:
    """Return a copy of data with environment overrides applied."""
    environ = os.environ if environ is None else environ
    merged = dict(data)
    for env_name, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            merged[field_name] = value
    return merged


def setup_config(path: str, environ=None) -> IntegrityVerificationConfig:
    """
    Load, override and validate the configuration file.

    Args:
        path: JSON configuration file
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigError: file unreadable, not a JSON object, or invalid settings
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except ValueError as e:
        raise ConfigError(f"Config {path} is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must be a JSON object")

    config = IntegrityVerificationConfig.from_dict(apply_env_overrides(data, environ))
    config.validate()
    return config
