"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.apishield/config.yaml), plus typed accessors
that turn raw settings into the resilience policy objects.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from apishield.domain.models.policies import (
    DEFAULT_CACHE_CONFIG,
    DEFAULT_RATE_LIMIT_CONFIG,
    DEFAULT_RETRY_POLICY,
    CacheConfig,
    RateLimitConfig,
    RetryPolicy,
)

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".apishield"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "APISHIELD_"

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False

def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested YAML mappings into dotted keys ('cache.max_size')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, prefix=f"{dotted}."))
        else:
            flat[dotted] = value
    return flat

def env_var_name(key: str) -> str:
    """Maps a dotted config key to its environment variable name."""
    return f"{ENV_PREFIX}{key.upper().replace('.', '_')}"

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None, force: bool = False) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug(".env file not found at or above current directory.")

    # 3. Environment Variables (Highest priority) are handled by get_config

    _loaded = True
    logger.debug("Configuration loading process completed.")

def _coerce(value: str) -> Any:
    """Converts an environment string to bool/int/float where it looks like one."""
    lowered = value.lower()
    if lowered == 'true':
        return True
    if lowered == 'false':
        return False
    try:
        if '.' in value or 'e' in lowered:
            return float(value)
        return int(value)
    except ValueError:
        return value

def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by dotted key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (APISHIELD_<KEY>)
    3. YAML config
    4. Default value

    Args:
        key: The configuration key, e.g. 'rate_limit.burst_size'
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    return default

def set_config(key: str, value: Any) -> None:
    """Sets a configuration value for the rest of the process.

    Args:
        key: Configuration key (e.g., 'logging.level')
        value: Value to set
    """
    _config[key] = value
    logger.debug(f"Config set: {key}={value}")

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None

# --- Typed Accessors ---

def get_rate_limit_config() -> RateLimitConfig:
    """Builds the admission controller policy from settings."""
    return RateLimitConfig(
        requests_per_second=float(get_config('rate_limit.requests_per_second', DEFAULT_RATE_LIMIT_CONFIG.requests_per_second)),
        burst_size=float(get_config('rate_limit.burst_size', DEFAULT_RATE_LIMIT_CONFIG.burst_size)),
        timeout_interval=float(get_config('rate_limit.timeout_interval', DEFAULT_RATE_LIMIT_CONFIG.timeout_interval)),
    )

def get_retry_policy() -> RetryPolicy:
    """Builds the default retry policy from settings."""
    return RetryPolicy(
        max_attempts=int(get_config('retry.max_attempts', DEFAULT_RETRY_POLICY.max_attempts)),
        initial_delay=float(get_config('retry.initial_delay', DEFAULT_RETRY_POLICY.initial_delay)),
        max_delay=float(get_config('retry.max_delay', DEFAULT_RETRY_POLICY.max_delay)),
        multiplier=float(get_config('retry.multiplier', DEFAULT_RETRY_POLICY.multiplier)),
        jitter=float(get_config('retry.jitter', DEFAULT_RETRY_POLICY.jitter)),
    )

def get_cache_config() -> CacheConfig:
    """Builds the cache bounds from settings."""
    return CacheConfig(
        max_size=int(get_config('cache.max_size', DEFAULT_CACHE_CONFIG.max_size)),
        max_age=float(get_config('cache.max_age', DEFAULT_CACHE_CONFIG.max_age)),
        cleanup_interval=float(get_config('cache.cleanup_interval', DEFAULT_CACHE_CONFIG.cleanup_interval)),
    )

def get_cache_dir() -> Path:
    """Returns the cache directory, expanding '~'."""
    value = get_config('cache.dir')
    if value:
        return Path(str(value)).expanduser()
    return DEFAULT_CONFIG_DIR / "cache"

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
