"""Provides functions for loading and accessing configuration settings.

Supports loading from environment variables, a .env file, and an optional
YAML configuration file (e.g., ~/.jobpoller/config.yaml). The resolved values
are exposed to the rest of the poller as a `PollerSettings` instance.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
import yaml

from jobpoller.domain.models.common import BackoffPolicy

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".jobpoller"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
CONFIG_FILE_ENV_VAR = "JOBPOLLER_CONFIG"
ENV_FILE_NAME = ".env"

DEFAULT_API_BASE_URL = "http://localhost:3000"
API_PATH_PREFIX = "/api"
DEFAULT_POLL_INTERVAL_SECONDS = 120
DEFAULT_BATCH_SIZE = 100
DEFAULT_HTTP_TIMEOUT_MS = 30000
BILLING_MODES = ("batch", "per-execution")

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Optional[Path] = None, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values defined in `PollerSettings.from_config`

    Args:
        config_file: Path to the YAML configuration file. Defaults to
            $JOBPOLLER_CONFIG, then ~/.jobpoller/config.yaml.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. YAML file (lowest priority)
    config_file = config_file or Path(os.environ.get(CONFIG_FILE_ENV_VAR, DEFAULT_CONFIG_FILE))
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update({str(k).lower(): v for k, v in yaml_config.items()})
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. .env file (override=False: real environment variables take precedence)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug(".env file not found at or above current directory.")

    _loaded = True
    logger.debug("Configuration loading process completed.")


def reset_configuration() -> None:
    """Forgets anything loaded so the next `load_configuration` starts over."""
    global _config, _loaded
    _config = {}
    _loaded = False


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (key upper-cased); empty values count as unset
    3. YAML config (key lower-cased)
    4. Default value

    Values are returned as found; typed conversion happens in the helpers
    below so that e.g. a numeric API_KEY stays a string.
    """
    if key in _test_config:
        return _test_config[key]

    value = os.environ.get(key.upper())
    if value not in (None, ""):
        return value

    if key.lower() in _config:
        return _config[key.lower()]

    return default


def get_str(key: str, default: str = "") -> str:
    value = get_config(key)
    return default if value is None else str(value)


def get_int(key: str, default: Optional[int] = None) -> Optional[int]:
    """Reads an integer setting, falling back to `default` on junk values."""
    value = get_config(key)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning(f"Config value for '{key}' is not an integer: {value!r}. Using default {default}.")
        return default


def get_float(key: str, default: float) -> float:
    value = get_config(key)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning(f"Config value for '{key}' is not a number: {value!r}. Using default {default}.")
        return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {sorted(config_dict)}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Typed settings ---

@dataclass
class PollerSettings:
    """Resolved poller configuration."""
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str = ""
    keycloak_issuer_url: str = ""
    keycloak_realm: str = ""
    keycloak_client_id: str = ""
    keycloak_client_secret: str = ""
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    billing_interval_seconds: Optional[int] = None
    scheduler_interval_seconds: Optional[int] = None
    batch_size: int = DEFAULT_BATCH_SIZE
    http_timeout_ms: int = DEFAULT_HTTP_TIMEOUT_MS
    billing_mode: str = "batch"
    retry_initial_backoff_s: float = 1.0
    retry_backoff_factor: float = 2.0
    retry_max_backoff_s: float = 30.0
    log_level: str = "INFO"
    log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    log_file: Optional[str] = None

    @property
    def api_root_url(self) -> str:
        """Origin of the remote API with the API mount path appended."""
        return self.api_base_url.rstrip("/") + API_PATH_PREFIX

    @property
    def http_timeout_seconds(self) -> Optional[float]:
        """Per-request timeout, None (no timeout) when HTTP_TIMEOUT_MS is 0 or less."""
        if self.http_timeout_ms <= 0:
            return None
        return self.http_timeout_ms / 1000

    @property
    def billing_interval(self) -> int:
        return self.billing_interval_seconds or self.poll_interval_seconds

    @property
    def scheduler_interval(self) -> int:
        return self.scheduler_interval_seconds or self.poll_interval_seconds

    @property
    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            initial_delay=self.retry_initial_backoff_s,
            factor=self.retry_backoff_factor,
            max_delay=self.retry_max_backoff_s,
        )

    @property
    def has_client_credentials(self) -> bool:
        return all((
            self.keycloak_issuer_url,
            self.keycloak_realm,
            self.keycloak_client_id,
            self.keycloak_client_secret,
        ))

    @classmethod
    def from_config(cls) -> "PollerSettings":
        """Builds settings from the loaded configuration sources."""
        billing_mode = get_str("BILLING_MODE", "batch").lower()
        if billing_mode not in BILLING_MODES:
            logger.warning(f"Unknown BILLING_MODE '{billing_mode}', falling back to 'batch'.")
            billing_mode = "batch"

        return cls(
            api_base_url=get_str("API_BASE_URL", DEFAULT_API_BASE_URL),
            api_key=get_str("API_KEY"),
            keycloak_issuer_url=get_str("KEYCLOAK_ISSUER_URL") or get_str("KEYCLOAK_URL"),
            keycloak_realm=get_str("KEYCLOAK_REALM"),
            keycloak_client_id=get_str("KEYCLOAK_CLIENT_ID"),
            keycloak_client_secret=get_str("KEYCLOAK_CLIENT_SECRET"),
            poll_interval_seconds=get_int("POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS),
            billing_interval_seconds=get_int("POLL_INTERVAL_BILLING_SECONDS"),
            scheduler_interval_seconds=get_int("POLL_INTERVAL_SCHEDULER_SECONDS"),
            batch_size=get_int("BATCH_SIZE", DEFAULT_BATCH_SIZE),
            http_timeout_ms=get_int("HTTP_TIMEOUT_MS", DEFAULT_HTTP_TIMEOUT_MS),
            billing_mode=billing_mode,
            retry_initial_backoff_s=get_float("RETRY_INITIAL_BACKOFF_SECONDS", 1.0),
            retry_backoff_factor=get_float("RETRY_BACKOFF_FACTOR", 2.0),
            retry_max_backoff_s=get_float("RETRY_MAX_BACKOFF_SECONDS", 30.0),
            log_level=get_str("LOG_LEVEL", "INFO").upper(),
            log_format=get_str("LOG_FORMAT", cls.log_format),
            log_file=get_config("LOG_FILE"),
        )
