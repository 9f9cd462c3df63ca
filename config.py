#!/usr/bin/env python3
"""
Configuration management for the feed aggregator.

This module centralizes logging setup and configuration loading. Values come from
environment variables, an optional .env file next to this module, and an optional
YAML settings file, and are validated once at import time into the global ``config``
object used throughout the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any, List
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    The logger outputs to stdout with line buffering for real-time logging.
    All modules should use get_logger() to create module-specific loggers that inherit this configuration.
    """
    environ["PYTHONUNBUFFERED"] = "1"

    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"

    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True  # Force reconfiguration if already configured
    )

    # Test runners swap stdout for objects without reconfigure()
    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if callable(reconfigure):
            reconfigure(line_buffering=True)

    # aiohttp logs every request at INFO when serving the viewer
    getLogger("aiohttp.access").setLevel(WARNING)

    return getLogger("FeedAggregator")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "coordinator", "viewer")

    Returns:
        A logger named "FeedAggregator.{name}"
    """
    return getLogger(f"FeedAggregator.{name}")


logger = _setup_global_logger()

DEFAULT_PROXY_URL = "https://api.allorigins.win/raw?url="


class Config:
    """Configuration manager for the feed aggregator.

    Loading order:
    1. .env file next to this module (if present)
    2. YAML settings file (if SETTINGS_FILE is set), exported into the environment
    3. Environment variables, validated into attributes

    Example settings.yaml:
    ```yaml
    OPML_FILE: "subscriptions.opml"
    OUTPUT_FILE: "public/feeds.json"
    MAX_DAYS: 14
    SCHEDULE_TIMES: "06:30,18:30"
    ```
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file and settings file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_settings_file()

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.0) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _parse_int_list(self, env_var: str, default: List[int]) -> List[int]:
        """Parse a comma-separated list of positive integers."""
        raw = environ.get(env_var)
        if not raw:
            return list(default)
        values = []
        for part in raw.split(','):
            part = part.strip()
            if not part:
                continue
            try:
                value = int(part)
            except ValueError:
                logger.warning(f"Ignoring invalid entry '{part}' in {env_var}")
                continue
            if value > 0:
                values.append(value)
        if not values:
            logger.warning(f"No usable values in {env_var}, using default {default}")
            return list(default)
        return sorted(set(values))

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        # Batch inputs and outputs
        self.OPML_FILE = environ.get("OPML_FILE", "feedlist.opml")
        self.OUTPUT_FILE = environ.get("OUTPUT_FILE", "feeds.json")
        self.MAX_DAYS = self._validate_positive_int("MAX_DAYS", 30, 1)
        self.MAX_ITEMS = self._validate_positive_int("MAX_ITEMS", 2000, 1)

        # HTTP request configuration
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; FeedAggregator/1.0)")
        self.CONCURRENCY = self._validate_positive_int("CONCURRENCY", 6, 1)
        self.MAX_RETRIES = self._validate_positive_int("MAX_RETRIES", 2, 0)
        self.RETRY_DELAY_BASE = self._validate_positive_float("RETRY_DELAY_BASE", 1.0, 0.0)
        self.HTTP_TIMEOUT = self._validate_positive_float("HTTP_TIMEOUT", 20.0, 1.0)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Interactive viewer
        self.INTERACTIVE_PROXY_URL = environ.get("INTERACTIVE_PROXY_URL", DEFAULT_PROXY_URL).strip() or None
        self.VIEWER_HOST = environ.get("VIEWER_HOST", "127.0.0.1")
        self.VIEWER_PORT = self._validate_positive_int("VIEWER_PORT", 8080, 1)
        self.VIEWER_HOUR_CHOICES = self._parse_int_list("VIEWER_HOUR_CHOICES", [1, 6, 24, 72, 168])
        self.VIEWER_DEFAULT_HOURS = self._validate_positive_int("VIEWER_DEFAULT_HOURS", 24, 1)
        if self.VIEWER_DEFAULT_HOURS not in self.VIEWER_HOUR_CHOICES:
            logger.warning(
                "VIEWER_DEFAULT_HOURS=%s is not one of %s; using %s",
                self.VIEWER_DEFAULT_HOURS,
                self.VIEWER_HOUR_CHOICES,
                self.VIEWER_HOUR_CHOICES[0],
            )
            self.VIEWER_DEFAULT_HOURS = self.VIEWER_HOUR_CHOICES[0]

        # Scheduler configuration
        self.SCHEDULE_TIMES = [t.strip() for t in environ.get("SCHEDULE_TIMES", "").split(',') if t.strip()]
        self.SCHEDULER_TIMEZONE = environ.get("SCHEDULER_TIMEZONE", "UTC")
        self.SCHEDULER_RUN_IMMEDIATELY = environ.get("SCHEDULER_RUN_IMMEDIATELY", "false").lower() == "true"

        base_dir = path.dirname(path.abspath(__file__))
        self.TEMPLATES_PATH = environ.get("TEMPLATES_PATH", path.join(base_dir, "templates"))

    def _load_settings_file(self):
        """Export overrides from a YAML settings file into the environment.

        Both a top-level mapping and a mapping nested under ``environment`` are accepted.
        Keys defined in the file override the process environment.
        """
        settings_file_path = environ.get("SETTINGS_FILE")
        if not settings_file_path:
            logger.debug("SETTINGS_FILE not set; relying on environment/.env")
            return

        data = self._safe_read_yaml(settings_file_path, 1024 * 1024, 'settings')
        if data is None:
            return
        if not isinstance(data, dict):
            logger.warning(f"Settings file {settings_file_path} must be a YAML mapping at the top level")
            return

        env_vars = data['environment'] if isinstance(data.get('environment'), dict) else data

        loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None and not isinstance(value, (dict, list)):
                environ[key] = str(value)
                loaded += 1
            else:
                logger.warning(f"Skipping invalid setting in {settings_file_path}: {key}={value}")

        logger.info(f"Loaded {loaded} settings from {settings_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'settings')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "opml_file": self.OPML_FILE,
            "output_file": self.OUTPUT_FILE,
            "max_days": self.MAX_DAYS,
            "max_items": self.MAX_ITEMS,
            "concurrency": self.CONCURRENCY,
            "max_retries": self.MAX_RETRIES,
            "http_timeout": self.HTTP_TIMEOUT,
            "interactive_proxy": bool(self.INTERACTIVE_PROXY_URL),
            "schedule_times": list(self.SCHEDULE_TIMES),
            "settings_file_configured": bool(environ.get("SETTINGS_FILE")),
        }


# Global configuration instance
config = Config()
