# config.py
# Description: Configuration management for the course_tracker core.
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

# --- Path to the user's configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "course_tracker" / "config.toml"
CONFIG_PATH_ENV_VAR = "COURSE_TRACKER_CONFIG"
API_URL_ENV_VAR = "COURSE_TRACKER_API_URL"

BASE_DATA_DIR = Path.home() / ".local" / "share" / "course_tracker"

CONFIG_TOML_CONTENT = """
# Configuration for the course_tracker core
# Located at: ~/.config/course_tracker/config.toml
[general]
log_level = "INFO" # DEBUG, INFO, WARNING, ERROR, CRITICAL

[logging]
# Log file will be placed in the same directory as the database below.
log_filename = "course_tracker.log"
file_log_level = "DEBUG"
log_rotation = "10 MB"
log_retention = 5

[database]
db_path = "~/.local/share/course_tracker/courses-tracker.db"
auth_state_path = "~/.local/share/course_tracker/auth_state.json"

[api]
base_url = "http://localhost:5000"
timeout_seconds = 15.0

[sync]
sync_on_start = true
retry_base_seconds = 5.0
retry_max_seconds = 300.0

[cache]
# Remote query results are served from cache for this long before refetching.
stale_time_seconds = 300.0
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}")
    DEFAULT_CONFIG_FROM_TOML = {}


def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config_path() -> Path:
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads settings from the user's config.toml, merged over the built-in defaults.
    If the file doesn't exist, it's created with the default content.
    Environment variables override the file for the API base URL.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)
    config_path = get_config_path()

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}. Creating it with default values.")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
        except OSError as e:
            logger.error(f"Could not create default config file {config_path}: {e}. Using internal defaults.")
    else:
        try:
            with open(config_path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.debug(f"Loaded and merged config from {config_path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {config_path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {config_path}: {e}. Using internal defaults.")

    env_api_url = os.environ.get(API_URL_ENV_VAR)
    if env_api_url:
        loaded_config.setdefault("api", {})["base_url"] = env_api_url

    _CONFIG_CACHE = loaded_config
    return _CONFIG_CACHE


def _get_typed_value(section_data: Dict, key: str, default: Any, target_type: type) -> Any:
    value = section_data.get(key, default)
    if value is None:
        return None
    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. "
                       f"Using default: '{default}'. Error: {e}")
        return default


def get_setting(section: str, key: str, default: Any = None, target_type: Optional[type] = None) -> Any:
    """Gets a single setting from the loaded configuration, falling back to `default`."""
    section_data = load_settings().get(section)
    if not isinstance(section_data, dict):
        return default
    if target_type is None:
        return section_data.get(key, default)
    return _get_typed_value(section_data, key, default, target_type)


# --- Path Getters ---
def _resolve_path_setting(key: str, fallback: Path) -> Path:
    default_str = DEFAULT_CONFIG_FROM_TOML.get("database", {}).get(key, str(fallback))
    return Path(get_setting("database", key, default_str)).expanduser().resolve()


def get_database_path() -> Path:
    return _resolve_path_setting("db_path", BASE_DATA_DIR / "courses-tracker.db")


def get_auth_state_path() -> Path:
    return _resolve_path_setting("auth_state_path", BASE_DATA_DIR / "auth_state.json")


def get_log_file_path() -> Path:
    log_filename = get_setting("logging", "log_filename", "course_tracker.log")
    log_file_path = get_database_path().parent / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path


def get_api_base_url() -> str:
    return str(get_setting("api", "base_url", "http://localhost:5000"))


def get_api_timeout() -> float:
    return get_setting("api", "timeout_seconds", 15.0, float)

#
# End of config.py
#######################################################################################################################
