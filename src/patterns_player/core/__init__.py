"""Core infrastructure layer - no business logic dependencies.

This module provides foundation-level services:
- Configuration management (TOML + .env)
- Logging and user-facing notices (Loguru)
"""

from .config import (
    Config,
    create_default_config,
    ensure_directories,
    get_config_dir,
    get_config_path,
    get_data_dir,
    get_log_file_path,
    load_config,
)
from .output import (
    clear_notice_callback,
    log,
    set_notice_callback,
    setup_from_config,
    setup_loguru,
)

__all__ = [
    # Config
    "Config",
    "load_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "get_log_file_path",
    "create_default_config",
    "ensure_directories",
    # Output
    "setup_loguru",
    "setup_from_config",
    "set_notice_callback",
    "clear_notice_callback",
    "log",
]
