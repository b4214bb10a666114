"""
Configuration management for the Patterns player engine
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass
class BackendConfig:
    """Configuration for the backend collaborator."""

    base_url: str = "https://pttrns-backend-ts.vercel.app"
    auth_token: Optional[str] = None  # Backend auth token (legacy API key flow)
    listens_path: str = "/api/listens"
    session_listens_path: str = "/session-listens"
    api_key_path: str = "/dapp/generateMusicApiKey"
    request_timeout: float = 10.0

    def validate(self) -> None:
        """Validate backend configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid backend base_url: {self.base_url!r}")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")


@dataclass
class GenerationConfig:
    """Configuration for remote music generation."""

    timeout: float = 30.0
    preload_timeout: float = 45.0  # Background preloads get more time

    def validate(self) -> None:
        if self.timeout <= 0 or self.preload_timeout <= 0:
            raise ValueError("Generation timeouts must be positive")


@dataclass
class CacheConfig:
    """Configuration for the music source cache."""

    max_size: int = 50
    max_age_seconds: float = 30 * 60

    def validate(self) -> None:
        if self.max_size < 1:
            raise ValueError("Cache max_size must be at least 1")
        if self.max_age_seconds <= 0:
            raise ValueError("Cache max_age_seconds must be positive")


@dataclass
class SessionConfig:
    """Configuration for session expiry sweeps."""

    check_interval: float = 30.0

    def validate(self) -> None:
        if self.check_interval <= 0:
            raise ValueError("Session check_interval must be positive")


@dataclass
class ListenConfig:
    """Configuration for counted-listen detection."""

    min_listen_time: float = 30.0  # seconds
    min_listen_percentage: float = 0.8  # fraction of track duration
    cooldown_seconds: float = 30.0

    def validate(self) -> None:
        if self.min_listen_time < 0:
            raise ValueError("min_listen_time must not be negative")
        if not 0 < self.min_listen_percentage <= 1:
            raise ValueError("min_listen_percentage must be in (0, 1]")
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must not be negative")


@dataclass
class DeliveryConfig:
    """Configuration for listen delivery and the retry queue."""

    retry_attempts: int = 3
    retry_delay: float = 1.0  # Multiplied by attempt number
    timeout: float = 5.0
    sweep_interval: float = 30.0
    max_queue_age: float = 5 * 60
    queue_delay: float = 0.1  # Pause between queued deliveries
    batch_delay: float = 0.2  # Pause between batch deliveries

    def validate(self) -> None:
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        if self.timeout <= 0 or self.sweep_interval <= 0:
            raise ValueError("Delivery timeout and sweep_interval must be positive")
        if self.max_queue_age <= 0:
            raise ValueError("max_queue_age must be positive")


@dataclass
class PlayerConfig:
    """Configuration for the playback controller."""

    volume: float = 0.8
    tick_interval: float = 1.0
    default_duration: float = 180.0  # Used until the output reports metadata
    end_tolerance: float = 0.5  # Seconds before duration that count as "ended"
    max_advance_attempts: int = 2  # Target track plus one skip
    error_advance_delay: float = 1.0
    end_listen_percentage: float = 0.5  # Fallback listen threshold when a track ends early

    def validate(self) -> None:
        if not 0 <= self.volume <= 1:
            raise ValueError("Player volume must be in [0, 1]")
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be positive")
        if self.max_advance_attempts < 1:
            raise ValueError("max_advance_attempts must be at least 1")
        if not 0 < self.end_listen_percentage <= 1:
            raise ValueError("end_listen_percentage must be in (0, 1]")


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = (
        None  # Custom log file path (default: ~/.local/share/patterns-player/patterns-player.log)
    )
    rotation: str = "10 MB"
    retention: int = 5  # Number of rotated files to keep
    console_output: bool = False  # Also output to stderr (for debugging)


@dataclass
class Config:
    """Main configuration object."""

    backend: BackendConfig = field(default_factory=BackendConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    listens: ListenConfig = field(default_factory=ListenConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    player: PlayerConfig = field(default_factory=PlayerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Section name -> dataclass, in file order
_SECTIONS = {
    "backend": BackendConfig,
    "generation": GenerationConfig,
    "cache": CacheConfig,
    "session": SessionConfig,
    "listens": ListenConfig,
    "delivery": DeliveryConfig,
    "player": PlayerConfig,
    "logging": LoggingConfig,
}


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "patterns-player"
    return Path.home() / ".config" / "patterns-player"


def get_data_dir() -> Path:
    """Get the data directory path."""
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "patterns-player"
    return Path.home() / ".local" / "share" / "patterns-player"


def get_log_file_path() -> Path:
    """Get the path to the default log file."""
    return get_data_dir() / "patterns-player.log"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the following order:
    1. Current working directory
    2. XDG_CONFIG_HOME/patterns-player (or ~/.config/patterns-player)
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config

    return get_config_dir() / "config.toml"


def create_default_config() -> str:
    """Create a default configuration TOML content."""
    return """
# Patterns Player Configuration

[backend]
# Backend collaborator base URL
base_url = "https://pttrns-backend-ts.vercel.app"

# Backend auth token for the legacy music API key flow (optional)
# auth_token = "your-token-here"

[generation]
# Seconds to wait for on-demand music generation
timeout = 30

# Seconds to wait for background preloads
preload_timeout = 45

[cache]
# Maximum number of generated tracks kept in memory
max_size = 50

# Seconds before a cached track expires
max_age_seconds = 1800

[session]
# Seconds between session expiry sweeps
check_interval = 30

[listens]
# A listen counts after min(min_listen_time, duration * min_listen_percentage)
min_listen_time = 30
min_listen_percentage = 0.8

# Seconds before the same track can be counted again
cooldown_seconds = 30

[delivery]
retry_attempts = 3
retry_delay = 1.0
timeout = 5.0
sweep_interval = 30
max_queue_age = 300

[player]
volume = 0.8
tick_interval = 1.0

# A track that ends counts as a listen once this share of it was heard
end_listen_percentage = 0.5

[logging]
# DEBUG, INFO, WARNING, ERROR, CRITICAL
level = "INFO"
rotation = "10 MB"
retention = 5
console_output = false
"""


def _parse_section(name: str, data: dict, default):
    """Build a config section from TOML data, keeping defaults for missing keys."""
    section_cls = _SECTIONS[name]
    known = {k: v for k, v in data.items() if k in section_cls.__dataclass_fields__}
    unknown = set(data) - set(known)
    if unknown:
        print(f"Warning: Unknown keys in [{name}]: {sorted(unknown)}")

    section = section_cls(**{**default.__dict__, **known})
    validate = getattr(section, "validate", None)
    if validate:
        try:
            validate()
        except ValueError as e:
            print(f"Warning: Invalid {name} configuration: {e}")
            print(f"Using default {name} configuration.")
            return section_cls()
    return section


def _apply_env_overrides(config: Config) -> None:
    """Override TOML values with environment variables if present."""
    backend_url = os.environ.get("PATTERNS_BACKEND_URL")
    backend_token = os.environ.get("PATTERNS_BACKEND_TOKEN")
    log_level = os.environ.get("PATTERNS_LOG_LEVEL")

    if backend_url:
        config.backend.base_url = backend_url
    if backend_token:
        config.backend.auth_token = backend_token
    if log_level:
        config.logging.level = log_level.upper()


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file, falling back to defaults.

    Environment variables override TOML values:
    - PATTERNS_BACKEND_URL
    - PATTERNS_BACKEND_TOKEN
    - PATTERNS_LOG_LEVEL
    """
    # Load .env file from config directory if it exists
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    config_path = config_path or get_config_path()
    config = Config()

    if not config_path.exists():
        _apply_env_overrides(config)
        return config

    try:
        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"Error loading configuration from {config_path}: {e}")
        print("Using default configuration.")
        _apply_env_overrides(config)
        return config

    for name in _SECTIONS:
        if name in toml_data:
            setattr(
                config,
                name,
                _parse_section(name, toml_data[name], getattr(config, name)),
            )

    if config.logging.log_file:
        config.logging.log_file = str(Path(config.logging.log_file).expanduser())
    config.logging.level = config.logging.level.upper()

    _apply_env_overrides(config)
    return config


def ensure_directories() -> None:
    """Ensure all necessary directories exist."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    get_data_dir().mkdir(parents=True, exist_ok=True)
