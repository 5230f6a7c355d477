"""
Centralized configuration for the Hanabi table server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.STARTING_TIME_MS)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class GameDefaults:
    """Default table settings used when the lobby does not override them."""
    variant: int = 0
    timed: bool = False
    reorder_cards: bool = False


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Database (game history and player stats)
    POSTGRES_URL: str = ""

    # Clocks, in milliseconds
    STARTING_TIME_MS: int = 5 * 60 * 1000
    EXTRA_TURN_TIME_MS: int = 10 * 1000
    TEST_TABLE_TIME_MS: int = 10 * 1000

    # Table settings
    MAX_SPECTATORS_PER_TABLE: int = 50

    game_defaults: GameDefaults = field(default_factory=GameDefaults)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 3000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            POSTGRES_URL=get_env("POSTGRES_URL", ""),
            STARTING_TIME_MS=get_env_int("STARTING_TIME_MS", 5 * 60 * 1000),
            EXTRA_TURN_TIME_MS=get_env_int("EXTRA_TURN_TIME_MS", 10 * 1000),
            TEST_TABLE_TIME_MS=get_env_int("TEST_TABLE_TIME_MS", 10 * 1000),
            MAX_SPECTATORS_PER_TABLE=get_env_int("MAX_SPECTATORS_PER_TABLE", 50),
            game_defaults=GameDefaults(
                variant=get_env_int("DEFAULT_VARIANT", 0),
                timed=get_env_bool("DEFAULT_TIMED", False),
                reorder_cards=get_env_bool("DEFAULT_REORDER_CARDS", False),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
