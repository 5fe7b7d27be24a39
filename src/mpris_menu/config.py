"""Application configuration using TOML + environment variables."""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

from dotenv import load_dotenv

# Load .env file for local overrides
load_dotenv()

BUS_TYPES = ("session", "system")


@dataclass
class ServerConfig:
    """Server settings."""

    host: str = "127.0.0.1"
    port: int = 5175
    debug: bool = False


@dataclass
class BusConfig:
    """Message bus settings."""

    type: str = field(default_factory=lambda: os.getenv("MPRIS_MENU_BUS", "session"))

    def __post_init__(self):
        if self.type not in BUS_TYPES:
            raise ValueError(f"bus.type must be one of {BUS_TYPES}, got {self.type!r}")


@dataclass
class ControlsConfig:
    """Front-end command behaviour."""

    # "play" pauses every other playing player first
    exclusive_play: bool = True


@dataclass
class Settings:
    """Application settings loaded from config.toml and environment."""

    server: ServerConfig = field(default_factory=ServerConfig)
    bus: BusConfig = field(default_factory=BusConfig)
    controls: ControlsConfig = field(default_factory=ControlsConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Self:
        """Load settings from config.toml file."""
        if config_path is None:
            # Look for config.toml in current directory or project root
            config_path = Path("config.toml")
            if not config_path.exists():
                config_path = Path(__file__).parent.parent.parent / "config.toml"

        data = {}
        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)

        bus = dict(data.get("bus", {}))
        # Environment wins over the file
        if os.getenv("MPRIS_MENU_BUS"):
            bus["type"] = os.getenv("MPRIS_MENU_BUS")

        return cls(
            server=ServerConfig(**data.get("server", {})),
            bus=BusConfig(**bus),
            controls=ControlsConfig(**data.get("controls", {})),
        )


# Global settings instance - loaded lazily
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def set_settings(settings: Settings):
    """Replace the global settings instance (CLI overrides, tests)."""
    global _settings
    _settings = settings
