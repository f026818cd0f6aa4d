"""
Configuration management for zigctl.

Handles:
- Serial port and radio adapter settings
- Network formation parameters
- Bridge connection to a radio-owning sidecar
- API server and runtime settings

Stored at ~/.zigctl/config.json; environment variables override the file.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import InvalidParameterError

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_DATA_DIR = Path.home() / ".zigctl"

DEFAULT_API_PORT = 8099
DEFAULT_BAUD_RATE = 115200
DEFAULT_PAN_ID = 0x1A62
DEFAULT_CHANNEL = 11

VALID_ADAPTERS = ("ember", "ezsp", "zstack", "deconz", "zigate", "zboss")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _filtered(data: Dict[str, Any], known: set) -> Dict[str, Any]:
    # Unknown keys are ignored so that older builds can read newer files
    return {k: v for k, v in data.items() if k in known}


@dataclass
class SerialConfig:
    """Serial link to the coordinator radio."""
    port: str = "/dev/ttyUSB0"
    baud_rate: int = DEFAULT_BAUD_RATE
    adapter: str = "ember"
    rtscts: bool = False

    def to_dict(self) -> dict:
        return {
            "port": self.port,
            "baud_rate": self.baud_rate,
            "adapter": self.adapter,
            "rtscts": self.rtscts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SerialConfig":
        return cls(**_filtered(data, {"port", "baud_rate", "adapter", "rtscts"}))


@dataclass
class NetworkConfig:
    """Parameters used when the controller forms a new network."""
    pan_id: int = DEFAULT_PAN_ID
    channel: int = DEFAULT_CHANNEL
    network_key: Optional[List[int]] = None  # None lets the controller generate one

    def to_dict(self) -> dict:
        return {
            "pan_id": self.pan_id,
            "channel": self.channel,
            "network_key": self.network_key,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConfig":
        return cls(**_filtered(data, {"pan_id", "channel", "network_key"}))


@dataclass
class BridgeConfig:
    """WebSocket connection to the radio-owning sidecar."""
    url: Optional[str] = None  # e.g. ws://localhost:8765/rpc
    connect_timeout: float = 10.0
    request_timeout: float = 10.0

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "connect_timeout": self.connect_timeout,
            "request_timeout": self.request_timeout,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BridgeConfig":
        return cls(**_filtered(data, {"url", "connect_timeout", "request_timeout"}))


@dataclass
class ServerConfig:
    """Configuration for the API server."""
    host: str = "127.0.0.1"
    port: int = DEFAULT_API_PORT
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "port": self.port,
            "cors_origins": self.cors_origins,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServerConfig":
        return cls(**_filtered(data, {"host", "port", "cors_origins"}))


@dataclass
class Config:
    """
    Main zigctl configuration.

    Stored at ~/.zigctl/config.json
    """
    # Paths
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    database_path: Optional[str] = None  # defaults to <data_dir>/zigbee.db
    catalog_path: Optional[str] = None  # extra device definitions (JSON)

    # Components
    serial: SerialConfig = field(default_factory=SerialConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    bridge: BridgeConfig = field(default_factory=BridgeConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Runtime
    request_timeout: float = 10.0
    start_timeout: float = 60.0
    pairing_duration: int = 254
    event_queue_size: int = 256
    log_level: str = "INFO"

    @property
    def config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def resolved_database_path(self) -> Path:
        if self.database_path:
            return Path(self.database_path).expanduser()
        return self.data_dir / "zigbee.db"

    def ensure_data_dir(self) -> None:
        """Create data directory if it doesn't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def validate(self) -> None:
        """
        Check values the controller cannot work with.

        Raises:
            InvalidParameterError: On the first invalid value
        """
        if not self.serial.port:
            raise InvalidParameterError("Serial port is required (set ZIGBEE_SERIAL_PORT)", param="serial.port")
        if self.serial.baud_rate <= 0:
            raise InvalidParameterError(
                f"Invalid baud rate: {self.serial.baud_rate}", param="serial.baud_rate"
            )
        if self.serial.adapter not in VALID_ADAPTERS:
            raise InvalidParameterError(
                f'Invalid adapter "{self.serial.adapter}". Valid: {", ".join(VALID_ADAPTERS)}',
                param="serial.adapter",
            )
        if not 11 <= self.network.channel <= 26:
            raise InvalidParameterError(
                f"Invalid channel: {self.network.channel} (11-26)", param="network.channel"
            )
        if self.request_timeout <= 0:
            raise InvalidParameterError(
                f"Invalid request timeout: {self.request_timeout}", param="request_timeout"
            )
        if self.log_level.upper() not in LOG_LEVELS:
            raise InvalidParameterError(f"Invalid log level: {self.log_level}", param="log_level")

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "Config":
        """Override settings from ZIGBEE_* and LOG_LEVEL environment variables."""
        env = os.environ if environ is None else environ

        if env.get("ZIGBEE_SERIAL_PORT"):
            self.serial.port = env["ZIGBEE_SERIAL_PORT"]
        if env.get("ZIGBEE_BAUD_RATE"):
            try:
                self.serial.baud_rate = int(env["ZIGBEE_BAUD_RATE"])
            except ValueError:
                raise InvalidParameterError(
                    f"Invalid ZIGBEE_BAUD_RATE: {env['ZIGBEE_BAUD_RATE']}", param="serial.baud_rate"
                ) from None
        if env.get("ZIGBEE_ADAPTER"):
            self.serial.adapter = env["ZIGBEE_ADAPTER"].lower()
        if env.get("ZIGBEE_DB_PATH"):
            self.database_path = env["ZIGBEE_DB_PATH"]
        if env.get("ZIGBEE_BRIDGE_URL"):
            self.bridge.url = env["ZIGBEE_BRIDGE_URL"]
        if env.get("LOG_LEVEL"):
            self.log_level = env["LOG_LEVEL"].upper()
        return self

    def to_dict(self) -> dict:
        return {
            "database_path": self.database_path,
            "catalog_path": self.catalog_path,
            "serial": self.serial.to_dict(),
            "network": self.network.to_dict(),
            "bridge": self.bridge.to_dict(),
            "server": self.server.to_dict(),
            "request_timeout": self.request_timeout,
            "start_timeout": self.start_timeout,
            "pairing_duration": self.pairing_duration,
            "event_queue_size": self.event_queue_size,
            "log_level": self.log_level,
        }

    @classmethod
    def from_dict(cls, data: dict, data_dir: Optional[Path] = None) -> "Config":
        scalars = _filtered(data, {
            "database_path",
            "catalog_path",
            "request_timeout",
            "start_timeout",
            "pairing_duration",
            "event_queue_size",
            "log_level",
        })
        config = cls(data_dir=data_dir or DEFAULT_DATA_DIR, **scalars)

        if "serial" in data:
            config.serial = SerialConfig.from_dict(data["serial"])
        if "network" in data:
            config.network = NetworkConfig.from_dict(data["network"])
        if "bridge" in data:
            config.bridge = BridgeConfig.from_dict(data["bridge"])
        if "server" in data:
            config.server = ServerConfig.from_dict(data["server"])

        return config

    def save(self) -> None:
        """Save configuration to disk."""
        self.ensure_data_dir()

        with open(self.config_path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.debug(f"Configuration saved to {self.config_path}")

    @classmethod
    def load(cls, data_dir: Optional[Path] = None, use_env: bool = True) -> "Config":
        """Load configuration from disk, then apply environment overrides."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        config_path = data_dir / "config.json"

        if config_path.exists():
            with open(config_path, "r") as f:
                config = cls.from_dict(json.load(f), data_dir=data_dir)
        else:
            config = cls(data_dir=data_dir)

        if use_env:
            config.apply_env()
        return config

    @classmethod
    def exists(cls, data_dir: Optional[Path] = None) -> bool:
        """Check if configuration exists."""
        data_dir = data_dir or DEFAULT_DATA_DIR
        return (data_dir / "config.json").exists()


# Global config instance
_config: Optional[Config] = None


def get_config(data_dir: Optional[Path] = None) -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load(data_dir)
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
