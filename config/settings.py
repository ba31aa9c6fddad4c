"""
Configuration management using Pydantic Settings.
Loads configuration from environment variables; command-line flags override it.
"""
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from pydantic import Field

from src.common.exceptions import ConfigurationError

# Load .env file into os.environ so all nested BaseSettings pick up values
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class NatsSettings(BaseSettings):
    """Upstream gnatsd monitoring endpoint"""
    address: str = Field(default=":8043")

    class Config:
        env_prefix = "NATS_"


class ExporterSettings(BaseSettings):
    """Exposition endpoint and polling schedule"""
    listen_address: str = Field(default=":9104")
    consume_time: int = Field(default=10)

    class Config:
        env_prefix = "EXPORTER_"


class MonitoringSettings(BaseSettings):
    """Health check server (0 disables it)"""
    health_port: int = Field(default=0)

    class Config:
        env_prefix = ""


class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: str = Field(default="INFO")

    class Config:
        env_prefix = "LOG_"


class Settings(BaseSettings):
    """Main settings aggregating all configuration sections"""
    nats: NatsSettings = Field(default_factory=NatsSettings)
    exporter: ExporterSettings = Field(default_factory=ExporterSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        extra = "ignore"


def _split_host_port(address: str) -> Tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ConfigurationError(f"address {address!r} is missing a port")
    try:
        port_num = int(port)
    except ValueError:
        raise ConfigurationError(f"address {address!r} has a non-numeric port")
    if not 0 <= port_num <= 65535:
        raise ConfigurationError(f"address {address!r} has an out of range port")
    return host.strip("[]"), port_num


def parse_listen_address(address: str) -> Tuple[str, int]:
    """
    Split a Go-style listen address into (host, port).

    An empty host (":9104") binds every interface.
    """
    host, port = _split_host_port(address)
    return host or "0.0.0.0", port


def varz_url(address: str) -> str:
    """
    Build the /varz URL for an upstream address.

    An empty host (":8043") means the local machine.
    """
    host, port = _split_host_port(address)
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host or 'localhost'}:{port}/varz"


def validate_config(
    listen_address: str,
    nats_address: str,
    consume_time: int,
    log_level: Optional[str] = None,
) -> None:
    """
    Reject unusable startup configuration.

    Runs before the startup probe, so a bad interval never touches the network.

    Raises:
        ConfigurationError: describing the first problem found
    """
    if consume_time < 1:
        raise ConfigurationError("consume time should be >0")
    if not nats_address:
        raise ConfigurationError("nats address must not be empty")
    _split_host_port(nats_address)
    parse_listen_address(listen_address)
    if log_level is not None and log_level.upper() not in _LOG_LEVELS:
        raise ConfigurationError(f"unknown log level {log_level!r}")


# Singleton instance - import this in other modules
try:
    settings = Settings()
except Exception as e:
    # A malformed environment (e.g. EXPORTER_CONSUME_TIME=abc); the entry point treats None as fatal
    print(f"Warning: Could not load settings: {e}")
    settings = None
