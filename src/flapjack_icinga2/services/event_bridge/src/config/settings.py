"""Configuration settings using Pydantic for validation."""

import logging
import os
import re
import ssl
from typing import Any, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config/local.yaml"


class IcingaConfig(BaseModel):
    """Icinga 2 API configuration."""
    model_config = ConfigDict(frozen=True)

    server: str = Field(default="localhost:5665", description="Icinga 2 API endpoint as host:port")
    scheme: str = Field(default="https", description="URL scheme for the API")
    queue: str = Field(default="flapjack", description="Icinga 2 event queue name")
    user: Optional[str] = Field(default=None, description="API user for basic auth")
    password: Optional[str] = Field(default=None, description="API password for basic auth")

    # TLS
    ca_file: Optional[str] = Field(default=None, description="PEM CA bundle for the API certificate")
    verify_tls: bool = Field(default=True, description="Verify the API certificate")

    # Event stream
    stream_method: str = Field(default="POST", description="HTTP method for the event stream")
    event_types: Tuple[str, ...] = Field(
        default=("CheckResult", "StateChange"),
        description="Event types requested from the stream"
    )
    max_line_bytes: int = Field(default=1024 * 1024, description="Longest accepted stream line")
    skip_unknown_types: bool = Field(
        default=False,
        description="Skip unrecognised event types instead of reconnecting"
    )

    # Timeouts
    connect_timeout_seconds: float = Field(default=10.0, description="TCP connect timeout")
    keepalive_seconds: float = Field(default=30.0, description="Idle keepalive for pooled connections")
    lookup_timeout_seconds: float = Field(default=10.0, description="Total timeout for object lookups")
    stream_idle_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Reconnect when the stream is silent this long (None waits forever)"
    )

    @field_validator('server')
    @classmethod
    def validate_server(cls, v):
        parts = v.split(':')
        if len(parts) != 2 or not parts[0] or not parts[1].isdigit():
            raise ValueError(
                f"invalid icinga server specified: {v!r}, "
                "should be in format `host:port` (e.g. 127.0.0.1:5665)"
            )
        if not 0 < int(parts[1]) < 65536:
            raise ValueError(f"icinga server port out of range: {v!r}")
        return v

    @field_validator('scheme')
    @classmethod
    def validate_scheme(cls, v):
        if v not in ('http', 'https'):
            raise ValueError("Scheme must be 'http' or 'https'")
        return v

    @field_validator('stream_method')
    @classmethod
    def validate_stream_method(cls, v):
        v = v.upper()
        if v not in ('GET', 'POST'):
            raise ValueError("Stream method must be 'GET' or 'POST'")
        return v

    @field_validator('event_types')
    @classmethod
    def validate_event_types(cls, v):
        if not v:
            raise ValueError("At least one event type must be requested")
        return v

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.server}"


class FlapjackConfig(BaseModel):
    """Flapjack Redis configuration."""
    model_config = ConfigDict(frozen=True)

    # Default Redis port is 6380 as Flapjack ships its own Redis next to the distro one
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6380, description="Redis port")
    db: int = Field(default=0, description="Redis database")
    password: Optional[str] = Field(default=None, description="Redis password")
    version: int = Field(default=2, description="Flapjack major version (1 or 2)")
    queue: str = Field(default="events", description="Flapjack events queue")
    socket_timeout: float = Field(default=5.0, description="Redis socket timeout")
    socket_connect_timeout: float = Field(default=5.0, description="Redis connect timeout")

    @field_validator('version')
    @classmethod
    def validate_version(cls, v):
        if v not in (1, 2):
            raise ValueError("Flapjack version must be 1 or 2")
        return v


class RetryConfig(BaseModel):
    """Reconnect backoff configuration."""
    model_config = ConfigDict(frozen=True)

    initial_backoff_seconds: float = Field(default=1.0, description="Initial backoff delay")
    max_backoff_seconds: float = Field(default=60.0, description="Maximum backoff delay")
    backoff_multiplier: float = Field(default=2.0, description="Backoff multiplier")
    jitter: bool = Field(default=True, description="Add jitter to backoff")


class EnrichmentConfig(BaseModel):
    """Object lookup configuration."""
    model_config = ConfigDict(frozen=True)

    cache_ttl_seconds: float = Field(default=0.0, description="Lookup cache TTL (0 disables caching)")
    cache_max_entries: int = Field(default=10000, description="Lookup cache size limit")


class HealthConfig(BaseModel):
    """Health check server configuration."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False, description="Run the health check server")
    port: int = Field(default=8080, description="Health check server port")
    host: str = Field(default="0.0.0.0", description="Health check server host")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination")


class BridgeSettings(BaseSettings):
    """Main event bridge settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    # Service configuration
    service_name: str = Field(default="flapjack-icinga2", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")
    debug: bool = Field(default=False, description="Enable verbose output")

    # Component configurations
    icinga: IcingaConfig = Field(default_factory=IcingaConfig)
    flapjack: FlapjackConfig = Field(default_factory=FlapjackConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod']:
            raise ValueError("Environment must be 'local', 'dev', or 'prod'")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment variables override values read from the YAML file
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    def summary(self) -> dict:
        """Settings as a dict with secrets masked, for boot logging."""
        data = self.model_dump()
        for section in ('icinga', 'flapjack'):
            if data[section].get('password'):
                data[section]['password'] = '***'
        return data


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Args:
        obj: Configuration object (dict, list, string, or other)

    Returns:
        Object with environment variables substituted

    Raises:
        ConfigurationError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            # Handle default values: VAR_NAME:-default_value
            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ConfigurationError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> BridgeSettings:
    """
    Load settings from config file and environment variables.

    The config file supports environment variable substitution using ${VAR_NAME} syntax.
    Environment variables take precedence over config file values.

    Args:
        config_file: Path to YAML configuration file. Defaults to $CONFIG_FILE,
            then config/local.yaml when present.

    Returns:
        BridgeSettings: Validated configuration object

    Raises:
        ConfigurationError: If the file is missing or unreadable, a required
            environment variable is missing, or validation fails
    """
    explicit = config_file or os.getenv("CONFIG_FILE")
    if explicit is None and os.path.exists(DEFAULT_CONFIG_FILE):
        explicit = DEFAULT_CONFIG_FILE

    try:
        if explicit:
            if not os.path.exists(explicit):
                raise ConfigurationError(f"Configuration file not found: {explicit}")

            import yaml

            try:
                with open(explicit, 'r') as f:
                    raw_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Could not read configuration file {explicit}: {e}") from e

            if not isinstance(raw_config, dict):
                raise ConfigurationError(f"Configuration file {explicit} must contain a mapping")

            config_data = substitute_env_vars(raw_config)
            return BridgeSettings(**config_data)

        # Load from environment variables only
        return BridgeSettings()

    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_ssl_context(config: IcingaConfig) -> Union[ssl.SSLContext, bool]:
    """
    Build the TLS setting for Icinga API connections.

    Returns an ``SSLContext`` trusting ``ca_file`` (or the system store), or
    ``False`` when verification is disabled.
    """
    if config.ca_file:
        # Assuming a self-signed server certificate, e.g. /etc/icinga2/ca.crt
        try:
            return ssl.create_default_context(cafile=config.ca_file)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(
                f"Could not load server certificate {config.ca_file}: {e}"
            ) from e

    if not config.verify_tls:
        logger.warning("Skipping verification of server TLS certificate")
        return False

    return ssl.create_default_context()
