"""Configuration management using YAML and Pydantic."""

import os
import re
import warnings
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from index_restore.exceptions import ConfigurationError

DEFAULT_BATCH_SIZE = 4000
DEFAULT_ARCHIVE_EXTENSION = ".ndjson.gz"
ID_STRATEGIES = ("content_hash", "auto")

# ${NAME} or ${NAME:-fallback}
ENV_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>[^}]*))?\}")


def _expand_env(data: Any) -> Any:
    """Replace ${NAME} and ${NAME:-fallback} references in every string of a YAML tree.

    Raises:
        ConfigurationError: If a referenced variable is unset and has no fallback
    """
    if isinstance(data, dict):
        return {key: _expand_env(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env(item) for item in data]
    if not isinstance(data, str):
        return data

    def lookup(match: re.Match[str]) -> str:
        name, fallback = match.group("name"), match.group("fallback")
        value = os.environ.get(name, fallback)
        if value is None:
            raise ConfigurationError(
                f"Environment variable {name} is referenced but not set",
                context={"variable": name},
            )
        return value

    return ENV_REFERENCE.sub(lookup, data)


class S3Config(BaseModel):
    """Object storage configuration."""

    endpoint: Optional[str] = Field(
        default=None,
        description="Endpoint URL for S3-compatible storage (COS, MinIO); null for AWS S3",
    )
    bucket: str = Field(description="Bucket holding the exported archives")
    prefix: str = Field(default="", description="Key prefix the archives live under")
    region: str = Field(default="us-east-1", description="Bucket region")
    aws_access_key_id: Optional[str] = Field(
        default=None,
        alias="access_key_id",
        description="Access key ID; prefer the AWS_ACCESS_KEY_ID environment variable",
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None,
        alias="secret_access_key",
        description="Secret access key; prefer the AWS_SECRET_ACCESS_KEY environment variable",
    )

    model_config = {"populate_by_name": True}

    def get_credentials(self) -> Optional[dict[str, str]]:
        """Resolve static credentials for the boto3 session.

        Keys in the config file win over AWS_ACCESS_KEY_ID/AWS_SECRET_ACCESS_KEY.

        Returns:
            'aws_access_key_id'/'aws_secret_access_key' mapping, or None to let
            boto3 use its default credential chain

        Raises:
            ValueError: If only one half of the key pair is in the config file
        """
        pair = (self.aws_access_key_id, self.aws_secret_access_key)
        if any(pair) and not all(pair):
            raise ValueError(
                "Both aws_access_key_id and aws_secret_access_key must be set in the "
                "config file, or neither"
            )

        if all(pair):
            warnings.warn(
                "Credentials in the config file are not recommended outside development; "
                "use AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY",
                UserWarning,
                stacklevel=2,
            )
        else:
            pair = (os.getenv("AWS_ACCESS_KEY_ID"), os.getenv("AWS_SECRET_ACCESS_KEY"))
            if not all(pair):
                return None

        return dict(zip(("aws_access_key_id", "aws_secret_access_key"), pair))


class ElasticsearchConfig(BaseModel):
    """Elasticsearch connection configuration."""

    hosts: list[str] = Field(
        default_factory=lambda: ["http://localhost:9200"],
        description="Elasticsearch node URLs",
        min_length=1,
    )
    api_key_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing an API key",
    )
    username: Optional[str] = Field(default=None, description="Basic auth username")
    password_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing the basic auth password",
    )
    verify_certs: bool = Field(default=True, description="Verify TLS certificates")
    request_timeout: float = Field(
        default=60.0,
        description="Per-request timeout in seconds (bulk requests can be large)",
        gt=0,
    )

    @model_validator(mode="after")
    def validate_auth(self) -> "ElasticsearchConfig":
        """Validate that at most one auth method is configured."""
        if self.api_key_env and self.username:
            raise ValueError("Cannot specify both 'api_key_env' and 'username'")
        if self.username and not self.password_env:
            raise ValueError("'password_env' is required when 'username' is set")
        return self

    def get_api_key(self) -> Optional[str]:
        """Get API key from the configured environment variable.

        Raises:
            ValueError: If the variable is configured but not set
        """
        if not self.api_key_env:
            return None
        api_key = os.getenv(self.api_key_env)
        if not api_key:
            raise ValueError(f"Environment variable {self.api_key_env} not set")
        return api_key

    def get_basic_auth(self) -> Optional[tuple[str, str]]:
        """Get (username, password) for basic auth, or None.

        Raises:
            ValueError: If the password variable is not set
        """
        if not self.username or not self.password_env:
            return None
        password = os.getenv(self.password_env)
        if not password:
            raise ValueError(f"Environment variable {self.password_env} not set")
        return self.username, password


class RestoreConfig(BaseModel):
    """Import pipeline configuration."""

    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        description="Number of index operations accumulated before a bulk flush",
        gt=0,
    )
    archive_extension: str = Field(
        default=DEFAULT_ARCHIVE_EXTENSION,
        description="Key suffix of gzip-compressed NDJSON archives",
        min_length=1,
    )
    id_strategy: str = Field(
        default="content_hash",
        description="Document id strategy: 'content_hash' (SHA-256 of the line) or 'auto' (engine-assigned)",
    )
    flush_retries: int = Field(
        default=0,
        description="Extra attempts for a bulk flush that failed at the transport level (0 = no retry)",
        ge=0,
        le=10,
    )
    flush_retry_delay: float = Field(
        default=1.0,
        description="Initial backoff delay in seconds between flush attempts",
        gt=0,
    )

    @field_validator("id_strategy")
    @classmethod
    def validate_id_strategy(cls, v: str) -> str:
        """Validate id strategy."""
        if v not in ID_STRATEGIES:
            raise ValueError(f"id_strategy must be one of {', '.join(ID_STRATEGIES)}")
        return v


class MonitoringConfig(BaseModel):
    """Monitoring and metrics configuration."""

    metrics_enabled: bool = Field(
        default=False,
        description="Expose Prometheus metrics over HTTP while the command runs",
    )
    metrics_port: int = Field(
        default=8000,
        description="Port for Prometheus metrics endpoint",
        gt=0,
        lt=65536,
    )
    progress_update_interval: float = Field(
        default=5.0,
        description="Progress update interval in seconds",
        ge=0,
    )
    quiet_mode: bool = Field(
        default=False,
        description="Quiet mode (suppress progress output for cron)",
    )


class IndexRestoreConfig(BaseModel):
    """Root configuration model."""

    version: str = Field(description="Configuration version")
    s3: S3Config = Field(description="S3 configuration")
    elasticsearch: ElasticsearchConfig = Field(
        default_factory=ElasticsearchConfig,
        description="Elasticsearch configuration",
    )
    restore: RestoreConfig = Field(
        default_factory=RestoreConfig,
        description="Import pipeline configuration",
    )
    monitoring: MonitoringConfig = Field(
        default_factory=MonitoringConfig,
        description="Monitoring and metrics configuration",
    )

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        """Validate configuration version."""
        if v != "1.0":
            raise ValueError(f"Unsupported configuration version: {v}")
        return v


def load_config(config_path: Path) -> IndexRestoreConfig:
    """Load a YAML configuration file, expand environment references and validate it.

    Raises:
        ConfigurationError: If the file is missing, empty, not YAML or invalid
    """
    try:
        raw = Path(config_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {config_path}") from None

    try:
        document = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in configuration file: {e}") from e

    if not document:
        raise ConfigurationError("Configuration file is empty", context={"path": str(config_path)})

    try:
        return IndexRestoreConfig.model_validate(_expand_env(document))
    except ValueError as e:
        raise ConfigurationError(
            f"Configuration validation failed: {e}", context={"path": str(config_path)}
        ) from e
