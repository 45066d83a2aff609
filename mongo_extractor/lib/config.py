"""Configuration loading and validation.

The extractor reads a JSON or YAML file holding a ``parameters`` object::

    parameters:
      db:
        host: localhost
        port: 27017
        database: test
        user: reader
        "#password": ${MONGO_PASSWORD}
      tableName: restaurants
      collection: restaurants
      query: '{borough: "Bronx"}'
      mapping:
        _id: null

A configuration holds either one export (the keys above, named by
``tableName``) or, in the older layout, a list of exports under
``exports``.  The older layout keeps a separate watermark per export id.

Uses Pydantic v2 for validation, PyYAML for YAML files and
pydantic-settings for environment based runtime settings.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from mongo_extractor.lib.env import expand_config
from mongo_extractor.lib.errors import ConfigurationError
from mongo_extractor.lib.models import (
    ConnectionParams,
    ExportMode,
    ExportSpec,
    Protocol,
    TlsOptions,
)
from mongo_extractor.lib.watermark import normalize_column

logger = logging.getLogger(__name__)

__all__ = [
    "DbConfig",
    "ExportConfig",
    "ExtractorConfig",
    "ExtractorSettings",
    "SshConfig",
    "SslConfig",
    "load_config",
    "parse_config",
]

DEFAULT_SSH_LOCAL_PORT = 33006


class SslConfig(BaseModel):
    """TLS material given inline in the configuration."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    enabled: bool = Field(default=False, description="Connect with TLS")
    ca: Optional[str] = Field(default=None, description="CA certificate (PEM)")
    cert: Optional[str] = Field(default=None, description="Client certificate (PEM)")
    key: Optional[str] = Field(default=None, alias="#key", description="Client key (PEM)")


class SshKeys(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    private: Optional[str] = Field(default=None, alias="#private")
    public: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def accept_plain_private(cls, data: Any) -> Any:
        """Accept ``private`` as well as the encrypted ``#private`` key."""
        if isinstance(data, dict) and "#private" not in data and "private" in data:
            data = {**data, "#private": data["private"]}
        return data


class SshConfig(BaseModel):
    """SSH tunnel to a server not reachable directly."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    keys: SshKeys = Field(default_factory=SshKeys)
    sshHost: Optional[str] = None
    sshPort: int = 22
    user: Optional[str] = None
    remoteHost: Optional[str] = None
    remotePort: Optional[int] = None
    localPort: int = DEFAULT_SSH_LOCAL_PORT

    @model_validator(mode="after")
    def validate_enabled_tunnel(self) -> "SshConfig":
        if self.enabled:
            missing = [
                name
                for name, value in (
                    ("sshHost", self.sshHost),
                    ("user", self.user),
                    ("keys.#private", self.keys.private),
                )
                if not value
            ]
            if missing:
                raise ValueError(f"SSH tunnel requires: {', '.join(missing)}")
        return self


class DbConfig(BaseModel):
    """Connection part of the configuration (``parameters.db``)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    protocol: Protocol = Field(default=Protocol.MONGODB, description="mongodb, mongodb+srv or custom_uri")
    uri: Optional[str] = Field(default=None, min_length=1, description="Connection URI (custom_uri only)")
    host: Optional[str] = Field(default=None, min_length=1)
    port: Optional[int] = None
    database: Optional[str] = Field(default=None, min_length=1)
    authenticationDatabase: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    encrypted_password: Optional[str] = Field(default=None, alias="#password")
    ssl: SslConfig = Field(default_factory=SslConfig)
    ssh: SshConfig = Field(default_factory=SshConfig)

    @field_validator("port", mode="before")
    @classmethod
    def empty_port(cls, v: Any) -> Any:
        return None if v == "" else v

    @model_validator(mode="after")
    def validate_protocol_options(self) -> "DbConfig":
        if self.password is None:
            self.password = self.encrypted_password

        if self.protocol is Protocol.CUSTOM_URI:
            if self.uri is None:
                raise ValueError('The child node "uri" at path "parameters.db" must be configured.')
            if self.ssh.enabled:
                raise ValueError("Custom URI is not compatible with SSH tunnel support.")
            for key in ("host", "port", "database", "authenticationDatabase"):
                if getattr(self, key) is not None:
                    raise ValueError(f'Configuration node "db.{key}" is not compatible with custom URI.')
            return self

        if self.host is None:
            raise ValueError('The child node "host" at path "parameters.db" must be configured.')
        if self.database is None:
            raise ValueError('The child node "database" at path "parameters.db" must be configured.')
        if (self.user is None) != (self.password is None):
            raise ValueError('When passing authentication details, both "user" and "password" params are required')
        if self.protocol is Protocol.MONGODB and not self.port and not self.ssh.enabled:
            raise ValueError('Missing connection parameter "port".')
        return self

    def to_connection(self, *, quiet: bool = False, tls: Optional[TlsOptions] = None) -> ConnectionParams:
        """Runtime connection parameters; an SSH tunnel replaces host and port."""
        host, port = self.host, self.port
        if self.ssh.enabled:
            host, port = "127.0.0.1", self.ssh.localPort
        return ConnectionParams(
            protocol=self.protocol,
            host=host,
            port=port,
            database=self.database,
            user=self.user,
            password=self.password,
            auth_database=self.authenticationDatabase,
            uri=self.uri,
            tls=tls or TlsOptions(enabled=self.ssl.enabled),
            quiet=quiet,
        )


class ExportConfig(BaseModel):
    """One export: a collection and how to turn it into tables."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    name: str = Field(..., min_length=1, description="Export name, the output table name")
    collection: str = Field(..., min_length=1)
    query: str = ""
    sort: str = ""
    limit: Optional[int] = Field(default=None, ge=1)
    skip: Optional[int] = Field(default=None, ge=0)
    mode: ExportMode = ExportMode.MAPPING
    mapping: Dict[str, Any] = Field(default_factory=dict)
    includeParentInPK: bool = False
    enabled: bool = True
    incremental: bool = False
    incrementalFetchingColumn: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v

    @field_validator("query", "sort", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("limit", "skip", mode="before")
    @classmethod
    def empty_as_none(cls, v: Any) -> Any:
        if v in ("", 0, "0"):
            return None
        return v

    @field_validator("mapping", mode="before")
    @classmethod
    def mapping_from_json(cls, v: Any) -> Any:
        """Mapping may be given as a JSON string."""
        if v is None:
            return {}
        if isinstance(v, str):
            try:
                return json.loads(v) if v.strip() else {}
            except json.JSONDecodeError as e:
                raise ValueError(f"Mapping is not valid JSON: {e}") from e
        return v

    @field_validator("incrementalFetchingColumn")
    @classmethod
    def normalize_incremental_column(cls, v: Optional[str]) -> Optional[str]:
        # Mapping paths read "field.$date", the probe reads "field"
        if not v:
            return None
        return normalize_column(v)

    @model_validator(mode="after")
    def validate_incremental_fetching(self) -> "ExportConfig":
        if self.incrementalFetchingColumn and self.query.strip():
            raise ValueError("Both incremental fetching and query cannot be set together.")
        if self.incrementalFetchingColumn and self.sort.strip():
            raise ValueError("Both incremental fetching and sort cannot be set together.")
        return self

    @model_validator(mode="after")
    def validate_mapping(self) -> "ExportConfig":
        if self.mode is ExportMode.MAPPING and not self.mapping:
            raise ValueError('Mapping cannot be empty in "mapping" export mode.')
        return self

    def to_spec(self) -> ExportSpec:
        return ExportSpec(
            name=self.name,
            id=self.id,
            collection=self.collection,
            query=self.query,
            sort=self.sort,
            limit=self.limit,
            skip=self.skip,
            mode=self.mode,
            mapping=self.mapping,
            include_parent_in_pk=self.includeParentInPK,
            incremental_column=self.incrementalFetchingColumn,
            incremental=self.incremental,
            enabled=self.enabled,
        )


class ExtractorConfig(BaseModel):
    """Validated ``parameters`` object."""

    db: DbConfig
    quiet: bool = False
    exports: List[ExportConfig] = Field(..., min_length=1)
    legacy: bool = Field(default=False, description="Configured through the 'exports' list")

    @model_validator(mode="after")
    def validate_exports(self) -> "ExtractorConfig":
        names = [export.name for export in self.exports]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Export names must be unique, duplicated: {', '.join(duplicates)}")
        if not any(export.enabled for export in self.exports):
            raise ValueError("Please enable at least one export")
        return self

    @property
    def export_specs(self) -> List[ExportSpec]:
        return [export.to_spec() for export in self.exports]


class ExtractorSettings(BaseSettings):
    """Runtime settings from the environment (``MONGO_EXTRACTOR_`` prefix).

    Example:
        >>> # MONGO_EXTRACTOR_DATA_DIR=/data
        >>> # MONGO_EXTRACTOR_MONGOEXPORT=/opt/mongodb/bin/mongoexport
        >>> settings = ExtractorSettings()
    """

    data_dir: str = Field(default="/data", description="Directory holding config.json, in/ and out/")
    mongoexport: str = Field(default="mongoexport", description="mongoexport executable")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")
    max_retries: int = Field(default=5, ge=1, le=10, description="Attempts to start mongoexport")
    retry_delay: float = Field(default=1.0, ge=0.0, le=60.0, description="Base retry delay in seconds")

    model_config = SettingsConfigDict(
        env_prefix="MONGO_EXTRACTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def _format_errors(error: ValidationError) -> List[str]:
    issues = []
    for item in error.errors():
        message = str(item.get("msg", "")).removeprefix("Value error, ")
        location = ".".join(str(part) for part in item.get("loc", ()))
        issues.append(f"{location}: {message}" if location else message)
    return issues


def parse_config(data: Dict[str, Any]) -> ExtractorConfig:
    """Validate a parsed configuration document.

    Raises:
        ConfigurationError: With one line per problem found
    """
    parameters = data.get("parameters", data) if isinstance(data, dict) else None
    if not isinstance(parameters, dict):
        raise ConfigurationError("Configuration must be an object with 'parameters'")

    legacy = "exports" in parameters
    if legacy:
        payload: Dict[str, Any] = {
            "db": parameters.get("db"),
            "quiet": parameters.get("quiet", False),
            "exports": parameters.get("exports") or [],
            "legacy": True,
        }
    else:
        export = {k: v for k, v in parameters.items() if k not in ("db", "quiet", "tableName")}
        export["name"] = parameters.get("tableName")
        payload = {
            "db": parameters.get("db"),
            "quiet": parameters.get("quiet", False),
            "exports": [export],
        }

    try:
        return ExtractorConfig.model_validate(payload)
    except ValidationError as e:
        issues = _format_errors(e)
        if len(issues) == 1:
            raise ConfigurationError(issues[0]) from e
        issue_lines = "\n".join(f"  - {issue}" for issue in issues)
        raise ConfigurationError(f"Invalid configuration\n\nIssues found:\n{issue_lines}") from e


def load_config(path: Union[str, Path]) -> ExtractorConfig:
    """Load, expand ``${VAR}`` references in and validate a config file.

    Raises:
        ConfigurationError: If the file is missing, unparsable or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}", field="config")

    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Invalid configuration syntax in {path}: {e}") from e

    if not data:
        raise ConfigurationError(f"Empty configuration file: {path}")

    logger.debug("Loaded configuration from %s", path)
    return parse_config(expand_config(data))
