"""Extractor library modules.

This package contains the building blocks of an extraction run: the
mongoexport command line and process, the Extended JSON text codec, the
stream decoder, the table writers and the incremental watermark.
"""

from mongo_extractor.lib.command import CommandBuilder
from mongo_extractor.lib.config import (
    DbConfig,
    ExportConfig,
    ExtractorConfig,
    ExtractorSettings,
    load_config,
    parse_config,
)
from mongo_extractor.lib.decoder import StreamDecoder
from mongo_extractor.lib.ejson import (
    literal_id_to_extended,
    quote_bare_keys,
    strip_type_suffixes,
    to_display,
    to_query,
    unwrap_scalars,
)
from mongo_extractor.lib.env import expand_config, expand_env_vars, load_env_file
from mongo_extractor.lib.errors import (
    ClassifiedExportError,
    CodecError,
    ConfigurationError,
    ConnectionStartError,
    ExtractorError,
    LineDecodeError,
    MappingConfigError,
    UnclassifiedExportError,
    UserError,
    WatermarkResolutionError,
    WriteError,
)
from mongo_extractor.lib.extractor import Extractor, ExportResult
from mongo_extractor.lib.failures import classify_failure
from mongo_extractor.lib.manifest import build_manifest, write_manifest
from mongo_extractor.lib.mapping import MappingEngine, parse_mapping
from mongo_extractor.lib.models import (
    ConnectionParams,
    ExportMode,
    ExportQuery,
    ExportSpec,
    Protocol,
    TlsOptions,
)
from mongo_extractor.lib.observability import JSONFormatter, setup_logging
from mongo_extractor.lib.process import ProcessRunner
from mongo_extractor.lib.raw import RawWriter
from mongo_extractor.lib.resilience import RetryConfig, retry_operation
from mongo_extractor.lib.ssh import SshTunnel
from mongo_extractor.lib.tables import OutputTable
from mongo_extractor.lib.uri import MongoUri, create_uri
from mongo_extractor.lib.watermark import WatermarkTracker, load_state, save_state

__all__ = [
    # Command and process
    "CommandBuilder",
    "ProcessRunner",
    "classify_failure",
    "MongoUri",
    "create_uri",
    "SshTunnel",
    # Configuration
    "DbConfig",
    "ExportConfig",
    "ExtractorConfig",
    "ExtractorSettings",
    "load_config",
    "parse_config",
    "expand_config",
    "expand_env_vars",
    "load_env_file",
    # Models
    "ConnectionParams",
    "ExportMode",
    "ExportQuery",
    "ExportSpec",
    "Protocol",
    "TlsOptions",
    # Extended JSON
    "literal_id_to_extended",
    "quote_bare_keys",
    "strip_type_suffixes",
    "to_display",
    "to_query",
    "unwrap_scalars",
    # Output
    "StreamDecoder",
    "MappingEngine",
    "parse_mapping",
    "RawWriter",
    "OutputTable",
    "build_manifest",
    "write_manifest",
    # Incremental fetching
    "WatermarkTracker",
    "load_state",
    "save_state",
    # Run
    "Extractor",
    "ExportResult",
    # Errors
    "ExtractorError",
    "UserError",
    "ConfigurationError",
    "ConnectionStartError",
    "ClassifiedExportError",
    "UnclassifiedExportError",
    "LineDecodeError",
    "MappingConfigError",
    "WatermarkResolutionError",
    "WriteError",
    "CodecError",
    # Logging and retries
    "JSONFormatter",
    "setup_logging",
    "RetryConfig",
    "retry_operation",
]
