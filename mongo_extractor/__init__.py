"""MongoDB to CSV table extraction through mongoexport.

Each configured export runs mongoexport against one collection and turns
the JSON lines it prints into CSV tables with manifests, either through a
user mapping or as raw ``(id, data)`` rows.  Incremental exports remember
the last fetched value between runs.

Usage:
    python -m mongo_extractor --data-dir /data
    python -m mongo_extractor --config config.yml --output ./out/tables
"""

from mongo_extractor.lib.config import ExtractorConfig, load_config
from mongo_extractor.lib.errors import ExtractorError, UserError
from mongo_extractor.lib.extractor import Extractor, ExportResult

__all__ = [
    "Extractor",
    "ExportResult",
    "ExtractorConfig",
    "ExtractorError",
    "UserError",
    "load_config",
]

__version__ = "1.0.0"
