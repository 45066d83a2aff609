"""CLI entry point for running an extraction.

Usage:
    python -m mongo_extractor --data-dir /data
    python -m mongo_extractor --config ./config.yml --output ./out/tables
    python -m mongo_extractor --data-dir /data --dry-run

Data directory layout:
    - <data-dir>/config.json      configuration (``parameters``)
    - <data-dir>/in/state.json    watermark saved by the previous run
    - <data-dir>/out/tables/      CSV files and manifests
    - <data-dir>/out/state.json   watermark for the next run

Exit codes: 0 success, 1 user error, 2 application error.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from mongo_extractor.lib.command import CommandBuilder
from mongo_extractor.lib.config import ExtractorConfig, ExtractorSettings, load_config
from mongo_extractor.lib.env import load_env_file
from mongo_extractor.lib.errors import ExtractorError, UserError
from mongo_extractor.lib.extractor import Extractor
from mongo_extractor.lib.process import ProcessRunner
from mongo_extractor.lib.resilience import RetryConfig
from mongo_extractor.lib.watermark import build_incremental_filter, load_state, prior_watermark

EXIT_OK = 0
EXIT_USER_ERROR = 1
EXIT_APPLICATION_ERROR = 2


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for an extraction run.

    Args:
        verbose: Enable debug-level logging
        json_format: Use JSON output format (for log aggregation)
        log_file: Optional file path to write logs to
    """
    from mongo_extractor.lib.observability import setup_logging as _setup_logging

    _setup_logging(verbose=verbose, json_format=json_format, log_file=log_file)


logger = logging.getLogger(__name__)


def build_parser(settings: ExtractorSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mongo-extract",
        description="Export MongoDB collections into CSV tables with mongoexport",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with the standard data directory layout
    python -m mongo_extractor --data-dir /data

    # Explicit config, state and output locations
    python -m mongo_extractor --config ./config.yml --state ./state.json --output ./out/tables

    # Load ${VAR} references from a .env file
    python -m mongo_extractor --data-dir ./data --env-file ./.env

    # Show the mongoexport commands without running them
    python -m mongo_extractor --data-dir ./data --dry-run

Environment:
    MONGO_EXTRACTOR_DATA_DIR     default for --data-dir
    MONGO_EXTRACTOR_MONGOEXPORT  mongoexport executable
    MONGO_EXTRACTOR_MAX_RETRIES  attempts to start mongoexport
        """,
    )

    parser.add_argument(
        "--data-dir",
        default=settings.data_dir,
        help=f"Directory holding config.json, in/ and out/ (default: {settings.data_dir})",
    )
    parser.add_argument(
        "--config",
        help="Configuration file, JSON or YAML (default: <data-dir>/config.json)",
    )
    parser.add_argument(
        "--state",
        help="State file of the previous run (default: <data-dir>/in/state.json)",
    )
    parser.add_argument(
        "--output",
        help="Output directory for tables (default: <data-dir>/out/tables)",
    )
    parser.add_argument(
        "--env-file",
        help="Load environment variables from a .env file before reading the config",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and log the mongoexport commands without executing",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--json-log",
        action="store_true",
        default=settings.log_format == "json",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument(
        "--log-file",
        default=settings.log_file,
        help="Write logs to a file in addition to console",
    )
    return parser


def dry_run(config: ExtractorConfig, builder: CommandBuilder, state: Dict[str, Any]) -> None:
    """Log the command each enabled export would run."""
    connection = config.db.to_connection(quiet=config.quiet)
    for spec in config.export_specs:
        if not spec.enabled:
            logger.info('Skipping disabled export "%s"', spec.name)
            continue
        column = spec.incremental_column
        if column:
            prior = prior_watermark(state, spec.id or spec.name, config.legacy)
            spec.apply_incremental_filter(*build_incremental_filter(column, prior))
        logger.info('[DRY RUN] "%s": %s', spec.name, builder.build(connection, spec.to_query(), redact=True))


def run(argv: Optional[List[str]] = None) -> int:
    """Run the CLI and return the process exit code."""
    # MONGO_EXTRACTOR_* values from --env-file must be in place before settings load
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--env-file")
    pre_args, _ = pre_parser.parse_known_args(argv)
    if pre_args.env_file:
        load_env_file(pre_args.env_file)

    settings = ExtractorSettings()
    args = build_parser(settings).parse_args(argv)

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_log,
        log_file=args.log_file,
    )

    data_dir = Path(args.data_dir)
    config_path = Path(args.config) if args.config else data_dir / "config.json"
    state_path = Path(args.state) if args.state else data_dir / "in" / "state.json"
    output_dir = Path(args.output) if args.output else data_dir / "out" / "tables"
    new_state_path = output_dir.parent / "state.json"

    builder = CommandBuilder(executable=(settings.mongoexport,))
    retry_config = RetryConfig(max_attempts=settings.max_retries, backoff_seconds=settings.retry_delay)

    try:
        config = load_config(config_path)
        state = load_state(state_path)

        if args.dry_run:
            dry_run(config, builder, state)
            return EXIT_OK

        output_dir.mkdir(parents=True, exist_ok=True)
        extractor = Extractor(
            config,
            output_dir,
            state=state,
            state_path=new_state_path,
            runner=ProcessRunner(builder, retry_config),
        )
        results = extractor.run()

    except KeyboardInterrupt:
        logger.error("Interrupted by user")
        return 130

    except UserError as e:
        logger.error("%s", e)
        return EXIT_USER_ERROR

    except ExtractorError as e:
        logger.error("%s", e)
        return EXIT_APPLICATION_ERROR

    except Exception as e:
        logger.exception("Extraction failed: %s", e)
        return EXIT_APPLICATION_ERROR

    logger.info(
        "Extraction finished: %d export(s), %d document(s)",
        len(results),
        sum(result.documents for result in results),
    )
    return EXIT_OK


def main() -> None:
    """Main entry point for the CLI."""
    sys.exit(run())


if __name__ == "__main__":
    main()
