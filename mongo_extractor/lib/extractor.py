"""Extraction run: every enabled export, one after another.

For each export the extractor

1. rewrites query and sort from the saved watermark (incremental exports),
2. probes the next watermark,
3. streams mongoexport output through the decoder into the mapping
   engine or the raw writer,
4. writes a manifest per table.

The new watermark state is saved only after every export finished.
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import ExitStack, closing
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from mongo_extractor.lib.config import ExtractorConfig, SslConfig
from mongo_extractor.lib.decoder import StreamDecoder
from mongo_extractor.lib.manifest import write_manifest
from mongo_extractor.lib.mapping import MappingEngine
from mongo_extractor.lib.models import ConnectionParams, ExportMode, ExportSpec, TlsOptions
from mongo_extractor.lib.process import ProcessRunner
from mongo_extractor.lib.raw import RawWriter
from mongo_extractor.lib.ssh import SshTunnel
from mongo_extractor.lib.tables import OutputTable
from mongo_extractor.lib.watermark import (
    WatermarkTracker,
    build_incremental_filter,
    prior_watermark,
    save_state,
)

logger = logging.getLogger(__name__)

__all__ = ["Extractor", "ExportResult"]

PROGRESS_EVERY = 5000


class ExportResult:
    """Outcome of one export."""

    def __init__(self, spec: ExportSpec, tables: List[OutputTable], documents: int, watermark: Any) -> None:
        self.spec = spec
        self.tables = tables
        self.documents = documents
        self.watermark = watermark


def write_tls_files(ssl: SslConfig, stack: ExitStack) -> TlsOptions:
    """Write inline TLS material to files removed when ``stack`` closes."""
    if not ssl.enabled:
        return TlsOptions()
    directory = Path(stack.enter_context(tempfile.TemporaryDirectory(prefix="mongodb-ssl-")))
    tls = TlsOptions(enabled=True)
    if ssl.ca:
        ca_file = directory / "ca.pem"
        ca_file.write_text(ssl.ca, encoding="utf-8")
        tls.ca_file = str(ca_file)
    if ssl.cert and ssl.key:
        cert_key_file = directory / "cert-key.pem"
        cert_key_file.write_text(f"{ssl.cert}\n{ssl.key}", encoding="utf-8")
        tls.cert_key_file = str(cert_key_file)
    return tls


class Extractor:
    """Runs the exports of one configuration.

    Args:
        config: Validated configuration
        output_dir: Directory receiving CSV files and manifests
        state: State saved by the previous run (``{"lastFetchedRow": ...}``)
        state_path: Where to save the new state; nothing is saved if None
        runner: Process runner (mongoexport executable, retry policy)

    Example:
        extractor = Extractor(load_config("config.json"), Path("out/tables"),
                              state=load_state(Path("in/state.json")),
                              state_path=Path("out/state.json"))
        extractor.run()
    """

    def __init__(
        self,
        config: ExtractorConfig,
        output_dir: Path,
        *,
        state: Optional[Dict[str, Any]] = None,
        state_path: Optional[Path] = None,
        runner: Optional[ProcessRunner] = None,
        ssh_executable: str = "ssh",
    ) -> None:
        self.config = config
        self.output_dir = Path(output_dir)
        self.state = state or {}
        self.state_path = state_path
        self.runner = runner or ProcessRunner()
        self.tracker = WatermarkTracker(self.runner)
        self.ssh_executable = ssh_executable

    def run(self) -> List[ExportResult]:
        results: List[ExportResult] = []
        legacy = self.config.legacy
        new_state: Union[Dict[str, Any], Any] = {}
        if legacy:
            saved = self.state.get("lastFetchedRow")
            new_state = dict(saved) if isinstance(saved, dict) else {}

        with ExitStack() as stack:
            connection = self._connect(stack)

            for spec in self.config.export_specs:
                if not spec.enabled:
                    logger.info('Skipping disabled export "%s"', spec.name)
                    continue

                state_key = spec.id or spec.name
                prior = prior_watermark(self.state, state_key, legacy)
                result = self.run_export(connection, spec, prior)
                results.append(result)

                if spec.has_incremental_column and result.watermark is not None:
                    if legacy:
                        new_state[state_key] = result.watermark
                    else:
                        new_state = result.watermark

        if self.state_path is not None and new_state not in ({}, None):
            save_state(self.state_path, new_state)

        return results

    def _connect(self, stack: ExitStack) -> ConnectionParams:
        db = self.config.db
        tls = write_tls_files(db.ssl, stack)
        if db.ssh.enabled:
            stack.enter_context(
                SshTunnel(
                    db.ssh,
                    remote_host=db.host,
                    remote_port=db.port,
                    executable=self.ssh_executable,
                    retry_config=self.runner.retry_config,
                )
            )
        return db.to_connection(quiet=self.config.quiet, tls=tls)

    def _writer(self, spec: ExportSpec) -> Union[MappingEngine, RawWriter]:
        if spec.mode is ExportMode.RAW:
            return RawWriter(spec.name, self.output_dir)
        return MappingEngine(
            spec.name,
            spec.mapping,
            self.output_dir,
            include_parent_in_pk=spec.include_parent_in_pk,
        )

    def run_export(self, connection: ConnectionParams, spec: ExportSpec, prior: Any = None) -> ExportResult:
        """Run one export into its tables and resolve its next watermark."""
        watermark = None
        column = spec.incremental_column
        if column:
            query, sort = build_incremental_filter(column, prior)
            spec.apply_incremental_filter(query, sort)
            probed = self.tracker.probe(connection, spec)
            watermark = prior if probed is None else probed

        writer = self._writer(spec)
        decoder = StreamDecoder(transform=writer.transform)
        try:
            stream = self.runner.stream(connection, spec.to_query(), export_name=spec.table_name)
            with closing(stream) as chunks:
                for document in decoder.decode(chunks):
                    if not document:
                        continue
                    writer.write(document)
                    if writer.document_count % PROGRESS_EVERY == 0:
                        logger.info("Parsed %d records.", writer.document_count)
            tables = writer.finish()
        finally:
            writer.close()

        for table in tables:
            write_manifest(
                table,
                incremental=spec.incremental,
                include_columns=spec.mode is ExportMode.MAPPING,
            )

        count = writer.document_count
        logger.info(
            'Done "%s", parsed %d %s in total',
            spec.table_name,
            count,
            "record" if count == 1 else "records",
        )
        if decoder.skipped:
            logger.warning('Skipped %d undecodable line(s) of "%s"', decoder.skipped, spec.table_name)

        return ExportResult(spec, tables, count, watermark)
