"""mongoexport process execution.

Starting the process is retried; reading its output is not.  Error output
is spooled to a temporary file so a single thread can pull stdout to the
end without the child blocking on a full stderr pipe.
"""

from __future__ import annotations

import codecs
import logging
import subprocess
import tempfile
from typing import IO, Iterator, List, Optional

from mongo_extractor.lib.command import CommandBuilder
from mongo_extractor.lib.errors import ConnectionStartError, ExtractorError
from mongo_extractor.lib.failures import classify_failure
from mongo_extractor.lib.models import ConnectionParams, ExportQuery
from mongo_extractor.lib.resilience import RetryConfig, retry_operation
from mongo_extractor.lib.uri import create_uri

logger = logging.getLogger(__name__)

__all__ = ["ExportProcess", "ProcessRunner"]

CHUNK_SIZE = 64 * 1024


class ExportProcess:
    """A running mongoexport child process."""

    def __init__(
        self,
        popen: "subprocess.Popen[bytes]",
        stderr: IO[bytes],
        *,
        export_name: str,
        query: str,
        command: str,
    ) -> None:
        self.popen = popen
        self._stderr = stderr
        self.export_name = export_name
        self.query = query
        self.command = command

    def iter_stdout(self) -> Iterator[str]:
        """Yield stdout as text chunks, as they arrive."""
        stdout = self.popen.stdout
        if stdout is None:
            raise ExtractorError(f'Export "{self.export_name}" was started without an output pipe')
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = stdout.read1(CHUNK_SIZE)  # type: ignore[attr-defined]
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail

    def read_stderr(self) -> str:
        self._stderr.seek(0)
        return self._stderr.read().decode("utf-8", errors="replace")

    def wait(self) -> int:
        """Wait for exit; raise the classified failure on a non-zero code."""
        code = self.popen.wait()
        if code != 0:
            stderr = self.read_stderr()
            logger.debug("mongoexport exited with %d: %s", code, stderr.strip())
            raise classify_failure(
                stderr,
                export_name=self.export_name,
                query=self.query,
                command=self.command,
                exit_code=code,
            )
        return code

    def close(self) -> None:
        if self.popen.poll() is None:
            self.popen.kill()
            self.popen.wait()
        if self.popen.stdout is not None:
            self.popen.stdout.close()
        self._stderr.close()


class ProcessRunner:
    """Starts mongoexport commands built by a ``CommandBuilder``.

    Example:
        runner = ProcessRunner(CommandBuilder())
        for chunk in runner.stream(connection, spec.to_query(), export_name="orders"):
            ...
    """

    def __init__(
        self,
        builder: Optional[CommandBuilder] = None,
        retry_config: Optional[RetryConfig] = None,
    ) -> None:
        self.builder = builder or CommandBuilder()
        self.retry_config = retry_config or RetryConfig.default()

    def start(
        self,
        connection: ConnectionParams,
        query: ExportQuery,
        *,
        export_name: str,
    ) -> ExportProcess:
        args = self.builder.build_args(connection, query)
        command = self.builder.build(connection, query, redact=True)
        logger.debug("Running %s", command)

        popen_stderr: List[IO[bytes]] = []

        def spawn() -> "subprocess.Popen[bytes]":
            stderr = tempfile.TemporaryFile()
            try:
                popen = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=stderr)
            except OSError as e:
                stderr.close()
                raise ConnectionStartError(
                    f'Could not start export "{export_name}"',
                    command=command,
                    cause=e,
                ) from e
            popen_stderr.append(stderr)
            return popen

        popen = retry_operation(spawn, self.retry_config, f'Starting export "{export_name}"')
        return ExportProcess(
            popen,
            popen_stderr[-1],
            export_name=export_name,
            query=query.query,
            command=command,
        )

    def stream(
        self,
        connection: ConnectionParams,
        query: ExportQuery,
        *,
        export_name: str,
    ) -> Iterator[str]:
        """Yield output chunks; raise the classified failure after the last one."""
        process = self.start(connection, query, export_name=export_name)
        try:
            logger.info("Connected to %s", create_uri(connection).redacted())
            logger.info('Exporting "%s"', export_name)
            yield from process.iter_stdout()
            process.wait()
        finally:
            process.close()

    def run(
        self,
        connection: ConnectionParams,
        query: ExportQuery,
        *,
        export_name: str,
    ) -> str:
        """Run to completion and return all output."""
        process = self.start(connection, query, export_name=export_name)
        try:
            output = "".join(process.iter_stdout())
            process.wait()
        finally:
            process.close()
        return output
