"""Streaming decoder for mongoexport output.

mongoexport writes one JSON document per line.  Chunks read from the
pipe do not respect line boundaries, so the decoder carries the trailing
partial line over to the next chunk.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Iterable, Iterator, Optional

from mongo_extractor.lib.errors import LineDecodeError

logger = logging.getLogger(__name__)

__all__ = ["StreamDecoder"]

LINE_BREAK = re.compile(r"\r\n|\n|\r")
EXCERPT_LENGTH = 80


class StreamDecoder:
    """Pull-based decoder turning text chunks into documents.

    Undecodable lines are logged and skipped; they never end the stream.

    Example:
        decoder = StreamDecoder(transform=unwrap_scalars)
        for document in decoder.decode(process.iter_stdout()):
            writer.write(document)
    """

    def __init__(self, transform: Optional[Callable[[str], str]] = None) -> None:
        self.transform = transform
        self.decoded = 0
        self.skipped = 0

    def decode(self, chunks: Iterable[str]) -> Iterator[Any]:
        buffer = ""
        for chunk in chunks:
            buffer += chunk
            lines = LINE_BREAK.split(buffer)
            # A chunk ending in "\r" may be the first half of "\r\n"
            if buffer.endswith("\r"):
                lines[-2:] = [lines[-2] + "\r"]
            buffer = lines.pop()
            for line in lines:
                yield from self._process(line)

        if buffer.strip():
            yield from self._process(buffer.rstrip("\r"))

    def _process(self, line: str) -> Iterator[Any]:
        if not line.strip():
            return
        try:
            document = self._decode_line(line)
        except LineDecodeError as e:
            self.skipped += 1
            logger.warning("%s", e.message)
            return
        self.decoded += 1
        yield document

    def _decode_line(self, line: str) -> Any:
        text = self.transform(line) if self.transform else line
        try:
            return json.loads(text)
        except ValueError as e:
            raise LineDecodeError(
                f"Could not decode JSON: {line[:EXCERPT_LENGTH]}...",
                line=line,
                details={"cause": str(e)},
            ) from e
