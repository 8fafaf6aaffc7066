"""Output sink and gzip tar archive encoding of PEM bundles."""

import io
import logging
import tarfile
from datetime import datetime
from pathlib import PurePosixPath
from typing import BinaryIO

from .errors import IOWriteError
from .logging_config import LOGGER
from .models import ExportBundle

CERT_MODE = 0o644
KEY_MODE = 0o600


class ExportSink:
    """The single byte stream an export writes to.

    Closing is idempotent; the wrapped stream is closed once and only when
    ``close_stream`` is set (standard output is flushed but left open).
    """

    def __init__(self, stream: BinaryIO, close_stream: bool = True) -> None:
        self.stream = stream
        self.close_stream = close_stream
        self.closed = False
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        if self.closed:
            raise IOWriteError("write to closed export sink")
        try:
            written = self.stream.write(data)
        except OSError as e:
            raise IOWriteError(f"failed to write export output: {e}") from e
        self.bytes_written += len(data)
        return written if written is not None else len(data)

    def flush(self) -> None:
        if not self.closed:
            self.stream.flush()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.stream.flush()
            if self.close_stream:
                self.stream.close()
        except OSError as e:
            raise IOWriteError(f"failed to close export output: {e}") from e


class ArchiveWriter:
    """Writes named entries into a gzip compressed tar stream on a sink."""

    def __init__(self, sink: ExportSink, mtime: datetime | None = None) -> None:
        self.sink = sink
        self.mtime = mtime
        try:
            self.tar = tarfile.open(fileobj=sink, mode="w|gz")
        except OSError as e:
            raise IOWriteError(f"failed to open archive stream: {e}") from e

    def write_data(self, data: bytes, name: str, mode: int) -> None:
        info = tarfile.TarInfo(name=name)
        info.size = len(data)
        info.mode = mode
        if self.mtime is not None:
            info.mtime = int(self.mtime.timestamp())
        try:
            self.tar.addfile(info, io.BytesIO(data))
        except OSError as e:
            raise IOWriteError(f"failed to write archive entry {name}: {e}") from e

    def close(self) -> None:
        try:
            self.tar.close()
        except OSError as e:
            raise IOWriteError(f"failed to finish archive stream: {e}") from e


class ArchiveEncoder:
    """Encodes an export bundle as ``<name>/{ca,cert,key}.pem`` archive entries."""

    def __init__(self, mtime: datetime | None = None, logger: logging.Logger = LOGGER) -> None:
        self.mtime = mtime
        self.logger = logger

    def encode(self, bundle: ExportBundle, sink: ExportSink) -> list[str]:
        """Write the bundle to the sink.

        Args:
            bundle: Collected certificates and key
            sink: Output sink

        Returns:
            Names of the entries written, in order
        """
        base = PurePosixPath(bundle.name)
        entries: list[tuple[str, bytes, int]] = []
        if bundle.ca_cert is not None:
            entries.append((str(base / "ca.pem"), bundle.ca_cert, CERT_MODE))
        if bundle.chain is not None:
            entries.append((str(base / "cert.pem"), bundle.chain, CERT_MODE))
        if bundle.key is not None:
            entries.append((str(base / "key.pem"), bundle.key.reencrypt(bundle.pass_out), KEY_MODE))

        writer = ArchiveWriter(sink, mtime=self.mtime)
        try:
            for name, data, mode in entries:
                self.logger.debug("Writing archive entry %s", name)
                writer.write_data(data, name, mode)
        finally:
            writer.close()

        return [name for name, _, _ in entries]
