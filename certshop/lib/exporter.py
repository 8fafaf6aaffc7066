"""Export orchestration: resolve, collect, encode and finalize one bundle."""

import logging
from enum import Enum
from pathlib import Path

from .archive import ArchiveEncoder, ExportSink
from .config import ExportConfig, ExportFormat, ExportRequest, P12Backend
from .errors import ConfigurationError, NotFoundError
from .keys import load_key
from .logging_config import LOGGER
from .models import ExportBundle, ExportResult
from .pkcs12 import CryptographyPackager, OpenSSLPackager, P12Encoder, P12Packager
from .tree import CertTree, TreeNode


class ExportState(Enum):
    RESOLVING = "resolving"
    COLLECTING = "collecting"
    ENCODING = "encoding"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class Exporter:
    """Builds and writes export bundles from a certificate tree."""

    def __init__(
        self,
        config: ExportConfig,
        tree: CertTree | None = None,
        packager: P12Packager | None = None,
        logger: logging.Logger = LOGGER,
    ) -> None:
        """Initialize exporter.

        Args:
            config: Export configuration (tree root, openssl settings)
            tree: Certificate tree; built from config.root when omitted
            packager: PKCS#12 packager; selected from config.p12_backend when omitted
            logger: Logger threaded through every component
        """
        self.config = config
        self.logger = logger
        self.tree = tree if tree is not None else CertTree(config.root, logger=logger)
        self.packager = packager if packager is not None else self._default_packager()
        self.state = ExportState.RESOLVING
        self.history: list[ExportState] = []

    def _default_packager(self) -> P12Packager:
        if self.config.p12_backend is P12Backend.CRYPTOGRAPHY:
            return CryptographyPackager(fs=self.tree.fs, logger=self.logger)
        return OpenSSLPackager(
            openssl_binary=self.config.openssl_binary,
            tmp_dir=self.config.temp_directory,
            logger=self.logger,
        )

    def _enter(self, state: ExportState) -> None:
        self.state = state
        self.history.append(state)

    def run(self, request: ExportRequest, sink: ExportSink) -> ExportResult:
        """Export ``request`` to ``sink``.

        The sink is closed exactly once whatever happens. Failures before
        encoding leave the sink untouched.

        Raises:
            CertshopError: Any resolution, collection or encoding failure
        """
        self.history = []
        try:
            self._enter(ExportState.RESOLVING)
            node, stop_node, ca_path = self.resolve(request)

            self._enter(ExportState.COLLECTING)
            bundle = self.collect(request, node, stop_node, ca_path)
        except Exception:
            self._enter(ExportState.FAILED)
            sink.close()
            raise

        try:
            try:
                self._enter(ExportState.ENCODING)
                entries = self.encode(request, bundle, sink)
            finally:
                self._enter(ExportState.FINALIZING)
                sink.close()
        except Exception:
            self._enter(ExportState.FAILED)
            raise

        self._enter(ExportState.DONE)
        self.logger.info("Finished exporting certificate %s", request.path)
        return ExportResult(
            name=bundle.name,
            export_format=request.export_format.value,
            entries=entries,
            bytes_written=sink.bytes_written,
        )

    def resolve(
        self, request: ExportRequest
    ) -> tuple[TreeNode, TreeNode | None, Path | None]:
        """Validate the request and resolve the target node, stop node and CA path."""
        self.logger.info("Exporting %s", request.path)
        request.validate()
        if (
            request.export_format is ExportFormat.PEM
            and request.export_key
            and request.pass_out == ""
        ):
            raise ConfigurationError(
                "empty output password cannot protect a private key", path=str(request.path)
            )

        node = self.tree.node(request.path)
        stop_node = None
        if request.stop_at is not None:
            stop_node = self.tree.node(request.stop_at)
            self.logger.debug("Stopping chain before %s", stop_node.path)
        ca_path = None
        if request.export_ca is not None:
            ca_path = self.tree.find_ca(request.export_ca)
            self.logger.debug("Using CA certificate %s", ca_path)
        return node, stop_node, ca_path

    def collect(
        self,
        request: ExportRequest,
        node: TreeNode,
        stop_node: TreeNode | None = None,
        ca_path: Path | None = None,
    ) -> ExportBundle:
        """Read the chain, key and CA certificate the request asks for."""
        bundle = ExportBundle(
            name=node.name,
            pass_in=request.pass_in,
            pass_out=request.pass_out,
        )

        if ca_path is not None:
            bundle.ca_cert = self.tree.read_certificate(ca_path)

        if request.export_crt or request.export_format is ExportFormat.P12:
            bundle.chain = self.tree.read_chain(node, stop_at=stop_node)

        if request.export_key:
            key_path = self.tree.key_file(node)
            if key_path is None:
                if request.export_format is ExportFormat.P12:
                    raise NotFoundError("private key not found", path=str(node.key_path))
                self.logger.info("No private key for %s; skipping key export", node.path)
            elif request.export_format is ExportFormat.P12:
                # the packager reads and decrypts the key itself
                bundle.key_path = key_path
            else:
                bundle.key = load_key(
                    key_path, request.pass_in, fs=self.tree.fs, logger=self.logger
                )
                bundle.key_path = key_path

        return bundle

    def encode(self, request: ExportRequest, bundle: ExportBundle, sink: ExportSink) -> list[str]:
        """Dispatch the bundle to the encoder for the requested format."""
        if request.export_format is ExportFormat.P12:
            p12_encoder = P12Encoder(self.packager, logger=self.logger)
            return p12_encoder.encode(bundle, sink)

        archive_encoder = ArchiveEncoder(mtime=self.config.run_time, logger=self.logger)
        return archive_encoder.encode(bundle, sink)
