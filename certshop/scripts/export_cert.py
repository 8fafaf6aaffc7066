#!/usr/bin/env python3
"""Export a certificate, its chain and private key from a certificate tree."""

import argparse
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from certshop.lib.archive import ExportSink
from certshop.lib.config import ExportConfig, ExportFormat, ExportRequest, P12Backend
from certshop.lib.errors import IOWriteError
from certshop.lib.exporter import Exporter
from certshop.lib.logging_config import configure_logging


def _version() -> str:
    try:
        return version("certshop")
    except PackageNotFoundError:
        return "unknown"


def build_parser() -> argparse.ArgumentParser:
    """Build the export command line parser."""
    parser = argparse.ArgumentParser(
        prog="certshop-export",
        description="Export a certificate chain and key as a PEM archive or PKCS#12 file",
    )
    parser.add_argument("path", type=Path, help="Certificate node to export (relative to --root)")
    parser.add_argument("--export-crt", action="store_true", help="Export the certificate chain")
    parser.add_argument("--export-key", action="store_true", help="Export the private key")
    parser.add_argument(
        "--export-ca",
        type=Path,
        default=None,
        help="Path to an external CA certificate (or CA node) to include",
    )
    parser.add_argument(
        "--export-all",
        nargs="?",
        const="",
        default=None,
        metavar="CA_PATH",
        help="Shortcut for --export-crt --export-key [--export-ca CA_PATH]",
    )
    parser.add_argument(
        "--stop-at",
        type=Path,
        default=None,
        metavar="CA_NODE",
        help="Ancestor node at which the exported chain stops (it is not included)",
    )
    parser.add_argument(
        "--export-format",
        default="pem",
        help='Export format: "pem" (alias "tgz") or "p12" (default: pem)',
    )
    parser.add_argument(
        "--pass-in",
        default=None,
        help="Existing private key password (only needed if the key is encrypted)",
    )
    parser.add_argument(
        "--pass-out",
        default=None,
        help="Password for the exported key (required with --export-format p12 --export-key)",
    )
    parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Certificate tree root directory (default: $CERTSHOP_ROOT or ./)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the bundle to this file instead of standard output",
    )
    parser.add_argument(
        "--p12-backend",
        choices=[backend.value for backend in P12Backend],
        default=None,
        help="PKCS#12 implementation (default: $CERTSHOP_P12_BACKEND or openssl)",
    )
    parser.add_argument(
        "--openssl",
        default=None,
        help="openssl binary (default: $CERTSHOP_OPENSSL or openssl)",
    )
    parser.add_argument("--debug", action="store_true", help="Output extra debugging information")
    parser.add_argument("--version", action="version", version=f"certshop {_version()}")
    return parser


def build_request(args: argparse.Namespace) -> ExportRequest:
    """Translate parsed arguments into an ExportRequest.

    Raises:
        ConfigurationError: If the export format is not supported
    """
    request = ExportRequest(
        path=args.path,
        export_crt=args.export_crt,
        export_key=args.export_key,
        export_ca=args.export_ca,
        export_format=ExportFormat.parse(args.export_format),
        pass_in=args.pass_in,
        pass_out=args.pass_out,
        stop_at=args.stop_at,
    )
    if args.export_all is not None:
        request.export_crt = True
        request.export_key = True
        if args.export_all != "":
            request.export_ca = Path(args.export_all)
    return request


def build_config(args: argparse.Namespace) -> ExportConfig:
    """Merge command line overrides onto environment configuration."""
    config = ExportConfig.from_env()
    if args.root is not None:
        config.root = args.root
    if args.openssl is not None:
        config.openssl_binary = args.openssl
    if args.p12_backend is not None:
        config.p12_backend = P12Backend(args.p12_backend)
    return config


def open_sink(output: Path | None) -> ExportSink:
    """Open the export sink: a new owner-only file, or standard output."""
    if output is None:
        return ExportSink(sys.stdout.buffer, close_stream=False)
    try:
        fd = os.open(output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    except OSError as e:
        raise IOWriteError(f"failed to open output file: {e}", path=str(output)) from e
    return ExportSink(os.fdopen(fd, "wb"))


def main(argv: list[str] | None = None) -> int:
    """Export a certificate bundle.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    args = build_parser().parse_args(argv)
    logger = configure_logging(debug=args.debug)

    sink = None
    try:
        config = build_config(args)
        request = build_request(args)
        # Reject bad option combinations before touching any file
        request.validate()

        sink = open_sink(args.output)
        exporter = Exporter(config, logger=logger)
        result = exporter.run(request, sink)

        logger.debug("Wrote %d bytes: %s", result.bytes_written, ", ".join(result.entries))
        return 0

    except Exception as e:
        logger.error("Export failed: %s", e)
        if sink is not None and args.output is not None:
            # Do not leave an empty or truncated bundle behind
            args.output.unlink(missing_ok=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
