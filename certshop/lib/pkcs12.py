"""PKCS#12 packaging of a certificate chain and private key.

Two packagers are available. ``OpenSSLPackager`` shells out to the openssl
binary and hands it the chain through a private temporary file;
``CryptographyPackager`` builds the container in process.
"""

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from .archive import ExportSink
from .errors import ConfigurationError, IOWriteError, InvalidStructureError, SubprocessError
from .keys import load_key
from .logging_config import LOGGER
from .models import ExportBundle
from .tree import LOCAL_FS, FileSystem

TEMP_PREFIX = "certshop"
KDF_ROUNDS = 50000
WARNING_PREFIX = "Warning:"


class P12Packager(Protocol):
    """Packages PEM certificates and a key file into PKCS#12 bytes."""

    def package(
        self,
        chain_pem: bytes,
        key_path: Path | None,
        name: str,
        pass_in: str | None,
        pass_out: str | None,
    ) -> bytes: ...


def _redact(args: list[str]) -> list[str]:
    """Hide pass:<secret> arguments so commands can be logged."""
    return ["pass:***" if arg.startswith("pass:") else arg for arg in args]


def _first_error_line(stderr: str) -> str:
    """Return the first stderr line that is not an openssl warning."""
    lines = [line.strip() for line in stderr.splitlines() if line.strip()]
    for line in lines:
        if not line.startswith(WARNING_PREFIX):
            return line
    return lines[0] if lines else "no output"


class OpenSSLPackager:
    """Runs ``openssl pkcs12 -export`` against a temporary chain file."""

    def __init__(
        self,
        openssl_binary: str = "openssl",
        tmp_dir: Path | None = None,
        logger: logging.Logger = LOGGER,
    ) -> None:
        self.openssl_binary = openssl_binary
        self.tmp_dir = tmp_dir
        self.logger = logger

    def build_args(
        self,
        key_path: Path | None,
        name: str,
        pass_in: str | None,
        pass_out: str | None,
    ) -> list[str]:
        """Build the openssl argument list, excluding ``-in``."""
        args = [self.openssl_binary, "pkcs12", "-export", "-name", name]
        if key_path is None:
            args.append("-nokeys")
        else:
            args += ["-inkey", str(key_path)]
            if pass_in is not None:
                args += ["-passin", f"pass:{pass_in}"]
        if pass_out is None:
            args += ["-passout", "pass:"]
        else:
            args += ["-aes256", "-passout", f"pass:{pass_out}"]
        return args

    def package(
        self,
        chain_pem: bytes,
        key_path: Path | None,
        name: str,
        pass_in: str | None,
        pass_out: str | None,
    ) -> bytes:
        """Write the chain to a temp file, run openssl and return its output.

        The temp file is created readable by the current user only and is
        removed before returning, whether openssl succeeded or not.

        Raises:
            IOWriteError: If the temp file cannot be created, written or removed
            SubprocessError: If openssl is missing or exits non-zero
        """
        args = self.build_args(key_path, name, pass_in, pass_out)
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=".pem", dir=self.tmp_dir)
        except OSError as e:
            raise IOWriteError(f"failed to create temporary cert file: {e}") from e

        try:
            try:
                with os.fdopen(fd, "wb") as tmp_file:
                    tmp_file.write(chain_pem)
            except OSError as e:
                raise IOWriteError(f"failed to write temporary cert file: {e}", path=tmp_name) from e

            args += ["-in", tmp_name]
            return self._run(args)
        finally:
            self._remove(tmp_name)

    def _run(self, args: list[str]) -> bytes:
        self.logger.info("Running openssl to create p12 file")
        self.logger.debug("Command: %s", " ".join(_redact(args)))
        try:
            result = subprocess.run(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False)
        except OSError as e:
            raise SubprocessError(f"failed to run openssl: {e}", binary=self.openssl_binary) from e

        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        if result.returncode != 0:
            detail = _first_error_line(stderr)
            raise SubprocessError(
                f"openssl exited with status {result.returncode}: {detail}",
                binary=self.openssl_binary,
            )
        if stderr:
            self.logger.debug("openssl: %s", stderr)
        return result.stdout

    def _remove(self, tmp_name: str) -> None:
        try:
            os.remove(tmp_name)
        except OSError as e:
            raise IOWriteError(f"failed to remove temporary cert file: {e}", path=tmp_name) from e
        self.logger.debug("Removed temporary cert file %s", tmp_name)


class CryptographyPackager:
    """Builds PKCS#12 containers in process with the cryptography library."""

    def __init__(self, fs: FileSystem = LOCAL_FS, logger: logging.Logger = LOGGER) -> None:
        self.fs = fs
        self.logger = logger

    def package(
        self,
        chain_pem: bytes,
        key_path: Path | None,
        name: str,
        pass_in: str | None,
        pass_out: str | None,
    ) -> bytes:
        """Serialize chain and key; the first certificate is the entity's own.

        Raises:
            InvalidStructureError: If the chain holds no certificate
            ConfigurationError: If pass_out is the empty string
            DecryptionError: If the key cannot be decrypted with pass_in
        """
        try:
            certs = x509.load_pem_x509_certificates(chain_pem)
        except ValueError as e:
            raise InvalidStructureError(f"invalid certificate chain: {e}", name=name) from e

        key = None
        if key_path is not None:
            key = load_key(key_path, pass_in, fs=self.fs, logger=self.logger).key

        if pass_out is None:
            encryption: serialization.KeySerializationEncryption = serialization.NoEncryption()
        elif pass_out == "":
            raise ConfigurationError("empty password cannot protect a p12 container", name=name)
        else:
            encryption = (
                serialization.PrivateFormat.PKCS12.encryption_builder()
                .kdf_rounds(KDF_ROUNDS)
                .key_cert_algorithm(pkcs12.PBES.PBESv2SHA256AndAES256CBC)
                .hmac_hash(hashes.SHA256())
                .build(pass_out.encode("utf-8"))
            )

        self.logger.info("Packaging p12 file in process")
        return pkcs12.serialize_key_and_certificates(
            name=name.encode("utf-8"),
            key=key,
            cert=certs[0] if key is not None else None,
            cas=certs[1:] if key is not None else certs,
            encryption_algorithm=encryption,
        )


class P12Encoder:
    """Encodes an export bundle as a single PKCS#12 stream on the sink."""

    def __init__(self, packager: P12Packager, logger: logging.Logger = LOGGER) -> None:
        self.packager = packager
        self.logger = logger

    def encode(self, bundle: ExportBundle, sink: ExportSink) -> list[str]:
        """Package chain (plus external CA) and key, then write the container.

        Returns:
            The friendly name stored in the container
        """
        data = bundle.chain or b""
        if bundle.ca_cert is not None:
            data += bundle.ca_cert

        output = self.packager.package(
            chain_pem=data,
            key_path=bundle.key_path,
            name=bundle.name,
            pass_in=bundle.pass_in,
            pass_out=bundle.pass_out,
        )
        sink.write(output)
        return [bundle.name]
