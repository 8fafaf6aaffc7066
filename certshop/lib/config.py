"""Export configuration and request dataclasses."""

import os
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .errors import ConfigurationError


class ExportFormat(Enum):
    """Container format of an exported bundle."""

    PEM = "pem"
    P12 = "p12"

    @classmethod
    def parse(cls, value: str) -> "ExportFormat":
        """Parse a user supplied format name (case-insensitive, ``tgz`` aliases ``pem``)."""
        name = value.strip().lower()
        if name == "tgz":
            name = "pem"
        try:
            return cls(name)
        except ValueError as e:
            raise ConfigurationError(
                "unsupported export format", format=value, supported="pem,tgz,p12"
            ) from e


class P12Backend(Enum):
    """Implementation used to package PKCS#12 containers."""

    OPENSSL = "openssl"
    CRYPTOGRAPHY = "cryptography"


@dataclass
class ExportConfig:
    """Runtime settings shared by every export in one invocation."""

    root: Path = Path("./")
    openssl_binary: str = "openssl"
    p12_backend: P12Backend = P12Backend.OPENSSL
    tmp_dir: Path | None = None
    run_time: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_env(cls) -> "ExportConfig":
        """Build configuration from CERTSHOP_* environment variables.

        Returns:
            ExportConfig with defaults for unset variables

        Raises:
            ConfigurationError: If CERTSHOP_P12_BACKEND names an unknown backend
        """
        backend = os.environ.get("CERTSHOP_P12_BACKEND", P12Backend.OPENSSL.value)
        try:
            p12_backend = P12Backend(backend.lower())
        except ValueError as e:
            raise ConfigurationError("unsupported p12 backend", backend=backend) from e

        tmp_dir = os.environ.get("CERTSHOP_TMPDIR")
        return cls(
            root=Path(os.environ.get("CERTSHOP_ROOT", "./")),
            openssl_binary=os.environ.get("CERTSHOP_OPENSSL", "openssl"),
            p12_backend=p12_backend,
            tmp_dir=Path(tmp_dir) if tmp_dir else None,
        )

    @property
    def temp_directory(self) -> Path:
        """Directory used for temporary bundle files."""
        return self.tmp_dir if self.tmp_dir is not None else Path(tempfile.gettempdir())


@dataclass
class ExportRequest:
    """Resolved export options for a single target.

    Passwords use ``None`` for "not supplied"; an empty string is a value
    the user actually typed and is never treated as absent.
    """

    path: Path
    export_crt: bool = False
    export_key: bool = False
    export_ca: Path | None = None
    export_format: ExportFormat = ExportFormat.PEM
    pass_in: str | None = None
    pass_out: str | None = None
    stop_at: Path | None = None

    @property
    def name(self) -> str:
        """Basename of the export target, used for entry and friendly names."""
        return Path(os.path.normpath(self.path)).name

    def validate(self) -> None:
        """Reject option combinations that can never produce a bundle.

        Raises:
            ConfigurationError: If PKCS#12 key export lacks an output password,
                or a PEM export selects nothing to export
        """
        if self.export_format is ExportFormat.P12:
            if self.export_key and self.pass_out is None:
                raise ConfigurationError(
                    "output password required for p12 key export", path=str(self.path)
                )
            return

        if not (self.export_crt or self.export_key or self.export_ca is not None):
            raise ConfigurationError(
                "nothing to export: select certificate, key or ca", path=str(self.path)
            )
