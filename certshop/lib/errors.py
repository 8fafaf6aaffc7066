"""Exception types raised by certificate tree and export operations."""

from typing import Any


class CertshopError(Exception):
    """Base class for all export failures.

    Carries a human readable message plus keyword context (paths, names)
    so a caller can log a single line without re-deriving details.
    """

    def __init__(self, mesg: str, **info: Any) -> None:
        self.mesg = mesg
        self.info = info
        super().__init__(mesg)

    def __str__(self) -> str:
        if not self.info:
            return self.mesg
        context = " ".join(f"{key}={value}" for key, value in sorted(self.info.items()))
        return f"{self.mesg} ({context})"


class NotFoundError(CertshopError):
    """An expected certificate, key or CA file does not exist."""


class InvalidStructureError(CertshopError):
    """A tree node is malformed or a file does not hold what its name implies."""


class DecryptionError(CertshopError):
    """A private key password is wrong or was required but not supplied."""


class ConfigurationError(CertshopError):
    """The requested export options cannot be combined."""


class SubprocessError(CertshopError):
    """The external openssl invocation failed or exited non-zero."""


class IOWriteError(CertshopError):
    """Writing or deleting a temporary file or the output sink failed."""
