"""Private key loading and re-encryption."""

import logging
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from .cert_utils import deserialize_private_key, is_encrypted_key, serialize_private_key
from .errors import DecryptionError
from .logging_config import LOGGER
from .tree import LOCAL_FS, FileSystem


@dataclass
class KeyRecord:
    """A loaded private key and the password protecting its serialized form.

    ``password`` is None while the key is (or will be written) unencrypted.
    """

    key: PrivateKeyTypes
    password: str | None = None
    path: Path | None = None

    def reencrypt(self, password: str | None) -> bytes:
        """Serialize the key under a new password.

        Only the protective wrapper changes; the key material is untouched.

        Args:
            password: Output password, None to write the key unencrypted

        Returns:
            PKCS8 PEM bytes

        Raises:
            ConfigurationError: If password is the empty string
        """
        pem = serialize_private_key(self.key, password)
        self.password = password
        return pem


def load_key(
    path: Path,
    password: str | None = None,
    fs: FileSystem = LOCAL_FS,
    logger: logging.Logger = LOGGER,
) -> KeyRecord:
    """Load a private key file, decrypting it with ``password`` if it is encrypted.

    Args:
        path: Key file path
        password: Input password, None when not supplied
        fs: Filesystem to read from
        logger: Logger for debug output

    Returns:
        KeyRecord carrying the password the key was loaded with

    Raises:
        NotFoundError: If the key file does not exist
        DecryptionError: If the key is encrypted and the password is missing or wrong
    """
    pem_data = fs.read_bytes(path)
    encrypted = is_encrypted_key(pem_data)
    if not encrypted and password is not None:
        logger.debug("Key %s is not encrypted; ignoring input password", path)

    try:
        key = deserialize_private_key(pem_data, password)
    except DecryptionError as e:
        raise DecryptionError(e.mesg, path=str(path)) from e

    logger.debug("Loaded private key %s", path)
    return KeyRecord(key=key, password=password if encrypted else None, path=path)
