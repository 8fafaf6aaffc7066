"""Certificate and key serialization helpers."""

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

from .errors import ConfigurationError, DecryptionError, InvalidStructureError

ENCRYPTED_MARKERS = (b"ENCRYPTED PRIVATE KEY", b"Proc-Type: 4,ENCRYPTED")


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes.

    Raises:
        InvalidStructureError: If the data is not a PEM certificate
    """
    try:
        return x509.load_pem_x509_certificate(pem_data)
    except ValueError as e:
        raise InvalidStructureError(f"invalid PEM certificate: {e}") from e


def normalize_certificate(pem_data: bytes) -> bytes:
    """Parse and re-encode a PEM certificate so only the certificate block remains."""
    return serialize_certificate(deserialize_certificate(pem_data))


def is_encrypted_key(pem_data: bytes) -> bool:
    """Return True if PEM key data is password protected (PKCS#8 or legacy OpenSSL)."""
    return any(marker in pem_data for marker in ENCRYPTED_MARKERS)


def serialize_private_key(key: PrivateKeyTypes, password: str | None = None) -> bytes:
    """Serialize private key to PKCS8 PEM, encrypted when a password is given.

    Args:
        key: Private key to serialize
        password: Output password, None for an unencrypted key

    Raises:
        ConfigurationError: If password is the empty string
    """
    if password is None:
        encryption: serialization.KeySerializationEncryption = serialization.NoEncryption()
    elif password == "":
        raise ConfigurationError("empty password cannot protect a private key")
    else:
        encryption = serialization.BestAvailableEncryption(password.encode("utf-8"))

    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def deserialize_private_key(pem_data: bytes, password: str | None = None) -> PrivateKeyTypes:
    """Deserialize private key from PEM bytes.

    The password is only applied to encrypted keys; an unencrypted key loads
    regardless of what was supplied.

    Raises:
        DecryptionError: If the key is encrypted and the password is missing or wrong
        InvalidStructureError: If the data is not a PEM private key
    """
    encrypted = is_encrypted_key(pem_data)
    if encrypted and password is None:
        raise DecryptionError("private key is encrypted and no password was supplied")

    secret = password.encode("utf-8") if encrypted and password is not None else None
    try:
        return serialization.load_pem_private_key(pem_data, password=secret)
    except (TypeError, ValueError) as e:
        if encrypted:
            raise DecryptionError("failed to decrypt private key") from e
        raise InvalidStructureError(f"invalid PEM private key: {e}") from e
