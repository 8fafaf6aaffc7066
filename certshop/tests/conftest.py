"""Test fixtures for certshop tests."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509.oid import NameOID

from certshop.lib.cert_utils import serialize_certificate, serialize_private_key

LEAF_PASSWORD = "secret"
CHAIN = ("root", "intermediate", "leaf")


def _generate_key() -> RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _build_cert(
    common_name: str,
    public_key: rsa.RSAPublicKey,
    issuer: x509.Certificate | None,
    issuer_key: RSAPrivateKey,
    ca: bool,
) -> x509.Certificate:
    """Build a certificate; self-signed when issuer is None."""
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    not_before = datetime.now(UTC)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.subject if issuer is not None else subject)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    return builder.sign(issuer_key, hashes.SHA256())


@pytest.fixture(scope="session")
def pki_keys() -> dict[str, RSAPrivateKey]:
    """Generate RSA keys for root, intermediate, leaf and an external CA."""
    return {name: _generate_key() for name in (*CHAIN, "external")}


@pytest.fixture(scope="session")
def pki_certs(pki_keys: dict[str, RSAPrivateKey]) -> dict[str, x509.Certificate]:
    """Build root -> intermediate -> leaf chain plus an unrelated external CA."""
    root = _build_cert("root", pki_keys["root"].public_key(), None, pki_keys["root"], ca=True)
    intermediate = _build_cert(
        "intermediate", pki_keys["intermediate"].public_key(), root, pki_keys["root"], ca=True
    )
    leaf = _build_cert(
        "leaf", pki_keys["leaf"].public_key(), intermediate, pki_keys["intermediate"], ca=False
    )
    external = _build_cert(
        "external", pki_keys["external"].public_key(), None, pki_keys["external"], ca=True
    )
    return {"root": root, "intermediate": intermediate, "leaf": leaf, "external": external}


@pytest.fixture
def cert_tree(
    tmp_path: Path,
    pki_keys: dict[str, RSAPrivateKey],
    pki_certs: dict[str, x509.Certificate],
) -> Generator[Path]:
    """Write the certificate tree to disk and return the tree root.

    Creates:
        {tmp}/root/root.pem, root-key.pem
        {tmp}/root/intermediate/intermediate.pem (no key)
        {tmp}/root/intermediate/leaf/leaf.pem, leaf-key.pem (encrypted with LEAF_PASSWORD)
        {tmp}/external/external.pem
    """
    node_dir = tmp_path
    for name in CHAIN:
        node_dir = node_dir / name
        node_dir.mkdir()
        (node_dir / f"{name}.pem").write_bytes(serialize_certificate(pki_certs[name]))

    (tmp_path / "root" / "root-key.pem").write_bytes(serialize_private_key(pki_keys["root"]))
    (node_dir / "leaf-key.pem").write_bytes(
        serialize_private_key(pki_keys["leaf"], LEAF_PASSWORD)
    )

    external_dir = tmp_path / "external"
    external_dir.mkdir()
    (external_dir / "external.pem").write_bytes(serialize_certificate(pki_certs["external"]))

    yield tmp_path


@pytest.fixture
def leaf_path() -> Path:
    """Return the leaf node path relative to the tree root."""
    return Path("root/intermediate/leaf")


@pytest.fixture
def chain_pem(cert_tree: Path) -> bytes:
    """Return the expected leaf-to-root certificate concatenation."""
    return (
        (cert_tree / "root/intermediate/leaf/leaf.pem").read_bytes()
        + (cert_tree / "root/intermediate/intermediate.pem").read_bytes()
        + (cert_tree / "root/root.pem").read_bytes()
    )
