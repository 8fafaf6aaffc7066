"""Tests for the export_cert command line script."""

import io
import tarfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from certshop.lib.config import ExportFormat
from certshop.scripts.export_cert import build_parser, build_request, main

LEAF_PASSWORD = "secret"


def _names(path: Path) -> list[str]:
    with tarfile.open(path, mode="r:gz") as tar:
        return tar.getnames()


class TestBuildRequest:
    """Tests for argument to ExportRequest translation."""

    def test_passwords_default_to_not_supplied(self) -> None:
        """Omitted passwords are None, distinct from an empty string."""
        args = build_parser().parse_args(["leaf", "--export-key", "--pass-out", ""])

        request = build_request(args)

        assert request.pass_in is None
        assert request.pass_out == ""

    def test_export_all_without_ca(self) -> None:
        """--export-all alone selects certificate and key."""
        request = build_request(build_parser().parse_args(["leaf", "--export-all"]))

        assert request.export_crt
        assert request.export_key
        assert request.export_ca is None

    def test_export_all_with_ca(self) -> None:
        """--export-all PATH also selects the CA certificate."""
        request = build_request(build_parser().parse_args(["leaf", "--export-all", "ca"]))

        assert request.export_ca == Path("ca")

    def test_format_case_insensitive(self) -> None:
        """--export-format accepts any case."""
        request = build_request(
            build_parser().parse_args(["leaf", "--export-crt", "--export-format", "P12"])
        )

        assert request.export_format is ExportFormat.P12

    def test_stop_at(self) -> None:
        """--stop-at is carried onto the request."""
        request = build_request(
            build_parser().parse_args(["leaf", "--export-crt", "--stop-at", "root"])
        )

        assert request.stop_at == Path("root")


class TestMain:
    """Tests for main() exit codes and output."""

    def test_pem_export_to_file(self, cert_tree: Path, tmp_path: Path) -> None:
        """A full PEM export writes ca, cert and key entries and exits 0."""
        output = tmp_path / "leaf.tgz"

        exit_code = main(
            [
                "--root", str(cert_tree),
                "--output", str(output),
                "--export-all", "external",
                "--pass-in", LEAF_PASSWORD,
                "--pass-out", "secret2",
                "./root/intermediate/leaf",
            ]
        )  # fmt: skip

        assert exit_code == 0
        assert _names(output) == ["leaf/ca.pem", "leaf/cert.pem", "leaf/key.pem"]
        assert output.stat().st_mode & 0o777 == 0o600

    def test_pem_export_to_stdout(
        self, cert_tree: Path, capsysbinary: pytest.CaptureFixture[bytes]
    ) -> None:
        """Without --output the archive goes to standard output."""
        exit_code = main(["--root", str(cert_tree), "--export-crt", "root/intermediate/leaf"])

        assert exit_code == 0
        data = capsysbinary.readouterr().out
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            assert tar.getnames() == ["leaf/cert.pem"]

    def test_p12_without_pass_out_fails_without_output(
        self, cert_tree: Path, capsysbinary: pytest.CaptureFixture[bytes]
    ) -> None:
        """P12 key export without --pass-out exits 1 and writes nothing."""
        with patch("certshop.lib.pkcs12.tempfile.mkstemp") as mock_mkstemp:
            exit_code = main(
                [
                    "--root", str(cert_tree),
                    "--export-format", "p12",
                    "--export-key",
                    "root/intermediate/leaf",
                ]
            )  # fmt: skip

        assert exit_code == 1
        assert capsysbinary.readouterr().out == b""
        mock_mkstemp.assert_not_called()

    def test_p12_without_pass_out_creates_no_output_file(
        self, cert_tree: Path, tmp_path: Path
    ) -> None:
        """The output file is not even created for an invalid request."""
        output = tmp_path / "leaf.p12"

        exit_code = main(
            [
                "--root", str(cert_tree),
                "--output", str(output),
                "--export-format", "p12",
                "--export-key",
                "root/intermediate/leaf",
            ]
        )  # fmt: skip

        assert exit_code == 1
        assert not output.exists()

    def test_failed_export_removes_output_file(self, cert_tree: Path, tmp_path: Path) -> None:
        """A failure after opening the output file leaves no partial bundle."""
        output = tmp_path / "leaf.tgz"

        exit_code = main(
            [
                "--root", str(cert_tree),
                "--output", str(output),
                "--export-key",
                "--pass-in", "wrong",
                "root/intermediate/leaf",
            ]
        )  # fmt: skip

        assert exit_code == 1
        assert not output.exists()

    def test_p12_export_with_backend_flag(self, cert_tree: Path, tmp_path: Path) -> None:
        """--p12-backend cryptography packages in process."""
        output = tmp_path / "leaf.p12"

        exit_code = main(
            [
                "--root", str(cert_tree),
                "--output", str(output),
                "--export-format", "p12",
                "--p12-backend", "cryptography",
                "--export-key",
                "--pass-in", LEAF_PASSWORD,
                "--pass-out", "secret2",
                "root/intermediate/leaf",
            ]
        )  # fmt: skip

        assert exit_code == 0
        assert output.stat().st_size > 0

    def test_openssl_flag_passed_to_packager(self, cert_tree: Path, tmp_path: Path) -> None:
        """--openssl selects the binary used for P12 packaging."""
        output = tmp_path / "leaf.p12"
        completed = MagicMock(returncode=0, stdout=b"P12", stderr=b"")

        with patch("certshop.lib.pkcs12.subprocess.run", return_value=completed) as mock_run:
            exit_code = main(
                [
                    "--root", str(cert_tree),
                    "--output", str(output),
                    "--openssl", "/opt/openssl/bin/openssl",
                    "--export-format", "p12",
                    "--export-key",
                    "--pass-in", LEAF_PASSWORD,
                    "--pass-out", "secret2",
                    "root/intermediate/leaf",
                ]
            )  # fmt: skip

        assert exit_code == 0
        assert mock_run.call_args.args[0][0] == "/opt/openssl/bin/openssl"
        assert output.read_bytes() == b"P12"

    def test_unknown_format(self, cert_tree: Path) -> None:
        """An unsupported format exits 1."""
        exit_code = main(
            ["--root", str(cert_tree), "--export-crt", "--export-format", "jks", "root"]
        )

        assert exit_code == 1

    def test_missing_target(self, cert_tree: Path, tmp_path: Path) -> None:
        """A target outside the tree exits 1."""
        exit_code = main(
            ["--root", str(cert_tree), "--output", str(tmp_path / "x"), "--export-crt", "nope"]
        )

        assert exit_code == 1

    def test_stop_at_flag(self, cert_tree: Path, tmp_path: Path) -> None:
        """--stop-at trims the exported chain before the given ancestor."""
        output = tmp_path / "leaf.tgz"

        exit_code = main(
            [
                "--root", str(cert_tree),
                "--output", str(output),
                "--export-crt",
                "--stop-at", "root/intermediate",
                "root/intermediate/leaf",
            ]
        )  # fmt: skip

        assert exit_code == 0
        with tarfile.open(output, mode="r:gz") as tar:
            member = tar.extractfile("leaf/cert.pem")
            assert member is not None
            cert_pem = member.read()
        assert cert_pem == (cert_tree / "root/intermediate/leaf/leaf.pem").read_bytes()
