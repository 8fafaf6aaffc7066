"""Result models for export operations."""

from dataclasses import dataclass, field
from pathlib import Path

from .keys import KeyRecord


@dataclass
class ExportBundle:
    """Certificate material collected for one export target.

    Fields left as None were not requested (or, for the key, not present).
    """

    name: str
    chain: bytes | None = None
    ca_cert: bytes | None = None
    key: KeyRecord | None = None
    key_path: Path | None = None
    pass_in: str | None = None
    pass_out: str | None = None


@dataclass
class ExportResult:
    """Outcome of a completed export."""

    name: str
    export_format: str
    entries: list[str] = field(default_factory=list)
    bytes_written: int = 0
