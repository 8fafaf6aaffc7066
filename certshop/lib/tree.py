"""Certificate tree navigation: path resolution and chain walking.

A certificate tree is a directory hierarchy where directory ``X`` holds the
certificate ``X.pem``, optionally the private key ``X-key.pem``, and one
sub-directory per certificate signed by ``X``. There is no index file: the
chain of an entity is recovered purely from its position in the tree.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .cert_utils import normalize_certificate
from .errors import InvalidStructureError, NotFoundError
from .logging_config import LOGGER

CERT_SUFFIX = ".pem"
KEY_SUFFIX = "-key.pem"


class FileSystem(Protocol):
    """Filesystem operations needed to navigate a certificate tree."""

    def exists(self, path: Path) -> bool: ...

    def is_file(self, path: Path) -> bool: ...

    def is_dir(self, path: Path) -> bool: ...

    def read_bytes(self, path: Path) -> bytes: ...


class LocalFileSystem:
    """FileSystem backed by the real disk."""

    def exists(self, path: Path) -> bool:
        return path.exists()

    def is_file(self, path: Path) -> bool:
        return path.is_file()

    def is_dir(self, path: Path) -> bool:
        return path.is_dir()

    def read_bytes(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError("file not found", path=str(path)) from e
        except IsADirectoryError as e:
            raise InvalidStructureError("expected a file, found a directory", path=str(path)) from e


LOCAL_FS = LocalFileSystem()


def clean_path(path: Path | str) -> Path:
    """Lexically normalize a path (collapse ``.``, ``..`` and duplicate separators)."""
    return Path(os.path.normpath(path))


def find_file(path: Path | str, suffix: str, fs: FileSystem = LOCAL_FS) -> Path:
    """Resolve a node path to the conventionally named file it holds.

    A path naming a regular file is returned unchanged. A directory ``d``
    resolves to ``d/<basename(d)><suffix>``.

    Args:
        path: File or node directory
        suffix: CERT_SUFFIX or KEY_SUFFIX
        fs: Filesystem to query

    Returns:
        Path of the certificate or key file

    Raises:
        NotFoundError: If neither the path nor the conventional file exists
        InvalidStructureError: If the conventional file name is a directory
    """
    path = clean_path(path)
    if fs.is_file(path):
        return path
    if not fs.is_dir(path):
        raise NotFoundError("no such file or directory", path=str(path))

    candidate = path / f"{path.name}{suffix}"
    if fs.is_dir(candidate):
        raise InvalidStructureError("expected a file, found a directory", path=str(candidate))
    if not fs.exists(candidate):
        raise NotFoundError("no such file or directory", path=str(candidate))
    return candidate


@dataclass(frozen=True)
class TreeNode:
    """A certificate or CA node, identified by its path relative to the tree root."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_tree_root(self) -> bool:
        return self.path == self.path.parent

    @property
    def parent(self) -> "TreeNode":
        """Issuer node, computed from the path rather than stored."""
        return TreeNode(self.path.parent)

    @property
    def cert_path(self) -> Path:
        return self.path / f"{self.name}{CERT_SUFFIX}"

    @property
    def key_path(self) -> Path:
        return self.path / f"{self.name}{KEY_SUFFIX}"

    def ancestors(self) -> list["TreeNode"]:
        """Return this node and its issuers, leaf first, excluding the tree root."""
        nodes = []
        node = self
        while not node.is_tree_root:
            nodes.append(node)
            node = node.parent
        return nodes


class CertTree:
    """A certificate tree rooted at a directory on a FileSystem."""

    def __init__(
        self,
        root: Path | str,
        fs: FileSystem = LOCAL_FS,
        logger: logging.Logger = LOGGER,
    ) -> None:
        """Initialize tree.

        Args:
            root: Tree root directory; node paths are relative to it
            fs: Filesystem to read from
            logger: Logger for debug output
        """
        self.root = clean_path(root)
        self.fs = fs
        self.logger = logger

    def abspath(self, path: Path) -> Path:
        """Join a tree-relative path onto the tree root."""
        return clean_path(self.root / path)

    def node(self, path: Path | str) -> TreeNode:
        """Return the node for a user supplied target path.

        Relative paths are taken relative to the tree root; absolute paths
        must lie inside it. A path naming a node's own certificate or key
        file resolves to that node.

        Raises:
            InvalidStructureError: If the path leaves the tree or names a foreign file
            NotFoundError: If the path does not exist
        """
        path = clean_path(path)
        if path.is_absolute():
            try:
                path = path.relative_to(Path(os.path.abspath(self.root)))
            except ValueError as e:
                raise InvalidStructureError(
                    "path is outside the certificate tree", path=str(path), root=str(self.root)
                ) from e
        if path.parts and path.parts[0] == "..":
            raise InvalidStructureError(
                "path is outside the certificate tree", path=str(path), root=str(self.root)
            )

        full = self.abspath(path)
        if self.fs.is_file(full):
            parent = path.parent
            if path.name not in (f"{parent.name}{CERT_SUFFIX}", f"{parent.name}{KEY_SUFFIX}"):
                raise InvalidStructureError("file is not a node certificate or key", path=str(path))
            path = parent
        elif not self.fs.is_dir(full):
            raise NotFoundError("no such certificate node", path=str(path))

        node = TreeNode(path)
        if node.is_tree_root:
            raise InvalidStructureError("tree root is not a certificate node", path=str(path))
        return node

    def chain(self, node: TreeNode, stop_at: TreeNode | None = None) -> list[Path]:
        """Return certificate file paths from ``node`` up to the tree root.

        Order is leaf first: each certificate precedes its issuer.

        Args:
            node: Starting (leaf) node
            stop_at: Ancestor at which to stop; it is not included

        Returns:
            Absolute certificate paths, leaf first

        Raises:
            InvalidStructureError: If stop_at is not an ancestor of node
        """
        nodes = node.ancestors()
        if stop_at is not None:
            if stop_at not in nodes[1:]:
                raise InvalidStructureError(
                    "stop node is not an ancestor", path=str(node.path), stop_at=str(stop_at.path)
                )
            nodes = nodes[: nodes.index(stop_at)]
        return [self.abspath(n.cert_path) for n in nodes]

    def read_chain(self, node: TreeNode, stop_at: TreeNode | None = None) -> bytes:
        """Read and concatenate the PEM certificates of ``node``'s chain.

        Raises:
            NotFoundError: If any certificate in the chain is missing
            InvalidStructureError: If any certificate cannot be parsed
        """
        data = b""
        for cert_path in self.chain(node, stop_at=stop_at):
            self.logger.debug("Reading chain certificate %s", cert_path)
            data += self.read_certificate(cert_path)
        return data

    def read_certificate(self, path: Path) -> bytes:
        """Read one certificate file and return it as normalized PEM."""
        if not self.fs.exists(path):
            raise NotFoundError("certificate not found", path=str(path))
        try:
            return normalize_certificate(self.fs.read_bytes(path))
        except InvalidStructureError as e:
            raise InvalidStructureError(e.mesg, path=str(path)) from e

    def find_ca(self, path: Path | str) -> Path:
        """Resolve an external CA reference to its certificate file.

        Relative references are looked up under the tree root first and then
        relative to the working directory.
        """
        path = Path(path)
        if not path.is_absolute():
            in_tree = self.abspath(path)
            if self.fs.exists(in_tree):
                return find_file(in_tree, CERT_SUFFIX, self.fs)
        return find_file(path, CERT_SUFFIX, self.fs)

    def key_file(self, node: TreeNode) -> Path | None:
        """Return the node's key path, or None when the node holds no key."""
        key_path = self.abspath(node.key_path)
        if self.fs.is_file(key_path):
            return key_path
        if self.fs.is_dir(key_path):
            raise InvalidStructureError("expected a file, found a directory", path=str(key_path))
        return None
