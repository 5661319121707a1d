import posixpath
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO


class BackendError(ValueError):
    """Raised when a state backend cannot be read"""


class BackendNotFoundError(BackendError):
    """Raised when a path does not exist or is not the expected kind"""


@dataclass(frozen=True)
class DirEntry:
    """A single direct child of a directory"""

    name: str
    is_dir: bool


def clean_path(path: str) -> str:
    """
    Normalize a logical path to a key relative to the backend root.

    "", ".", "/" all mean the root and map to "". Leading and trailing
    slashes are dropped. Paths that climb above the root are rejected.
    """
    cleaned = posixpath.normpath((path or ".").lstrip("/") or ".")
    if cleaned == ".." or cleaned.startswith("../"):
        raise BackendNotFoundError(f"Path '{path}' is outside the backend root.")
    if cleaned == ".":
        return ""
    return cleaned


class StateBackend(ABC):
    """Terraform state backend abstract base class"""

    @abstractmethod
    def list_dir(self, path: str) -> list[DirEntry]:
        """
        List the direct children of a directory

        Args:
            path: Logical directory path ("." is the root)

        Returns:
            Entries sorted by name
        """
        pass

    @abstractmethod
    def open_file(self, path: str) -> BinaryIO:
        """
        Open a file for reading

        Args:
            path: Logical file path

        Returns:
            Readable binary stream. The caller closes it.
        """
        pass
