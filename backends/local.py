import os
from typing import BinaryIO

from .base import BackendError, BackendNotFoundError, DirEntry, StateBackend, clean_path


class LocalBackend(StateBackend):
    """Local directory tree backend for Terraform state"""

    def __init__(self, root: str):
        """
        Initialize local backend

        Args:
            root: Directory that holds the state tree
        """
        self.root = os.path.abspath(root)

    def _resolve(self, path: str) -> str:
        key = clean_path(path)
        if not key:
            return self.root
        return os.path.join(self.root, *key.split("/"))

    def list_dir(self, path: str) -> list[DirEntry]:
        """List the direct children of a directory under the root"""
        target = self._resolve(path)
        try:
            with os.scandir(target) as it:
                entries = [DirEntry(name=e.name, is_dir=e.is_dir()) for e in it]
        except (FileNotFoundError, NotADirectoryError):
            raise BackendNotFoundError(f"Directory '{path}' not found.")
        except OSError as e:
            raise BackendError(f"Could not list '{path}': {e.strerror or e}")

        return sorted(entries, key=lambda e: e.name)

    def open_file(self, path: str) -> BinaryIO:
        """Open a file under the root in binary mode"""
        target = self._resolve(path)
        try:
            return open(target, "rb")
        except (FileNotFoundError, IsADirectoryError):
            raise BackendNotFoundError(f"File '{path}' not found.")
        except OSError as e:
            raise BackendError(f"Could not open '{path}': {e.strerror or e}")
