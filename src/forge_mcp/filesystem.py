"""File-system adapters used by the project store.

Paths are POSIX-style strings (``root/tasks/x.md``). The store never touches
a concrete file system directly, so projects can also live in memory.
"""

from __future__ import annotations

import posixpath
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class FileEntry:
    name: str
    path: str
    is_directory: bool = False


def join_path(*parts: str) -> str:
    return posixpath.join(*parts)


def _normalize(path: str) -> str:
    path = path.replace("\\", "/")
    if len(path) > 1:
        path = path.rstrip("/")
    return path


class FileSystemAdapter(ABC):
    """Minimal file-system surface the store depends on."""

    @abstractmethod
    def exists(self, path: str) -> bool: ...

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Return file text. Raises FileNotFoundError if missing."""

    @abstractmethod
    def write_file(self, path: str, content: str) -> None:
        """Create or overwrite a file, creating parent directories as needed."""

    @abstractmethod
    def mkdir(self, path: str) -> None:
        """Create a directory and its parents; existing directories are fine."""

    @abstractmethod
    def delete(self, path: str) -> None:
        """Remove a file or directory tree. Raises FileNotFoundError if missing."""

    @abstractmethod
    def list_directory(
        self, path: str, extension: str | None = None, recursive: bool = False
    ) -> list[FileEntry]:
        """List entries below ``path``.

        With ``extension`` set, only files ending in it are returned.
        """


class LocalFileSystemAdapter(FileSystemAdapter):
    """Adapter over the local disk via pathlib."""

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def read_file(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write_file(self, path: str, content: str) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def mkdir(self, path: str) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def delete(self, path: str) -> None:
        target = Path(path)
        if target.is_dir():
            shutil.rmtree(target)
        else:
            target.unlink()

    def list_directory(self, path, extension=None, recursive=False):
        root = Path(path)
        if not root.is_dir():
            raise NotADirectoryError(path)
        candidates = root.rglob("*") if recursive else root.iterdir()
        entries = []
        for item in sorted(candidates):
            is_dir = item.is_dir()
            if extension and (is_dir or not item.name.endswith(extension)):
                continue
            entries.append(FileEntry(name=item.name, path=item.as_posix(), is_directory=is_dir))
        return entries


class MemoryFileSystemAdapter(FileSystemAdapter):
    """In-memory adapter for tests and projects that are not disk-backed."""

    def __init__(self, files: dict[str, str] | None = None):
        self._files: dict[str, str] = {}
        self._dirs: set[str] = set()
        for path, content in (files or {}).items():
            self.write_file(path, content)

    def _add_parents(self, path: str) -> None:
        parent = posixpath.dirname(path)
        while parent and parent not in self._dirs and parent != "/":
            if parent in self._files:
                raise NotADirectoryError(parent)
            self._dirs.add(parent)
            parent = posixpath.dirname(parent)

    def exists(self, path: str) -> bool:
        path = _normalize(path)
        return path in self._files or path in self._dirs

    def read_file(self, path: str) -> str:
        path = _normalize(path)
        if path not in self._files:
            raise FileNotFoundError(path)
        return self._files[path]

    def write_file(self, path: str, content: str) -> None:
        path = _normalize(path)
        if path in self._dirs:
            raise IsADirectoryError(path)
        self._add_parents(path)
        self._files[path] = content

    def mkdir(self, path: str) -> None:
        path = _normalize(path)
        if path in self._files:
            raise FileExistsError(path)
        self._add_parents(path)
        self._dirs.add(path)

    def delete(self, path: str) -> None:
        path = _normalize(path)
        if path in self._files:
            del self._files[path]
            return
        if path not in self._dirs:
            raise FileNotFoundError(path)
        prefix = path + "/"
        self._dirs = {d for d in self._dirs if d != path and not d.startswith(prefix)}
        self._files = {f: c for f, c in self._files.items() if not f.startswith(prefix)}

    def list_directory(self, path, extension=None, recursive=False):
        path = _normalize(path)
        if path not in self._dirs:
            raise NotADirectoryError(path)
        prefix = path + "/"
        entries = []
        for candidate in sorted(self._dirs | set(self._files)):
            if not candidate.startswith(prefix):
                continue
            if not recursive and "/" in candidate[len(prefix):]:
                continue
            is_dir = candidate in self._dirs
            if extension and (is_dir or not candidate.endswith(extension)):
                continue
            entries.append(FileEntry(name=posixpath.basename(candidate), path=candidate, is_directory=is_dir))
        return entries
