"""Durable object storage used for results, contexts and plans.

Every write is all-or-nothing: data goes to a temporary file next to the
target and is moved into place with ``os.replace``, so a reader never
observes a partially written object.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, Union

logger = logging.getLogger(__name__)

FILE_SCHEME = "file://"

PathLike = Union[str, Path]


class ObjectStore(Protocol):
    """Minimal object-store interface the service depends on."""

    def exists(self, uri: str) -> bool:
        ...

    def read_bytes(self, uri: str) -> bytes:
        ...

    def write_bytes(self, uri: str, data: bytes) -> None:
        ...

    def rename(self, src_uri: str, dst_uri: str) -> None:
        ...

    def delete(self, uri: str) -> None:
        ...

    def close(self) -> None:
        ...


class LocalFileStore:
    """Object store backed by the local filesystem.

    URIs are plain paths or ``file://`` URLs. Relative paths are resolved
    against ``root`` when one is given.
    """

    def __init__(self, root: PathLike | None = None) -> None:
        self.root = Path(root) if root is not None else None

    def _path(self, uri: str) -> Path:
        if uri.startswith(FILE_SCHEME):
            uri = uri[len(FILE_SCHEME):]
        path = Path(uri)
        if self.root is not None and not path.is_absolute():
            path = self.root / path
        return path

    def exists(self, uri: str) -> bool:
        return self._path(uri).is_file()

    def read_bytes(self, uri: str) -> bytes:
        return self._path(uri).read_bytes()

    def write_bytes(self, uri: str, data: bytes) -> None:
        path = self._path(uri)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug("wrote %d bytes to %s", len(data), path)

    def rename(self, src_uri: str, dst_uri: str) -> None:
        src, dst = self._path(src_uri), self._path(dst_uri)
        dst.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dst)

    def delete(self, uri: str) -> None:
        self._path(uri).unlink(missing_ok=True)

    def close(self) -> None:
        """Nothing to release for local files."""
