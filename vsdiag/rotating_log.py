"""A size-bounded log file that keeps a single ``.0`` backup."""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO


class RotatingLog:
    """Append-only log file that is moved to ``<path>.0`` once it grows too large.

    The file is opened lazily in append mode, so writing resumes after any
    content left by an earlier run. After a rotation the file is started afresh.
    """

    def __init__(self, path: str | os.PathLike[str], max_size: int) -> None:
        self.path = Path(path)
        self.max_size = max_size
        self.backup_path = self.path.with_name(self.path.name + ".0")
        self.position = 0
        self._file: BinaryIO | None = None

    def __enter__(self) -> RotatingLog:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_open(self) -> BinaryIO:
        if self._file is None:
            self._file = open(self.path, "ab")
            self._file.seek(0, os.SEEK_END)
            self.position = self._file.tell()
        return self._file

    def write(self, text: str | bytes) -> int:
        """Write ``text``, rotating first if it would overflow; return bytes written."""
        data = text.encode("utf-8") if isinstance(text, str) else bytes(text)
        self._ensure_open()
        if self.position + len(data) > self.max_size:
            self.rotate()
        assert self._file is not None
        self._file.write(data)
        self._file.flush()
        self.position += len(data)
        return len(data)

    def rotate_if_full(self) -> bool:
        """Rotate when the file has already reached the size limit."""
        self._ensure_open()
        if self.position >= self.max_size:
            self.rotate()
            return True
        return False

    def rotate(self) -> None:
        """Move the current file to the backup name and start an empty one."""
        self.close()
        try:
            os.replace(self.path, self.backup_path)
        except FileNotFoundError:
            pass
        self._file = open(self.path, "wb")
        self.position = 0

    def close(self) -> None:
        """Close the underlying file; a later write reopens it."""
        if self._file is not None:
            self._file.close()
            self._file = None