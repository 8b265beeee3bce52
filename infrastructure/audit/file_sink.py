from __future__ import annotations

import os
import threading

from domain.exceptions import StorageUnavailable
from domain.repositories import AuditSink


class FileAuditSink(AuditSink):
    """
    Plain-text transaction log, one entry per line.

    Appends are serialised by a lock and each line is written with a
    single `write` call, so entries never interleave.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> str:
        return self._path

    def append(self, line: str) -> None:
        text = line.replace("\r", " ").replace("\n", " ") + "\n"
        try:
            with self._lock:
                directory = os.path.dirname(self._path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(self._path, "a", encoding="utf-8") as fh:
                    fh.write(text)
                    fh.flush()
                    os.fsync(fh.fileno())
        except OSError as exc:
            raise StorageUnavailable(f"Cannot append to {self._path}: {exc}") from exc

    def read_all(self) -> str:
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                return fh.read()
        except FileNotFoundError:
            return ""
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {self._path}: {exc}") from exc
