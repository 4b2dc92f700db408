"""Splitting a byte stream into parts stored in temporary files."""

from __future__ import annotations

import os
import queue
import tempfile
import threading
from typing import IO, BinaryIO

TEMP_FILE_PREFIX = "tusd-s3-tmp-"
_COPY_CHUNK = 64 * 1024
_SEND_POLL_SECONDS = 0.01


def cleanup_temp_file(file: IO[bytes]) -> None:
    """Close a temporary file and remove it from disk."""
    file.close()
    try:
        os.remove(file.name)
    except FileNotFoundError:
        pass


class PartProducer:
    """Reads a stream and hands it out as temporary files of a fixed size.

    Files are put on the ``files`` queue; ``None`` is put last to mark the end.
    Setting ``done`` asks the producer to stop early. An error met while
    reading is kept in ``error``.
    """

    def __init__(
        self,
        reader: BinaryIO,
        files: queue.Queue,
        done: threading.Event,
        temporary_directory: str = "",
    ) -> None:
        self.reader = reader
        self.files = files
        self.done = done
        self.temporary_directory = temporary_directory
        self.error: BaseException | None = None

    def produce(self, part_size: int) -> None:
        """Put parts on the queue until the stream ends, fails or is cancelled."""
        try:
            while True:
                try:
                    file = self.next_part(part_size)
                except Exception as exc:
                    self.error = exc
                    return
                if file is None:
                    return
                if not self._send(file):
                    cleanup_temp_file(file)
                    return
        finally:
            self.files.put(None)

    def _send(self, file: IO[bytes]) -> bool:
        while not self.done.is_set():
            try:
                self.files.put(file, timeout=_SEND_POLL_SECONDS)
            except queue.Full:
                continue
            return True
        return False

    def next_part(self, size: int) -> IO[bytes] | None:
        """Copy up to ``size`` bytes into a new temporary file.

        Returns the file positioned at its start, or None once the stream is
        exhausted.
        """
        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=TEMP_FILE_PREFIX,
            dir=self.temporary_directory or None,
            delete=False,
        )
        try:
            copied = 0
            while copied < size:
                chunk = self.reader.read(min(size - copied, _COPY_CHUNK))
                if not chunk:
                    break
                file.write(chunk)
                copied += len(chunk)
        except BaseException:
            cleanup_temp_file(file)
            raise

        if copied == 0:
            cleanup_temp_file(file)
            return None

        file.flush()
        file.seek(0)
        return file