"""Single-producer, single-consumer byte channels between pipeline stages."""

from __future__ import annotations

import os


class Channel:
    """An OS pipe linking one stage's stdout to the next stage's stdin.

    Capacity is bounded by the kernel pipe buffer, so a fast producer blocks
    until its consumer reads. The parent process only holds the descriptors
    until both stages are launched and must then call ``release``.
    """

    __slots__ = ("_read_fd", "_write_fd")

    def __init__(self) -> None:
        self._read_fd: int | None
        self._write_fd: int | None
        self._read_fd, self._write_fd = os.pipe()

    @classmethod
    def drained(cls) -> Channel:
        """Channel with no producer: readers see end-of-file immediately."""

        channel = cls()
        channel._close_writer()
        return channel

    @property
    def reader(self) -> int:
        if self._read_fd is None:
            raise ValueError("Channel read end is already released.")
        return self._read_fd

    @property
    def writer(self) -> int:
        if self._write_fd is None:
            raise ValueError("Channel write end is already released.")
        return self._write_fd

    def release(self) -> None:
        """Close the parent's copies of both ends. Safe to call twice."""

        self._close_writer()
        if self._read_fd is not None:
            os.close(self._read_fd)
            self._read_fd = None

    def _close_writer(self) -> None:
        if self._write_fd is not None:
            os.close(self._write_fd)
            self._write_fd = None
