"""padvault - Atomic file writes.

1. Write to temp path in same directory
2. Flush + fsync
3. Rename temp -> final (the publish boundary)

The final path either contains the complete file or does not exist.
"""

import os
from pathlib import Path


def _write_all(fd: int, data: bytes) -> None:
    """Write all bytes to a file descriptor, handling short writes and EINTR.

    Raises:
        OSError: If write fails or returns 0 bytes unexpectedly.
    """
    view = memoryview(data)
    total_written = 0
    while total_written < len(view):
        try:
            written = os.write(fd, view[total_written:])
        except InterruptedError:
            continue
        if written == 0:
            raise OSError("os.write() returned 0 bytes unexpectedly")
        total_written += written


def _fsync_directory(directory: Path) -> None:
    # Not supported on every platform/filesystem
    try:
        dir_fd = os.open(directory, os.O_RDONLY | getattr(os, "O_DIRECTORY", 0))
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def atomic_write_bytes(final_path: str | Path, data: bytes, temp_suffix: str = ".tmp") -> Path:
    """Atomically write bytes to a file, creating parent directories.

    Args:
        final_path: The target path for the final file.
        data: Bytes to write.
        temp_suffix: Suffix for the temporary file.

    Returns:
        The final path.

    Raises:
        OSError: If directory creation, write, or rename fails.
    """
    final_path = Path(final_path)
    temp_path = final_path.with_suffix(final_path.suffix + temp_suffix)
    final_path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
    try:
        _write_all(fd, data)
        os.fsync(fd)
    except OSError:
        os.close(fd)
        temp_path.unlink(missing_ok=True)
        raise
    else:
        os.close(fd)

    os.replace(temp_path, final_path)
    _fsync_directory(final_path.parent)
    return final_path
