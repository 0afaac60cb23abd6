from __future__ import annotations

import errno
import os
import sys
import tempfile
from pathlib import Path
from typing import TextIO


class FileAccessError(RuntimeError):
    pass


def _describe_read_error(path: Path, exc: OSError) -> str:
    if isinstance(exc, FileNotFoundError):
        return f"File not found: {path}"
    if isinstance(exc, PermissionError):
        return f"Permission denied: {path}"
    if isinstance(exc, IsADirectoryError):
        return f"Path is a directory, not a file: {path}"
    return f"Failed to read file {path}: {exc.strerror or exc}"


def _describe_write_error(path: Path, exc: OSError) -> str:
    if isinstance(exc, PermissionError):
        return f"Permission denied: {path}"
    if exc.errno == errno.ENOSPC:
        return f"No space left on device: {path}"
    if isinstance(exc, IsADirectoryError):
        return f"Path is a directory, not a file: {path}"
    if isinstance(exc, FileNotFoundError):
        return f"Output directory does not exist: {path.parent}"
    return f"Failed to write file {path}: {exc.strerror or exc}"


def read_text_file(file_path: str | Path) -> str:
    path = Path(file_path).expanduser()
    if path.is_dir():
        raise FileAccessError(f"Path is a directory, not a file: {path}")
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise FileAccessError(f"File is not valid UTF-8 text: {path}") from exc
    except OSError as exc:
        raise FileAccessError(_describe_read_error(path, exc)) from exc


def write_text_file(file_path: str | Path, content: str) -> Path:
    """Write ``content`` through a temp file so the target is never half-written."""
    path = Path(file_path).expanduser()
    if path.is_dir():
        raise FileAccessError(f"Path is a directory, not a file: {path}")

    tmp_name = ""
    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        mode = path.stat().st_mode & 0o7777 if path.exists() else 0o644
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise FileAccessError(_describe_write_error(path, exc)) from exc
    return path


def stdin_is_piped(stream: TextIO | None = None) -> bool:
    handle = stream or sys.stdin
    return handle is not None and not handle.isatty()


def read_stream(stream: TextIO | None = None) -> str:
    handle = stream or sys.stdin
    try:
        return handle.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise FileAccessError(f"Failed to read stdin: {exc}") from exc
