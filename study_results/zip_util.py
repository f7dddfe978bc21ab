"""Helpers that add data, files and directories to a zip archive.

The archive may be written to a non-seekable sink (e.g. a response body);
``zipfile`` then writes data descriptors after each entry.
"""

from __future__ import annotations

import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO

BUFFER_SIZE = 64 * 1024


def _entry_name(path_in_zip: str | PurePosixPath) -> str:
    return str(PurePosixPath(path_in_zip)).lstrip("/")


def add_data_to_zip(zip_file: zipfile.ZipFile, data: str | None, path_in_zip: str) -> None:
    """Add a text entry. ``None`` data is written as an empty entry."""
    with zip_file.open(_entry_name(path_in_zip), mode="w") as entry:
        if data:
            entry.write(data.encode("utf-8"))


def add_fileobj_to_zip(zip_file: zipfile.ZipFile, path_in_zip: str | PurePosixPath, source: BinaryIO) -> None:
    """Copy an open binary file from its current position into the archive."""
    with zip_file.open(_entry_name(path_in_zip), mode="w") as entry:
        shutil.copyfileobj(source, entry, BUFFER_SIZE)


def add_file_to_zip(zip_file: zipfile.ZipFile, path_in_zip: str | PurePosixPath, file_path: Path) -> None:
    """Copy one file into the archive in fixed-size chunks."""
    with open(file_path, "rb") as source:
        add_fileobj_to_zip(zip_file, path_in_zip, source)


def add_dir_to_zip(zip_file: zipfile.ZipFile, dir_in_zip: str | PurePosixPath, dir_path: Path) -> int:
    """Add every file below ``dir_path`` under ``dir_in_zip``.

    Returns:
        Number of files added (0 if the directory doesn't exist)
    """
    dir_path = Path(dir_path)
    if not dir_path.is_dir():
        return 0
    added = 0
    for file_path in sorted(dir_path.rglob("*")):
        if not file_path.is_file():
            continue
        relative = PurePosixPath(*file_path.relative_to(dir_path).parts)
        add_file_to_zip(zip_file, PurePosixPath(dir_in_zip) / relative, file_path)
        added += 1
    return added
