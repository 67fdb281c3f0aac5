from __future__ import annotations
import os
from typing import Optional


def resolve_path(file_name: str, base_dir: Optional[str]) -> str:
    """Turns the file name given to a data loader into a normalized path.

    Absolute names and ``~`` names are used as they are, anything else is
    relative to ``base_dir`` (or to the CWD when there's no base).
    """
    if file_name.startswith("file://"):
        file_name = file_name[7:]
    # Home directory
    if file_name.startswith("~"):
        return os.path.normpath(os.path.expanduser(file_name))
    # Absolute filesystem path
    if os.path.isabs(file_name):
        return os.path.normpath(file_name)
    base = base_dir or os.getcwd()
    if file_name == "":
        return base
    return os.path.normpath(os.path.join(base, file_name))


def read_bytes(path: str) -> bytes:
    if os.path.isdir(path):
        raise IsADirectoryError(path)
    with open(path, "rb") as f:
        return f.read()
