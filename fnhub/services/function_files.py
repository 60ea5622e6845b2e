"""Reading function sources out of a checked-out repository.

One file per function, named ``<function name><extension>``, directly inside
the configured functions directory.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from fnhub.exceptions import FunctionsDirectoryNotFoundError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def resolve_functions_dir(workspace: Path, functions_path: str) -> Path:
    """Return the functions directory inside a checkout.

    Raises FunctionsDirectoryNotFoundError when it is missing, is not a
    directory, or resolves outside the checkout.
    """
    candidate = (workspace / functions_path).resolve()
    if not candidate.is_relative_to(workspace.resolve()) or not candidate.is_dir():
        raise FunctionsDirectoryNotFoundError(functions_path)
    return candidate


def function_name(filename: str, extension: str) -> str:
    """Derive the function name from its file name (the extension is dropped)."""
    return filename.removesuffix(extension)


def list_function_files(functions_dir: Path, extension: str) -> list[str]:
    """List function file names in a directory, sorted.

    Only regular files are returned; symlinks and subdirectories are ignored.
    """
    with os.scandir(functions_dir) as entries:
        names = [
            entry.name
            for entry in entries
            if entry.is_file(follow_symlinks=False)
            and entry.name.endswith(extension)
            and len(entry.name) > len(extension)
        ]
    return sorted(names)


def function_file_path(functions_dir: Path, name: str, extension: str) -> Path | None:
    """Path of the file for a function name, or None if the name is not a plain file name."""
    if not name or name in {".", ".."} or "/" in name or "\\" in name or "\x00" in name:
        logger.warning("Rejected function name %r", name)
        return None
    return functions_dir / f"{name}{extension}"


def read_function_file(path: Path) -> str:
    """Read a function source file as UTF-8 text.

    Symlinks are treated as missing, matching what the listing ignores.
    """
    if path.is_symlink():
        raise FileNotFoundError(f"Not a regular file: {path.name}")
    return path.read_text(encoding="utf-8")
