"""
Path algebra between FILES_ROOT and the values stored in pdf_local_path.

Stored paths are relative to the storage root ("manuals/123-HG Zaku.pdf").
Older runs wrote absolute paths or paths relative to whatever the working
directory was at the time; resolve_legacy() interprets those.
"""

import os
from pathlib import Path
from typing import Union

PathLike = Union[str, os.PathLike]


def _absolute(path: PathLike) -> Path:
    # normalise ".." without following symlinks
    return Path(os.path.abspath(path))


class PathResolver:
    def __init__(self, root: PathLike):
        self.root = _absolute(Path(root).expanduser())

    def join(self, *parts: str) -> Path:
        return _absolute(self.root.joinpath(*parts))

    def to_absolute(self, rel_or_legacy: PathLike) -> Path:
        """
        Root-relative value -> absolute path under the root.
        An absolute value is returned as is (normalised).
        """
        return _absolute(self.root / rel_or_legacy)

    def to_relative(self, absolute: PathLike) -> str:
        return os.path.relpath(_absolute(absolute), self.root)

    def is_inside_root(self, absolute: PathLike) -> bool:
        try:
            rel = os.path.relpath(_absolute(absolute), self.root)
        except ValueError:
            # different drive on Windows
            return False
        return not (rel == os.pardir or rel.startswith(os.pardir + os.sep) or os.path.isabs(rel))

    @staticmethod
    def resolve_legacy(value: PathLike) -> Path:
        """Absolute value as is, anything else relative to the working directory."""
        return _absolute(value)
