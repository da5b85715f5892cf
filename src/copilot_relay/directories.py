"""
Working-directory resolver — expands configured glob patterns.

    /home/me/projects/*    each immediate subdirectory
    /home/me/projects/**   every subdirectory, recursively
    /home/me/projects/app  that directory only
"""

import glob
import os
from typing import Callable, Iterable, Optional


def expand_patterns(patterns: Iterable[str]) -> list[str]:
    """Unique, sorted absolute paths of the directories matching any pattern."""
    dirs: set[str] = set()
    for pattern in patterns:
        for match in glob.glob(os.path.expanduser(pattern), recursive=True):
            path = match.rstrip(os.sep) or match
            if os.path.isdir(path):
                dirs.add(os.path.abspath(path))
    return sorted(dirs)


class DirectoryResolver:
    def __init__(self, patterns: Optional[Iterable[str]] = None,
                 loader: Optional[Callable[[], Iterable[str]]] = None):
        self._patterns = list(patterns or [])
        self._loader = loader

    def list_directories(self) -> list[str]:
        patterns = list(self._loader()) if self._loader is not None else self._patterns
        return expand_patterns(patterns)
