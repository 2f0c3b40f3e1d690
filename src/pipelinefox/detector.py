"""Locate the CI file of a project.

The search walks the tree top-down, depth-first, in name order. A file
in a directory is found before anything in its subdirectories.
"""

from __future__ import annotations

import os
from pathlib import Path

from pipelinefox.logging import get_logger

logger = get_logger(__name__)

GITLAB_CI_FILENAME = ".gitlab-ci.yml"

SKIP_DIRS = frozenset({
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    ".nox",
    ".mypy_cache",
    ".pytest_cache",
})


def find_ci_file(root: str | Path, filename: str = GITLAB_CI_FILENAME) -> Path | None:
    """Return the first ``filename`` under ``root``, or ``None``.

    ``root`` may also point directly at the file.
    """
    root = Path(root)
    if root.is_file():
        return root if root.name == filename else None
    if not root.is_dir():
        return None

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        if filename in filenames:
            found = Path(dirpath) / filename
            logger.debug("ci_file.found", path=str(found))
            return found
    return None
