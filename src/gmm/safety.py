"""
Path guard used before every delete.

Nothing the mount manager removes may resolve outside the configured base
directory, or be the base directory itself, the user's home or the
filesystem root.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path


def _canonical(path: str | Path, follow_final: bool = True) -> str:
    path = os.path.expanduser(str(path))
    if follow_final:
        return os.path.realpath(path)
    head, tail = os.path.split(os.path.abspath(path))
    return os.path.join(os.path.realpath(head), tail)


def validate_deletable(path: str | Path | None,
                       base_dir: str | Path,
                       follow_final: bool = True) -> bool:
    """
    Return True when *path* may be deleted.

    *follow_final* = False keeps the last component unresolved, which is
    what we want for symlinks: the link itself is removed, not its target.
    """
    if path is None or not str(path).strip():
        logging.error("Refusing to delete: empty path")
        return False

    root = os.path.abspath(os.sep)
    home = os.path.realpath(os.path.expanduser("~"))
    base = os.path.realpath(os.path.expanduser(str(base_dir)))
    target = _canonical(path, follow_final)

    if target == root:
        logging.error("Refusing to delete filesystem root (%s)", path)
        return False
    if target == home:
        logging.error("Refusing to delete home directory (%s)", path)
        return False
    if target == base:
        logging.error("Refusing to delete base directory itself (%s)", path)
        return False

    target_parts = Path(target).parts
    base_parts = Path(base).parts
    if len(target_parts) <= len(base_parts) or target_parts[:len(base_parts)] != base_parts:
        logging.error("Refusing to delete %s: resolves to %s, outside %s",
                      path, target, base)
        return False
    return True
