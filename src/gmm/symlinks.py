import logging
import os
from pathlib import Path
from typing import Iterable, List

from gmm.models import StorageEntry
from gmm.safety import validate_deletable


class SymlinkManager:
    """Creates and removes the storage symlinks inside a device directory."""

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def device_dir(self, sanitized_name: str) -> Path:
        return self.base_dir / sanitized_name

    # ------------------------------------------------------------------
    # create / update
    # ------------------------------------------------------------------
    def sync(self, device_dir: str | Path, entries: Iterable[StorageEntry]) -> List[Path]:
        """
        Make device_dir/<label> point at each entry's path.

        Returns the link paths that are correct afterwards (created, replaced
        or already fine). Entries whose name is taken by a real file or
        directory are skipped and that object is left alone.
        """
        device_dir = Path(device_dir)
        linked: List[Path] = []

        for entry in entries:
            link = device_dir / entry.label
            target = str(entry.path)
            try:
                if link.is_symlink():
                    current = os.readlink(link)
                    if current == target:
                        logging.debug("Symlink already correct: %s -> %s", link, target)
                        linked.append(link)
                        continue
                    link.unlink()
                    logging.info("Replacing stale symlink %s (was -> %s)", link, current)
                elif link.exists():
                    logging.warning("Not linking %s: a non-symlink already exists there", link)
                    continue

                os.symlink(target, link)
                logging.info("%s storage linked: %s -> %s",
                             entry.kind.value.capitalize(), link, target)
                linked.append(link)
            except OSError as exc:
                logging.error("Failed to create symlink %s -> %s: %s", link, target, exc)

        return linked

    # ------------------------------------------------------------------
    # teardown
    # ------------------------------------------------------------------
    def remove_all(self, link_paths: Iterable[str | Path]) -> int:
        """Unlink exactly the given paths; anything that is no longer a symlink is skipped."""
        removed = 0
        for link in link_paths:
            link = Path(link)
            if not link.is_symlink():
                logging.debug("Skipping %s: not a symlink (already removed?)", link)
                continue
            if not validate_deletable(link, self.base_dir, follow_final=False):
                continue
            try:
                link.unlink()
                removed += 1
                logging.info("Storage symlink removed: %s", link)
            except FileNotFoundError:
                pass
            except OSError as exc:
                logging.error("Failed to remove symlink %s: %s", link, exc)
        return removed

    def remove_device_dir(self, device_dir: str | Path) -> bool:
        """rmdir the device directory if, and only if, it is empty."""
        device_dir = Path(device_dir)
        if not device_dir.is_dir() or device_dir.is_symlink():
            return False
        if not validate_deletable(device_dir, self.base_dir):
            return False
        try:
            device_dir.rmdir()
        except OSError:
            logging.warning("Device directory not empty, keeping: %s", device_dir)
            return False
        logging.info("Device directory removed: %s", device_dir)
        return True

    def known_links(self, device_dir: str | Path, labels: Iterable[str]) -> List[Path]:
        """Symlinks in device_dir carrying one of our link names."""
        device_dir = Path(device_dir)
        return [device_dir / label for label in labels
                if (device_dir / label).is_symlink()]

    def prune_broken(self, device_dir: str | Path) -> int:
        device_dir = Path(device_dir)
        try:
            children = list(device_dir.iterdir())
        except OSError:
            return 0
        broken = [p for p in children if p.is_symlink() and not p.exists()]
        removed = self.remove_all(broken)
        if removed:
            logging.info("Cleaned up %d broken symlink(s) in %s", removed, device_dir)
        return removed
