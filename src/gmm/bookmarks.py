"""
GTK bookmark list maintenance.

The bookmark file is shared with the file manager, so every change is a
full read-modify-write that lands via rename: readers only ever see the old
or the new file. Another program writing at the same moment can still lose
its change; there is no lock both sides honour.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import unquote, urlparse

from gmm.models import DeviceIdentity, StorageEntry


def bookmark_label(identity: DeviceIdentity, entry: StorageEntry) -> str:
    return f"{identity.sanitized_name} {entry.label}"


def bookmark_line(identity: DeviceIdentity, entry: StorageEntry, device_dir: str | Path) -> str:
    uri = (Path(device_dir) / entry.label).absolute().as_uri()
    return f"{uri} {bookmark_label(identity, entry)}"


def _uri_path(uri: str) -> Optional[Path]:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return None
    return Path(unquote(parsed.path))


def is_device_line(line: str, sanitized_name: str,
                   storage_labels: Iterable[str] = (),
                   device_dir: str | Path | None = None) -> bool:
    """
    True for lines this manager wrote for *sanitized_name*.

    That is a label of exactly "<name>" (older one-word form) or
    "<name> <storage label>", or a file:// URI inside the device directory.
    User bookmarks whose label merely starts with the name are not ours.
    """
    uri, _, label = line.strip().partition(" ")
    if label == sanitized_name:
        return True
    if label in {f"{sanitized_name} {storage}" for storage in storage_labels}:
        return True
    if device_dir is not None:
        path = _uri_path(uri)
        if path is not None:
            device_dir = Path(device_dir).absolute()
            return path == device_dir or device_dir in path.parents
    return False


class BookmarkManager:

    def __init__(self, bookmark_file: str | Path, enabled: bool = True):
        self.bookmark_file = Path(bookmark_file)
        self.enabled = enabled

    # ------------------------------------------------------------------
    # file helpers
    # ------------------------------------------------------------------
    def _read_lines(self) -> List[str]:
        try:
            text = self.bookmark_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        return text.splitlines()

    def _write_lines(self, lines: List[str]) -> None:
        directory = self.bookmark_file.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.bookmark_file.name}.", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write("".join(f"{line}\n" for line in lines))
                fp.flush()
                os.fsync(fp.fileno())
            if self.bookmark_file.exists():
                os.chmod(tmp_path, self.bookmark_file.stat().st_mode & 0o777)
            os.replace(tmp_path, self.bookmark_file)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------
    def add(self, identity: DeviceIdentity, entries: Iterable[StorageEntry],
            device_dir: str | Path) -> int:
        """Append one line per entry unless the exact line is already there."""
        if not self.enabled:
            return 0
        try:
            lines = self._read_lines()
            present = set(lines)
            added = 0
            for entry in entries:
                line = bookmark_line(identity, entry, device_dir)
                if line in present:
                    logging.debug("Bookmark already exists: %s", line)
                    continue
                lines.append(line)
                present.add(line)
                added += 1
            if added:
                self._write_lines(lines)
                logging.info("Added %d bookmark(s) for %s", added, identity.display_name)
            return added
        except OSError as exc:
            logging.error("Bookmark file not writable (%s): %s", self.bookmark_file, exc)
            return 0

    def remove(self, identity: DeviceIdentity, storage_labels: Iterable[str] = (),
               device_dir: str | Path | None = None) -> int:
        """Drop the lines this manager added for *identity* (see is_device_line)."""
        if not self.enabled:
            return 0
        name = identity.sanitized_name
        storage_labels = list(storage_labels)
        try:
            lines = self._read_lines()
            kept = [line for line in lines
                    if not is_device_line(line, name, storage_labels, device_dir)]
            removed = len(lines) - len(kept)
            if removed:
                self._write_lines(kept)
                logging.info("Removed %d bookmark(s) for %s", removed, identity.display_name)
            else:
                logging.debug("No bookmarks found for %s", name)
            return removed
        except OSError as exc:
            logging.error("Failed to update bookmark file %s: %s", self.bookmark_file, exc)
            return 0
