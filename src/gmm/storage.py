import glob
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from gmm.models import StorageEntry, StorageKind
from gmm.utils import BoundedCall

KIND_ORDER = (StorageKind.INTERNAL, StorageKind.EXTERNAL, StorageKind.USB)

DEFAULT_LABELS = {
    StorageKind.INTERNAL: "Internal",
    StorageKind.EXTERNAL: "SDCard",
    StorageKind.USB:      "USB-OTG",
}

_GLOB_CHARS = set("*?[")


def _is_pattern(rel_path: str) -> bool:
    return any(c in _GLOB_CHARS for c in rel_path)


def _expand(mount_point: str, rel_path: str) -> List[str]:
    rel_path = rel_path.strip().lstrip("/")
    if not rel_path:
        return []
    full = os.path.join(mount_point, rel_path)
    if _is_pattern(rel_path):
        return sorted(p for p in glob.glob(full) if os.path.isdir(p))
    return [full] if os.path.isdir(full) else []


class StorageDiscoverer:
    """
    Finds the storage roots a connected phone exposes under its mount.

    *paths* maps a StorageKind to relative paths (plain or glob patterns),
    *labels* maps a StorageKind to the link name used for it.
    """

    def __init__(self,
                 paths: Dict[StorageKind, Sequence[str]],
                 labels: Optional[Dict[StorageKind, str]] = None,
                 max_external: int = 3,
                 check_timeout: float = 10.0):
        self.paths         = {kind: list(paths.get(kind, ())) for kind in KIND_ORDER}
        self.labels        = dict(DEFAULT_LABELS)
        self.labels.update(labels or {})
        self.max_external  = max_external
        self.check_timeout = check_timeout
        # one in-flight check per configured path
        self._checks: Dict[str, BoundedCall] = {}

    def label_for(self, kind: StorageKind, index: int) -> str:
        """index is 1-based within a kind: SDCard, SDCard2, SDCard3 …"""
        base = self.labels[kind]
        return base if index <= 1 else f"{base}{index}"

    def possible_labels(self) -> List[str]:
        """Every link name discover() could hand out with this configuration."""
        labels = []
        for kind in KIND_ORDER:
            limit = max(self.max_external, len(self.paths[kind]), 1)
            labels.extend(self.label_for(kind, i) for i in range(1, limit + 1))
        return labels

    def discover(self, mount_point: str | Path) -> List[StorageEntry]:
        mount_point = str(mount_point)
        entries: List[StorageEntry] = []
        seen = set()

        for kind in KIND_ORDER:
            count = 0
            for rel_path in self.paths[kind]:
                if kind is StorageKind.EXTERNAL and count >= self.max_external:
                    logging.debug("Reached max external storage limit (%d)", self.max_external)
                    break
                check = self._checks.setdefault(rel_path, BoundedCall(f"storage-check {rel_path}"))
                found = check(_expand, self.check_timeout, mount_point, rel_path, default=None)
                if found is None:
                    logging.warning("Storage check timed out or failed: %s", rel_path)
                    continue
                if not found:
                    logging.debug("%s storage path not found: %s/%s", kind.value, mount_point, rel_path)
                    continue
                for path in found:
                    if path in seen:
                        continue
                    if kind is StorageKind.EXTERNAL and count >= self.max_external:
                        break
                    seen.add(path)
                    count += 1
                    entry = StorageEntry(kind, Path(path), self.label_for(kind, count))
                    entries.append(entry)
                    logging.info("Found %s storage: %s", kind.value, path)

        if not entries:
            logging.info("No storage paths discovered under %s", mount_point)
        return entries
