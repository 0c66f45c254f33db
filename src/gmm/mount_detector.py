import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Tuple

import psutil

from gmm.models import MountHandle
from gmm.utils import BoundedCall

# GVFS names SFTP mounts "sftp:host=192.168.1.20,port=1739[,user=…]"
_SFTP_MOUNT_RE = re.compile(r"^sftp:host=(?P<host>[^,]+)(?P<opts>(?:,[^,]*)*)$")
_PORT_RE       = re.compile(r",port=(?P<port>\d+)(?:,|$)")

GVFS_FSTYPE = "fuse.gvfsd-fuse"


def parse_mount_name(name: str) -> Optional[Tuple[str, Optional[int]]]:
    """'sftp:host=10.0.0.5,port=1739' -> ('10.0.0.5', 1739); None if no match."""
    m = _SFTP_MOUNT_RE.match(name)
    if not m:
        return None
    port = None
    pm = _PORT_RE.search(m.group("opts"))
    if pm:
        port = int(pm.group("port"))
    return m.group("host"), port


def scan_once(root: str | Path) -> List[str]:
    """Names of the immediate child directories of *root*; [] when unreadable."""
    try:
        with os.scandir(root) as it:
            names = []
            for entry in it:
                try:
                    if entry.is_dir():
                        names.append(entry.name)
                except OSError:
                    continue
            return names
    except OSError:
        return []


def detect_mount_root(configured: str | Path, autodetect: bool = True) -> Path:
    """
    Locate the GVFS FUSE directory.

    Prefers the live gvfsd-fuse mount reported by the kernel, then the
    well-known locations, then whatever was configured.
    """
    configured = Path(configured)
    if not autodetect:
        return configured

    try:
        for part in psutil.disk_partitions(all=True):
            if part.fstype == GVFS_FSTYPE and os.path.isdir(part.mountpoint):
                logging.debug("Detected GVFS mount via psutil: %s", part.mountpoint)
                return Path(part.mountpoint)
    except (OSError, psutil.Error) as exc:
        logging.debug("psutil.disk_partitions failed: %s", exc)

    uid = os.getuid()
    for candidate in (Path(f"/run/user/{uid}/gvfs"),
                      Path.home() / ".gvfs",
                      Path(f"/var/run/user/{uid}/gvfs")):
        if candidate.is_dir():
            logging.debug("Detected GVFS path: %s", candidate)
            return candidate

    logging.warning("No GVFS path found, using configured path: %s", configured)
    return configured


class MountDetector:
    """
    Looks under the mount root for a GVFS SFTP mount.

    The directory scan is bounded by *scan_timeout* so a hung network mount
    cannot stall the poll loop. Absence of a mount is a normal state: detect()
    returns None and never raises.
    """

    def __init__(self, mount_root: str | Path, scan_timeout: float = 5.0, scanner=scan_once):
        self.mount_root   = Path(mount_root)
        self.scan_timeout = scan_timeout
        self._scan        = scanner
        self._bounded     = BoundedCall("mount-scan")

    def detect(self) -> Optional[MountHandle]:
        names = self._bounded(self._scan, self.scan_timeout, self.mount_root, default=None)
        if names is None:
            logging.warning("Mount scan of %s did not complete", self.mount_root)
            return None

        matches = []
        for name in names:
            parsed = parse_mount_name(name)
            if parsed:
                matches.append((name, parsed))
        if not matches:
            return None

        # several devices at once: take the lexicographically first
        matches.sort(key=lambda m: m[0])
        if len(matches) > 1:
            logging.debug("Multiple SFTP mounts found, using %s", matches[0][0])
        name, (host, port) = matches[0]
        return MountHandle(self.mount_root / name, host, port)
