"""Value types shared by the mount manager components."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Optional

# ----------------------------------------------------------------------
# name sanitising
# ----------------------------------------------------------------------
MAX_NAME_LENGTH = 64
FALLBACK_NAME   = "Unknown-Device"

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE     = re.compile(r"[^A-Za-z0-9._-]")
_ALNUM_RE      = re.compile(r"[A-Za-z0-9]")


def sanitize_name(name: Optional[str]) -> str:
    """
    Map any display name onto a safe directory name.

    Always returns a non-empty string of at most MAX_NAME_LENGTH characters
    made of [A-Za-z0-9._-], never starting with '.' or '-'.
    """
    raw = name or ""
    cleaned = _WHITESPACE_RE.sub("-", raw.strip())
    cleaned = _UNSAFE_RE.sub("_", cleaned)
    cleaned = cleaned.lstrip(".-")

    if not _ALNUM_RE.search(cleaned):
        return FALLBACK_NAME

    if len(cleaned) > MAX_NAME_LENGTH:
        digest = hashlib.sha1(raw.encode("utf-8", "surrogatepass")).hexdigest()[:8]
        cleaned = f"{cleaned[:MAX_NAME_LENGTH - 9]}-{digest}"
    return cleaned


# ----------------------------------------------------------------------
# storage
# ----------------------------------------------------------------------
class StorageKind(Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"
    USB      = "usb"


@dataclass(frozen=True)
class StorageEntry:
    kind: StorageKind
    path: Path
    label: str


# ----------------------------------------------------------------------
# mounts and devices
# ----------------------------------------------------------------------
@dataclass(frozen=True)
class MountHandle:
    path: Path
    host: str
    port: Optional[int] = None


@dataclass(frozen=True)
class DeviceIdentity:
    display_name: str
    sanitized_name: str
    host: str
    port: Optional[int] = None

    @classmethod
    def create(cls, display_name: str, host: str, port: Optional[int] = None) -> "DeviceIdentity":
        return cls(display_name, sanitize_name(display_name), host, port)

    def same_device(self, other: Optional["DeviceIdentity"]) -> bool:
        return other is not None and other.sanitized_name == self.sanitized_name


@dataclass(frozen=True)
class DeviceRecord(DeviceIdentity):
    """A DeviceIdentity plus what is needed to tear its artifacts down."""
    mount_path: str = ""
    links: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_identity(cls, identity: DeviceIdentity, mount_path: str = "",
                      links=()) -> "DeviceRecord":
        return cls(identity.display_name, identity.sanitized_name,
                   identity.host, identity.port,
                   mount_path=mount_path,
                   links=tuple(str(p) for p in links))

    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(self.display_name, self.sanitized_name,
                              self.host, self.port)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["links"] = list(self.links)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceRecord":
        """Build a record from decoded JSON; raises ValueError on bad input."""
        if not isinstance(data, dict):
            raise ValueError("device record must be an object")
        display = str(data.get("display_name") or "")
        sanitized = str(data.get("sanitized_name") or "") or sanitize_name(display)
        if not display and not sanitized:
            raise ValueError("device record without a name")
        port = data.get("port")
        try:
            port = int(port) if port not in (None, "") else None
        except (TypeError, ValueError):
            port = None
        links = data.get("links") or []
        if not isinstance(links, list):
            links = []
        return cls(display or sanitized, sanitized, str(data.get("host") or ""),
                   port,
                   mount_path=str(data.get("mount_path") or ""),
                   links=tuple(str(p) for p in links))
