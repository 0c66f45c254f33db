import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from gmm.models import StorageKind

APP_NAME = "gsconnect-mount-manager"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def config_home() -> Path:
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")


def default_settings_file() -> Path:
    return config_home() / APP_NAME / "settings.json"


def expand_path(value: str | Path) -> Path:
    """~, $HOME and {uid} are expanded; the result is absolute."""
    text = str(value).replace("{uid}", str(os.getuid()))
    return Path(os.path.expandvars(os.path.expanduser(text))).absolute()


DEFAULTS = {
    "poll_interval": 3,
    "mount": {
        "root":            "/run/user/{uid}/gvfs",
        "detect_gvfs_path": True,
        "scan_timeout":    5,
    },
    "structure": {
        "base_dir":     "~/.gsconnect-mount",
        "auto_cleanup": True,
    },
    "storage": {
        "internal": ["storage/emulated/0"],
        "external": [
            "storage/[0-9A-F][0-9A-F][0-9A-F][0-9A-F]-*",
            "storage/sdcard1",
            "storage/extSdCard",
            "storage/external_sd",
        ],
        "usb":      ["storage/usbotg"],
        "names": {
            "internal": "Internal",
            "external": "SDCard",
            "usb":      "USB-OTG",
        },
        "max_external":  3,
        "check_timeout": 10,
    },
    "bookmarks": {
        "enabled": True,
        "file":    "~/.config/gtk-3.0/bookmarks",
    },
    "notifications": {
        "enabled": True,
        "timeout": 5,
    },
    "name_resolution": {
        "timeout": 5,
    },
    "logging": {
        "level":        "INFO",
        "file":         None,        # None -> <state dir>/gmm.log
        "max_size_mb":  1,
        "rotate_count": 5,
    },
    "state": {
        "dir":        None,          # None -> $XDG_CONFIG_HOME/gsconnect-mount-manager
        "max_log_kb": 256,
    },
    "lock_file": "/tmp/gsconnect-mount-manager.lock",
    "redis": {
        "enabled":    False,
        "host":       "localhost",
        "port":       6379,
        "db":         0,
        "channel":    "gmm_events",
        "key_prefix": "gmm",
    },
    "system": {
        "required_tools": ["dconf"],
    },
}


# ── validation helpers ────────────────────────────────────────────────
def _positive(section: dict, key: str, default, where: str) -> None:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        logging.warning("Invalid %s.%s=%r – using default %r", where, key, value, default)
        section[key] = default


def _flag(section: dict, key: str, default, where: str) -> None:
    if not isinstance(section.get(key), bool):
        logging.warning("Invalid %s.%s=%r – using default %r", where, key, section.get(key), default)
        section[key] = default


def _path_list(section: dict, key: str, default) -> None:
    value = section.get(key)
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        logging.warning("Invalid storage.%s=%r – using defaults", key, value)
        value = list(default)
    section[key] = value


def load_settings(filename: str | Path) -> dict:
    """
    Load the JSON settings file *and* guarantee that every section the
    code relies on is present with safe defaults.

    Return an always-valid settings dict – never None.
    """
    filename = Path(filename)
    try:
        with filename.open("r", encoding="utf-8") as fp:
            settings = json.load(fp)
        if not isinstance(settings, dict):
            raise ValueError("top level must be a JSON object")
    except FileNotFoundError:
        logging.warning("Settings file %s not found – using built-in defaults", filename)
        settings = {}
    except (OSError, ValueError) as e:
        logging.error("Failed to load settings %s: %s – using built-in defaults", filename, e)
        settings = {}

    # ── sections ─────────────────────────────────────────────────────────
    for name, defaults in DEFAULTS.items():
        if not isinstance(defaults, dict):
            settings.setdefault(name, copy.deepcopy(defaults))
            continue
        section = settings.get(name)
        if not isinstance(section, dict):
            section = {}
        for k, v in defaults.items():
            section.setdefault(k, copy.deepcopy(v))
        settings[name] = section

    # ── numbers ──────────────────────────────────────────────────────────
    if isinstance(settings["poll_interval"], bool) or \
            not isinstance(settings["poll_interval"], (int, float)) or settings["poll_interval"] <= 0:
        logging.warning("Invalid poll_interval=%r – using default %r",
                        settings["poll_interval"], DEFAULTS["poll_interval"])
        settings["poll_interval"] = DEFAULTS["poll_interval"]

    for where, keys in (("mount", ("scan_timeout",)),
                        ("storage", ("max_external", "check_timeout")),
                        ("notifications", ("timeout",)),
                        ("name_resolution", ("timeout",)),
                        ("logging", ("max_size_mb", "rotate_count")),
                        ("state", ("max_log_kb",))):
        for key in keys:
            _positive(settings[where], key, DEFAULTS[where][key], where)

    # ── flags ────────────────────────────────────────────────────────────
    for where, key in (("mount", "detect_gvfs_path"),
                       ("structure", "auto_cleanup"),
                       ("bookmarks", "enabled"),
                       ("notifications", "enabled"),
                       ("redis", "enabled")):
        _flag(settings[where], key, DEFAULTS[where][key], where)

    # ── storage paths / labels ───────────────────────────────────────────
    storage_cfg = settings["storage"]
    for kind in ("internal", "external", "usb"):
        _path_list(storage_cfg, kind, DEFAULTS["storage"][kind])

    names = storage_cfg.get("names")
    if not isinstance(names, dict):
        names = {}
    for kind, default in DEFAULTS["storage"]["names"].items():
        label = names.get(kind)
        if not isinstance(label, str) or not label.strip() or "/" in label \
                or " " in label or label in (".", ".."):
            if label is not None:
                logging.warning("Invalid storage label %r for %s – using %r", label, kind, default)
            names[kind] = default
    storage_cfg["names"] = names

    # ── logging level ────────────────────────────────────────────────────
    level = str(settings["logging"].get("level", "")).upper()
    if level not in VALID_LOG_LEVELS:
        logging.warning("Invalid logging.level=%r – using INFO", settings["logging"].get("level"))
        level = "INFO"
    settings["logging"]["level"] = level

    tools = settings["system"].get("required_tools")
    if not isinstance(tools, list):
        settings["system"]["required_tools"] = list(DEFAULTS["system"]["required_tools"])

    return settings


@dataclass
class ManagerConfig:
    """Resolved, typed view of the settings dict handed to every component."""
    poll_interval: float
    mount_root: Path
    detect_gvfs_path: bool
    scan_timeout: float
    base_dir: Path
    auto_cleanup: bool
    storage_paths: Dict[StorageKind, List[str]]
    storage_labels: Dict[StorageKind, str]
    max_external: int
    check_timeout: float
    bookmarks_enabled: bool
    bookmark_file: Path
    notifications_enabled: bool
    notification_timeout: int
    name_timeout: float
    log_level: str
    log_file: Path
    log_max_bytes: int
    log_backup_count: int
    state_dir: Path
    max_log_bytes: int
    lock_file: Path
    required_tools: List[str] = field(default_factory=list)
    redis: dict = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: dict) -> "ManagerConfig":
        state_dir = expand_path(settings["state"]["dir"] or config_home() / APP_NAME)
        log_file = settings["logging"]["file"] or state_dir / "gmm.log"
        storage = settings["storage"]

        return cls(
            poll_interval=float(settings["poll_interval"]),
            mount_root=expand_path(settings["mount"]["root"]),
            detect_gvfs_path=settings["mount"]["detect_gvfs_path"],
            scan_timeout=float(settings["mount"]["scan_timeout"]),
            base_dir=expand_path(settings["structure"]["base_dir"]),
            auto_cleanup=settings["structure"]["auto_cleanup"],
            storage_paths={kind: list(storage[kind.value]) for kind in StorageKind},
            storage_labels={kind: storage["names"][kind.value] for kind in StorageKind},
            max_external=int(storage["max_external"]),
            check_timeout=float(storage["check_timeout"]),
            bookmarks_enabled=settings["bookmarks"]["enabled"],
            bookmark_file=expand_path(settings["bookmarks"]["file"]),
            notifications_enabled=settings["notifications"]["enabled"],
            notification_timeout=int(settings["notifications"]["timeout"]),
            name_timeout=float(settings["name_resolution"]["timeout"]),
            log_level=settings["logging"]["level"],
            log_file=expand_path(log_file),
            log_max_bytes=int(settings["logging"]["max_size_mb"] * 1024 * 1024),
            log_backup_count=int(settings["logging"]["rotate_count"]),
            state_dir=state_dir,
            max_log_bytes=int(settings["state"]["max_log_kb"] * 1024),
            lock_file=expand_path(settings["lock_file"]),
            required_tools=list(settings["system"]["required_tools"]),
            redis=dict(settings["redis"]),
        )
