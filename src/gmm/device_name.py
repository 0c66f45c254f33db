import logging
import re
import subprocess
from typing import List, Optional

GSCONNECT_DCONF_DIR = "/org/gnome/shell/extensions/gsconnect/device/"
GSCONNECT_BUS_NAME  = "org.gnome.Shell.Extensions.GSConnect"
GSCONNECT_OBJ_PATH  = "/org/gnome/Shell/Extensions/GSConnect"
GSCONNECT_DEVICE_IF = "org.gnome.Shell.Extensions.GSConnect.Device"

_LAN_RE         = re.compile(r"^lan://(?P<host>.+):(?P<port>\d+)$")
_DEVICE_PATH_RE = re.compile(re.escape(GSCONNECT_OBJ_PATH) + r"/Device/[A-Za-z0-9_]+")
_QUOTED_RE      = re.compile(r"'([^']*)'")


def _unquote(value: str) -> str:
    """dconf prints GVariant strings quoted: "'Pixel 7'" -> "Pixel 7"."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return value


def parse_lan_host(value: str) -> Optional[str]:
    m = _LAN_RE.match(_unquote(value))
    return m.group("host") if m else None


class DeviceNameResolver:
    """
    Looks up the human name GSConnect knows a device by.

    Tries the dconf store first (matching the device's last LAN connection
    against the mount host), then asks GSConnect over D-Bus. Every external
    command is bounded by *timeout*; any failure just yields None.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def _run(self, args: List[str]) -> Optional[str]:
        try:
            proc = subprocess.run(args, capture_output=True, text=True,
                                  timeout=self.timeout, check=False)
        except FileNotFoundError:
            logging.debug("%s not installed", args[0])
            return None
        except subprocess.TimeoutExpired:
            logging.warning("%s timed out after %.1fs", " ".join(args[:2]), self.timeout)
            return None
        except OSError as exc:
            logging.debug("Failed to run %s: %s", args[0], exc)
            return None
        if proc.returncode != 0:
            logging.debug("%s exited with %d: %s", args[0], proc.returncode, proc.stderr.strip())
            return None
        return proc.stdout

    # ------------------------------------------------------------------
    def from_dconf(self, host: str) -> Optional[str]:
        listing = self._run(["dconf", "list", GSCONNECT_DCONF_DIR])
        if not listing:
            return None

        for device_id in listing.split():
            if not device_id.endswith("/"):
                continue
            base = GSCONNECT_DCONF_DIR + device_id
            last = self._run(["dconf", "read", base + "last-connection"])
            if not last or parse_lan_host(last) != host:
                continue
            name = self._run(["dconf", "read", base + "name"])
            if name and _unquote(name):
                logging.debug("dconf: device %s is %s", device_id.rstrip("/"), _unquote(name))
                return _unquote(name)
        return None

    def from_dbus(self) -> Optional[str]:
        objects = self._run([
            "gdbus", "call", "--session",
            "--dest", GSCONNECT_BUS_NAME,
            "--object-path", GSCONNECT_OBJ_PATH,
            "--method", "org.freedesktop.DBus.ObjectManager.GetManagedObjects",
        ])
        if not objects:
            return None
        m = _DEVICE_PATH_RE.search(objects)
        if not m:
            return None

        reply = self._run([
            "gdbus", "call", "--session",
            "--dest", GSCONNECT_BUS_NAME,
            "--object-path", m.group(0),
            "--method", "org.freedesktop.DBus.Properties.Get",
            GSCONNECT_DEVICE_IF, "Name",
        ])
        if not reply:
            return None
        q = _QUOTED_RE.search(reply)
        return q.group(1) if q and q.group(1) else None

    def resolve(self, host: str) -> Optional[str]:
        name = self.from_dconf(host)
        if name:
            return name
        name = self.from_dbus()
        if name:
            logging.debug("D-Bus: resolved device name %s", name)
        return name
