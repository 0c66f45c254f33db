"""
Connection notifications.

Both sinks subscribe to MountManager.connect_event / disconnect_event. A
failing sink only logs; the mount lifecycle never waits on it.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import time
from typing import Sequence

import redis

from gmm.models import DeviceIdentity, DeviceRecord, StorageEntry

APP_TITLE = "GSConnect Mount Manager"


def connect_message(identity: DeviceIdentity, entries: Sequence[StorageEntry]) -> str:
    labels = ", ".join(e.label for e in entries) or "none"
    return (f"Device mounted: {identity.display_name}\n"
            f"📁 Folder: {identity.sanitized_name}\n"
            f"🔗 Storage: {labels}")


def disconnect_message(record: DeviceIdentity) -> str:
    return f"Device unmounted: {record.display_name}"


# ──────────────────────────── desktop popups ───────────────────────────
class DesktopNotifier:

    def __init__(self, enabled: bool = True, timeout: int = 5):
        self.enabled = enabled
        self.timeout = timeout

    def _command(self, message: str):
        desktop = os.environ.get("XDG_CURRENT_DESKTOP", "").lower()
        if "kde" in desktop and shutil.which("kdialog"):
            return ["kdialog", "--passivepopup", message, str(self.timeout)]
        if shutil.which("notify-send"):
            return ["notify-send", APP_TITLE, message, "--icon=phone",
                    f"--expire-time={int(self.timeout * 1000)}"]
        return None

    def send(self, message: str) -> bool:
        if not self.enabled:
            return False
        cmd = self._command(message)
        if cmd is None:
            logging.debug("No notification tool available; message was: %s", message)
            return False
        try:
            # not waited on: the popup tool may linger for the whole display time
            subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
                             start_new_session=True)
        except (OSError, subprocess.SubprocessError) as exc:
            logging.debug("Notification failed: %s", exc)
            return False
        return True

    def on_connect(self, identity: DeviceIdentity, entries: Sequence[StorageEntry]) -> None:
        self.send(connect_message(identity, entries))

    def on_disconnect(self, record: DeviceRecord) -> None:
        self.send(disconnect_message(record))


# ──────────────────────────── redis mirror ─────────────────────────────
class RedisStatusPublisher:
    """
    Mirrors the connection state into Redis so other local services can
    react to the phone coming and going.

    Keys: <prefix>:is_connected ("0"/"1"), <prefix>:device_name,
    <prefix>:device_host. Every change is also published on *channel*
    as a small JSON document.
    """

    def __init__(self, host="localhost", port=6379, db=0,
                 channel="gmm_events", key_prefix="gmm", client=None):
        self.r          = client if client is not None else redis.StrictRedis(host=host, port=port, db=db)
        self.channel    = channel
        self.key_prefix = key_prefix

    def _key(self, name: str) -> str:
        return f"{self.key_prefix}:{name}"

    def _write(self, connected: bool, identity: DeviceIdentity | None, event: dict) -> None:
        try:
            pipe = self.r.pipeline()
            pipe.set(self._key("is_connected"), "1" if connected else "0")
            pipe.set(self._key("device_name"), identity.display_name if connected else "")
            pipe.set(self._key("device_host"), identity.host if connected else "")
            pipe.publish(self.channel, json.dumps(event))
            pipe.execute()
        except (redis.RedisError, OSError) as exc:
            logging.warning("Redis status update failed: %s", exc)

    def on_connect(self, identity: DeviceIdentity, entries: Sequence[StorageEntry]) -> None:
        self._write(True, identity, {
            "event":          "connected",
            "device_name":    identity.display_name,
            "sanitized_name": identity.sanitized_name,
            "host":           identity.host,
            "port":           identity.port,
            "storage":        [e.label for e in entries],
            "ts":             time.time(),
        })

    def on_disconnect(self, record: DeviceRecord) -> None:
        self._write(False, record, {
            "event":          "disconnected",
            "device_name":    record.display_name,
            "sanitized_name": record.sanitized_name,
            "host":           record.host,
            "ts":             time.time(),
        })
