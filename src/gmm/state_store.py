"""
Persistent state: the currently connected device and the list of every
device this manager has ever created artifacts for.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from gmm.models import DeviceIdentity, DeviceRecord
from gmm.safety import validate_deletable

STATE_FILE_NAME   = "device_state.json"
MANAGED_LOG_NAME  = "managed_devices.log"
DEFAULT_MAX_LOG_BYTES = 256 * 1024


class StateStore:

    def __init__(self, state_dir: str | Path, max_log_bytes: int = DEFAULT_MAX_LOG_BYTES):
        self.state_dir     = Path(state_dir)
        self.state_file    = self.state_dir / STATE_FILE_NAME
        self.managed_log   = self.state_dir / MANAGED_LOG_NAME
        self.rotated_log   = self.state_dir / (MANAGED_LOG_NAME + ".1")
        self.max_log_bytes = max_log_bytes

    # ------------------------------------------------------------------
    # current device
    # ------------------------------------------------------------------
    def load(self) -> Optional[DeviceRecord]:
        try:
            text = self.state_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logging.warning("Cannot read state file %s: %s", self.state_file, exc)
            return None

        if not text.strip():
            return None
        try:
            return DeviceRecord.from_dict(json.loads(text))
        except ValueError as exc:
            # json.JSONDecodeError is a ValueError too
            logging.warning("Ignoring corrupt state file %s: %s", self.state_file, exc)
            return None

    def _atomic_write(self, path: Path, text: str, prefix: str) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=prefix, dir=self.state_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fp:
                fp.write(text)
                fp.flush()
                os.fsync(fp.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def save(self, record: DeviceRecord) -> None:
        self._atomic_write(self.state_file, json.dumps(record.to_dict(), indent=2),
                           ".device_state.")
        logging.debug("State saved for %s", record.sanitized_name)

    def clear(self) -> None:
        try:
            self.state_file.unlink()
            logging.debug("State file cleared")
        except FileNotFoundError:
            pass
        except OSError as exc:
            logging.error("Failed to remove state file %s: %s", self.state_file, exc)

    # ------------------------------------------------------------------
    # managed devices log
    # ------------------------------------------------------------------
    @staticmethod
    def _managed_line(identity: DeviceIdentity) -> str:
        return json.dumps({
            "display_name":   identity.display_name,
            "sanitized_name": identity.sanitized_name,
            "host":           identity.host,
            "port":           identity.port,
        }) + "\n"

    def _rotate_if_needed(self) -> None:
        """
        Compact both generations into the .1 file and start an empty live log.

        The rotated file always holds every device seen so far, one line each,
        so a second rotation never forgets anyone.
        """
        try:
            size = self.managed_log.stat().st_size
        except FileNotFoundError:
            return
        if size <= self.max_log_bytes:
            return
        records = self.managed_devices()
        self._atomic_write(self.rotated_log,
                           "".join(self._managed_line(r) for r in records),
                           ".managed_devices.")
        self.managed_log.unlink()
        logging.info("Rotated managed devices log (%d bytes, %d device(s) kept)",
                     size, len(records))

    def record_managed(self, identity: DeviceIdentity) -> bool:
        """Append *identity* unless its sanitized name is already listed."""
        known = {r.sanitized_name for r in self.managed_devices()}
        if identity.sanitized_name in known:
            return False

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            self._rotate_if_needed()
            with self.managed_log.open("a", encoding="utf-8") as fp:
                fp.write(self._managed_line(identity))
        except OSError as exc:
            logging.error("Failed to update managed devices log: %s", exc)
            return False
        logging.info("Device recorded as managed: %s", identity.sanitized_name)
        return True

    def managed_devices(self) -> List[DeviceRecord]:
        records: List[DeviceRecord] = []
        seen = set()
        for path in (self.rotated_log, self.managed_log):
            try:
                with path.open("r", encoding="utf-8") as fp:
                    lines = fp.readlines()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logging.warning("Cannot read %s: %s", path, exc)
                continue

            for lineno, line in enumerate(lines, 1):
                if not line.strip():
                    continue
                try:
                    record = DeviceRecord.from_dict(json.loads(line))
                except ValueError:
                    logging.debug("Skipping malformed line %d in %s", lineno, path)
                    continue
                if record.sanitized_name in seen:
                    continue
                seen.add(record.sanitized_name)
                records.append(record)
        return records

    # ------------------------------------------------------------------
    # uninstall
    # ------------------------------------------------------------------
    def purge(self) -> int:
        removed = 0
        for path in (self.state_file, self.managed_log, self.rotated_log):
            if not path.exists():
                continue
            if not validate_deletable(path, self.state_dir, follow_final=False):
                continue
            try:
                path.unlink()
                removed += 1
                logging.info("Removed %s", path)
            except OSError as exc:
                logging.error("Failed to remove %s: %s", path, exc)
        return removed
