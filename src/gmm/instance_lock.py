import fcntl
import logging
import os
from pathlib import Path
from typing import Optional

import psutil

from gmm.errors import AlreadyRunningError


class InstanceLock:
    """flock()-based guard so only one manager runs per lock file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._fp = None

    @property
    def held(self) -> bool:
        return self._fp is not None

    def _holder_pid(self) -> Optional[int]:
        try:
            pid = int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None
        return pid if psutil.pid_exists(pid) else None

    def acquire(self) -> None:
        if self._fp is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fp = open(self.path, "a+")
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fp.close()
            raise AlreadyRunningError(self.path, self._holder_pid())
        except OSError:
            fp.close()
            raise

        fp.seek(0)
        fp.truncate()
        fp.write(f"{os.getpid()}\n")
        fp.flush()
        self._fp = fp
        logging.debug("Instance lock acquired: %s", self.path)

    def release(self) -> None:
        if self._fp is None:
            return
        try:
            self.path.unlink()
        except OSError:
            pass
        try:
            fcntl.flock(self._fp.fileno(), fcntl.LOCK_UN)
        finally:
            self._fp.close()
            self._fp = None
        logging.debug("Instance lock released: %s", self.path)

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
