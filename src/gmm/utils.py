import logging
import threading


class BoundedCall:
    """
    Runs a callable in a daemon thread and waits at most *timeout* seconds.

    A call stuck in the kernel (stale FUSE mount) cannot be interrupted, so
    its thread is left behind. Until that thread finishes, further calls
    through the same BoundedCall return *default* at once instead of
    starting another one: at most one worker per instance is ever alive.
    """

    def __init__(self, name: str = "bounded-op"):
        self.name = name
        self._thread = None

    @property
    def busy(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __call__(self, fn, timeout: float, *args, default=None):
        if self.busy:
            logging.warning("%s still blocked from an earlier call – skipping", self.name)
            return default

        result = {}

        def _worker():
            try:
                result["value"] = fn(*args)
            except Exception as exc:
                result["error"] = exc

        t = threading.Thread(target=_worker, name=self.name, daemon=True)
        self._thread = t
        t.start()
        t.join(timeout)

        if t.is_alive():
            logging.warning("%s timed out after %.1fs", self.name, timeout)
            return default
        self._thread = None
        if "error" in result:
            logging.debug("%s failed: %s", self.name, result["error"])
            return default
        return result.get("value", default)
