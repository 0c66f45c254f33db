class GmmError(Exception):
    """Base class for errors that stop the daemon at startup."""


class AlreadyRunningError(GmmError):
    def __init__(self, lock_path, pid=None):
        self.lock_path = lock_path
        self.pid = pid
        holder = f" (PID {pid})" if pid else ""
        super().__init__(f"Another instance is already running{holder}; lock file: {lock_path}")


class MissingDependencyError(GmmError):
    def __init__(self, tools):
        self.tools = list(tools)
        super().__init__("Required tool(s) not found: " + ", ".join(self.tools))
