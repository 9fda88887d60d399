"""
Exceptions raised by the client core
"""


class SuperRayError(Exception):
    """Base class for client errors"""
    pass


class EngineError(SuperRayError):
    """The proxy engine reported a failure (refused, auth, timeout, ...)"""
    pass


class PermissionDenied(SuperRayError):
    """Elevated privileges are required for system-wide routing"""
    pass


class AlreadyInProgress(SuperRayError):
    """A lifecycle transition was requested while another is running"""
    pass


class InvalidSelection(SuperRayError):
    """A command referenced a catalog index that does not exist"""
    pass


class TaskFailure(SuperRayError):
    """An unexpected failure caught by the task supervisor"""

    def __init__(self, task_name: str, error: BaseException, trace: str = ''):
        super().__init__(f"Task '{task_name}' failed: {error}")
        self.task_name = task_name
        self.error = error
        self.trace = trace


class ConfigError(SuperRayError):
    """Invalid configuration value"""
    pass
