from typing import Dict

# Queue exceptions
class QueueError(Exception):
    """Base class for queue failures: a stable code plus a readable reason."""

    code = "queue_error"
    retryable = False

    def __init__(self, detail: str = "Queue operation failed"):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.code, "message": self.detail}

class NotFoundError(QueueError):
    code = "not_found"

    def __init__(self, detail: str = "Appointment not found in queue"):
        super().__init__(detail)

class InvalidTransitionError(QueueError):
    code = "invalid_transition"

    def __init__(self, detail: str = "Transition not allowed"):
        super().__init__(detail)

class QueueFullError(QueueError):
    code = "queue_full"

    def __init__(self, detail: str = "Queue is full, please try again later"):
        super().__init__(detail)

class VersionConflictError(QueueError):
    code = "version_conflict"
    retryable = True

    def __init__(self, detail: str = "Queue was modified concurrently"):
        super().__init__(detail)

class PersistenceFailureError(QueueError):
    code = "persistence_failure"
    retryable = True

    def __init__(self, detail: str = "Failed to persist queue"):
        super().__init__(detail)

class UpstreamUnavailableError(QueueError):
    code = "upstream_unavailable"

    def __init__(self, detail: str = "Appointment service unavailable"):
        super().__init__(detail)
