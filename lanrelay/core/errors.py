class RelayError(Exception):
    """Base class for errors reported back to whoever submitted the request.

    ``code`` is the value sent in the ``ERROR`` frame payload.
    """

    code = "RELAY_ERROR"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.__class__.__doc__ or self.code)
        self.detail = str(self)


class NoFilesError(RelayError):
    """No file uploaded"""

    code = "NO_FILES"


class NoTargetError(RelayError):
    """Receiver not selected"""

    code = "NO_TARGET"


class TargetUnavailableError(RelayError):
    """Target not available currently"""

    code = "TARGET_UNAVAILABLE"


class QueueFullError(RelayError):
    """Raised when a backlog would grow past its configured item or byte limit."""

    code = "QUEUE_FULL"

    def __init__(self, client_id: str, detail: str | None = None):
        super().__init__(detail or f"backlog for {client_id} is full")
        self.client_id = client_id
