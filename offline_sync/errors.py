# Errors - exception taxonomy for the offline sync engine


class OfflineSyncError(Exception):
    """Base class for all sync engine errors"""


class BackendError(OfflineSyncError):
    """Backend answered with a non-success status"""

    def __init__(self, message: str, status_code: int = 0, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def server_message(self) -> str:
        if isinstance(self.body, dict) and self.body.get('message'):
            return str(self.body['message'])
        return str(self)


class ValidationError(BackendError):
    """Backend rejected the payload (e.g. stock insufficient at submission)"""


class AuthenticationError(BackendError):
    """API key missing, expired or not allowed"""


class ServerError(BackendError):
    """5xx from the backend"""


class BackendUnavailableError(BackendError):
    """Timeout or connection failure; nothing usable came back"""


class LocalStoreError(OfflineSyncError):
    """Local persistence failed"""


class UnsupportedActionError(OfflineSyncError):
    """Sync queue holds an action type this processor does not handle"""


class InsufficientStockError(OfflineSyncError):
    """Cart edit asks for more than the cached stock"""

    def __init__(self, message: str, available: float = 0):
        super().__init__(message)
        self.available = available
