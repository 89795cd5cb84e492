from typing import Optional


class PlaybackError(Exception):
    """Base error for playback operations, carries the HTTP status to report."""

    status_code = 500

    def __init__(self, message: str, session: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.session = session

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": self.message,
            "error_type": type(self).__name__,
            "session": self.session
        }


class InvalidInput(PlaybackError):
    status_code = 400


class NotFound(PlaybackError):
    status_code = 404


class Conflict(PlaybackError):
    """Invalid state transition. `session` holds the current state for resync."""

    status_code = 409


class TransientStoreFailure(PlaybackError):
    status_code = 503
